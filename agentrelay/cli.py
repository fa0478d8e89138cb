"""Command line interface for submitting and running agentrelay jobs."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .config import AgentRelayConfig, load_config
from .engine import JobAdvancer, JobDeleter, JobOrchestrator, PollingScheduler
from .errors import AgentRelayError
from .gateway import AgentGateway, InMemoryAgentGateway, get_gateway
from .models import AgentState, Job
from .persistence import JobRepository, get_repository
from .prompts import PromptLoader
from .services import CompletionChecker, JobInspector, JobSubmitter

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run AI coding agent workflows")

# Command groups
jobs_app = typer.Typer(help="Commands for managing jobs")

app.add_typer(jobs_app, name="jobs")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a YAML config file"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level"),
) -> None:
    """agentrelay CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {
        "config": load_config(str(config) if config else None),
        "explicit": config is not None,
    }


def _config(ctx: typer.Context) -> AgentRelayConfig:
    if isinstance(ctx.obj, dict) and "config" in ctx.obj:
        return ctx.obj["config"]
    return load_config()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _repository(ctx: typer.Context) -> JobRepository:
    explicit = isinstance(ctx.obj, dict) and ctx.obj.get("explicit")
    try:
        return get_repository(config=_config(ctx)) if explicit else get_repository()
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")


def _gateway(ctx: typer.Context) -> AgentGateway:
    try:
        return get_gateway(config=_config(ctx))
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")


def build_orchestrator(
    config: AgentRelayConfig, repository: JobRepository, gateway: AgentGateway
) -> JobOrchestrator:
    advancer = JobAdvancer(
        gateway, repository, prompt_loader=PromptLoader(config.prompt_source_directory)
    )
    return JobOrchestrator(
        repository, advancer, max_concurrent_advances=config.max_concurrent_advances
    )


def _format_time(job: Job) -> str:
    return job.last_update.strftime("%Y-%m-%d %H:%M:%S")


def _echo_job_table(jobs: List[Job]) -> None:
    typer.echo(f"{'JOB ID':<38}{'PARENT':<38}{'STATUS':<10}{'MODEL':<24}LAST UPDATE")
    for job in jobs:
        typer.echo(
            f"{job.job_id:<38}{(job.parent_job_id or '-'):<38}{job.status.value:<10}"
            f"{job.model:<24}{_format_time(job)}"
        )


# ----------------------------------------------------------------------
# jobs
@jobs_app.command("list")
def jobs_list(ctx: typer.Context) -> None:
    """List all jobs with their current status."""
    repository = _repository(ctx)
    jobs = asyncio.run(JobInspector(repository).list_jobs())
    if not jobs:
        typer.echo("No jobs found")
        return
    _echo_job_table(jobs)


@jobs_app.command("status")
def jobs_status(ctx: typer.Context, job_id: str) -> None:
    """Show a job, its prompts and its child jobs."""
    repository = _repository(ctx)
    details = asyncio.run(JobInspector(repository).details(job_id))
    if details is None:
        _fail(f"Job not found: {job_id}")
    job = details.job
    typer.echo(f"Job {job.job_id}: {job.status.value}")
    typer.echo(f"Workflow: {job.path}")
    typer.echo(f"Model: {job.model}")
    typer.echo(f"Repository: {job.repository}")
    if job.workflow_shape:
        typer.echo(f"Type: {job.workflow_shape.value}")
    if job.agent_id:
        typer.echo(f"Agent: {job.agent_id}")
    if job.parent_job_id:
        typer.echo(f"Parent: {job.parent_job_id}")
    if job.bound_value is not None:
        typer.echo(f"Bound value: {job.bound_value}")
    if job.timeout_millis is not None:
        fallback = job.fallback_src or "none"
        state = "sent" if job.fallback_executed else "pending"
        typer.echo(
            f"Timeout: {job.timeout_millis}ms, elapsed {job.elapsed_millis()}ms "
            f"(fallback: {fallback}, {state})"
        )
    if job.result is not None:
        typer.echo(f"Result: {job.result}")
    typer.echo("Prompts:")
    for prompt in details.prompts:
        typer.echo(f"- {prompt.source_ref}: {prompt.status}")
    if details.children:
        typer.echo("Child jobs:")
        for child in details.children:
            typer.echo(f"- {child.job_id}: {child.status.value}")


async def _show_logs(inspector: JobInspector, job: Job) -> None:
    messages = await inspector.logs(job.job_id) or []
    typer.echo(f"=== Conversation for job {job.job_id} ===")
    if not messages:
        typer.echo("No conversation available")
    for message in messages:
        typer.echo(f"[{message.type}] {message.text or ''}")


@jobs_app.command("logs")
def jobs_logs(ctx: typer.Context, job_id: str) -> None:
    """Print the agent conversation of a job."""
    repository, gateway = _repository(ctx), _gateway(ctx)

    async def _run() -> bool:
        async with gateway:
            inspector = JobInspector(repository, gateway)
            job = await repository.get_job(job_id)
            if job is None:
                return False
            await _show_logs(inspector, job)
            return True

    try:
        found = asyncio.run(_run())
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")
    if not found:
        _fail(f"Job not found: {job_id}")


@jobs_app.command("pr")
def jobs_pr(ctx: typer.Context, job_id: str) -> None:
    """Print the pull request link of a job."""
    repository = _repository(ctx)
    inspector = JobInspector(repository)
    job = asyncio.run(repository.get_job(job_id))
    if job is None:
        _fail(f"Job not found: {job_id}")
    link = asyncio.run(inspector.pr_link(job_id))
    if not link:
        typer.echo("No pull request available")
        return
    typer.echo(link)


async def _submit(
    config: AgentRelayConfig,
    repository: JobRepository,
    gateway: AgentGateway,
    workflow: Path,
    check_model: bool,
) -> Job:
    submitter = JobSubmitter(
        repository,
        prompt_loader=PromptLoader(config.prompt_source_directory),
        gateway=gateway if check_model else None,
    )
    return await submitter.submit(workflow)


@jobs_app.command("new")
def jobs_new(
    ctx: typer.Context,
    workflow: Path,
    check_model: bool = typer.Option(False, help="Check the model against the API's model list"),
) -> None:
    """Register a job for a workflow file and print its id."""
    config = _config(ctx)
    repository, gateway = _repository(ctx), _gateway(ctx)

    async def _run() -> Job:
        async with gateway:
            return await _submit(config, repository, gateway, workflow, check_model)

    try:
        job = asyncio.run(_run())
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")
    typer.echo(f"Job created: {job.job_id}")


@jobs_app.command("delete")
def jobs_delete(ctx: typer.Context, job_id: str) -> None:
    """Delete a job, its child jobs and their agents."""
    repository, gateway = _repository(ctx), _gateway(ctx)

    async def _run() -> int:
        async with gateway:
            return await JobDeleter(repository, gateway).delete(job_id)

    try:
        removed = asyncio.run(_run())
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")
    if removed == 0:
        _fail(f"Job not found: {job_id}")
    typer.echo(f"Deleted {removed} job(s)")


# ----------------------------------------------------------------------
# run / worker
async def _run_workflow(
    config: AgentRelayConfig,
    repository: JobRepository,
    gateway: AgentGateway,
    workflow: Path,
    polling_interval: float,
    delete_on_completion: bool,
    delete_on_success_completion: bool,
    show_logs: bool,
    check_model: bool,
) -> int:
    async with gateway:
        job = await _submit(config, repository, gateway, workflow, check_model)
        typer.echo(f"Job registered: {job.job_id}")

        scheduler = PollingScheduler(
            build_orchestrator(config, repository, gateway), polling_interval
        )
        checker = CompletionChecker(repository)
        last_status: Optional[AgentState] = None
        while True:
            await scheduler.run_once()
            completion = await checker.check(job.job_id)
            current = await repository.get_job(job.job_id)
            if current is not None and current.status != last_status:
                last_status = current.status
                typer.echo(f"Job {job.job_id}: {current.status.value}")
            if completion.completed:
                break
            await asyncio.sleep(polling_interval)

        final = completion.final_status
        typer.echo(f"Job completed with status: {final.value if final else 'UNKNOWN'}")
        if completion.children:
            typer.echo(f"All {len(completion.children)} child jobs completed.")

        if show_logs and current is not None:
            inspector = JobInspector(repository, gateway)
            for shown in [current, *completion.children]:
                await _show_logs(inspector, shown)

        if delete_on_completion or (delete_on_success_completion and completion.successful):
            removed = await JobDeleter(repository, gateway).delete(job.job_id)
            typer.echo(f"Deleted {removed} job(s)")

        return 0 if completion.successful else 1


@app.command("run")
def run(
    ctx: typer.Context,
    workflow: Path = typer.Option(..., "--workflow", help="Path to the workflow file"),
    delete_on_completion: bool = typer.Option(
        False, help="Delete the job and all child jobs when the workflow completes"
    ),
    delete_on_success_completion: bool = typer.Option(
        False, help="Delete the job and all child jobs only when the workflow succeeds"
    ),
    show_logs: bool = typer.Option(False, help="Display agent conversations before deletion"),
    polling_interval: Optional[float] = typer.Option(
        None, help="Seconds between cycles (overrides the config)"
    ),
    check_model: bool = typer.Option(False, help="Check the model against the API's model list"),
    dry_run: bool = typer.Option(
        False, help="Use the in-memory agent gateway instead of the remote API"
    ),
) -> None:
    """
    Submit a workflow and block until it completes.

    Exits with 0 when the job and all its branches finished successfully and 1
    otherwise.

    Example:
        agentrelay run --workflow ./workflows/refactor.xml --delete-on-success-completion
    """
    config = _config(ctx)
    interval = polling_interval if polling_interval is not None else config.polling_interval_seconds
    if interval <= 0:
        _fail("--polling-interval must be positive")
    repository = _repository(ctx)
    gateway = InMemoryAgentGateway() if dry_run else _gateway(ctx)
    try:
        code = asyncio.run(
            _run_workflow(
                config,
                repository,
                gateway,
                workflow,
                interval,
                delete_on_completion,
                delete_on_success_completion,
                show_logs,
                check_model,
            )
        )
    except AgentRelayError as exc:
        _fail(f"Error running workflow: {exc}")
    except KeyboardInterrupt:
        typer.echo("Interrupted")
        code = 1
    raise typer.Exit(code=code)


@app.command("worker")
def worker(
    ctx: typer.Context,
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run until interrupted)"
    ),
) -> None:
    """
    Run the polling loop that advances every active job.

    Example:
        agentrelay worker --lifespan 3600
    """
    config = _config(ctx)
    repository, gateway = _repository(ctx), _gateway(ctx)

    async def _run() -> None:
        async with gateway:
            scheduler = PollingScheduler(
                build_orchestrator(config, repository, gateway),
                config.polling_interval_seconds,
            )
            await scheduler.run_for(lifespan, config.shutdown_timeout_seconds)

    typer.echo(f"Starting worker (polling every {config.polling_interval_seconds}s)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("Worker interrupted")
    typer.echo("Worker stopped")


# ----------------------------------------------------------------------
# API listings
@app.command("models")
def models(ctx: typer.Context) -> None:
    """List the models the agent API offers."""
    gateway = _gateway(ctx)

    async def _run() -> List[str]:
        async with gateway:
            return await gateway.list_models()

    try:
        names = asyncio.run(_run())
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")
    for name in names:
        typer.echo(name)


@app.command("repositories")
def repositories(ctx: typer.Context) -> None:
    """List the repositories the agent API can work on."""
    gateway = _gateway(ctx)

    async def _run() -> List[str]:
        async with gateway:
            return await gateway.list_repositories()

    try:
        names = asyncio.run(_run())
    except AgentRelayError as exc:
        _fail(f"Error: {exc}")
    if not names:
        typer.echo("No repositories found")
    for name in names:
        typer.echo(name)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
