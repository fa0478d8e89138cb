import asyncio
from pathlib import Path

import pytest
from typer.testing import CliRunner

import agentrelay.cli as cli
import agentrelay.persistence as persistence
from agentrelay.cli import app
from agentrelay.gateway import InMemoryAgentGateway
from agentrelay.models import AgentState, Job, Prompt
from agentrelay.persistence import InMemoryJobRepository

WORKFLOWS = Path(__file__).parent.parent / "fixtures" / "workflows"


@pytest.fixture
def repo():
    repository = InMemoryJobRepository()
    persistence._repository_instance = repository
    yield repository
    persistence._repository_instance = None


@pytest.fixture
def gateway(monkeypatch):
    fake = InMemoryAgentGateway(models=["claude-4-sonnet"], repositories=["acme/widgets"])
    monkeypatch.setattr(cli, "get_gateway", lambda *args, **kwargs: fake)
    return fake


def _job(**kwargs) -> Job:
    defaults = dict(path="/wf.xml", model="default", repository="https://github.com/acme/widgets")
    defaults.update(kwargs)
    return Job(**defaults)


def test_jobs_list(repo):
    runner = CliRunner()
    result = runner.invoke(app, ["jobs", "list"])
    assert result.exit_code == 0, result.output
    assert "No jobs found" in result.output

    first, second = _job(), _job(status=AgentState.RUNNING)
    asyncio.run(repo.create_job(first))
    asyncio.run(repo.create_job(second))

    result = runner.invoke(app, ["jobs", "list"])
    assert result.exit_code == 0, result.output
    assert first.job_id in result.output
    assert second.job_id in result.output
    assert "RUNNING" in result.output


def test_jobs_status_shows_prompts_and_missing(repo):
    job = _job(bound_value="7")
    asyncio.run(repo.create_job(job, [Prompt(job_id=job.job_id, source_ref="prompt1.md")]))
    child = _job(parent_job_id=job.job_id)
    asyncio.run(repo.create_job(child))

    runner = CliRunner()
    result = runner.invoke(app, ["jobs", "status", job.job_id])
    assert result.exit_code == 0, result.output
    assert f"Job {job.job_id}: UNKNOWN" in result.output
    assert "Bound value: 7" in result.output
    assert "- prompt1.md: UNKNOWN" in result.output
    assert child.job_id in result.output

    result = runner.invoke(app, ["jobs", "status", "missing"])
    assert result.exit_code == 1
    assert "Job not found: missing" in result.output


def test_jobs_status_shows_timeout(repo):
    job = _job(timeout_millis=300000, fallback_src="fallback.md")
    asyncio.run(repo.create_job(job))
    plain = _job()
    asyncio.run(repo.create_job(plain))

    runner = CliRunner()
    result = runner.invoke(app, ["jobs", "status", job.job_id])
    assert result.exit_code == 0, result.output
    assert "Timeout: 300000ms, elapsed 0ms (fallback: fallback.md, pending)" in result.output

    result = runner.invoke(app, ["jobs", "status", plain.job_id])
    assert "Timeout:" not in result.output


def test_jobs_new_registers_job(repo, gateway):
    runner = CliRunner()
    result = runner.invoke(
        app, ["jobs", "new", str(WORKFLOWS / "sequence.xml"), "--check-model"]
    )
    assert result.exit_code == 0, result.output
    assert "Job created:" in result.output
    (job,) = asyncio.run(repo.list_jobs())
    assert job.job_id in result.output


def test_jobs_new_reports_invalid_workflow(repo, gateway, tmp_path):
    workflow = tmp_path / "broken.xml"
    workflow.write_text("<not-a-workflow/>")

    result = CliRunner().invoke(app, ["jobs", "new", str(workflow)])

    assert result.exit_code == 1
    assert "Root element" in result.output
    assert asyncio.run(repo.list_jobs()) == []


def test_jobs_delete(repo, gateway):
    parent = _job()
    child = _job(parent_job_id=parent.job_id)
    asyncio.run(repo.create_job(parent))
    asyncio.run(repo.create_job(child))
    runner = CliRunner()

    result = runner.invoke(app, ["jobs", "delete", parent.job_id])
    assert result.exit_code == 0, result.output
    assert "Deleted 2 job(s)" in result.output

    result = runner.invoke(app, ["jobs", "delete", parent.job_id])
    assert result.exit_code == 1
    assert "Job not found" in result.output


def test_jobs_logs_and_pr(repo, gateway):
    launched = asyncio.run(gateway.launch("Fix the bug", "default", "acme/widgets"))
    gateway.add_message(launched.agent_id, "Bug fixed")
    job = _job().with_agent(launched.agent_id)
    asyncio.run(repo.create_job(job))
    runner = CliRunner()

    result = runner.invoke(app, ["jobs", "logs", job.job_id])
    assert result.exit_code == 0, result.output
    assert "[user_message] Fix the bug" in result.output
    assert "[assistant_message] Bug fixed" in result.output

    result = runner.invoke(app, ["jobs", "pr", job.job_id])
    assert result.exit_code == 0, result.output
    assert "https://github.com/acme/widgets/pulls" in result.output


def test_run_sequence_workflow(repo, gateway):
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "run",
            "--workflow",
            str(WORKFLOWS / "sequence.xml"),
            "--polling-interval",
            "0.01",
            "--show-logs",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Job registered:" in result.output
    assert "Job completed with status: FINISHED" in result.output
    assert "=== Conversation for job" in result.output
    (job,) = asyncio.run(repo.list_jobs())
    assert job.result == "https://github.com/acme/widgets/pulls"


def test_run_parallel_workflow_and_delete(repo, gateway):
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "run",
            "--workflow",
            str(WORKFLOWS / "parallel-branches.yaml"),
            "--polling-interval",
            "0.01",
            "--delete-on-success-completion",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "All 2 child jobs completed." in result.output
    assert "Deleted 3 job(s)" in result.output
    assert asyncio.run(repo.list_jobs()) == []


def test_run_failing_workflow_exits_with_error(repo, gateway):
    gateway.script_next_launch(AgentState.ERROR)
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "run",
            "--workflow",
            str(WORKFLOWS / "sequence.xml"),
            "--polling-interval",
            "0.01",
            "--delete-on-success-completion",
        ],
    )

    assert result.exit_code == 1, result.output
    assert "Job completed with status: ERROR" in result.output
    assert len(asyncio.run(repo.list_jobs())) == 1


def test_models_and_repositories(gateway):
    runner = CliRunner()

    result = runner.invoke(app, ["models"])
    assert result.exit_code == 0, result.output
    assert "claude-4-sonnet" in result.output

    result = runner.invoke(app, ["repositories"])
    assert result.exit_code == 0, result.output
    assert "acme/widgets" in result.output


def test_run_dry_run_does_not_need_remote_gateway(repo, monkeypatch):
    def _no_gateway(*args, **kwargs):
        raise AssertionError("remote gateway requested during a dry run")

    monkeypatch.setattr(cli, "get_gateway", _no_gateway)
    result = CliRunner().invoke(
        app,
        [
            "run",
            "--workflow",
            str(WORKFLOWS / "sequence.yaml"),
            "--polling-interval",
            "0.01",
            "--dry-run",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Job completed with status: FINISHED" in result.output
