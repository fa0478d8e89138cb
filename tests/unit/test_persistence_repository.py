import sqlite3

import pytest

import agentrelay.persistence as persistence
from agentrelay.errors import ConfigurationError, StorageError
from agentrelay.models import (
    AgentState,
    BranchPlan,
    FanOutPlan,
    Job,
    Prompt,
    PromptRef,
    WorkflowShape,
)
from agentrelay.persistence import (
    InMemoryJobRepository,
    SQLiteJobRepository,
    get_repository,
    reset_repository,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryJobRepository()
    else:
        repository = SQLiteJobRepository(tmp_path / "jobs.db")
        yield repository
        repository.close()


def _job(**kwargs) -> Job:
    defaults = dict(path="/workflows/wf.xml", model="default", repository="acme/widgets")
    defaults.update(kwargs)
    return Job(**defaults)


def _prompts(job: Job, *sources: str) -> list[Prompt]:
    return [Prompt(job_id=job.job_id, source_ref=src) for src in sources]


@pytest.mark.asyncio
async def test_create_and_get_job_with_prompts(repo):
    plan = FanOutPlan(
        bind_result_type="List_Integer",
        branches=[BranchPlan(model="m", prompts=[PromptRef(source_ref="b.md", binds_result=True)])],
    )
    job = _job(workflow_shape=WorkflowShape.PARALLEL, fan_out=plan)
    await repo.create_job(job, _prompts(job, "a.md", "b.md", "c.md"))

    stored = await repo.get_job(job.job_id)
    assert stored is not None
    assert stored.job_id == job.job_id
    assert stored.status is AgentState.UNKNOWN
    assert stored.workflow_shape is WorkflowShape.PARALLEL
    assert stored.fan_out == plan
    assert stored.created_at == job.created_at

    prompts = await repo.find_prompts(job.job_id)
    assert [p.source_ref for p in prompts] == ["a.md", "b.md", "c.md"]


@pytest.mark.asyncio
async def test_get_unknown_job(repo):
    assert await repo.get_job("missing") is None
    assert await repo.find_prompts("missing") == []


@pytest.mark.asyncio
async def test_save_updates_job(repo):
    job = _job()
    await repo.create_job(job, _prompts(job, "a.md"))

    updated = job.with_agent("agent-1").with_pr_url("https://github.com/acme/widgets/pull/1")
    await repo.save(updated)

    stored = await repo.get_job(job.job_id)
    assert stored.agent_id == "agent-1"
    assert stored.status is AgentState.CREATING
    assert stored.pr_url == "https://github.com/acme/widgets/pull/1"
    assert len(await repo.list_jobs()) == 1


@pytest.mark.asyncio
async def test_save_prompt_keeps_creation_order(repo):
    job = _job()
    prompts = _prompts(job, "a.md", "b.md", "c.md")
    await repo.create_job(job, prompts)

    await repo.save_prompt(prompts[1].mark_sent())
    await repo.save_prompt(prompts[0].mark_completed())

    stored = await repo.find_prompts(job.job_id)
    assert [p.source_ref for p in stored] == ["a.md", "b.md", "c.md"]
    assert [p.status for p in stored] == ["COMPLETED", "SENT", "UNKNOWN"]


@pytest.mark.asyncio
async def test_find_active_jobs(repo):
    active = _job()
    finished = _job().with_agent("agent-2").with_status(AgentState.FINISHED)
    done = _job().with_result("https://github.com/acme/widgets/pulls")
    errored = _job().with_status(AgentState.ERROR)
    expired = _job().with_status(AgentState.EXPIRED)
    for job in (active, finished, done, errored, expired):
        await repo.create_job(job)

    ids = [job.job_id for job in await repo.find_active_jobs()]
    assert ids == [active.job_id, finished.job_id]


@pytest.mark.asyncio
async def test_find_children(repo):
    parent = _job(workflow_shape=WorkflowShape.PARALLEL)
    first = _job(parent_job_id=parent.job_id, bound_value="1")
    second = _job(parent_job_id=parent.job_id, bound_value="2")
    other = _job()
    for job in (parent, first, second, other):
        await repo.create_job(job)

    children = await repo.find_children(parent.job_id)
    assert [c.job_id for c in children] == [first.job_id, second.job_id]
    assert await repo.find_children(other.job_id) == []


@pytest.mark.asyncio
async def test_delete_job_and_prompts_is_idempotent(repo):
    job = _job()
    await repo.create_job(job, _prompts(job, "a.md", "b.md"))

    assert await repo.delete_job_and_prompts(job.job_id) is True
    assert await repo.get_job(job.job_id) is None
    assert await repo.find_prompts(job.job_id) == []
    assert await repo.delete_job_and_prompts(job.job_id) is False


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    db_path = tmp_path / "jobs.db"
    repo = SQLiteJobRepository(db_path)
    job = _job(bound_value="42", parent_job_id="parent-1")
    await repo.create_job(job, _prompts(job, "a.md"))
    repo.close()

    reopened = SQLiteJobRepository(db_path)
    stored = await reopened.get_job(job.job_id)
    assert stored.bound_value == "42"
    assert stored.parent_job_id == "parent-1"
    assert [p.source_ref for p in await reopened.find_prompts(job.job_id)] == ["a.md"]
    reopened.close()


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTRELAY_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_repository()
    try:
        repo = get_repository(f"sqlite://{tmp_path / 'jobs.db'}")
        assert isinstance(repo, SQLiteJobRepository)
        assert get_repository() is repo
        repo.close()

        with pytest.raises(ConfigurationError):
            get_repository("mysql://localhost/jobs")
    finally:
        reset_repository()


def test_get_repository_uses_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("AGENTRELAY_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    persistence._repository_instance = None
    try:
        repo = get_repository()
        assert isinstance(repo, SQLiteJobRepository)
        assert repo.db_path == str(tmp_path / "env.db")
        repo.close()
    finally:
        reset_repository()


def test_get_repository_defaults_to_memory(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTRELAY_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("AGENTRELAY_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    reset_repository()
    try:
        assert isinstance(get_repository(), InMemoryJobRepository)
    finally:
        reset_repository()


@pytest.mark.asyncio
async def test_save_outcome_writes_children_prompts_and_job(repo):
    parent = _job(workflow_shape=WorkflowShape.PARALLEL)
    (plan_prompt,) = _prompts(parent, "plan.md")
    await repo.create_job(parent, [plan_prompt])
    children = [_job(parent_job_id=parent.job_id, bound_value=v) for v in ("1", "2")]

    await repo.save_outcome(
        parent.touch(),
        [plan_prompt.mark_completed()],
        [(child, _prompts(child, "branch.md")) for child in children],
    )

    assert [c.job_id for c in await repo.find_children(parent.job_id)] == [
        c.job_id for c in children
    ]
    assert [p.status for p in await repo.find_prompts(parent.job_id)] == ["COMPLETED"]
    for child in children:
        assert [p.source_ref for p in await repo.find_prompts(child.job_id)] == ["branch.md"]
    assert (await repo.get_job(parent.job_id)).last_update >= parent.last_update


@pytest.mark.asyncio
async def test_timeout_fields_are_persisted(repo):
    job = _job(timeout_millis=300000, fallback_src="fallback.md").with_agent("agent-1")
    await repo.create_job(job)
    await repo.save(job.with_fallback_executed())

    stored = await repo.get_job(job.job_id)
    assert stored.timeout_millis == 300000
    assert stored.fallback_src == "fallback.md"
    assert stored.fallback_executed
    assert stored.workflow_start_time == job.workflow_start_time


@pytest.mark.asyncio
async def test_sqlite_save_outcome_is_all_or_nothing(tmp_path):
    repo = SQLiteJobRepository(tmp_path / "jobs.db")
    job = _job().with_agent("agent-1", AgentState.FINISHED)
    prompts = _prompts(job, "a.md", "b.md")
    await repo.create_job(job, prompts)
    child = _job(parent_job_id=job.job_id)
    for event in ("INSERT", "UPDATE"):
        repo._conn.execute(
            f"CREATE TRIGGER reject_running_{event.lower()} BEFORE {event} ON jobs "
            "WHEN NEW.status = 'RUNNING' BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        )
    outcome = (
        job.with_status(AgentState.RUNNING),
        [prompts[0].mark_completed(), prompts[1].mark_sent()],
        [(child, _prompts(child, "c.md"))],
    )

    with pytest.raises(StorageError):
        await repo.save_outcome(*outcome)

    assert (await repo.get_job(job.job_id)).status is AgentState.FINISHED
    assert [p.status for p in await repo.find_prompts(job.job_id)] == ["UNKNOWN", "UNKNOWN"]
    assert await repo.find_children(job.job_id) == []
    assert await repo.get_job(child.job_id) is None

    repo._conn.execute("DROP TRIGGER reject_running_insert")
    repo._conn.execute("DROP TRIGGER reject_running_update")
    await repo.save_outcome(*outcome)

    assert (await repo.get_job(job.job_id)).status is AgentState.RUNNING
    assert [p.status for p in await repo.find_prompts(job.job_id)] == ["COMPLETED", "SENT"]
    assert [c.job_id for c in await repo.find_children(job.job_id)] == [child.job_id]
    repo.close()


@pytest.mark.asyncio
async def test_sqlite_adds_missing_columns_to_existing_database(tmp_path):
    db_path = tmp_path / "jobs.db"
    conn = sqlite3.connect(db_path)
    conn.execute(
        "CREATE TABLE jobs (job_id TEXT PRIMARY KEY, path TEXT NOT NULL, agent_id TEXT, "
        "model TEXT NOT NULL, repository TEXT NOT NULL, status TEXT NOT NULL, "
        "created_at TEXT NOT NULL, last_update TEXT NOT NULL, parent_job_id TEXT, "
        "result TEXT, workflow_shape TEXT, bound_value TEXT, fan_out TEXT, pr_url TEXT)"
    )
    conn.execute(
        "INSERT INTO jobs (job_id, path, model, repository, status, created_at, last_update) "
        "VALUES ('old-job', '/wf.xml', 'default', 'acme/widgets', 'FAILED', "
        "'2025-01-01T00:00:00+00:00', '2025-01-01T00:00:00+00:00')"
    )
    conn.commit()
    conn.close()

    repo = SQLiteJobRepository(db_path)
    old = await repo.get_job("old-job")
    assert old.status is AgentState.ERROR
    assert old.timeout_millis is None
    assert not old.fallback_executed

    job = _job(timeout_millis=60000)
    await repo.create_job(job)
    assert (await repo.get_job(job.job_id)).timeout_millis == 60000
    repo.close()
