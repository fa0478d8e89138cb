"""PostgreSQL implementation of the job repository."""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

import asyncpg

from ..errors import StorageError
from ..models import AgentState, FanOutPlan, Job, Prompt, WorkflowShape
from .repository import JobRepository

_JOB_COLUMNS = (
    "job_id, path, agent_id, model, repository, status, created_at, last_update, "
    "parent_job_id, result, workflow_shape, bound_value, fan_out, pr_url, "
    "timeout_millis, workflow_start_time, fallback_src, fallback_executed"
)
_PROMPT_COLUMNS = (
    "prompt_id, job_id, source_ref, status, prompt_type, binds_result, created_at, last_update"
)


def _row_to_job(row: asyncpg.Record) -> Job:
    return Job(
        job_id=row["job_id"],
        path=row["path"],
        agent_id=row["agent_id"],
        model=row["model"],
        repository=row["repository"],
        status=AgentState.parse(row["status"]),
        created_at=row["created_at"],
        last_update=row["last_update"],
        parent_job_id=row["parent_job_id"],
        result=row["result"],
        workflow_shape=WorkflowShape(row["workflow_shape"]) if row["workflow_shape"] else None,
        bound_value=row["bound_value"],
        fan_out=FanOutPlan.model_validate_json(row["fan_out"]) if row["fan_out"] else None,
        pr_url=row["pr_url"],
        timeout_millis=row["timeout_millis"],
        workflow_start_time=row["workflow_start_time"],
        fallback_src=row["fallback_src"],
        fallback_executed=row["fallback_executed"],
    )


def _row_to_prompt(row: asyncpg.Record) -> Prompt:
    return Prompt(
        prompt_id=row["prompt_id"],
        job_id=row["job_id"],
        source_ref=row["source_ref"],
        status=row["status"],
        prompt_type=row["prompt_type"],
        binds_result=row["binds_result"],
        created_at=row["created_at"],
        last_update=row["last_update"],
    )


class PostgresJobRepository(JobRepository):
    """Persist jobs and prompts using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except (OSError, asyncpg.PostgresError) as exc:
            raise StorageError(f"Cannot connect to PostgreSQL: {exc}") from exc
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                path TEXT NOT NULL,
                agent_id TEXT,
                model TEXT NOT NULL,
                repository TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                last_update TIMESTAMPTZ NOT NULL,
                parent_job_id TEXT,
                result TEXT,
                workflow_shape TEXT,
                bound_value TEXT,
                fan_out JSONB,
                pr_url TEXT,
                timeout_millis BIGINT,
                workflow_start_time TIMESTAMPTZ,
                fallback_src TEXT,
                fallback_executed BOOLEAN NOT NULL DEFAULT FALSE
            )
            """
        )
        await conn.execute(
            """
            ALTER TABLE jobs
                ADD COLUMN IF NOT EXISTS timeout_millis BIGINT,
                ADD COLUMN IF NOT EXISTS workflow_start_time TIMESTAMPTZ,
                ADD COLUMN IF NOT EXISTS fallback_src TEXT,
                ADD COLUMN IF NOT EXISTS fallback_executed BOOLEAN NOT NULL DEFAULT FALSE
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS prompts (
                prompt_id TEXT PRIMARY KEY,
                job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                source_ref TEXT NOT NULL,
                status TEXT NOT NULL,
                prompt_type TEXT NOT NULL,
                binds_result BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL,
                last_update TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_parent ON jobs(parent_job_id)")

    async def _run(self, method: str, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await getattr(conn, method)(query, *params)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"PostgreSQL query failed: {exc}") from exc
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    @staticmethod
    async def _upsert_job(conn: asyncpg.Connection, job: Job) -> None:
        await conn.execute(
            f"""
            INSERT INTO jobs ({_JOB_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                    $15, $16, $17, $18)
            ON CONFLICT (job_id) DO UPDATE SET
                path = EXCLUDED.path, agent_id = EXCLUDED.agent_id,
                model = EXCLUDED.model, repository = EXCLUDED.repository,
                status = EXCLUDED.status, last_update = EXCLUDED.last_update,
                parent_job_id = EXCLUDED.parent_job_id, result = EXCLUDED.result,
                workflow_shape = EXCLUDED.workflow_shape, bound_value = EXCLUDED.bound_value,
                fan_out = EXCLUDED.fan_out, pr_url = EXCLUDED.pr_url,
                timeout_millis = EXCLUDED.timeout_millis,
                workflow_start_time = EXCLUDED.workflow_start_time,
                fallback_src = EXCLUDED.fallback_src,
                fallback_executed = EXCLUDED.fallback_executed
            """,
            job.job_id,
            job.path,
            job.agent_id,
            job.model,
            job.repository,
            job.status.value,
            job.created_at,
            job.last_update,
            job.parent_job_id,
            job.result,
            job.workflow_shape.value if job.workflow_shape else None,
            job.bound_value,
            job.fan_out.model_dump_json() if job.fan_out else None,
            job.pr_url,
            job.timeout_millis,
            job.workflow_start_time,
            job.fallback_src,
            job.fallback_executed,
        )

    @staticmethod
    async def _upsert_prompt(conn: asyncpg.Connection, prompt: Prompt) -> None:
        await conn.execute(
            f"""
            INSERT INTO prompts ({_PROMPT_COLUMNS}, position)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8,
                    (SELECT COALESCE(MAX(position) + 1, 0) FROM prompts WHERE job_id = $2))
            ON CONFLICT (prompt_id) DO UPDATE SET
                status = EXCLUDED.status, source_ref = EXCLUDED.source_ref,
                prompt_type = EXCLUDED.prompt_type, binds_result = EXCLUDED.binds_result,
                last_update = EXCLUDED.last_update
            """,
            prompt.prompt_id,
            prompt.job_id,
            prompt.source_ref,
            prompt.status,
            prompt.prompt_type,
            prompt.binds_result,
            prompt.created_at,
            prompt.last_update,
        )

    async def create_job(self, job: Job, prompts: Sequence[Prompt] = ()) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await self._upsert_job(conn, job)
                for prompt in prompts:
                    await self._upsert_prompt(conn, prompt)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"Failed to create job {job.job_id}: {exc}") from exc
        finally:
            await conn.close()

    async def save(self, job: Job) -> None:
        conn = await self._connect()
        try:
            await self._upsert_job(conn, job)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"Failed to save job {job.job_id}: {exc}") from exc
        finally:
            await conn.close()

    async def save_prompt(self, prompt: Prompt) -> None:
        conn = await self._connect()
        try:
            await self._upsert_prompt(conn, prompt)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"Failed to save prompt {prompt.prompt_id}: {exc}") from exc
        finally:
            await conn.close()

    async def save_outcome(
        self,
        job: Optional[Job],
        prompts: Sequence[Prompt] = (),
        children: Sequence[Tuple[Job, Sequence[Prompt]]] = (),
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                for child, child_prompts in children:
                    await self._upsert_job(conn, child)
                    for prompt in child_prompts:
                        await self._upsert_prompt(conn, prompt)
                for prompt in prompts:
                    await self._upsert_prompt(conn, prompt)
                if job is not None:
                    await self._upsert_job(conn, job)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"Failed to save advance outcome: {exc}") from exc
        finally:
            await conn.close()

    async def get_job(self, job_id: str) -> Job | None:
        row = await self._run(
            "fetchrow", f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1", job_id
        )
        return _row_to_job(row) if row else None

    async def list_jobs(self) -> list[Job]:
        rows = await self._run("fetch", f"SELECT {_JOB_COLUMNS} FROM jobs ORDER BY created_at")
        return [_row_to_job(r) for r in rows]

    async def find_active_jobs(self) -> list[Job]:
        rows = await self._run(
            "fetch",
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE result IS NULL AND status <> ALL($1::text[]) "
            "ORDER BY created_at",
            [AgentState.ERROR.value, AgentState.EXPIRED.value],
        )
        return [job for job in map(_row_to_job, rows) if job.needs_attention()]

    async def find_prompts(self, job_id: str) -> list[Prompt]:
        rows = await self._run(
            "fetch",
            f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE job_id = $1 ORDER BY position",
            job_id,
        )
        return [_row_to_prompt(r) for r in rows]

    async def find_children(self, job_id: str) -> list[Job]:
        rows = await self._run(
            "fetch",
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE parent_job_id = $1 ORDER BY created_at",
            job_id,
        )
        return [_row_to_job(r) for r in rows]

    async def delete_job_and_prompts(self, job_id: str) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute("DELETE FROM prompts WHERE job_id = $1", job_id)
                status = await conn.execute("DELETE FROM jobs WHERE job_id = $1", job_id)
        except asyncpg.PostgresError as exc:
            raise StorageError(f"Failed to delete job {job_id}: {exc}") from exc
        finally:
            await conn.close()
        return status.endswith(" 1")
