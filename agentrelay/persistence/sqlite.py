"""SQLite implementation of the job repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

from ..errors import StorageError
from ..models import AgentState, FanOutPlan, Job, Prompt, WorkflowShape
from .repository import JobRepository

_JOB_COLUMNS = (
    "job_id, path, agent_id, model, repository, status, created_at, last_update, "
    "parent_job_id, result, workflow_shape, bound_value, fan_out, pr_url, "
    "timeout_millis, workflow_start_time, fallback_src, fallback_executed"
)

# added after the first schema; appended to older databases on open
_ADDED_JOB_COLUMNS = {
    "timeout_millis": "INTEGER",
    "workflow_start_time": "TEXT",
    "fallback_src": "TEXT",
    "fallback_executed": "INTEGER NOT NULL DEFAULT 0",
}
_JOB_PLACEHOLDERS = ", ".join("?" * len(_JOB_COLUMNS.split(",")))

_PROMPT_COLUMNS = (
    "prompt_id, job_id, source_ref, status, prompt_type, binds_result, created_at, last_update"
)


def _job_params(job: Job) -> tuple:
    return (
        job.job_id,
        job.path,
        job.agent_id,
        job.model,
        job.repository,
        job.status.value,
        job.created_at.isoformat(),
        job.last_update.isoformat(),
        job.parent_job_id,
        job.result,
        job.workflow_shape.value if job.workflow_shape else None,
        job.bound_value,
        job.fan_out.model_dump_json() if job.fan_out else None,
        job.pr_url,
        job.timeout_millis,
        job.workflow_start_time.isoformat() if job.workflow_start_time else None,
        job.fallback_src,
        int(job.fallback_executed),
    )


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        job_id=row["job_id"],
        path=row["path"],
        agent_id=row["agent_id"],
        model=row["model"],
        repository=row["repository"],
        status=AgentState.parse(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        last_update=datetime.fromisoformat(row["last_update"]),
        parent_job_id=row["parent_job_id"],
        result=row["result"],
        workflow_shape=WorkflowShape(row["workflow_shape"]) if row["workflow_shape"] else None,
        bound_value=row["bound_value"],
        fan_out=FanOutPlan.model_validate_json(row["fan_out"]) if row["fan_out"] else None,
        pr_url=row["pr_url"],
        timeout_millis=row["timeout_millis"],
        workflow_start_time=(
            datetime.fromisoformat(row["workflow_start_time"]) if row["workflow_start_time"] else None
        ),
        fallback_src=row["fallback_src"],
        fallback_executed=bool(row["fallback_executed"]),
    )


def _row_to_prompt(row: sqlite3.Row) -> Prompt:
    return Prompt(
        prompt_id=row["prompt_id"],
        job_id=row["job_id"],
        source_ref=row["source_ref"],
        status=row["status"],
        prompt_type=row["prompt_type"],
        binds_result=bool(row["binds_result"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        last_update=datetime.fromisoformat(row["last_update"]),
    )


class SQLiteJobRepository(JobRepository):
    """Persist jobs and prompts using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open SQLite database {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    path TEXT NOT NULL,
                    agent_id TEXT,
                    model TEXT NOT NULL,
                    repository TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_update TEXT NOT NULL,
                    parent_job_id TEXT,
                    result TEXT,
                    workflow_shape TEXT,
                    bound_value TEXT,
                    fan_out TEXT,
                    pr_url TEXT,
                    timeout_millis INTEGER,
                    workflow_start_time TEXT,
                    fallback_src TEXT,
                    fallback_executed INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS prompts (
                    prompt_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    source_ref TEXT NOT NULL,
                    status TEXT NOT NULL,
                    prompt_type TEXT NOT NULL,
                    binds_result INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    last_update TEXT NOT NULL
                )
                """
            )
            existing = {row["name"] for row in self._conn.execute("PRAGMA table_info(jobs)")}
            for column, ddl in _ADDED_JOB_COLUMNS.items():
                if column not in existing:
                    self._conn.execute(f"ALTER TABLE jobs ADD COLUMN {column} {ddl}")
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_parent ON jobs(parent_job_id)"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_prompts_job ON prompts(job_id, position)"
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite query failed: {exc}") from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite query failed: {exc}") from exc

    def _upsert_prompt(self, prompt: Prompt) -> None:
        row = self._conn.execute(
            "SELECT position FROM prompts WHERE prompt_id = ?", (prompt.prompt_id,)
        ).fetchone()
        if row is not None:
            position = row["position"]
        else:
            position = self._conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM prompts WHERE job_id = ?",
                (prompt.job_id,),
            ).fetchone()[0]
        self._conn.execute(
            f"INSERT OR REPLACE INTO prompts ({_PROMPT_COLUMNS}, position) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                prompt.prompt_id,
                prompt.job_id,
                prompt.source_ref,
                prompt.status,
                prompt.prompt_type,
                int(prompt.binds_result),
                prompt.created_at.isoformat(),
                prompt.last_update.isoformat(),
                position,
            ),
        )

    def _upsert_job(self, job: Job) -> None:
        self._conn.execute(
            f"INSERT INTO jobs ({_JOB_COLUMNS}) VALUES ({_JOB_PLACEHOLDERS}) "
            "ON CONFLICT(job_id) DO UPDATE SET "
            "path = excluded.path, agent_id = excluded.agent_id, model = excluded.model, "
            "repository = excluded.repository, status = excluded.status, "
            "last_update = excluded.last_update, parent_job_id = excluded.parent_job_id, "
            "result = excluded.result, workflow_shape = excluded.workflow_shape, "
            "bound_value = excluded.bound_value, fan_out = excluded.fan_out, "
            "pr_url = excluded.pr_url, timeout_millis = excluded.timeout_millis, "
            "workflow_start_time = excluded.workflow_start_time, "
            "fallback_src = excluded.fallback_src, fallback_executed = excluded.fallback_executed",
            _job_params(job),
        )

    def _transaction(self, work, *args: Any) -> Any:
        with self._lock:
            try:
                with self._conn:
                    return work(*args)
            except sqlite3.Error as exc:
                raise StorageError(f"SQLite write failed: {exc}") from exc

    def _create(self, job: Job, prompts: Sequence[Prompt]) -> None:
        self._upsert_job(job)
        for prompt in prompts:
            self._upsert_prompt(prompt)

    def _save_outcome(
        self,
        job: Optional[Job],
        prompts: Sequence[Prompt],
        children: Sequence[Tuple[Job, Sequence[Prompt]]],
    ) -> None:
        for child, child_prompts in children:
            self._create(child, child_prompts)
        for prompt in prompts:
            self._upsert_prompt(prompt)
        if job is not None:
            self._upsert_job(job)

    def _delete(self, job_id: str) -> bool:
        self._conn.execute("DELETE FROM prompts WHERE job_id = ?", (job_id,))
        return self._conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,)).rowcount > 0

    # ------------------------------------------------------------------
    # Repository API
    async def create_job(self, job: Job, prompts: Sequence[Prompt] = ()) -> None:
        await asyncio.to_thread(self._transaction, self._create, job, list(prompts))

    async def save(self, job: Job) -> None:
        await asyncio.to_thread(self._transaction, self._upsert_job, job)

    async def save_prompt(self, prompt: Prompt) -> None:
        await asyncio.to_thread(self._transaction, self._upsert_prompt, prompt)

    async def save_outcome(
        self,
        job: Optional[Job],
        prompts: Sequence[Prompt] = (),
        children: Sequence[Tuple[Job, Sequence[Prompt]]] = (),
    ) -> None:
        await asyncio.to_thread(
            self._transaction,
            self._save_outcome,
            job,
            list(prompts),
            [(child, list(child_prompts)) for child, child_prompts in children],
        )

    async def get_job(self, job_id: str) -> Job | None:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = ?", job_id
        )
        return _row_to_job(row) if row else None

    async def list_jobs(self) -> list[Job]:
        rows = await asyncio.to_thread(
            self._fetchall, f"SELECT {_JOB_COLUMNS} FROM jobs ORDER BY created_at, rowid"
        )
        return [_row_to_job(r) for r in rows]

    async def find_active_jobs(self) -> list[Job]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE result IS NULL AND status NOT IN (?, ?) "
            "ORDER BY created_at, rowid",
            AgentState.ERROR.value,
            AgentState.EXPIRED.value,
        )
        # legacy rows may still carry FAILED/CANCELLED
        return [job for job in map(_row_to_job, rows) if job.needs_attention()]

    async def find_prompts(self, job_id: str) -> list[Prompt]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_PROMPT_COLUMNS} FROM prompts WHERE job_id = ? ORDER BY position",
            job_id,
        )
        return [_row_to_prompt(r) for r in rows]

    async def find_children(self, job_id: str) -> list[Job]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE parent_job_id = ? ORDER BY created_at, rowid",
            job_id,
        )
        return [_row_to_job(r) for r in rows]

    async def delete_job_and_prompts(self, job_id: str) -> bool:
        return await asyncio.to_thread(self._transaction, self._delete, job_id)

    def close(self) -> None:
        self._conn.close()
