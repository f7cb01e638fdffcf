"""Generation job storage: Postgres (preferred) or file-based fallback.

Every mutation is a conditional update keyed on the job's current status, so
two callers racing on the same job cannot both win a transition.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

from stackserp.config import get_settings
from stackserp.jsonfile import StoreLock, write_json_atomic
from stackserp.jobs.models import (
    IN_FLIGHT_STATUSES,
    STAGES,
    GenerationJob,
    JobInput,
    JobStatus,
    Stage,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 500
STUCK_JOB_MESSAGE = "Job timed out. Retry to try again."


class DuplicateJobError(Exception):
    """The keyword already has a queued or processing job."""

    def __init__(self, website_id: str, keyword_id: str | None, existing_job_id: str | None = None):
        self.website_id = website_id
        self.keyword_id = keyword_id
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Keyword {keyword_id} already has an in-flight job"
            + (f" ({existing_job_id})" if existing_job_id else "")
        )


class JobStore(Protocol):
    def enqueue(self, website_id: str, keyword_id: str | None, job_input: JobInput) -> GenerationJob: ...
    def get(self, job_id: str) -> GenerationJob | None: ...
    def claim_next(self) -> GenerationJob | None: ...
    def record_progress(self, job_id: str, stage: Stage, percent: int) -> bool: ...
    def complete(self, job_id: str, article_id: str) -> bool: ...
    def fail(self, job_id: str, stage: Stage | None, error: str, kind: str = "permanent") -> bool: ...
    def cancel(self, job_id: str) -> GenerationJob | None: ...
    def mark_cancelled(self, job_id: str) -> bool: ...
    def retry(self, job_id: str) -> GenerationJob | None: ...
    def find_in_flight(self, website_id: str, keyword_id: str) -> GenerationJob | None: ...
    def list_by_website(self, website_id: str, limit: int = 50) -> list[GenerationJob]: ...
    def recover_stuck(self, older_than: datetime) -> list[GenerationJob]: ...


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


def _clip(message: str) -> str:
    return (message or "")[:MAX_ERROR_CHARS]


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_JOB_COLUMNS = """
    job_id, website_id, keyword_id, input, status, current_stage, progress,
    cancel_requested, article_id, error_message, failed_stage, error_kind,
    retry_of, retried_by, created_at, started_at, stage_entered_at,
    finished_at, updated_at
"""


class PostgresJobStore:
    """Persist jobs in Postgres. Survives restarts and is safe across worker processes."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._lock = threading.RLock()
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True, row_factory=dict_row)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stackserp_generation_jobs (
                job_id TEXT PRIMARY KEY,
                website_id TEXT NOT NULL,
                keyword_id TEXT,
                input JSONB NOT NULL,
                status TEXT NOT NULL,
                current_stage TEXT,
                progress INT NOT NULL DEFAULT 0,
                cancel_requested BOOLEAN NOT NULL DEFAULT FALSE,
                article_id TEXT,
                error_message TEXT,
                failed_stage TEXT,
                error_kind TEXT,
                retry_of TEXT,
                retried_by TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                stage_entered_at TIMESTAMPTZ,
                finished_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_stackserp_jobs_status_created
            ON stackserp_generation_jobs (status, created_at)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_stackserp_jobs_website
            ON stackserp_generation_jobs (website_id, created_at DESC)
        """)
        # One in-flight job per keyword
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_stackserp_jobs_keyword_in_flight
            ON stackserp_generation_jobs (website_id, keyword_id)
            WHERE status IN ('queued', 'processing')
        """)
        return conn

    def _execute(self, sql: str, params: tuple = ()):
        if self._conn.closed or self._conn.broken:
            logger.warning("Postgres job store connection lost, reconnecting")
            self._conn = self._connect()
        return self._conn.execute(sql, params)

    def _one(self, sql: str, params: tuple = ()) -> GenerationJob | None:
        with self._lock:
            row = self._execute(sql, params).fetchone()
        return self._row_to_job(row) if row else None

    def _changed(self, sql: str, params: tuple = ()) -> bool:
        with self._lock:
            return self._execute(sql, params).rowcount == 1

    def enqueue(self, website_id: str, keyword_id: str | None, job_input: JobInput) -> GenerationJob:
        import psycopg

        job = GenerationJob(
            job_id=_new_job_id(),
            website_id=website_id,
            keyword_id=keyword_id,
            input=job_input,
        )
        try:
            with self._lock:
                self._insert(job)
        except psycopg.errors.UniqueViolation:
            existing = self.find_in_flight(website_id, keyword_id) if keyword_id else None
            raise DuplicateJobError(website_id, keyword_id, existing.job_id if existing else None)
        return job

    def _insert(self, job: GenerationJob) -> None:
        self._execute(
            """
            INSERT INTO stackserp_generation_jobs
            (job_id, website_id, keyword_id, input, status, progress, retry_of, created_at, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, %s, 0, %s, %s, %s)
            """,
            (
                job.job_id,
                job.website_id,
                job.keyword_id,
                json.dumps(job.input.model_dump(mode="json")),
                job.status.value,
                job.retry_of,
                job.created_at,
                job.updated_at,
            ),
        )

    def get(self, job_id: str) -> GenerationJob | None:
        return self._one(
            f"SELECT {_JOB_COLUMNS} FROM stackserp_generation_jobs WHERE job_id = %s",
            (job_id,),
        )

    def claim_next(self) -> GenerationJob | None:
        return self._one(
            f"""
            UPDATE stackserp_generation_jobs SET
                status = 'processing', current_stage = %s, progress = 0,
                started_at = NOW(), stage_entered_at = NOW(), updated_at = NOW()
            WHERE job_id = (
                SELECT job_id FROM stackserp_generation_jobs
                WHERE status = 'queued'
                ORDER BY created_at, job_id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            ) AND status = 'queued'
            RETURNING {_JOB_COLUMNS}
            """,
            (STAGES[0].value,),
        )

    def record_progress(self, job_id: str, stage: Stage, percent: int) -> bool:
        return self._changed(
            """
            UPDATE stackserp_generation_jobs SET
                current_stage = %s, progress = %s, stage_entered_at = NOW(), updated_at = NOW()
            WHERE job_id = %s AND status = 'processing' AND progress <= %s
            """,
            (Stage(stage).value, percent, job_id, percent),
        )

    def complete(self, job_id: str, article_id: str) -> bool:
        return self._changed(
            """
            UPDATE stackserp_generation_jobs SET
                status = 'completed', progress = 100, article_id = %s,
                finished_at = NOW(), updated_at = NOW()
            WHERE job_id = %s AND status = 'processing'
            """,
            (article_id, job_id),
        )

    def fail(self, job_id: str, stage: Stage | None, error: str, kind: str = "permanent") -> bool:
        return self._changed(
            """
            UPDATE stackserp_generation_jobs SET
                status = 'failed', failed_stage = %s, error_message = %s, error_kind = %s,
                finished_at = NOW(), updated_at = NOW()
            WHERE job_id = %s AND status = 'processing'
            """,
            (Stage(stage).value if stage else None, _clip(error), kind, job_id),
        )

    def cancel(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            job = self._one(
                f"""
                UPDATE stackserp_generation_jobs SET
                    status = 'cancelled', finished_at = NOW(), updated_at = NOW()
                WHERE job_id = %s AND status = 'queued'
                RETURNING {_JOB_COLUMNS}
                """,
                (job_id,),
            )
            if job:
                return job
            return self._one(
                f"""
                UPDATE stackserp_generation_jobs SET
                    cancel_requested = TRUE, updated_at = NOW()
                WHERE job_id = %s AND status = 'processing'
                RETURNING {_JOB_COLUMNS}
                """,
                (job_id,),
            )

    def mark_cancelled(self, job_id: str) -> bool:
        return self._changed(
            """
            UPDATE stackserp_generation_jobs SET
                status = 'cancelled', finished_at = NOW(), updated_at = NOW()
            WHERE job_id = %s AND status = 'processing'
            """,
            (job_id,),
        )

    def retry(self, job_id: str) -> GenerationJob | None:
        import psycopg

        with self._lock:
            original = self.get(job_id)
            if not original or original.status != JobStatus.FAILED or original.retried_by:
                return None
            job = GenerationJob(
                job_id=_new_job_id(),
                website_id=original.website_id,
                keyword_id=original.keyword_id,
                input=original.input,
                retry_of=original.job_id,
            )
            try:
                with self._conn.transaction():
                    claimed = self._execute(
                        """
                        UPDATE stackserp_generation_jobs SET retried_by = %s, updated_at = NOW()
                        WHERE job_id = %s AND status = 'failed' AND retried_by IS NULL
                        """,
                        (job.job_id, job_id),
                    ).rowcount
                    if claimed != 1:
                        return None
                    self._insert(job)
            except psycopg.errors.UniqueViolation:
                existing = self.find_in_flight(job.website_id, job.keyword_id) if job.keyword_id else None
                raise DuplicateJobError(job.website_id, job.keyword_id, existing.job_id if existing else None)
        return job

    def find_in_flight(self, website_id: str, keyword_id: str) -> GenerationJob | None:
        return self._one(
            f"""
            SELECT {_JOB_COLUMNS} FROM stackserp_generation_jobs
            WHERE website_id = %s AND keyword_id = %s AND status IN ('queued', 'processing')
            ORDER BY created_at DESC LIMIT 1
            """,
            (website_id, keyword_id),
        )

    def list_by_website(self, website_id: str, limit: int = 50) -> list[GenerationJob]:
        with self._lock:
            rows = self._execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM stackserp_generation_jobs
                WHERE website_id = %s ORDER BY created_at DESC LIMIT %s
                """,
                (website_id, limit),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def recover_stuck(self, older_than: datetime) -> list[GenerationJob]:
        with self._lock:
            rows = self._execute(
                f"""
                UPDATE stackserp_generation_jobs SET
                    status = 'failed', failed_stage = current_stage, error_message = %s,
                    error_kind = 'transient', finished_at = NOW(), updated_at = NOW()
                WHERE status = 'processing' AND COALESCE(stage_entered_at, started_at) < %s
                RETURNING {_JOB_COLUMNS}
                """,
                (STUCK_JOB_MESSAGE, older_than),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def _row_to_job(self, row: dict) -> GenerationJob:
        data = dict(row)
        if isinstance(data.get("input"), str):
            data["input"] = json.loads(data["input"])
        return GenerationJob.model_validate(data)


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs as JSON files. Survives restarts within the same data dir.

    Transitions are serialised with a lock file in the jobs directory, which
    keeps claims exclusive across store instances and processes.
    """

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir) / "jobs"
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = StoreLock(self._dir / ".lock")

    def _job_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def _write_job(self, job: GenerationJob) -> None:
        job.updated_at = utcnow()
        write_json_atomic(self._job_path(job.job_id), job.model_dump(mode="json"), indent=2)

    def _read_job(self, path: Path) -> GenerationJob:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return GenerationJob.model_validate(data)

    def _all(self) -> list[GenerationJob]:
        return [self._read_job(p) for p in self._dir.glob("job_*.json")]

    def enqueue(self, website_id: str, keyword_id: str | None, job_input: JobInput) -> GenerationJob:
        with self._lock():
            if keyword_id:
                existing = self.find_in_flight(website_id, keyword_id)
                if existing:
                    raise DuplicateJobError(website_id, keyword_id, existing.job_id)
            job = GenerationJob(
                job_id=_new_job_id(),
                website_id=website_id,
                keyword_id=keyword_id,
                input=job_input,
            )
            self._write_job(job)
            return job

    def get(self, job_id: str) -> GenerationJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        with self._lock():
            return self._read_job(path)

    def claim_next(self) -> GenerationJob | None:
        with self._lock():
            queued = [j for j in self._all() if j.status == JobStatus.QUEUED]
            if not queued:
                return None
            job = min(queued, key=lambda j: (j.created_at, j.job_id))
            now = utcnow()
            job.status = JobStatus.PROCESSING
            job.current_stage = STAGES[0]
            job.progress = 0
            job.started_at = now
            job.stage_entered_at = now
            self._write_job(job)
            return job

    def _transition(self, job_id: str, allowed: frozenset[JobStatus] | set[JobStatus]):
        job = self.get(job_id)
        if not job or job.status not in allowed:
            return None
        return job

    def record_progress(self, job_id: str, stage: Stage, percent: int) -> bool:
        with self._lock():
            job = self._transition(job_id, {JobStatus.PROCESSING})
            if not job or percent < job.progress:
                return False
            job.current_stage = Stage(stage)
            job.progress = percent
            job.stage_entered_at = utcnow()
            self._write_job(job)
            return True

    def complete(self, job_id: str, article_id: str) -> bool:
        with self._lock():
            job = self._transition(job_id, {JobStatus.PROCESSING})
            if not job:
                return False
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.article_id = article_id
            job.finished_at = utcnow()
            self._write_job(job)
            return True

    def fail(self, job_id: str, stage: Stage | None, error: str, kind: str = "permanent") -> bool:
        with self._lock():
            job = self._transition(job_id, {JobStatus.PROCESSING})
            if not job:
                return False
            job.status = JobStatus.FAILED
            job.failed_stage = Stage(stage) if stage else None
            job.error_message = _clip(error)
            job.error_kind = kind
            job.finished_at = utcnow()
            self._write_job(job)
            return True

    def cancel(self, job_id: str) -> GenerationJob | None:
        with self._lock():
            job = self._transition(job_id, IN_FLIGHT_STATUSES)
            if not job:
                return None
            if job.status == JobStatus.QUEUED:
                job.status = JobStatus.CANCELLED
                job.finished_at = utcnow()
            else:
                job.cancel_requested = True
            self._write_job(job)
            return job

    def mark_cancelled(self, job_id: str) -> bool:
        with self._lock():
            job = self._transition(job_id, {JobStatus.PROCESSING})
            if not job:
                return False
            job.status = JobStatus.CANCELLED
            job.finished_at = utcnow()
            self._write_job(job)
            return True

    def retry(self, job_id: str) -> GenerationJob | None:
        with self._lock():
            original = self._transition(job_id, {JobStatus.FAILED})
            if not original or original.retried_by:
                return None
            if original.keyword_id:
                existing = self.find_in_flight(original.website_id, original.keyword_id)
                if existing:
                    raise DuplicateJobError(original.website_id, original.keyword_id, existing.job_id)
            job = GenerationJob(
                job_id=_new_job_id(),
                website_id=original.website_id,
                keyword_id=original.keyword_id,
                input=original.input,
                retry_of=original.job_id,
            )
            self._write_job(job)
            original.retried_by = job.job_id
            self._write_job(original)
            return job

    def find_in_flight(self, website_id: str, keyword_id: str) -> GenerationJob | None:
        with self._lock():
            for job in self._all():
                if (
                    job.website_id == website_id
                    and job.keyword_id == keyword_id
                    and job.status in IN_FLIGHT_STATUSES
                ):
                    return job
        return None

    def list_by_website(self, website_id: str, limit: int = 50) -> list[GenerationJob]:
        with self._lock():
            jobs = [j for j in self._all() if j.website_id == website_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def recover_stuck(self, older_than: datetime) -> list[GenerationJob]:
        recovered = []
        with self._lock():
            for job in self._all():
                entered = job.stage_entered_at or job.started_at
                if job.status != JobStatus.PROCESSING or not entered or entered >= older_than:
                    continue
                job.status = JobStatus.FAILED
                job.failed_stage = job.current_stage
                job.error_message = STUCK_JOB_MESSAGE
                job.error_kind = "transient"
                job.finished_at = utcnow()
                self._write_job(job)
                recovered.append(job)
        return recovered


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: JobStore | None = None


def get_job_store() -> JobStore:
    """Return singleton job store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.stackserp_database_url:
        try:
            _store = PostgresJobStore(settings.stackserp_database_url)
            logger.info("Using Postgres job store")
        except Exception as e:
            logger.warning("Postgres job store failed (%s), falling back to file store", e)
            _store = FileJobStore(settings.data_dir)
    else:
        _store = FileJobStore(settings.data_dir)
        logger.info("Using file-based job store (STACKSERP_DATA_DIR/jobs)")
    return _store
