"""Generation job storage and lifecycle."""

from stackserp.jobs.models import (
    STAGES,
    ContentLength,
    GenerationJob,
    JobInput,
    JobStatus,
    Stage,
    next_stage,
    progress_for_stage,
)
from stackserp.jobs.store import (
    DuplicateJobError,
    FileJobStore,
    JobStore,
    PostgresJobStore,
    get_job_store,
)

__all__ = [
    "STAGES",
    "ContentLength",
    "DuplicateJobError",
    "FileJobStore",
    "GenerationJob",
    "JobInput",
    "JobStatus",
    "JobStore",
    "PostgresJobStore",
    "Stage",
    "get_job_store",
    "next_stage",
    "progress_for_stage",
]
