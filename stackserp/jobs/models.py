"""Generation job schema, status and the fixed stage order."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
IN_FLIGHT_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


class Stage(str, Enum):
    RESEARCH = "research"
    OUTLINE = "outline"
    DRAFT = "draft"
    TONE = "tone"
    SEO = "seo"
    METADATA = "metadata"
    IMAGE = "image"


STAGES: tuple[Stage, ...] = tuple(Stage)


def stage_index(stage: Stage | str) -> int:
    return STAGES.index(Stage(stage))


def next_stage(stage: Stage | str) -> Stage | None:
    """Stage after ``stage`` in the fixed order, or None after the last one."""
    i = stage_index(stage)
    return STAGES[i + 1] if i + 1 < len(STAGES) else None


def progress_for_stage(stage: Stage | str) -> int:
    """Percent recorded when a job enters ``stage``: floor(100 * i / 7)."""
    return (100 * stage_index(stage)) // len(STAGES)


class ContentLength(str, Enum):
    SHORT = "SHORT"
    MEDIUM = "MEDIUM"
    LONG = "LONG"
    PILLAR = "PILLAR"


WORD_TARGETS: dict[ContentLength, str] = {
    ContentLength.SHORT: "800-1200",
    ContentLength.MEDIUM: "1500-2500",
    ContentLength.LONG: "2500-4000",
    ContentLength.PILLAR: "4000-6000",
}

MAX_OUTPUT_TOKENS: dict[ContentLength, int] = {
    ContentLength.SHORT: 8192,
    ContentLength.MEDIUM: 12288,
    ContentLength.LONG: 16384,
    ContentLength.PILLAR: 24576,
}


class JobInput(BaseModel):
    """Snapshot of the request taken at enqueue time. Never mutated afterwards."""

    model_config = ConfigDict(frozen=True)

    keyword: str
    content_length: ContentLength = ContentLength.MEDIUM
    include_images: bool = True
    include_faq: bool = True
    include_toc: bool = True
    auto_publish: bool = False


class GenerationJob(BaseModel):
    """Blog generation job, persisted for async polling."""

    job_id: str = ""
    website_id: str = ""
    keyword_id: str | None = None
    input: JobInput
    status: JobStatus = JobStatus.QUEUED
    current_stage: Stage | None = None
    progress: int = Field(default=0, ge=0, le=100)
    cancel_requested: bool = False

    article_id: str | None = None
    error_message: str | None = None
    failed_stage: Stage | None = None
    error_kind: str | None = None

    retry_of: str | None = None
    retried_by: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    stage_entered_at: datetime | None = None
    finished_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
