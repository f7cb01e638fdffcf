"""Request/response schemas for the jobs API. Field names on the wire are camelCase."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from stackserp.articles.models import Article
from stackserp.jobs.models import ContentLength, GenerationJob, JobInput


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateRequest(_CamelModel):
    keyword_id: str | None = Field(default=None, alias="keywordId")
    content_length: ContentLength = Field(default=ContentLength.MEDIUM, alias="contentLength")
    include_images: bool = Field(default=True, alias="includeImages")
    include_faq: bool = Field(default=True, alias="includeFAQ")
    include_toc: bool = Field(default=True, alias="includeTableOfContents")
    auto_publish: bool = Field(default=False, alias="autoPublish")

    def to_options(self) -> dict:
        return self.model_dump(exclude={"keyword_id"})


class GenerateResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    keyword: str


class BulkGenerateRequest(_CamelModel):
    keyword_ids: list[str] | None = Field(default=None, alias="keywordIds")
    count: int = 3
    content_length: ContentLength = Field(default=ContentLength.MEDIUM, alias="contentLength")
    include_images: bool = Field(default=True, alias="includeImages")
    include_faq: bool = Field(default=True, alias="includeFAQ")
    include_toc: bool = Field(default=True, alias="includeTableOfContents")
    auto_publish: bool = Field(default=False, alias="autoPublish")

    def to_options(self) -> dict:
        return self.model_dump(exclude={"keyword_ids", "count"})


class BulkGenerateResponse(_CamelModel):
    queued: int
    jobs: list[GenerateResponse]
    message: str


class JobInputView(_CamelModel):
    keyword: str
    content_length: ContentLength = Field(alias="contentLength")
    include_images: bool = Field(alias="includeImages")
    include_faq: bool = Field(alias="includeFAQ")
    include_toc: bool = Field(alias="includeTableOfContents")
    auto_publish: bool = Field(alias="autoPublish")

    @classmethod
    def from_input(cls, job_input: JobInput) -> "JobInputView":
        return cls.model_validate(job_input.model_dump())


class BlogPostRef(_CamelModel):
    id: str
    title: str
    slug: str
    status: str
    seo_score: int = Field(alias="seoScore")
    word_count: int = Field(alias="wordCount")


class JobView(_CamelModel):
    """Polling snapshot of one job."""

    id: str
    website_id: str = Field(alias="websiteId")
    keyword_id: str | None = Field(default=None, alias="keywordId")
    status: str
    current_step: str | None = Field(default=None, alias="currentStep")
    progress: int = 0
    error: str | None = None
    failed_step: str | None = Field(default=None, alias="failedStep")
    error_kind: str | None = Field(default=None, alias="errorKind")
    cancel_requested: bool = Field(default=False, alias="cancelRequested")
    retry_of: str | None = Field(default=None, alias="retryOf")
    retried_by: str | None = Field(default=None, alias="retriedBy")
    input: JobInputView
    blog_post: BlogPostRef | None = Field(default=None, alias="blogPost")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    finished_at: datetime | None = Field(default=None, alias="finishedAt")

    @property
    def is_active(self) -> bool:
        return self.status in ("queued", "processing")

    @classmethod
    def from_job(cls, job: GenerationJob, article: Article | None = None) -> "JobView":
        blog_post = None
        if article is not None:
            blog_post = BlogPostRef(
                id=article.article_id,
                title=article.title,
                slug=article.slug,
                status=article.status.value,
                seo_score=article.seo_score,
                word_count=article.word_count,
            )
        return cls(
            id=job.job_id,
            website_id=job.website_id,
            keyword_id=job.keyword_id,
            status=job.status.value,
            current_step=job.current_stage.value if job.current_stage else None,
            progress=job.progress,
            error=job.error_message,
            failed_step=job.failed_stage.value if job.failed_stage else None,
            error_kind=job.error_kind,
            cancel_requested=job.cancel_requested,
            retry_of=job.retry_of,
            retried_by=job.retried_by,
            input=JobInputView.from_input(job.input),
            blog_post=blog_post,
            created_at=job.created_at,
            updated_at=job.updated_at,
            finished_at=job.finished_at,
        )


class JobActionRequest(_CamelModel):
    action: Literal["retry", "cancel"]
    job_id: str = Field(alias="jobId")


class JobActionResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    keyword: str
    status: str
