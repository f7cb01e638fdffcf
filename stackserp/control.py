"""
Control surface: single and bulk generate, retry and cancel requests from the API/CLI.

Invalid requests raise a ControlError subclass before anything is mutated;
the HTTP layer maps each subclass to its status code.
"""

from __future__ import annotations

import logging

from stackserp.jobs.models import GenerationJob, JobInput, JobStatus
from stackserp.jobs.store import DuplicateJobError, JobStore
from stackserp.keywords.store import Keyword, KeywordStatus, KeywordStore
from stackserp.websites.store import WebsiteStore

logger = logging.getLogger(__name__)


class ControlError(Exception):
    status_code = 400


class NotFoundError(ControlError):
    status_code = 404


class NoEligibleKeywordError(ControlError):
    status_code = 400


class ConflictError(ControlError):
    status_code = 409


MAX_BULK_COUNT = 10


class ControlSurface:
    def __init__(self, jobs: JobStore, keywords: KeywordStore, websites: WebsiteStore):
        self.jobs = jobs
        self.keywords = keywords
        self.websites = websites

    def generate(
        self,
        website_id: str,
        keyword_id: str | None = None,
        options: JobInput | dict | None = None,
    ) -> tuple[GenerationJob, Keyword]:
        """Enqueue a job for ``keyword_id``, or for the highest-priority pending keyword.

        ``options`` carries the job flags; its keyword text is replaced by the
        chosen keyword's text.
        """
        if self.websites.get(website_id) is None:
            raise NotFoundError(f"Website {website_id} not found")

        if keyword_id:
            keyword = self.keywords.get(keyword_id)
            if keyword is None or keyword.website_id != website_id:
                raise NotFoundError(f"Keyword {keyword_id} not found")
            if keyword.status == KeywordStatus.USED:
                raise ConflictError(f'Keyword "{keyword.keyword}" already has an article')
        else:
            keyword = self.keywords.next_pending(website_id)
            if keyword is None:
                raise NoEligibleKeywordError("No pending keywords. Add keywords first.")

        job = self._enqueue(website_id, keyword, options)
        return job, keyword

    def generate_bulk(
        self,
        website_id: str,
        keyword_ids: list[str] | None = None,
        count: int = 3,
        options: JobInput | dict | None = None,
    ) -> list[tuple[GenerationJob, Keyword]]:
        """Enqueue up to ``count`` pending keywords in priority order.

        With ``keyword_ids`` only those keywords are considered. Keywords that
        already have a job in flight are skipped.
        """
        if self.websites.get(website_id) is None:
            raise NotFoundError(f"Website {website_id} not found")
        if not 1 <= count <= MAX_BULK_COUNT:
            raise ControlError(f"count must be between 1 and {MAX_BULK_COUNT}")

        pending = [
            kw for kw in self.keywords.list_by_website(website_id)
            if kw.status == KeywordStatus.PENDING
        ]
        if keyword_ids is not None:
            wanted = set(keyword_ids)
            pending = [kw for kw in pending if kw.keyword_id in wanted]

        queued: list[tuple[GenerationJob, Keyword]] = []
        for keyword in pending:
            if len(queued) >= count:
                break
            try:
                queued.append((self._enqueue(website_id, keyword, options), keyword))
            except ConflictError as e:
                logger.warning("Skipping keyword %r in bulk request: %s", keyword.keyword, e)
        if not queued:
            raise NoEligibleKeywordError("No pending keywords found. Add keywords first.")
        logger.info("Queued %d jobs in bulk on website %s", len(queued), website_id)
        return queued

    def _enqueue(self, website_id: str, keyword: Keyword, options: JobInput | dict | None) -> GenerationJob:
        if isinstance(options, JobInput):
            flags = options.model_dump(exclude={"keyword"})
        else:
            flags = {k: v for k, v in (options or {}).items() if k != "keyword"}
        job_input = JobInput(keyword=keyword.keyword, **flags)

        try:
            job = self.jobs.enqueue(website_id, keyword.keyword_id, job_input)
        except DuplicateJobError as e:
            raise ConflictError(
                f'Keyword "{keyword.keyword}" already has a job in progress ({e.existing_job_id})'
            ) from e

        self.keywords.set_status(keyword.keyword_id, KeywordStatus.GENERATING)
        logger.info("Queued job %s for keyword %r on website %s", job.job_id, keyword.keyword, website_id)
        return job

    def retry(self, job_id: str) -> GenerationJob:
        """Re-enqueue a FAILED job as a new job; the failed record stays as-is."""
        original = self._get(job_id)
        if original.status != JobStatus.FAILED:
            raise ConflictError(f"Only failed jobs can be retried (job is {original.status.value})")
        if original.retried_by:
            raise ConflictError(f"Job {job_id} was already retried as {original.retried_by}")
        if original.keyword_id:
            keyword = self.keywords.get(original.keyword_id)
            if keyword is not None and keyword.status == KeywordStatus.USED:
                raise ConflictError(f'Keyword "{keyword.keyword}" already has an article')

        try:
            job = self.jobs.retry(job_id)
        except DuplicateJobError as e:
            raise ConflictError(f"Keyword already has a job in progress ({e.existing_job_id})") from e
        if job is None:
            raise ConflictError(f"Job {job_id} can no longer be retried")

        if job.keyword_id:
            self.keywords.set_status(job.keyword_id, KeywordStatus.GENERATING)
        logger.info("Retrying job %s as %s", job_id, job.job_id)
        return job

    def cancel(self, job_id: str) -> GenerationJob:
        """Cancel a QUEUED job now, or flag a PROCESSING job for the next stage boundary."""
        current = self._get(job_id)
        if current.is_terminal:
            raise ConflictError(f"Job is already {current.status.value}")

        job = self.jobs.cancel(job_id)
        if job is None:
            raise ConflictError("Job finished before it could be cancelled")

        if job.status == JobStatus.CANCELLED:
            if job.keyword_id:
                self.keywords.set_status(job.keyword_id, KeywordStatus.PENDING)
            logger.info("Cancelled queued job %s", job_id)
        else:
            logger.info("Cancellation requested for running job %s", job_id)
        return job

    def list_jobs(self, website_id: str, limit: int = 50) -> list[GenerationJob]:
        return self.jobs.list_by_website(website_id, limit=limit)

    def get_job(self, job_id: str) -> GenerationJob:
        return self._get(job_id)

    def _get(self, job_id: str) -> GenerationJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job
