"""
Pipeline orchestrator: drives one claimed job through the seven stages.

The job is re-read before every stage so a cancel request made through the
control surface is observed at the next stage boundary. Progress for stage i
is recorded as floor(100 * i / 7) only after that check passes, so a cancelled
job keeps the stage and progress of the step it was last in. Completion
records 100. Every stage failure and every unexpected error ends in FAILED.
"""

from __future__ import annotations

import logging

from stackserp.articles.models import Article
from stackserp.articles.store import ArticleStore
from stackserp.jobs.models import STAGES, GenerationJob, JobStatus, Stage, progress_for_stage
from stackserp.jobs.store import JobStore
from stackserp.keywords.store import KeywordStatus, KeywordStore
from stackserp.pipeline.stages import (
    PERMANENT,
    StageContext,
    StageExecutor,
    assemble_article,
)
from stackserp.publish import PublishHook
from stackserp.websites.store import InternalLink, WebsiteConfig, WebsiteStore

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    def __init__(
        self,
        jobs: JobStore,
        keywords: KeywordStore,
        websites: WebsiteStore,
        articles: ArticleStore,
        executor: StageExecutor,
        publish_hook: PublishHook | None = None,
    ):
        self.jobs = jobs
        self.keywords = keywords
        self.websites = websites
        self.articles = articles
        self.executor = executor
        self.publish_hook = publish_hook

    def run(self, job: GenerationJob) -> GenerationJob | None:
        """Run a PROCESSING job to a terminal state and return its final record."""
        stage: Stage | None = job.current_stage or STAGES[0]
        try:
            website = self.websites.get(job.website_id)
            if website is None:
                self._fail(job, Stage.RESEARCH, f"Website {job.website_id} not found", PERMANENT)
                return self.jobs.get(job.job_id)

            context = StageContext(website=website, existing_links=self._existing_links(website))
            for stage in STAGES:
                if not self._still_running(job):
                    return self.jobs.get(job.job_id)
                # claim_next already recorded the first stage at 0%
                if stage != STAGES[0] and not self.jobs.record_progress(
                    job.job_id, stage, progress_for_stage(stage)
                ):
                    logger.warning("Job %s left PROCESSING before stage %s", job.job_id, stage.value)
                    return self.jobs.get(job.job_id)

                result = self.executor.run_stage(stage, job, context)
                if result.error is not None:
                    self._fail(job, stage, result.error.message, result.error.kind)
                    return self.jobs.get(job.job_id)
                context.outputs[stage] = result.output

            if not self._still_running(job):
                return self.jobs.get(job.job_id)
            self._finish(job, website, context)
        except Exception as e:
            logger.exception("Job %s crashed in stage %s", job.job_id, stage.value if stage else "-")
            self._fail(job, stage, str(e) or e.__class__.__name__, PERMANENT)
        return self.jobs.get(job.job_id)

    def _still_running(self, job: GenerationJob) -> bool:
        """False once the job is no longer PROCESSING; acknowledges a pending cancel."""
        current = self.jobs.get(job.job_id)
        if current is None or current.status != JobStatus.PROCESSING:
            logger.warning("Job %s is no longer processing", job.job_id)
            return False
        if current.cancel_requested:
            if self.jobs.mark_cancelled(job.job_id):
                logger.info("Job %s cancelled at stage %s", job.job_id, current.current_stage)
                self._release_keyword(job)
            return False
        return True

    def _existing_links(self, website: WebsiteConfig) -> list[InternalLink]:
        """Earlier articles of the same website, offered to the SEO stage as link targets."""
        return [
            InternalLink(keyword=a.focus_keyword or a.title, url=website.post_url(a.slug))
            for a in self.articles.list_by_website(website.website_id)
        ]

    def _finish(self, job: GenerationJob, website: WebsiteConfig, context: StageContext) -> None:
        article = self.articles.save(assemble_article(job, context))
        if not self.jobs.complete(job.job_id, article.article_id):
            logger.warning("Job %s could not be completed; article %s kept", job.job_id, article.article_id)
            return
        logger.info(
            "Job %s completed: article %s (%d words, SEO %d)",
            job.job_id, article.article_id, article.word_count, article.seo_score,
        )
        if job.keyword_id:
            self.keywords.set_status(job.keyword_id, KeywordStatus.USED, article_id=article.article_id)
        if job.input.auto_publish:
            self._publish(article, website)

    def _publish(self, article: Article, website: WebsiteConfig) -> None:
        if self.publish_hook is None:
            return
        try:
            self.publish_hook(article, website)
        except Exception:
            logger.exception("Publish hook failed for article %s", article.article_id)

    def _fail(self, job: GenerationJob, stage: Stage | None, message: str, kind: str) -> None:
        if self.jobs.fail(job.job_id, stage, message, kind):
            logger.info("Job %s failed at %s (%s): %s", job.job_id, stage.value if stage else "-", kind, message)
            if job.keyword_id:
                self.keywords.set_status(job.keyword_id, KeywordStatus.PENDING, error=message)

    def _release_keyword(self, job: GenerationJob) -> None:
        if job.keyword_id:
            self.keywords.set_status(job.keyword_id, KeywordStatus.PENDING)
