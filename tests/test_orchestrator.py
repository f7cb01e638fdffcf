"""End-to-end pipeline runs over file stores with fake providers."""

import pytest
from conftest import WEBSITE_ID, FakeLLM, make_orchestrator

from stackserp.articles.models import ArticleStatus
from stackserp.jobs.models import JobInput, JobStatus, Stage
from stackserp.jobs.store import FileJobStore
from stackserp.keywords.store import KeywordStatus
from stackserp.pipeline.stages import PERMANENT, TRANSIENT


class RecordingJobStore(FileJobStore):
    """File store that remembers every progress write."""

    def __init__(self, data_dir):
        super().__init__(data_dir)
        self.progress_log = []

    def record_progress(self, job_id, stage, percent):
        moved = super().record_progress(job_id, stage, percent)
        if moved:
            self.progress_log.append((Stage(stage), percent))
        return moved


def _queue(control, stores, keyword="invoice templates", **flags):
    kw = stores.keywords.add(WEBSITE_ID, keyword)
    job, _ = control.generate(WEBSITE_ID, kw.keyword_id, flags)
    return job, kw


def test_full_run_completes_and_stores_article(stores, control):
    llm = FakeLLM()
    job, kw = _queue(control, stores, include_images=False)
    claimed = stores.jobs.claim_next()
    assert claimed.job_id == job.job_id

    final = make_orchestrator(stores, llm).run(claimed)

    assert final.status == JobStatus.COMPLETED
    assert final.progress == 100
    assert final.finished_at is not None
    assert llm.calls == ["outline", "draft", "tone", "seo", "metadata"]

    article = stores.articles.get(final.article_id)
    assert article is not None
    assert article.website_id == WEBSITE_ID
    assert article.focus_keyword == "invoice templates"
    assert article.featured_image_url is None
    assert article.status == ArticleStatus.REVIEW

    keyword = stores.keywords.get(kw.keyword_id)
    assert keyword.status == KeywordStatus.USED
    assert keyword.article_id == article.article_id


def test_image_stage_runs_when_enabled(stores, control, fake_image):
    _queue(control, stores)
    final = make_orchestrator(stores, FakeLLM(), image=fake_image).run(stores.jobs.claim_next())
    assert final.status == JobStatus.COMPLETED
    assert len(fake_image.prompts) == 1
    assert stores.articles.get(final.article_id).featured_image_url == "https://img.example/featured.png"


def test_progress_is_monotonic_and_follows_stage_order(tmp_path, stores, control):
    stores.jobs = RecordingJobStore(tmp_path)
    control.jobs = stores.jobs
    _queue(control, stores, include_images=False)

    final = make_orchestrator(stores, FakeLLM()).run(stores.jobs.claim_next())

    assert final.status == JobStatus.COMPLETED
    assert stores.jobs.progress_log == [
        (Stage.OUTLINE, 14),
        (Stage.DRAFT, 28),
        (Stage.TONE, 42),
        (Stage.SEO, 57),
        (Stage.METADATA, 71),
        (Stage.IMAGE, 85),
    ]


def test_stage_timeout_fails_job_then_retry_completes(stores, control):
    job, kw = _queue(control, stores, include_images=False)
    slow = make_orchestrator(stores, FakeLLM(delay_on={"draft": 1.0}), timeouts={Stage.DRAFT: 0.2})

    failed = slow.run(stores.jobs.claim_next())

    assert failed.status == JobStatus.FAILED
    assert failed.failed_stage == Stage.DRAFT
    assert failed.error_kind == TRANSIENT
    assert "timed out" in failed.error_message
    keyword = stores.keywords.get(kw.keyword_id)
    assert keyword.status == KeywordStatus.PENDING
    assert keyword.error_message

    retry = control.retry(job.job_id)
    assert stores.keywords.get(kw.keyword_id).status == KeywordStatus.GENERATING
    claimed = stores.jobs.claim_next()
    assert claimed.job_id == retry.job_id

    final = make_orchestrator(stores, FakeLLM()).run(claimed)
    assert final.status == JobStatus.COMPLETED
    assert final.retry_of == job.job_id
    assert stores.jobs.get(job.job_id).retried_by == retry.job_id
    assert stores.jobs.get(job.job_id).status == JobStatus.FAILED
    assert stores.keywords.get(kw.keyword_id).status == KeywordStatus.USED


def test_cancel_during_stage_stops_at_next_boundary(stores, control):
    job, kw = _queue(control, stores, include_images=False)

    def cancel_during_draft(stage):
        if stage == "draft":
            control.cancel(job.job_id)

    llm = FakeLLM(on_call=cancel_during_draft)
    final = make_orchestrator(stores, llm).run(stores.jobs.claim_next())

    assert final.status == JobStatus.CANCELLED
    assert final.cancel_requested
    assert "tone" not in llm.calls
    assert final.current_stage == Stage.DRAFT
    assert final.progress == 28
    assert stores.articles.list_by_website(WEBSITE_ID) == []
    assert stores.keywords.get(kw.keyword_id).status == KeywordStatus.PENDING


def test_provider_error_fails_job_with_permanent_kind(stores, control):
    _, kw = _queue(control, stores)
    llm = FakeLLM(fail_on={"tone": ValueError("model refused")})
    final = make_orchestrator(stores, llm).run(stores.jobs.claim_next())

    assert final.status == JobStatus.FAILED
    assert final.failed_stage == Stage.TONE
    assert final.error_kind == PERMANENT
    assert final.error_message == "model refused"
    assert stores.keywords.get(kw.keyword_id).error_message == "model refused"


def test_auto_publish_calls_hook(stores, control):
    published = []
    _queue(control, stores, include_images=False, auto_publish=True)
    orchestrator = make_orchestrator(
        stores, FakeLLM(), publish_hook=lambda article, website: published.append((article, website)),
    )
    final = orchestrator.run(stores.jobs.claim_next())

    assert final.status == JobStatus.COMPLETED
    assert len(published) == 1
    article, website = published[0]
    assert article.status == ArticleStatus.PUBLISHED
    assert website.website_id == WEBSITE_ID


def test_publish_failure_does_not_fail_job(stores, control):
    def broken_hook(article, website):
        raise RuntimeError("webhook down")

    _queue(control, stores, include_images=False, auto_publish=True)
    final = make_orchestrator(stores, FakeLLM(), publish_hook=broken_hook).run(stores.jobs.claim_next())
    assert final.status == JobStatus.COMPLETED


def test_missing_website_fails_job(stores):
    stores.jobs.enqueue("ghost-site", None, JobInput(keyword="anything"))
    final = make_orchestrator(stores, FakeLLM()).run(stores.jobs.claim_next())

    assert final.status == JobStatus.FAILED
    assert final.failed_stage == Stage.RESEARCH
    assert final.error_kind == PERMANENT
    assert "ghost-site" in final.error_message


def test_earlier_articles_become_link_targets(stores, control):
    orchestrator = make_orchestrator(stores, FakeLLM())
    _queue(control, stores, include_images=False)
    first = orchestrator.run(stores.jobs.claim_next())
    slug = stores.articles.get(first.article_id).slug

    links = orchestrator._existing_links(stores.websites.get(WEBSITE_ID))
    assert [link.url for link in links] == [f"https://acmebilling.example/blog/{slug}"]


@pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
def test_run_does_nothing_for_job_no_longer_processing(stores, control, status):
    _queue(control, stores)
    claimed = stores.jobs.claim_next()
    if status == JobStatus.COMPLETED:
        stores.jobs.complete(claimed.job_id, "art_x")
    else:
        stores.jobs.fail(claimed.job_id, Stage.RESEARCH, "boom")

    llm = FakeLLM()
    final = make_orchestrator(stores, llm).run(claimed)
    assert final.status == status
    assert llm.calls == []
