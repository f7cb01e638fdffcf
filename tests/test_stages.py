"""Tests for the stage executor: per-stage contracts, skipping, timeouts, error classification."""

import threading

import httpx
import pytest
from conftest import WEBSITE_ID, FakeImageProvider, FakeLLM

from stackserp.articles.models import ArticleStatus
from stackserp.jobs.models import STAGES, GenerationJob, JobInput, Stage
from stackserp.pipeline.stages import (
    PERMANENT,
    TRANSIENT,
    Outline,
    StageContext,
    StageExecutor,
    StageProviders,
    StageTimeoutError,
    assemble_article,
    classify_error,
)
from stackserp.research import PerplexityResearchProvider, ResearchResult


def _job(**flags):
    return GenerationJob(job_id="job_test", website_id=WEBSITE_ID, input=JobInput(keyword="invoice templates", **flags))


def _executor(llm=None, image=None, timeouts=None):
    return StageExecutor(
        StageProviders(llm=llm or FakeLLM(), research=PerplexityResearchProvider(api_key=None), image=image),
        timeouts=timeouts,
        default_timeout=10.0,
    )


@pytest.fixture
def context(stores):
    return StageContext(website=stores.websites.get(WEBSITE_ID))


def _run_all(executor, job, context):
    results = []
    for stage in STAGES:
        result = executor.run_stage(stage, job, context)
        assert result.error is None, result.error
        context.outputs[stage] = result.output
        results.append(result)
    return results


def test_research_without_key_uses_fallback(context):
    result = _executor().run_stage(Stage.RESEARCH, _job(), context)
    assert isinstance(result.output, ResearchResult)
    assert result.output.is_fallback
    assert result.next_stage == Stage.OUTLINE


def test_all_stages_chain_in_order(context):
    results = _run_all(_executor(image=FakeImageProvider()), _job(), context)
    assert [r.next_stage for r in results] == list(STAGES[1:]) + [None]
    assert isinstance(context.outputs[Stage.OUTLINE], Outline)
    assert context.outputs[Stage.IMAGE].url == "https://img.example/featured.png"


def test_image_stage_skipped_by_flag(context):
    image = FakeImageProvider()
    result = _executor(image=image).run_stage(Stage.IMAGE, _job(include_images=False), context)
    assert result.skipped
    assert result.error is None
    assert result.next_stage is None
    assert image.prompts == []


def test_image_stage_skipped_without_provider(context):
    result = _executor(image=None).run_stage(Stage.IMAGE, _job(), context)
    assert result.skipped


def test_stage_timeout_is_transient_error(context):
    llm = FakeLLM(delay_on={"draft": 1.0})
    executor = _executor(llm=llm, timeouts={Stage.DRAFT: 0.1})
    for stage in (Stage.RESEARCH, Stage.OUTLINE):
        context.outputs[stage] = executor.run_stage(stage, _job(), context).output
    result = executor.run_stage(Stage.DRAFT, _job(), context)
    assert result.error is not None
    assert result.error.stage == Stage.DRAFT
    assert result.error.kind == TRANSIENT
    assert "timed out" in result.error.message
    assert result.next_stage is None


def test_timed_out_stage_call_runs_on_in_daemon_thread(context):
    llm = FakeLLM(delay_on={"draft": 1.0})
    executor = _executor(llm=llm, timeouts={Stage.DRAFT: 0.1})
    for stage in (Stage.RESEARCH, Stage.OUTLINE):
        context.outputs[stage] = executor.run_stage(stage, _job(), context).output

    result = executor.run_stage(Stage.DRAFT, _job(), context)

    assert result.error.kind == TRANSIENT
    abandoned = [t for t in threading.enumerate() if t.name == "stage-draft-job_test"]
    assert abandoned
    assert all(t.daemon for t in abandoned)


def test_stage_errors_propagate_from_worker_thread(context):
    llm = FakeLLM(fail_on={"outline": ValueError("model refused")})
    executor = _executor(llm=llm)
    context.outputs[Stage.RESEARCH] = executor.run_stage(Stage.RESEARCH, _job(), context).output
    result = executor.run_stage(Stage.OUTLINE, _job(), context)
    assert result.error.kind == PERMANENT
    assert result.error.message == "model refused"


def test_invalid_outline_json_is_permanent_error(context):
    class BadLLM(FakeLLM):
        def complete(self, prompt, **kwargs):
            if self.stage_of(prompt) == "outline":
                return "not json {{{"
            return super().complete(prompt, **kwargs)

    executor = _executor(llm=BadLLM())
    context.outputs[Stage.RESEARCH] = executor.run_stage(Stage.RESEARCH, _job(), context).output
    result = executor.run_stage(Stage.OUTLINE, _job(), context)
    assert result.error.kind == PERMANENT
    assert result.error.stage == Stage.OUTLINE


def test_prompts_carry_brand_and_links(context):
    seen = []

    class RecordingLLM(FakeLLM):
        def complete(self, prompt, **kwargs):
            seen.append((self.stage_of(prompt), prompt, kwargs.get("system", "")))
            return super().complete(prompt, **kwargs)

    _run_all(_executor(llm=RecordingLLM()), _job(include_images=False), context)
    by_stage = {stage: (prompt, system) for stage, prompt, system in seen}
    assert "Acme Billing" in by_stage["draft"][1]
    assert "Friendly and approachable" in by_stage["draft"][1]
    assert "1500-2500" in by_stage["draft"][0]
    assert "https://acmebilling.example/features/reminders" in by_stage["seo"][0]


def test_assemble_article(context):
    job = _job(auto_publish=True)
    _run_all(_executor(image=FakeImageProvider()), job, context)
    article = assemble_article(job, context)
    assert article.title == "Invoice Templates That Actually Get You Paid"
    assert article.slug == "invoice-templates"
    assert article.focus_keyword == "invoice templates"
    assert article.word_count > 0
    assert article.reading_time >= 1
    assert article.status == ArticleStatus.PUBLISHED
    assert article.published_at is not None
    assert article.featured_image_url == "https://img.example/featured.png"
    assert article.seo_score == sum(f.points for f in article.seo_breakdown)
    assert article.social_captions.twitter.startswith("Get paid faster")


class TestClassifyError:

    def test_timeouts_are_transient(self):
        assert classify_error(TimeoutError()) == TRANSIENT
        assert classify_error(StageTimeoutError(Stage.DRAFT, 1.0)) == TRANSIENT
        assert classify_error(httpx.ConnectTimeout("slow")) == TRANSIENT

    def test_http_status(self):
        request = httpx.Request("POST", "https://api.example/chat")
        unavailable = httpx.HTTPStatusError("503", request=request, response=httpx.Response(503, request=request))
        bad_request = httpx.HTTPStatusError("400", request=request, response=httpx.Response(400, request=request))
        assert classify_error(unavailable) == TRANSIENT
        assert classify_error(bad_request) == PERMANENT

    def test_everything_else_is_permanent(self):
        assert classify_error(ValueError("bad input")) == PERMANENT
