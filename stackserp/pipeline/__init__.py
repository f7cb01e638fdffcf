"""Generation pipeline: stage executor and orchestrator, wired from settings."""

from __future__ import annotations

import logging

from stackserp.articles import get_article_store
from stackserp.config import Settings, get_settings
from stackserp.images import OpenAIImageProvider
from stackserp.jobs import STAGES, get_job_store
from stackserp.keywords import get_keyword_store
from stackserp.llm import get_provider
from stackserp.pipeline.orchestrator import PipelineOrchestrator
from stackserp.pipeline.stages import (
    StageContext,
    StageError,
    StageExecutor,
    StageProviders,
    StageResult,
    StageTimeoutError,
    assemble_article,
    classify_error,
)
from stackserp.publish import WebhookPublisher
from stackserp.research import PerplexityResearchProvider
from stackserp.websites import get_website_store

logger = logging.getLogger(__name__)


def build_providers(settings: Settings) -> StageProviders:
    name = settings.stackserp_llm_provider
    if name.strip().lower() == "anthropic":
        llm = get_provider(name, api_key=settings.anthropic_api_key, model=settings.stackserp_anthropic_model)
    else:
        llm = get_provider(name, api_key=settings.openai_api_key, model=settings.stackserp_openai_model)
    image = None
    if settings.openai_api_key:
        image = OpenAIImageProvider(api_key=settings.openai_api_key, model=settings.stackserp_image_model)
    else:
        logger.info("OPENAI_API_KEY not set: image stage will be skipped")
    research = PerplexityResearchProvider(settings.perplexity_api_key, model=settings.stackserp_research_model)
    return StageProviders(llm=llm, research=research, image=image)


def build_orchestrator(settings: Settings | None = None) -> PipelineOrchestrator:
    """Orchestrator over the configured stores and providers."""
    settings = settings or get_settings()
    executor = StageExecutor(
        build_providers(settings),
        timeouts={stage: settings.stage_timeout(stage.value) for stage in STAGES},
    )
    return PipelineOrchestrator(
        jobs=get_job_store(),
        keywords=get_keyword_store(),
        websites=get_website_store(),
        articles=get_article_store(),
        executor=executor,
        publish_hook=WebhookPublisher(
            default_url=settings.stackserp_publish_webhook_url,
            default_secret=settings.stackserp_publish_webhook_secret,
        ),
    )


__all__ = [
    "PipelineOrchestrator",
    "StageContext",
    "StageError",
    "StageExecutor",
    "StageProviders",
    "StageResult",
    "StageTimeoutError",
    "assemble_article",
    "build_orchestrator",
    "build_providers",
    "classify_error",
]
