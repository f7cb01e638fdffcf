"""
Stage executor: runs exactly one of the seven generation stages for a job.

Stages never persist anything. Each reads the job input, the website config
and the outputs accumulated so far, and returns its own output. Failures come
back as a StageError with a transient/permanent classification; the
orchestrator decides what to do with them.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import anthropic
import httpx
import openai
from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel, Field

from stackserp.articles.models import Article, ArticleStatus, SocialCaptions
from stackserp.images import FeaturedImage, ImageProvider, image_style_for_niche
from stackserp.jobs.models import (
    MAX_OUTPUT_TOKENS,
    WORD_TARGETS,
    GenerationJob,
    Stage,
    next_stage,
    utcnow,
)
from stackserp.llm.base import LLMProvider
from stackserp.pipeline.postprocess import (
    consolidate_links,
    count_words,
    finalize_content,
    is_comparison_keyword,
    slugify,
)
from stackserp.research import ResearchBrief, ResearchProvider, ResearchResult
from stackserp.seo import calculate_content_score
from stackserp.websites.store import InternalLink, WebsiteConfig

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

TRANSIENT = "transient"
PERMANENT = "permanent"

BANNED_PHRASES = [
    "delve", "dive deep", "in today's fast-paced world", "buckle up", "game-changer",
    "leverage", "utilize", "tapestry", "landscape (metaphorical)", "realm", "robust",
    "cutting-edge", "state-of-the-art", "embark on a journey", "navigating the complexities",
    "unlock the power", "it's important to note",
]

WRITING_STYLE_GUIDANCE = {
    "informative": "Clear, factual, and educational. Use data, examples, and step-by-step explanations. "
                   "Authoritative but accessible.",
    "conversational": "Friendly and approachable, like talking to a knowledgeable colleague. "
                      "Use contractions, direct address ('you'), and relatable analogies.",
    "technical": "Precise and detailed, written for practitioners. Use correct terminology, include code "
                 "snippets or configs where relevant, avoid over-simplifying.",
    "storytelling": "Narrative-driven. Open with a story or scenario. Use anecdotes, case studies, and "
                    "real-world examples to illustrate points.",
    "persuasive": "Benefit-focused and compelling. Lead with outcomes, use social proof, and create urgency.",
    "humorous": "Light-hearted, witty, and fun but always substantive. Use humor to make complex topics "
                "memorable, never at the expense of accuracy.",
}

METADATA_SYSTEM_PROMPT = "You are an SEO specialist and social media expert. Return valid JSON only."


class OutlineSection(BaseModel):
    heading: str
    points: list[str] = Field(default_factory=list)


class Outline(BaseModel):
    title: str
    sections: list[OutlineSection] = Field(default_factory=list)
    unique_angle: str = ""


class ArticleMetadata(BaseModel):
    title: str = ""
    slug: str = ""
    excerpt: str = ""
    meta_title: str = ""
    meta_description: str = ""
    secondary_keywords: list[str] = Field(default_factory=list)
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    twitter_caption: str = ""
    linkedin_caption: str = ""
    instagram_caption: str = ""
    facebook_caption: str = ""
    structured_data: dict[str, Any] = Field(default_factory=dict)
    featured_image_alt: str = ""


class StageTimeoutError(TimeoutError):
    def __init__(self, stage: Stage, seconds: float):
        super().__init__(f"Stage '{stage.value}' timed out after {seconds:g}s")
        self.stage = stage
        self.seconds = seconds


@dataclass
class StageError:
    stage: Stage
    kind: str
    message: str


@dataclass
class StageResult:
    output: Any = None
    next_stage: Stage | None = None
    error: StageError | None = None
    skipped: bool = False


@dataclass
class StageContext:
    """Everything a stage may read. ``outputs`` accumulates per-stage results for one run."""

    website: WebsiteConfig
    existing_links: list[InternalLink] = field(default_factory=list)
    outputs: dict[Stage, Any] = field(default_factory=dict)

    @property
    def links(self) -> list[InternalLink]:
        return consolidate_links(self.website.internal_links, self.existing_links)


@dataclass
class StageProviders:
    llm: LLMProvider
    research: ResearchProvider
    image: ImageProvider | None = None


def classify_error(exc: BaseException) -> str:
    """Timeouts, rate limits, connection problems and provider 5xx are transient."""
    if isinstance(exc, TimeoutError):
        return TRANSIENT
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError,
                        openai.InternalServerError)):
        return TRANSIENT
    if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError, anthropic.RateLimitError,
                        anthropic.InternalServerError)):
        return TRANSIENT
    if isinstance(exc, httpx.TransportError):
        return TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return TRANSIENT if status == 429 or status >= 500 else PERMANENT
    return PERMANENT


def build_system_prompt(env: Environment, website: WebsiteConfig, has_existing_links: bool) -> str:
    style = (website.writing_style or "").lower()
    return env.get_template("system.j2").render(
        site=website,
        style_guidance=WRITING_STYLE_GUIDANCE.get(style),
        banned_phrases=BANNED_PHRASES,
        has_existing_links=has_existing_links,
    )


class StageExecutor:
    """Runs one stage at a time under a per-stage timeout."""

    def __init__(
        self,
        providers: StageProviders,
        timeouts: dict[Stage, float] | None = None,
        default_timeout: float = 120.0,
    ):
        self.providers = providers
        self.timeouts = timeouts or {}
        self.default_timeout = default_timeout
        self._env = Environment(loader=FileSystemLoader(str(PROMPTS_DIR)))
        self._handlers: dict[Stage, Callable[[GenerationJob, StageContext], Any]] = {
            Stage.RESEARCH: self._research,
            Stage.OUTLINE: self._outline,
            Stage.DRAFT: self._draft,
            Stage.TONE: self._tone,
            Stage.SEO: self._seo,
            Stage.METADATA: self._metadata,
            Stage.IMAGE: self._image,
        }

    def timeout_for(self, stage: Stage) -> float:
        return self.timeouts.get(stage, self.default_timeout)

    def should_skip(self, stage: Stage, job: GenerationJob) -> bool:
        if stage == Stage.IMAGE:
            return not job.input.include_images or self.providers.image is None
        return False

    def run_stage(self, stage: Stage, job: GenerationJob, context: StageContext) -> StageResult:
        stage = Stage(stage)
        following = next_stage(stage)
        if self.should_skip(stage, job):
            logger.info("Job %s: skipping stage %s", job.job_id, stage.value)
            return StageResult(output=None, next_stage=following, skipped=True)

        seconds = self.timeout_for(stage)
        try:
            output = self._call_with_timeout(stage, seconds, self._handlers[stage], job, context)
        except Exception as e:
            kind = classify_error(e)
            logger.warning("Job %s: stage %s failed (%s): %s", job.job_id, stage.value, kind, e)
            message = str(e) or e.__class__.__name__
            return StageResult(next_stage=None, error=StageError(stage=stage, kind=kind, message=message))
        return StageResult(output=output, next_stage=following)

    @staticmethod
    def _call_with_timeout(
        stage: Stage, seconds: float, fn: Callable, job: GenerationJob, context: StageContext
    ) -> Any:
        # A timed-out provider call is not interrupted. It keeps running in a
        # daemon thread, which never holds up interpreter exit.
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = fn(job, context)
            except BaseException as e:
                outcome["error"] = e

        thread = threading.Thread(target=target, name=f"stage-{stage.value}-{job.job_id}", daemon=True)
        thread.start()
        thread.join(seconds)
        if thread.is_alive():
            raise StageTimeoutError(stage, seconds)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    # ------------------------------------------------------------------
    # Stage implementations
    # ------------------------------------------------------------------

    def _system(self, context: StageContext) -> str:
        return build_system_prompt(self._env, context.website, bool(context.existing_links))

    def _render(self, name: str, job: GenerationJob, context: StageContext, **extra: Any) -> str:
        return self._env.get_template(name).render(
            keyword=job.input.keyword,
            site=context.website,
            target_words=WORD_TARGETS[job.input.content_length],
            include_faq=job.input.include_faq,
            include_toc=job.input.include_toc,
            is_comparison=is_comparison_keyword(job.input.keyword),
            banned_phrases=BANNED_PHRASES,
            **extra,
        )

    def _research(self, job: GenerationJob, context: StageContext) -> ResearchResult:
        site = context.website
        brief = ResearchBrief(
            brand_name=site.brand_name,
            niche=site.niche,
            target_audience=site.target_audience,
            description=site.description,
            unique_value_prop=site.unique_value_prop,
            competitors=site.competitors,
            key_products=site.key_products,
            target_location=site.target_location,
            tone=site.tone,
        )
        return self.providers.research.research(job.input.keyword, brief)

    def _outline(self, job: GenerationJob, context: StageContext) -> Outline:
        prompt = self._render("outline.j2", job, context, research=context.outputs[Stage.RESEARCH])
        outline = self.providers.llm.complete_structured(prompt, Outline, system=self._system(context))
        if not outline.title.strip() or not outline.sections:
            raise ValueError("Outline is missing a title or sections")
        return outline

    def _draft(self, job: GenerationJob, context: StageContext) -> str:
        prompt = self._render(
            "draft.j2", job, context,
            outline=context.outputs[Stage.OUTLINE],
            research=context.outputs[Stage.RESEARCH],
        )
        draft = self.providers.llm.complete(
            prompt,
            system=self._system(context),
            temperature=0.8,
            max_tokens=MAX_OUTPUT_TOKENS[job.input.content_length],
        )
        if not draft.strip():
            raise ValueError("Draft stage returned empty content")
        return draft

    def _tone(self, job: GenerationJob, context: StageContext) -> str:
        prompt = self._render("tone.j2", job, context, draft=context.outputs[Stage.DRAFT])
        rewritten = self.providers.llm.complete(
            prompt,
            system=self._system(context),
            temperature=0.65,
            max_tokens=MAX_OUTPUT_TOKENS[job.input.content_length],
        )
        if not rewritten.strip():
            raise ValueError("Tone stage returned empty content")
        return rewritten

    def _seo(self, job: GenerationJob, context: StageContext) -> str:
        links = context.links
        tone = context.outputs[Stage.TONE]
        prompt = self._render("seo.j2", job, context, content=tone, links=links)
        optimized = self.providers.llm.complete(
            prompt,
            system=self._system(context),
            temperature=0.4,
            max_tokens=MAX_OUTPUT_TOKENS[job.input.content_length],
        )
        return finalize_content(optimized, tone, context.outputs[Stage.DRAFT], links)

    def _metadata(self, job: GenerationJob, context: StageContext) -> ArticleMetadata:
        prompt = self._render("metadata.j2", job, context, content=context.outputs[Stage.SEO])
        return self.providers.llm.complete_structured(prompt, ArticleMetadata, system=METADATA_SYSTEM_PROMPT)

    def _image(self, job: GenerationJob, context: StageContext) -> FeaturedImage:
        outline: Outline = context.outputs[Stage.OUTLINE]
        metadata: ArticleMetadata = context.outputs[Stage.METADATA]
        keyword = job.input.keyword
        prompt = self._env.get_template("image.j2").render(
            keyword=keyword,
            niche=context.website.niche,
            title=outline.title,
            style=image_style_for_niche(context.website.niche),
        )
        alt = metadata.featured_image_alt or f"{keyword} - {outline.title}"
        return self.providers.image.generate(prompt, alt)


def assemble_article(job: GenerationJob, context: StageContext) -> Article:
    """Build the finished article from the outputs of a completed run."""
    outline: Outline = context.outputs[Stage.OUTLINE]
    content: str = context.outputs[Stage.SEO]
    metadata: ArticleMetadata = context.outputs[Stage.METADATA]
    image: FeaturedImage | None = context.outputs.get(Stage.IMAGE)
    research: ResearchResult | None = context.outputs.get(Stage.RESEARCH)
    keyword = job.input.keyword

    title = outline.title
    meta_title = metadata.meta_title or title
    image_url = image.url if image else None
    image_alt = (image.alt if image else None) or metadata.featured_image_alt or keyword
    words = count_words(content)
    score = calculate_content_score(
        content=content,
        title=title,
        meta_title=meta_title,
        meta_description=metadata.meta_description,
        focus_keyword=keyword,
        featured_image=image_url,
        featured_image_alt=image_alt if image_url else None,
    )
    published = job.input.auto_publish
    return Article(
        website_id=job.website_id,
        job_id=job.job_id,
        keyword_id=job.keyword_id,
        title=title,
        slug=slugify(metadata.slug) or slugify(title) or slugify(keyword),
        content=content,
        excerpt=metadata.excerpt,
        meta_title=meta_title,
        meta_description=metadata.meta_description,
        focus_keyword=keyword,
        secondary_keywords=metadata.secondary_keywords,
        tags=metadata.tags,
        category=metadata.category or context.website.niche,
        social_captions=SocialCaptions(
            twitter=metadata.twitter_caption,
            linkedin=metadata.linkedin_caption,
            instagram=metadata.instagram_caption,
            facebook=metadata.facebook_caption,
        ),
        structured_data=metadata.structured_data,
        featured_image_url=image_url,
        featured_image_alt=image_alt,
        word_count=words,
        reading_time=math.ceil(words / 200),
        seo_score=score.score,
        seo_breakdown=score.breakdown,
        status=ArticleStatus.PUBLISHED if published else ArticleStatus.REVIEW,
        research=research.model_dump(mode="json") if research else {},
        published_at=utcnow() if published else None,
    )
