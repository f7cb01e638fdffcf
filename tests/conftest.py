"""Pytest configuration and shared fixtures: file-backed stores and fake providers."""

import threading
import time
from types import SimpleNamespace

import pytest

from stackserp.articles.store import FileArticleStore
from stackserp.control import ControlSurface
from stackserp.images import FeaturedImage
from stackserp.jobs.store import FileJobStore
from stackserp.keywords.store import FileKeywordStore
from stackserp.llm.base import parse_structured
from stackserp.pipeline.orchestrator import PipelineOrchestrator
from stackserp.pipeline.stages import StageExecutor, StageProviders
from stackserp.research import PerplexityResearchProvider
from stackserp.websites.store import FileWebsiteStore, InternalLink, WebsiteConfig

WEBSITE_ID = "acme-billing"

OUTLINE_JSON = """{
  "title": "Invoice Templates That Actually Get You Paid",
  "sections": [
    {"heading": "Why invoice templates matter", "points": ["speed", "consistency"]},
    {"heading": "What every invoice template needs", "points": ["line items", "terms"]},
    {"heading": "Common mistakes", "points": ["missing due dates"]}
  ],
  "unique_angle": "Templates tuned for getting paid faster"
}"""

METADATA_JSON = """{
  "title": "Invoice Templates That Actually Get You Paid",
  "slug": "invoice-templates",
  "excerpt": "A practical guide to invoice templates for freelancers.",
  "meta_title": "Invoice Templates: A Practical Guide for Freelancers",
  "meta_description": "Learn which invoice templates get you paid faster, what every invoice needs, and the mistakes that delay payment. Start invoicing smarter today.",
  "secondary_keywords": ["invoice template", "freelance invoice"],
  "category": "Invoicing",
  "tags": ["invoices", "freelancing"],
  "twitter_caption": "Get paid faster with better invoice templates",
  "linkedin_caption": "Invoice templates matter.",
  "instagram_caption": "Invoices!",
  "facebook_caption": "Better invoices, faster payments.",
  "structured_data": {"@context": "https://schema.org", "@type": "Article"},
  "featured_image_alt": "Invoice templates on a desk"
}"""

ARTICLE_MD = """Last Tuesday at 11pm I was still chasing a client for an invoice I sent a month ago.

## Why invoice templates matter

Good invoice templates save time and make every bill look the same. Clients pay faster when the invoice is clear.

### The cost of a messy invoice

A messy invoice gets parked in an inbox. A clean one gets paid.

## What every invoice template needs

Line items, payment terms and a due date. See [payment reminders](https://acmebilling.example/features/reminders) for follow-ups.

## Common mistakes

Forgetting the due date is the most common mistake with invoice templates.
"""


class FakeLLM:
    """Answers each pipeline prompt with canned content and records which stage asked."""

    def __init__(self, fail_on=None, delay_on=None, on_call=None, seo_text=None):
        self.fail_on = fail_on or {}
        self.delay_on = delay_on or {}
        self.on_call = on_call
        self.seo_text = seo_text
        self.calls = []
        self._lock = threading.Lock()

    @staticmethod
    def stage_of(prompt: str) -> str:
        if prompt.startswith("Create a detailed blog post outline"):
            return "outline"
        if prompt.startswith("Write a complete"):
            return "draft"
        if prompt.startswith("You are a senior editor"):
            return "tone"
        if prompt.startswith("You are an SEO expert"):
            return "seo"
        if prompt.startswith("Generate SEO metadata"):
            return "metadata"
        return "unknown"

    def complete(self, prompt: str, **kwargs) -> str:
        stage = self.stage_of(prompt)
        with self._lock:
            self.calls.append(stage)
        if self.on_call:
            self.on_call(stage)
        if stage in self.delay_on:
            time.sleep(self.delay_on[stage])
        if stage in self.fail_on:
            raise self.fail_on[stage]
        if stage == "outline":
            return OUTLINE_JSON
        if stage == "metadata":
            return "```json\n" + METADATA_JSON + "\n```"
        if stage == "seo" and self.seo_text is not None:
            return self.seo_text
        return ARTICLE_MD

    def complete_structured(self, prompt: str, schema, **kwargs):
        return parse_structured(self.complete(prompt, **kwargs), schema)


class FakeImageProvider:
    def __init__(self):
        self.prompts = []

    def generate(self, prompt: str, alt: str) -> FeaturedImage:
        self.prompts.append(prompt)
        return FeaturedImage(url="https://img.example/featured.png", alt=alt)


@pytest.fixture
def stores(tmp_path):
    """File-backed stores in a temporary data dir, with one website seeded."""
    s = SimpleNamespace(
        jobs=FileJobStore(tmp_path),
        keywords=FileKeywordStore(tmp_path),
        websites=FileWebsiteStore(tmp_path),
        articles=FileArticleStore(tmp_path),
    )
    s.websites.save(WebsiteConfig(
        website_id=WEBSITE_ID,
        brand_name="Acme Billing",
        brand_url="https://acmebilling.example",
        niche="SaaS invoicing",
        target_audience="freelancers",
        description="invoicing platform for freelancers",
        writing_style="conversational",
        internal_links=[
            InternalLink(keyword="payment reminders", url="https://acmebilling.example/features/reminders"),
        ],
    ))
    return s


@pytest.fixture
def control(stores):
    return ControlSurface(stores.jobs, stores.keywords, stores.websites)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_image():
    return FakeImageProvider()


def make_orchestrator(stores, llm, image=None, timeouts=None, publish_hook=None):
    executor = StageExecutor(
        StageProviders(llm=llm, research=PerplexityResearchProvider(api_key=None), image=image),
        timeouts=timeouts,
        default_timeout=10.0,
    )
    return PipelineOrchestrator(
        jobs=stores.jobs,
        keywords=stores.keywords,
        websites=stores.websites,
        articles=stores.articles,
        executor=executor,
        publish_hook=publish_hook,
    )


@pytest.fixture
def orchestrator(stores, fake_llm, fake_image):
    return make_orchestrator(stores, fake_llm, image=fake_image)
