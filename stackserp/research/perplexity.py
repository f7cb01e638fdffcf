"""Keyword research: competitor analysis, content gaps and statistics via Perplexity.

Without an API key (or when the API returns nothing usable) a deterministic
fallback research brief is produced so the rest of the pipeline can run.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

import httpx
from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
RESEARCH_SYSTEM_PROMPT = (
    "You are an SEO content researcher and competitor analyst. Provide comprehensive research "
    "with sources, statistics, competitor insights, and content gap analysis. Focus on actionable "
    "data that helps create content that outranks existing articles."
)


class ResearchBrief(BaseModel):
    """Brand context handed to the research provider."""

    brand_name: str = ""
    niche: str = ""
    target_audience: str = ""
    description: str = ""
    unique_value_prop: str | None = None
    competitors: list[str] = Field(default_factory=list)
    key_products: list[str] = Field(default_factory=list)
    target_location: str | None = None
    tone: str | None = None


class ResearchResult(BaseModel):
    raw_research: str = ""
    top_ranking_content: str = ""
    content_gaps: list[str] = Field(default_factory=list)
    missing_subtopics: list[str] = Field(default_factory=list)
    competitor_headings: list[str] = Field(default_factory=list)
    key_statistics: list[str] = Field(default_factory=list)
    related_topics: list[str] = Field(default_factory=list)
    suggested_angle: str = ""
    common_questions: list[str] = Field(default_factory=list)
    is_fallback: bool = False


class ResearchProvider(Protocol):
    def research(self, keyword: str, brief: ResearchBrief) -> ResearchResult: ...


# "- item", "* item", "1. item" or "2) item"; a leading number without a
# list marker belongs to the text.
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


def extract_section(text: str, *keywords: str) -> list[str]:
    """Collect bullet lines under headings that mention any of ``keywords``.

    Falls back to the first bullet lines of the whole text when no matching
    heading exists.
    """
    lines = [line for line in text.split("\n") if line.strip()]
    results: list[str] = []
    in_section = False
    for line in lines:
        lower = line.lower()
        if any(kw in lower for kw in keywords) and (lower.startswith("#") or lower.startswith("**")):
            in_section = True
            continue
        if in_section:
            if re.match(r"^#{1,3}\s", line) or re.match(r"^\*\*[^*]+\*\*$", line):
                in_section = False
                continue
            cleaned = _BULLET.sub("", line).strip()
            if len(cleaned) > 10:
                results.append(cleaned)

    if not results:
        return [
            _BULLET.sub("", line).strip()
            for line in lines
            if _BULLET.match(line) and len(line.strip()) > 15
        ][:8]
    return results[:10]


def parse_research(raw: str) -> ResearchResult:
    """Split a free-text research answer into the structured fields stages use."""
    angles = extract_section(raw, "winning angle", "unique angle", "contrarian", "underexplored", "part 3")
    return ResearchResult(
        raw_research=raw,
        top_ranking_content="\n".join(extract_section(raw, "competitor", "ranking", "top article", "part 1"))
        or raw[:1000],
        content_gaps=extract_section(raw, "content gap", "miss", "skip", "fail", "gap", "part 2"),
        missing_subtopics=extract_section(raw, "missing", "subtopic", "not covered", "ignore", "avoid", "nobody"),
        competitor_headings=extract_section(raw, "heading", "h2", "h3", "section", "cover"),
        key_statistics=extract_section(raw, "statistic", "data", "number", "percent", "%", "study", "part 4"),
        related_topics=extract_section(raw, "related", "subtopic", "also", "example"),
        suggested_angle=angles[0] if angles else "",
        common_questions=extract_section(raw, "question", "ask", "faq", "paa", "people also", "quora", "reddit"),
    )


def fallback_research(keyword: str, brief: ResearchBrief) -> ResearchResult:
    audience = brief.target_audience or "readers"
    niche = brief.niche or "this"
    return ResearchResult(
        raw_research=(
            f'Research on "{keyword}" for {brief.brand_name} in the {niche} space. '
            "Top articles cover basics, step-by-step guides, best practices, and common mistakes."
        ),
        top_ranking_content=(
            f'Top articles about "{keyword}" in the {niche} space typically cover the basics, '
            "step-by-step guides, best practices, and common mistakes to avoid."
        ),
        content_gaps=[
            "Lack of real-world examples and case studies",
            "Missing actionable tips for beginners",
            "No comparison of different approaches",
            "Outdated statistics and data",
        ],
        missing_subtopics=[
            f"How {keyword} specifically applies to {audience}",
            "Common mistakes that experts make (not just beginners)",
            "Cost/ROI breakdown that most guides skip",
        ],
        competitor_headings=[
            f"What is {keyword}?",
            f"Why {keyword} matters",
            f"How to get started with {keyword}",
            f"Best practices for {keyword}",
            "Common mistakes to avoid",
            "Frequently Asked Questions",
        ],
        key_statistics=[
            f"{audience} spend significant time researching this topic before making decisions",
        ],
        related_topics=[f"{keyword} for beginners", f"{keyword} best practices", f"{keyword} examples"],
        suggested_angle=(
            f"Focus on practical, actionable advice specifically tailored for {audience}, "
            f"with real examples from the {niche} industry."
        ),
        common_questions=[
            f"What is {keyword}?",
            f"How does {keyword} work?",
            f"What are the best {keyword} strategies?",
        ],
        is_fallback=True,
    )


class PerplexityResearchProvider:
    """Research via the Perplexity chat completions API."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "sonar-pro",
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_key = (api_key or "").replace("\\n", "").strip()
        self._model = model
        self._timeout = timeout
        self._transport = transport
        self._env = Environment(loader=FileSystemLoader(str(PROMPTS_DIR)))

    def research(self, keyword: str, brief: ResearchBrief) -> ResearchResult:
        if not self._api_key:
            return fallback_research(keyword, brief)

        prompt = self._env.get_template("research.j2").render(keyword=keyword, brief=brief)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    PERPLEXITY_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "model": self._model,
                        "messages": [
                            {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                        "max_tokens": 4000,
                        "temperature": 0.2,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Perplexity research failed for %r (%s), using fallback research", keyword, e)
            return fallback_research(keyword, brief)

        raw = (data.get("choices") or [{}])[0].get("message", {}).get("content", "")
        if not raw:
            logger.warning("Perplexity returned empty research for %r, using fallback research", keyword)
            return fallback_research(keyword, brief)
        return parse_research(raw)
