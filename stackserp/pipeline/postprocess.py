"""Markdown clean-up applied to the SEO stage output before metadata generation."""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable

from stackserp.websites.store import InternalLink

logger = logging.getLogger(__name__)

MAX_PARAGRAPH_WORDS = 80

_COMPARISON_RE = re.compile(
    r"\b(best|vs\.?|compare|comparison|top \d+|alternatives?|review|which|ranking|ranked|versus)\b",
    re.IGNORECASE,
)
_PLACEHOLDER_RE = re.compile(r"\[INTERNAL_LINK:\s*([^\]]+)\]", re.IGNORECASE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_HEADING_RE = re.compile(r"^(#{2,3})\s+(.+)$")
_TOC_LINE_RE = re.compile(r"^(\s*-\s+\[)([^\]]+)(\]\(#)([^)]+)(\))")
_NON_PROSE_RE = re.compile(r"^(#{1,6}\s|[-*]\s|\d+\.\s|!\[|```|<|\|)")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


def count_words(text: str) -> int:
    return len(text.split())


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:80]


def is_comparison_keyword(keyword: str) -> bool:
    """Keywords like "best X" or "A vs B" get a mandatory comparison table."""
    return bool(_COMPARISON_RE.search(keyword))


def pick_best_version(seo: str, tone: str, draft: str) -> str:
    """Guard against a truncated SEO rewrite by falling back to an earlier version."""
    seo_words, tone_words, draft_words = count_words(seo), count_words(tone), count_words(draft)
    if seo_words < tone_words * 0.6:
        logger.warning(
            "SEO step truncated article: %d words vs %d in tone step, using tone version",
            seo_words, tone_words,
        )
        return tone
    if seo_words < draft_words * 0.5:
        logger.warning(
            "SEO step severely truncated article: %d words vs %d in draft, using draft",
            seo_words, draft_words,
        )
        return draft
    return seo


def consolidate_links(*groups: Iterable[InternalLink]) -> list[InternalLink]:
    """Merge link lists keeping one entry per URL, first wins."""
    seen: set[str] = set()
    merged: list[InternalLink] = []
    for group in groups:
        for link in group:
            if link.url in seen:
                continue
            seen.add(link.url)
            merged.append(link)
    return merged


def replace_link_placeholders(content: str, links: list[InternalLink]) -> str:
    """Turn leftover ``[INTERNAL_LINK: anchor]`` markers into real links, or plain text."""
    if not links:
        return content

    def _sub(match: re.Match) -> str:
        anchor = match.group(1).strip()
        needle = anchor.lower()
        for link in links:
            kw = link.keyword.lower()
            if kw in needle or needle in kw:
                return f"[{anchor}]({link.url})"
        return anchor

    return _PLACEHOLDER_RE.sub(_sub, content)


def dedupe_links(content: str) -> str:
    """Keep the first link to each URL; later ones become their anchor text."""
    linked: set[str] = set()

    def _sub(match: re.Match) -> str:
        anchor, url = match.group(1), match.group(2)
        normalized = url.rstrip("/").lower()
        if normalized in linked:
            return anchor
        linked.add(normalized)
        return match.group(0)

    return _LINK_RE.sub(_sub, content)


def _heading_anchor(text: str) -> str:
    anchor = re.sub(r"[`*_\[\]()]", "", text.lower())
    anchor = re.sub(r"[^\w\s-]", "", anchor).strip()
    return re.sub(r"\s+", "-", anchor)


def fix_toc_labels(content: str) -> str:
    """Rewrite table-of-contents labels to match the heading their anchor points at."""
    lines = content.split("\n")
    headings: dict[str, str] = {}
    for line in lines:
        m = _HEADING_RE.match(line)
        if not m:
            continue
        text = m.group(2).strip()
        if text.lower() == "table of contents":
            continue
        headings[_heading_anchor(text)] = text

    fixed = []
    for line in lines:
        m = _TOC_LINE_RE.match(line)
        if m:
            correct = headings.get(m.group(4))
            if correct and correct != m.group(2):
                line = f"{m.group(1)}{correct}{m.group(3)}{m.group(4)}{m.group(5)}" + line[m.end():]
        fixed.append(line)
    return "\n".join(fixed)


def split_long_paragraphs(content: str, max_words: int = MAX_PARAGRAPH_WORDS) -> str:
    """Split prose paragraphs over ``max_words`` at the middle sentence boundary."""
    out: list[str] = []
    for block in content.split("\n\n"):
        trimmed = block.strip()
        if _NON_PROSE_RE.match(trimmed) or len(trimmed.split()) <= max_words:
            out.append(block)
            continue
        matches = list(_SENTENCE_RE.finditer(trimmed))
        if len(matches) < 2:
            out.append(block)
            continue
        sentences = [m.group(0) for m in matches]
        tail = trimmed[matches[-1].end():]
        mid = math.ceil(len(sentences) / 2)
        out.append("".join(sentences[:mid]).strip())
        out.append(("".join(sentences[mid:]) + tail).strip())
    return "\n\n".join(out)


def finalize_content(
    seo: str,
    tone: str,
    draft: str,
    links: list[InternalLink],
) -> str:
    content = pick_best_version(seo, tone, draft)
    content = replace_link_placeholders(content, links)
    content = dedupe_links(content)
    content = fix_toc_labels(content)
    return split_long_paragraphs(content)
