"""
On-page SEO score for a finished article, from 0 to 95.

Twelve factors whose max points sum to 95, each capped at its max: keyword
placement and density, meta tag lengths, word count, heading structure, links,
featured image and paragraph readability.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from stackserp.articles.models import SEOFactor


class ContentScore(BaseModel):
    score: int = 0
    breakdown: list[SEOFactor] = Field(default_factory=list)


def calculate_content_score(
    content: str,
    title: str,
    meta_title: str | None = None,
    meta_description: str | None = None,
    focus_keyword: str | None = None,
    featured_image: str | None = None,
    featured_image_alt: str | None = None,
) -> ContentScore:
    kw = (focus_keyword or "").lower()
    lowered = content.lower()
    words = content.split()
    word_count = len(words)
    breakdown: list[SEOFactor] = []

    def add(factor: str, points: int, max_points: int, note: str) -> None:
        breakdown.append(SEOFactor(factor=factor, points=min(points, max_points), max_points=max_points, note=note))

    if kw:
        add("Focus keyword set", 10, 10, "Focus keyword is defined")
    else:
        add("Focus keyword set", 0, 10, "No focus keyword defined")

    if kw and kw in title.lower():
        add("Keyword in title", 10, 10, "Title contains focus keyword")
    else:
        add("Keyword in title", 0, 10, "Title missing focus keyword")

    first_150 = " ".join(words[:150]).lower()
    if kw and kw in first_150:
        add("Keyword in intro", 8, 8, "Focus keyword appears in first 150 words")
    else:
        add("Keyword in intro", 0, 8, "Focus keyword not found in intro")

    if kw and word_count > 0:
        occurrences = len(re.findall(re.escape(kw), content, flags=re.IGNORECASE))
        density = occurrences * len(kw.split()) / word_count * 100
        if 0.5 <= density <= 2.5:
            add("Keyword density", 8, 8, f"Density: {density:.1f}% (ideal 0.5-2.5%)")
        elif density > 0:
            add("Keyword density", 4, 8, f"Density: {density:.1f}% (target 0.5-2.5%)")
        else:
            add("Keyword density", 0, 8, "Focus keyword not found in content")
    else:
        add("Keyword density", 0, 8, "Cannot calculate without keyword")

    mt = meta_title or ""
    if 30 <= len(mt) <= 60:
        add("Meta title", 8, 8, f"{len(mt)} chars (ideal 30-60)")
    elif mt:
        add("Meta title", 4, 8, f"{len(mt)} chars (target 30-60)")
    else:
        add("Meta title", 0, 8, "No meta title set")

    md = meta_description or ""
    if 120 <= len(md) <= 160:
        add("Meta description", 8, 8, f"{len(md)} chars (ideal 120-160)")
    elif md:
        add("Meta description", 4, 8, f"{len(md)} chars (target 120-160)")
    else:
        add("Meta description", 0, 8, "No meta description set")

    if word_count >= 1500:
        add("Word count", 10, 10, f"{word_count} words (1500+ is great)")
    elif word_count >= 800:
        add("Word count", 6, 10, f"{word_count} words (target 1500+)")
    elif word_count >= 300:
        add("Word count", 3, 10, f"{word_count} words (minimum for SEO)")
    else:
        add("Word count", 0, 10, f"{word_count} words (too short)")

    h2s = re.findall(r"^##\s.+$", lowered, flags=re.MULTILINE)
    h3_count = len(re.findall(r"^###\s", lowered, flags=re.MULTILINE))
    if len(h2s) >= 3 and h3_count >= 1:
        add("Heading structure", 8, 8, f"{len(h2s)} H2s, {h3_count} H3s, good hierarchy")
    elif len(h2s) >= 2:
        add("Heading structure", 5, 8, f"{len(h2s)} H2s, add more subheadings")
    else:
        add("Heading structure", 2, 8, "Needs more H2/H3 structure")

    link_count = len(re.findall(r"\[.*?\]\(.*?\)", lowered))
    if link_count >= 15:
        add("Internal links", 8, 8, f"{link_count} links found (excellent)")
    elif link_count >= 8:
        add("Internal links", 6, 8, f"{link_count} links found (target 15+)")
    elif link_count >= 3:
        add("Internal links", 4, 8, f"{link_count} links found (target 15+)")
    elif link_count >= 1:
        add("Internal links", 2, 8, f"{link_count} link(s), add more internal links")
    else:
        add("Internal links", 0, 8, "No links found")

    if featured_image and featured_image_alt:
        add("Featured image", 6, 6, "Image with alt text set")
    elif featured_image:
        add("Featured image", 4, 6, "Image set but missing alt text")
    else:
        add("Featured image", 0, 6, "No featured image")

    if kw:
        if any(kw in h for h in h2s):
            add("Keyword in headings", 6, 6, "Focus keyword found in H2")
        else:
            add("Keyword in headings", 0, 6, "Focus keyword not found in any H2")
    else:
        add("Keyword in headings", 0, 6, "No keyword to check")

    paragraphs = [p for p in re.split(r"\n\n+", content) if len(p.strip()) > 50]
    long_paragraphs = [p for p in paragraphs if len(p.split()) > 80]
    if not long_paragraphs:
        add("Readability", 5, 5, "Good paragraph lengths")
    else:
        add("Readability", 2, 5, f"{len(long_paragraphs)} overly long paragraph(s)")

    return ContentScore(score=sum(f.points for f in breakdown), breakdown=breakdown)
