"""Keyword research providers."""

from stackserp.research.perplexity import (
    PerplexityResearchProvider,
    ResearchBrief,
    ResearchProvider,
    ResearchResult,
    extract_section,
    fallback_research,
    parse_research,
)

__all__ = [
    "PerplexityResearchProvider",
    "ResearchBrief",
    "ResearchProvider",
    "ResearchResult",
    "extract_section",
    "fallback_research",
    "parse_research",
]
