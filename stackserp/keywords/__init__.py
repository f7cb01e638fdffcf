"""Keyword queue: the topics jobs are generated against."""

from stackserp.keywords.store import (
    FileKeywordStore,
    Keyword,
    KeywordStatus,
    KeywordStore,
    PostgresKeywordStore,
    get_keyword_store,
)

__all__ = [
    "FileKeywordStore",
    "Keyword",
    "KeywordStatus",
    "KeywordStore",
    "PostgresKeywordStore",
    "get_keyword_store",
]
