"""Article storage."""

from stackserp.articles.models import Article, ArticleStatus, SEOFactor, SocialCaptions
from stackserp.articles.store import (
    ArticleStore,
    FileArticleStore,
    PostgresArticleStore,
    get_article_store,
)

__all__ = [
    "Article",
    "ArticleStatus",
    "ArticleStore",
    "FileArticleStore",
    "PostgresArticleStore",
    "SEOFactor",
    "SocialCaptions",
    "get_article_store",
]
