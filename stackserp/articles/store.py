"""Article storage: Postgres or file-based fallback."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Protocol

from stackserp.articles.models import Article
from stackserp.config import get_settings
from stackserp.jsonfile import StoreLock, write_json_atomic

logger = logging.getLogger(__name__)


class ArticleStore(Protocol):
    def save(self, article: Article) -> Article: ...
    def get(self, article_id: str) -> Article | None: ...
    def list_by_website(self, website_id: str) -> list[Article]: ...


def _new_article_id() -> str:
    return f"art_{uuid.uuid4().hex[:16]}"


def _unique_slug(base: str, taken: set[str]) -> str:
    """Append -1, -2, ... until the slug is free within the website."""
    slug = base or "post"
    suffix = 1
    while slug in taken:
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresArticleStore:
    """Persist articles in stackserp_articles, slug unique per website."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._lock = threading.RLock()
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres article store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stackserp_articles (
                article_id TEXT PRIMARY KEY,
                website_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                slug TEXT NOT NULL,
                article JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                UNIQUE (website_id, slug)
            )
        """)
        return conn

    def save(self, article: Article) -> Article:
        with self._lock:
            rows = self._conn.execute(
                "SELECT slug FROM stackserp_articles WHERE website_id = %s AND slug LIKE %s",
                (article.website_id, f"{article.slug}%"),
            ).fetchall()
            saved = article.model_copy(update={
                "article_id": article.article_id or _new_article_id(),
                "slug": _unique_slug(article.slug, {r[0] for r in rows}),
            })
            self._conn.execute(
                """
                INSERT INTO stackserp_articles (article_id, website_id, job_id, slug, article, created_at)
                VALUES (%s, %s, %s, %s, %s::jsonb, %s)
                """,
                (
                    saved.article_id,
                    saved.website_id,
                    saved.job_id,
                    saved.slug,
                    json.dumps(saved.model_dump(mode="json")),
                    saved.created_at,
                ),
            )
        return saved

    def get(self, article_id: str) -> Article | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT article FROM stackserp_articles WHERE article_id = %s", (article_id,)
            ).fetchone()
        if not row:
            return None
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return Article.model_validate(data)

    def list_by_website(self, website_id: str) -> list[Article]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT article FROM stackserp_articles
                WHERE website_id = %s ORDER BY created_at DESC
                """,
                (website_id,),
            ).fetchall()
        return [
            Article.model_validate(r[0] if isinstance(r[0], dict) else json.loads(r[0]))
            for r in rows
        ]


# ---------------------------------------------------------------------------
# File-based implementation
# ---------------------------------------------------------------------------

class FileArticleStore:
    """Persist articles as JSON files under <data_dir>/articles/<website_id>/."""

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir) / "articles"
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = StoreLock(self._dir / ".lock")

    def _website_dir(self, website_id: str) -> Path:
        path = self._dir / website_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save(self, article: Article) -> Article:
        with self._lock():
            taken = {a.slug for a in self.list_by_website(article.website_id)}
            saved = article.model_copy(update={
                "article_id": article.article_id or _new_article_id(),
                "slug": _unique_slug(article.slug, taken),
            })
            path = self._website_dir(saved.website_id) / f"{saved.article_id}.json"
            write_json_atomic(path, saved.model_dump(mode="json"), indent=2, ensure_ascii=False)
        return saved

    def get(self, article_id: str) -> Article | None:
        for path in self._dir.glob(f"*/{article_id}.json"):
            with open(path, "r", encoding="utf-8") as f:
                return Article.model_validate(json.load(f))
        return None

    def list_by_website(self, website_id: str) -> list[Article]:
        articles = []
        for path in self._website_dir(website_id).glob("art_*.json"):
            with open(path, "r", encoding="utf-8") as f:
                articles.append(Article.model_validate(json.load(f)))
        articles.sort(key=lambda a: a.created_at, reverse=True)
        return articles


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: ArticleStore | None = None


def get_article_store() -> ArticleStore:
    """Return singleton article store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.stackserp_database_url:
        try:
            _store = PostgresArticleStore(settings.stackserp_database_url)
            logger.info("Using Postgres article store")
        except Exception as e:
            logger.warning("Postgres article store failed (%s), falling back to file store", e)
            _store = FileArticleStore(settings.data_dir)
    else:
        _store = FileArticleStore(settings.data_dir)
        logger.info("Using file-based article store (STACKSERP_DATA_DIR/articles)")
    return _store
