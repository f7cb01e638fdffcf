"""Keyword storage: Postgres or file-based fallback."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from stackserp.config import get_settings
from stackserp.jsonfile import StoreLock, write_json_atomic
from stackserp.jobs.models import utcnow

logger = logging.getLogger(__name__)


class KeywordStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    USED = "used"


class Keyword(BaseModel):
    keyword_id: str = ""
    website_id: str = ""
    keyword: str = ""
    priority: int = 0
    status: KeywordStatus = KeywordStatus.PENDING
    article_id: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class KeywordStore(Protocol):
    def add(self, website_id: str, keyword: str, priority: int = 0) -> Keyword: ...
    def get(self, keyword_id: str) -> Keyword | None: ...
    def set_status(
        self,
        keyword_id: str,
        status: KeywordStatus,
        *,
        article_id: str | None = None,
        error: str | None = None,
    ) -> None: ...
    def next_pending(self, website_id: str) -> Keyword | None: ...
    def list_by_website(self, website_id: str) -> list[Keyword]: ...


def _new_keyword_id() -> str:
    return f"kw_{uuid.uuid4().hex[:16]}"


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_KEYWORD_COLUMNS = """
    keyword_id, website_id, keyword, priority, status, article_id,
    error_message, retry_count, created_at, updated_at
"""


class PostgresKeywordStore:
    """Persist keywords in the stackserp_keywords table."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._lock = threading.RLock()
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres keyword store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True, row_factory=dict_row)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stackserp_keywords (
                keyword_id TEXT PRIMARY KEY,
                website_id TEXT NOT NULL,
                keyword TEXT NOT NULL,
                priority INT NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'pending',
                article_id TEXT,
                error_message TEXT,
                retry_count INT NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_stackserp_keywords_queue
            ON stackserp_keywords (website_id, status, priority DESC, created_at)
        """)
        return conn

    def _execute(self, sql: str, params: tuple = ()):
        with self._lock:
            if self._conn.closed or self._conn.broken:
                self._conn = self._connect()
            return self._conn.execute(sql, params)

    def add(self, website_id: str, keyword: str, priority: int = 0) -> Keyword:
        kw = Keyword(keyword_id=_new_keyword_id(), website_id=website_id, keyword=keyword, priority=priority)
        self._execute(
            """
            INSERT INTO stackserp_keywords (keyword_id, website_id, keyword, priority, status)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (kw.keyword_id, kw.website_id, kw.keyword, kw.priority, kw.status.value),
        )
        return kw

    def get(self, keyword_id: str) -> Keyword | None:
        row = self._execute(
            f"SELECT {_KEYWORD_COLUMNS} FROM stackserp_keywords WHERE keyword_id = %s",
            (keyword_id,),
        ).fetchone()
        return Keyword.model_validate(row) if row else None

    def set_status(
        self,
        keyword_id: str,
        status: KeywordStatus,
        *,
        article_id: str | None = None,
        error: str | None = None,
    ) -> None:
        self._execute(
            """
            UPDATE stackserp_keywords SET
                status = %s,
                article_id = COALESCE(%s, article_id),
                error_message = %s,
                retry_count = retry_count + %s,
                updated_at = NOW()
            WHERE keyword_id = %s
            """,
            (KeywordStatus(status).value, article_id, error, 1 if error else 0, keyword_id),
        )

    def next_pending(self, website_id: str) -> Keyword | None:
        row = self._execute(
            f"""
            SELECT {_KEYWORD_COLUMNS} FROM stackserp_keywords
            WHERE website_id = %s AND status = 'pending'
            ORDER BY priority DESC, created_at ASC LIMIT 1
            """,
            (website_id,),
        ).fetchone()
        return Keyword.model_validate(row) if row else None

    def list_by_website(self, website_id: str) -> list[Keyword]:
        rows = self._execute(
            f"""
            SELECT {_KEYWORD_COLUMNS} FROM stackserp_keywords
            WHERE website_id = %s ORDER BY priority DESC, created_at ASC
            """,
            (website_id,),
        ).fetchall()
        return [Keyword.model_validate(r) for r in rows]


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileKeywordStore:
    """Persist keywords in a single JSON document keyed by keyword id."""

    def __init__(self, data_dir: Path):
        self._path = Path(data_dir) / "keywords.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = StoreLock(self._path.with_name(".keywords.lock"))

    def _load(self) -> dict[str, Keyword]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return {k: Keyword.model_validate(v) for k, v in data.items()}

    def _save(self, keywords: dict[str, Keyword]) -> None:
        write_json_atomic(
            self._path, {k: v.model_dump(mode="json") for k, v in keywords.items()}, indent=2
        )

    def add(self, website_id: str, keyword: str, priority: int = 0) -> Keyword:
        kw = Keyword(keyword_id=_new_keyword_id(), website_id=website_id, keyword=keyword, priority=priority)
        with self._lock():
            keywords = self._load()
            keywords[kw.keyword_id] = kw
            self._save(keywords)
        return kw

    def get(self, keyword_id: str) -> Keyword | None:
        with self._lock():
            return self._load().get(keyword_id)

    def set_status(
        self,
        keyword_id: str,
        status: KeywordStatus,
        *,
        article_id: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock():
            keywords = self._load()
            kw = keywords.get(keyword_id)
            if kw is None:
                logger.warning("set_status on unknown keyword %s", keyword_id)
                return
            kw.status = KeywordStatus(status)
            if article_id:
                kw.article_id = article_id
            kw.error_message = error
            if error:
                kw.retry_count += 1
            kw.updated_at = utcnow()
            self._save(keywords)

    def next_pending(self, website_id: str) -> Keyword | None:
        pending = [
            kw for kw in self.list_by_website(website_id) if kw.status == KeywordStatus.PENDING
        ]
        return pending[0] if pending else None

    def list_by_website(self, website_id: str) -> list[Keyword]:
        with self._lock():
            keywords = [kw for kw in self._load().values() if kw.website_id == website_id]
        keywords.sort(key=lambda kw: (-kw.priority, kw.created_at))
        return keywords


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: KeywordStore | None = None


def get_keyword_store() -> KeywordStore:
    """Return singleton keyword store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.stackserp_database_url:
        try:
            _store = PostgresKeywordStore(settings.stackserp_database_url)
        except Exception as e:
            logger.warning("Postgres keyword store failed (%s), falling back to file store", e)
            _store = FileKeywordStore(settings.data_dir)
    else:
        _store = FileKeywordStore(settings.data_dir)
    return _store
