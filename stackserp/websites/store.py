"""Website configuration reader: brand voice, style and internal-link inventory."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from stackserp.config import get_settings
from stackserp.jsonfile import StoreLock, write_json_atomic

logger = logging.getLogger(__name__)


class InternalLink(BaseModel):
    keyword: str
    url: str


class WebsiteConfig(BaseModel):
    """Per-website settings every stage may read."""

    website_id: str
    brand_name: str = ""
    brand_url: str = ""
    niche: str = ""
    target_audience: str = ""
    tone: str = "friendly and professional"
    description: str = ""
    writing_style: str | None = None
    cta_text: str | None = None
    cta_url: str | None = None
    avoid_topics: list[str] = Field(default_factory=list)
    required_sections: list[str] = Field(default_factory=list)
    unique_value_prop: str | None = None
    competitors: list[str] = Field(default_factory=list)
    key_products: list[str] = Field(default_factory=list)
    target_location: str | None = None
    internal_links: list[InternalLink] = Field(default_factory=list)
    blog_base_url: str | None = None
    publish_webhook_url: str | None = None
    publish_webhook_secret: str | None = None

    def post_url(self, slug: str) -> str:
        base = (self.blog_base_url or f"{self.brand_url.rstrip('/')}/blog").rstrip("/")
        return f"{base}/{slug}"


class WebsiteStore(Protocol):
    def get(self, website_id: str) -> WebsiteConfig | None: ...
    def save(self, config: WebsiteConfig) -> WebsiteConfig: ...


class PostgresWebsiteStore:
    """Website configs as JSONB documents in stackserp_websites."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._lock = threading.RLock()
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres website store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stackserp_websites (
                website_id TEXT PRIMARY KEY,
                config JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        return conn

    def get(self, website_id: str) -> WebsiteConfig | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT config FROM stackserp_websites WHERE website_id = %s", (website_id,)
            ).fetchone()
        if not row:
            return None
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return WebsiteConfig.model_validate(data)

    def save(self, config: WebsiteConfig) -> WebsiteConfig:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO stackserp_websites (website_id, config, updated_at)
                VALUES (%s, %s::jsonb, NOW())
                ON CONFLICT (website_id) DO UPDATE SET config = EXCLUDED.config, updated_at = NOW()
                """,
                (config.website_id, json.dumps(config.model_dump(mode="json"))),
            )
        return config


class FileWebsiteStore:
    """Website configs in <data_dir>/websites.json."""

    def __init__(self, data_dir: Path):
        self._path = Path(data_dir) / "websites.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = StoreLock(self._path.with_name(".websites.lock"))

    def _load(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            return json.load(f)

    def get(self, website_id: str) -> WebsiteConfig | None:
        with self._lock():
            data = self._load().get(website_id)
        return WebsiteConfig.model_validate(data) if data else None

    def save(self, config: WebsiteConfig) -> WebsiteConfig:
        with self._lock():
            data = self._load()
            data[config.website_id] = config.model_dump(mode="json")
            write_json_atomic(self._path, data, indent=2)
        return config


_store: WebsiteStore | None = None


def get_website_store() -> WebsiteStore:
    """Return singleton website store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.stackserp_database_url:
        try:
            _store = PostgresWebsiteStore(settings.stackserp_database_url)
        except Exception as e:
            logger.warning("Postgres website store failed (%s), falling back to file store", e)
            _store = FileWebsiteStore(settings.data_dir)
    else:
        _store = FileWebsiteStore(settings.data_dir)
    return _store
