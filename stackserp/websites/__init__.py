"""Website configuration storage."""

from stackserp.websites.store import (
    FileWebsiteStore,
    InternalLink,
    PostgresWebsiteStore,
    WebsiteConfig,
    WebsiteStore,
    get_website_store,
)

__all__ = [
    "FileWebsiteStore",
    "InternalLink",
    "PostgresWebsiteStore",
    "WebsiteConfig",
    "WebsiteStore",
    "get_website_store",
]
