"""Publish hook fired when an auto-publish job completes.

The default implementation posts the article to a webhook (per website, or the
global default from settings), signed with HMAC-SHA256 when a secret is set.
Delivery runs in a daemon thread; failures are logged and never reach the job.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
from typing import Any, Protocol

import httpx
import markdown

from stackserp.articles.models import Article
from stackserp.jobs.models import utcnow
from stackserp.websites.store import WebsiteConfig

logger = logging.getLogger(__name__)

USER_AGENT = "StackSerp/1.0"
EVENT_PUBLISHED = "post.published"


class PublishHook(Protocol):
    def __call__(self, article: Article, website: WebsiteConfig) -> None: ...


def sign_payload(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_payload(article: Article, website: WebsiteConfig) -> dict[str, Any]:
    return {
        "event": EVENT_PUBLISHED,
        "timestamp": utcnow().isoformat(),
        "post": {
            "id": article.article_id,
            "title": article.title,
            "slug": article.slug,
            "url": website.post_url(article.slug),
            "content": article.content,
            "contentHtml": markdown.markdown(article.content, extensions=["tables", "fenced_code"]),
            "excerpt": article.excerpt,
            "metaTitle": article.meta_title,
            "metaDescription": article.meta_description,
            "focusKeyword": article.focus_keyword,
            "secondaryKeywords": article.secondary_keywords,
            "featuredImageUrl": article.featured_image_url,
            "featuredImageAlt": article.featured_image_alt,
            "tags": article.tags,
            "category": article.category,
            "wordCount": article.word_count,
            "readingTime": article.reading_time,
            "seoScore": article.seo_score,
            "publishedAt": article.published_at.isoformat() if article.published_at else None,
        },
    }


class WebhookPublisher:
    """POST ``post.published`` events to the website's webhook."""

    def __init__(
        self,
        default_url: str | None = None,
        default_secret: str | None = None,
        timeout: float = 15.0,
        background: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        self.default_url = default_url
        self.default_secret = default_secret
        self.timeout = timeout
        self.background = background
        self.transport = transport

    def __call__(self, article: Article, website: WebsiteConfig) -> None:
        url = website.publish_webhook_url or self.default_url
        if not url:
            logger.info("No publish webhook configured for website %s, skipping", website.website_id)
            return
        secret = website.publish_webhook_secret or self.default_secret
        payload = build_payload(article, website)
        if self.background:
            threading.Thread(
                target=self._deliver,
                args=(url, secret, payload),
                name=f"publish-{article.article_id}",
                daemon=True,
            ).start()
        else:
            self._deliver(url, secret, payload)

    def _deliver(self, url: str, secret: str | None, payload: dict[str, Any]) -> None:
        post_id = payload["post"]["id"]
        try:
            status = self.send(url, secret, payload)
            logger.info("Published %s to webhook (HTTP %s)", post_id, status)
        except httpx.HTTPError as e:
            logger.warning("Publish webhook failed for %s: %s", post_id, e)

    def send(self, url: str, secret: str | None, payload: dict[str, Any]) -> int:
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-StackSerp-Event": payload["event"],
            "X-StackSerp-Post-Id": payload["post"]["id"],
        }
        if secret:
            headers["X-StackSerp-Signature"] = sign_payload(body, secret)
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(url, content=body, headers=headers)
        response.raise_for_status()
        return response.status_code
