"""Tests for the publish webhook: payload shape, signing and failure handling."""

import hashlib
import hmac
import json

import httpx
from conftest import WEBSITE_ID

from stackserp.articles.models import Article, ArticleStatus
from stackserp.jobs.models import utcnow
from stackserp.publish import WebhookPublisher, build_payload, sign_payload


def _article():
    return Article(
        article_id="art_1",
        website_id=WEBSITE_ID,
        title="Invoice Templates That Actually Get You Paid",
        slug="invoice-templates",
        content="## Why\n\n| a | b |\n|---|---|\n| 1 | 2 |\n",
        focus_keyword="invoice templates",
        status=ArticleStatus.PUBLISHED,
        published_at=utcnow(),
    )


def test_sign_payload_is_hmac_sha256():
    body = b'{"event":"post.published"}'
    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert sign_payload(body, "s3cret") == f"sha256={expected}"


def test_build_payload(stores):
    payload = build_payload(_article(), stores.websites.get(WEBSITE_ID))
    assert payload["event"] == "post.published"
    post = payload["post"]
    assert post["id"] == "art_1"
    assert post["url"] == "https://acmebilling.example/blog/invoice-templates"
    assert "<table>" in post["contentHtml"]
    assert post["publishedAt"] is not None


def test_webhook_delivery_is_signed(stores):
    website = stores.websites.get(WEBSITE_ID).model_copy(update={
        "publish_webhook_url": "https://hooks.example/stackserp",
        "publish_webhook_secret": "s3cret",
    })
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(200)

    publisher = WebhookPublisher(background=False, transport=httpx.MockTransport(handler))
    publisher(_article(), website)

    assert len(received) == 1
    request = received[0]
    assert str(request.url) == "https://hooks.example/stackserp"
    assert request.headers["X-StackSerp-Event"] == "post.published"
    assert request.headers["X-StackSerp-Post-Id"] == "art_1"
    assert request.headers["X-StackSerp-Signature"] == sign_payload(request.content, "s3cret")
    assert json.loads(request.content)["post"]["slug"] == "invoice-templates"


def test_webhook_failure_is_logged(stores, caplog):
    publisher = WebhookPublisher(
        default_url="https://hooks.example/down",
        background=False,
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    publisher(_article(), stores.websites.get(WEBSITE_ID))
    assert "Publish webhook failed" in caplog.text


def test_no_webhook_configured_skips(stores):
    calls = []
    publisher = WebhookPublisher(background=False, transport=httpx.MockTransport(calls.append))
    publisher(_article(), stores.websites.get(WEBSITE_ID))
    assert calls == []
