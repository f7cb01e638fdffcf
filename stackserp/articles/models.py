"""Finished article produced by a completed generation job."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from stackserp.jobs.models import utcnow


class ArticleStatus(str, Enum):
    REVIEW = "review"
    PUBLISHED = "published"


class SocialCaptions(BaseModel):
    twitter: str = ""
    linkedin: str = ""
    instagram: str = ""
    facebook: str = ""


class SEOFactor(BaseModel):
    factor: str
    points: int
    max_points: int
    note: str = ""


class Article(BaseModel):
    article_id: str = ""
    website_id: str = ""
    job_id: str = ""
    keyword_id: str | None = None
    title: str = ""
    slug: str = ""
    content: str = ""
    excerpt: str = ""
    meta_title: str = ""
    meta_description: str = ""
    focus_keyword: str = ""
    secondary_keywords: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    social_captions: SocialCaptions = Field(default_factory=SocialCaptions)
    structured_data: dict[str, Any] = Field(default_factory=dict)
    featured_image_url: str | None = None
    featured_image_alt: str | None = None
    word_count: int = 0
    reading_time: int = 0
    seo_score: int = 0
    seo_breakdown: list[SEOFactor] = Field(default_factory=list)
    status: ArticleStatus = ArticleStatus.REVIEW
    research: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    published_at: datetime | None = None
