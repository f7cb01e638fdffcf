"""Shared FastAPI dependencies: the control surface and article lookup."""

from stackserp.articles import ArticleStore, get_article_store
from stackserp.control import ControlSurface
from stackserp.jobs import get_job_store
from stackserp.keywords import get_keyword_store
from stackserp.websites import get_website_store


def get_control() -> ControlSurface:
    return ControlSurface(get_job_store(), get_keyword_store(), get_website_store())


def get_articles() -> ArticleStore:
    return get_article_store()
