"""Jobs API route: status polling plus retry/cancel actions.

GET  /api/jobs?websiteId=...   → recent jobs for the website, newest first.
GET  /api/jobs/{job_id}        → one job.
POST /api/jobs {action, jobId} → retry a FAILED job or cancel a QUEUED/PROCESSING one.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.deps import get_articles, get_control
from stackserp.articles import ArticleStore
from stackserp.control import ControlError, ControlSurface
from stackserp.jobs import GenerationJob
from stackserp.schemas import JobActionRequest, JobActionResponse, JobView

logger = logging.getLogger(__name__)
router = APIRouter()


def _view(job: GenerationJob, articles: ArticleStore) -> JobView:
    article = None
    if job.article_id:
        try:
            article = articles.get(job.article_id)
        except Exception as e:
            logger.warning("Could not load article %s for job %s: %s", job.article_id, job.job_id, e)
    return JobView.from_job(job, article)


@router.get(
    "/jobs",
    response_model=list[JobView],
    summary="List generation jobs for a website",
)
def list_jobs(
    website_id: str = Query(..., alias="websiteId"),
    limit: int = Query(50, ge=1, le=200),
    control: ControlSurface = Depends(get_control),
    articles: ArticleStore = Depends(get_articles),
):
    return [_view(job, articles) for job in control.list_jobs(website_id, limit=limit)]


@router.get("/jobs/{job_id}", response_model=JobView, summary="Get one generation job")
def get_job(
    job_id: str,
    control: ControlSurface = Depends(get_control),
    articles: ArticleStore = Depends(get_articles),
):
    try:
        job = control.get_job(job_id)
    except ControlError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _view(job, articles)


@router.post("/jobs", response_model=JobActionResponse, summary="Retry or cancel a job")
def job_action(request: JobActionRequest, control: ControlSurface = Depends(get_control)):
    try:
        if request.action == "retry":
            job = control.retry(request.job_id)
        else:
            job = control.cancel(request.job_id)
    except ControlError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return JobActionResponse(job_id=job.job_id, keyword=job.input.keyword, status=job.status.value)
