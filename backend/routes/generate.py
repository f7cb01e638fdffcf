"""Generate API route: enqueue a generation job for a website keyword.

POST /api/websites/{website_id}/generate
  → Picks the requested keyword (or the highest-priority pending one),
    creates a QUEUED job and returns { jobId, keyword } immediately.
  → The worker loop picks the job up; clients poll GET /api/jobs.

POST /api/websites/{website_id}/generate/bulk
  → Queues up to `count` (1-10) pending keywords, optionally limited to
    `keywordIds`, and returns { queued, jobs, message }.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from backend.deps import get_control
from stackserp.control import ControlError, ControlSurface
from stackserp.schemas import (
    BulkGenerateRequest,
    BulkGenerateResponse,
    GenerateRequest,
    GenerateResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/websites/{website_id}/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Queue article generation (async)",
    description=(
        "Creates a generation job and returns immediately. Poll GET /api/jobs?websiteId=... "
        "for progress. 400 when no keyword is pending, 409 when the keyword already has a job in flight."
    ),
)
def generate_article(
    website_id: str,
    request: GenerateRequest,
    control: ControlSurface = Depends(get_control),
):
    try:
        job, keyword = control.generate(website_id, request.keyword_id, request.to_options())
    except ControlError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return GenerateResponse(job_id=job.job_id, keyword=keyword.keyword)


@router.post(
    "/websites/{website_id}/generate/bulk",
    response_model=BulkGenerateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Queue generation for several pending keywords",
    description=(
        "Queues one job per pending keyword, highest priority first, up to count (1-10). "
        "Keywords with a job already in flight are skipped. 400 when nothing could be queued."
    ),
)
def generate_bulk(
    website_id: str,
    request: BulkGenerateRequest,
    control: ControlSurface = Depends(get_control),
):
    try:
        queued = control.generate_bulk(
            website_id, request.keyword_ids, request.count, request.to_options()
        )
    except ControlError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return BulkGenerateResponse(
        queued=len(queued),
        jobs=[GenerateResponse(job_id=job.job_id, keyword=kw.keyword) for job, kw in queued],
        message=f"{len(queued)} posts queued for generation",
    )
