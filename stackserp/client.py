"""
Polling client for the jobs API and a local job cache.

JobCache mirrors server job snapshots keyed by job id. ``reconcile`` merges a
fresh ``GET /api/jobs`` listing into it without ever moving a job backwards:
a finished job stays finished and progress never drops for the same job.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

import httpx

from stackserp.schemas import JobView

logger = logging.getLogger(__name__)

TERMINAL = ("completed", "failed", "cancelled")


class JobCache:
    def __init__(self) -> None:
        self._jobs: dict[str, JobView] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def get(self, job_id: str) -> JobView | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[JobView]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    @property
    def has_active(self) -> bool:
        """True while any cached job is queued or processing (keep polling)."""
        return any(j.is_active for j in self._jobs.values())

    def reconcile(self, snapshots: Iterable[JobView | dict[str, Any]], prune: bool = False) -> list[str]:
        """Merge server snapshots; return the ids of jobs that changed.

        Stale snapshots are ignored: older ``updatedAt``, a non-terminal status
        for a job already seen terminal, or lower progress while processing.
        With ``prune`` set, cached jobs missing from the listing are dropped.
        """
        changed: list[str] = []
        seen: set[str] = set()
        for raw in snapshots:
            snap = raw if isinstance(raw, JobView) else JobView.model_validate(raw)
            seen.add(snap.id)
            cached = self._jobs.get(snap.id)
            if cached is not None and not self._is_newer(snap, cached):
                continue
            if cached is None or cached != snap:
                self._jobs[snap.id] = snap
                changed.append(snap.id)
        if prune:
            for job_id in [j for j in self._jobs if j not in seen]:
                del self._jobs[job_id]
                changed.append(job_id)
        return changed

    @staticmethod
    def _is_newer(snap: JobView, cached: JobView) -> bool:
        if snap.updated_at < cached.updated_at:
            return False
        if cached.status in TERMINAL and snap.status not in TERMINAL:
            return False
        if snap.status == cached.status == "processing" and snap.progress < cached.progress:
            return False
        return True


class JobsClient:
    """Thin httpx client for the jobs API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "JobsClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def generate(self, website_id: str, **options: Any) -> dict[str, Any]:
        response = self._client.post(f"/api/websites/{website_id}/generate", json=options)
        response.raise_for_status()
        return response.json()

    def list_jobs(self, website_id: str) -> list[JobView]:
        response = self._client.get("/api/jobs", params={"websiteId": website_id})
        response.raise_for_status()
        return [JobView.model_validate(item) for item in response.json()]

    def get_job(self, job_id: str) -> JobView:
        response = self._client.get(f"/api/jobs/{job_id}")
        response.raise_for_status()
        return JobView.model_validate(response.json())

    def action(self, action: str, job_id: str) -> dict[str, Any]:
        response = self._client.post("/api/jobs", json={"action": action, "jobId": job_id})
        response.raise_for_status()
        return response.json()

    def retry(self, job_id: str) -> dict[str, Any]:
        return self.action("retry", job_id)

    def cancel(self, job_id: str) -> dict[str, Any]:
        return self.action("cancel", job_id)

    def watch(
        self,
        website_id: str,
        cache: JobCache | None = None,
        interval: float = 3.0,
        on_change: Callable[[JobView], None] | None = None,
        max_polls: int | None = None,
    ) -> JobCache:
        """Poll until no job of the website is queued or processing."""
        cache = cache or JobCache()
        polls = 0
        while True:
            try:
                changed = cache.reconcile(self.list_jobs(website_id))
            except httpx.HTTPError as e:
                logger.warning("Polling jobs failed: %s", e)
                changed = []
            if on_change:
                for job_id in changed:
                    job = cache.get(job_id)
                    if job is not None:
                        on_change(job)
            polls += 1
            if not cache.has_active or (max_polls is not None and polls >= max_polls):
                return cache
            time.sleep(interval)
