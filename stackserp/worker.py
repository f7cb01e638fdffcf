"""
Worker loop: polls the job store, claims queued jobs and runs them one at a time.

Run as a standalone process with ``stackserp worker``, or embedded in the API
process (STACKSERP_EMBEDDED_WORKER=true).
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import timedelta

from stackserp.jobs.models import GenerationJob, utcnow
from stackserp.jobs.store import JobStore
from stackserp.keywords.store import KeywordStatus, KeywordStore
from stackserp.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class WorkerLoop:
    """Serial worker: at most one job in flight per process."""

    def __init__(
        self,
        jobs: JobStore,
        orchestrator: PipelineOrchestrator,
        keywords: KeywordStore | None = None,
        poll_interval: float = 5.0,
        stuck_after: float = 600.0,
    ):
        self.jobs = jobs
        self.orchestrator = orchestrator
        self.keywords = keywords
        self.poll_interval = poll_interval
        self.stuck_after = stuck_after
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self._busy = threading.Lock()
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Stop after the current job; wakes the loop if it is sleeping."""
        self._stop.set()

    def recover_stuck(self) -> list[GenerationJob]:
        older_than = utcnow() - timedelta(seconds=self.stuck_after)
        recovered = self.jobs.recover_stuck(older_than)
        for job in recovered:
            logger.warning("[%s] Recovered stuck job %s (stage %s)", self.worker_id, job.job_id, job.current_stage)
            if job.keyword_id and self.keywords is not None:
                self.keywords.set_status(job.keyword_id, KeywordStatus.PENDING, error=job.error_message)
        return recovered

    def run_once(self) -> GenerationJob | None:
        """Claim and run a single job. Returns the finished job, or None if the queue was empty
        or another job is already running in this process."""
        if not self._busy.acquire(blocking=False):
            return None
        try:
            job = self.jobs.claim_next()
            if job is None:
                return None
            logger.info("[%s] Claimed job %s (keyword=%r)", self.worker_id, job.job_id, job.input.keyword)
            finished = self.orchestrator.run(job) or job
            logger.info("[%s] Job %s finished: %s", self.worker_id, job.job_id, finished.status.value)
            return finished
        finally:
            self._busy.release()

    def tick(self) -> int:
        """One poll: recover stuck jobs, then drain the queue. Returns jobs processed.

        Store errors are logged and swallowed so the next tick can retry.
        """
        processed = 0
        try:
            self.recover_stuck()
            while not self.stopped:
                finished = self.run_once()
                if finished is None:
                    break
                processed += 1
        except Exception:
            logger.exception("[%s] Poll error, retrying next tick", self.worker_id)
        return processed

    def run_forever(self) -> None:
        logger.info("[%s] Worker started, polling every %ss", self.worker_id, self.poll_interval)
        while not self.stopped:
            self.tick()
            self._stop.wait(self.poll_interval)
        logger.info("[%s] Worker stopped", self.worker_id)

    def start_in_thread(self) -> threading.Thread:
        thread = threading.Thread(target=self.run_forever, name=self.worker_id, daemon=True)
        thread.start()
        return thread
