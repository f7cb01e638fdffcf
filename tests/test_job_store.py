"""Tests for the file-backed stores: claiming, transitions, retry lineage, stuck recovery, shared data dirs."""

import threading
from datetime import timedelta

import pytest

from stackserp.jobs.models import (
    STAGES,
    GenerationJob,
    JobInput,
    JobStatus,
    Stage,
    next_stage,
    progress_for_stage,
    utcnow,
)
from stackserp.jobs.store import MAX_ERROR_CHARS, STUCK_JOB_MESSAGE, DuplicateJobError, FileJobStore
from stackserp.keywords.store import FileKeywordStore


@pytest.fixture
def store(tmp_path):
    return FileJobStore(tmp_path)


def _input(keyword="invoice templates", **flags):
    return JobInput(keyword=keyword, **flags)


class TestStageOrder:

    def test_seven_stages_in_fixed_order(self):
        assert [s.value for s in STAGES] == [
            "research", "outline", "draft", "tone", "seo", "metadata", "image",
        ]

    def test_progress_is_floor_of_stage_share(self):
        assert [progress_for_stage(s) for s in STAGES] == [0, 14, 28, 42, 57, 71, 85]

    def test_next_stage(self):
        assert next_stage(Stage.RESEARCH) == Stage.OUTLINE
        assert next_stage(Stage.IMAGE) is None


class TestEnqueueAndClaim:

    def test_enqueue_creates_queued_job(self, store):
        job = store.enqueue("site", "kw1", _input())
        assert job.status == JobStatus.QUEUED
        assert job.current_stage is None
        assert job.progress == 0
        assert store.get(job.job_id).input.keyword == "invoice templates"

    def test_enqueue_rejects_second_in_flight_job_for_keyword(self, store):
        first = store.enqueue("site", "kw1", _input())
        with pytest.raises(DuplicateJobError) as exc:
            store.enqueue("site", "kw1", _input())
        assert exc.value.existing_job_id == first.job_id

    def test_same_keyword_id_on_other_website_is_independent(self, store):
        store.enqueue("site-a", "kw1", _input())
        store.enqueue("site-b", "kw1", _input())

    def test_claim_takes_oldest_and_sets_first_stage(self, store):
        first = store.enqueue("site", "kw1", _input("a"))
        store.enqueue("site", "kw2", _input("b"))
        claimed = store.claim_next()
        assert claimed.job_id == first.job_id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.current_stage == Stage.RESEARCH
        assert claimed.started_at is not None

    def test_claim_on_empty_queue(self, store):
        assert store.claim_next() is None

    def test_concurrent_claims_are_exclusive(self, store):
        for i in range(10):
            store.enqueue("site", f"kw{i}", _input(f"k{i}"))
        claimed = []
        lock = threading.Lock()

        def worker():
            while True:
                job = store.claim_next()
                if job is None:
                    return
                with lock:
                    claimed.append(job.job_id)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(claimed) == 10
        assert len(set(claimed)) == 10


class TestSharedDataDir:
    """Two store instances over one directory, as the API and a standalone worker run."""

    def test_claims_are_exclusive_across_instances(self, tmp_path):
        api_store, worker_store = FileJobStore(tmp_path), FileJobStore(tmp_path)
        for round_no in range(15):
            api_store.enqueue("site", f"kw{round_no}", _input(f"k{round_no}"))
            barrier = threading.Barrier(2)
            claimed, errors = [], []

            def claim(s):
                try:
                    barrier.wait()
                    job = s.claim_next()
                    if job is not None:
                        claimed.append(job.job_id)
                except Exception as e:  # surfaced by the assertion below
                    errors.append(e)

            threads = [threading.Thread(target=claim, args=(s,)) for s in (api_store, worker_store)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert errors == []
            assert len(claimed) == 1
        assert all(j.status == JobStatus.PROCESSING for j in api_store.list_by_website("site"))

    def test_cancel_flag_survives_progress_from_other_instance(self, tmp_path):
        api_store, worker_store = FileJobStore(tmp_path), FileJobStore(tmp_path)
        job = api_store.enqueue("site", "kw", _input())
        worker_store.claim_next()
        api_store.cancel(job.job_id)
        assert worker_store.record_progress(job.job_id, Stage.OUTLINE, 14)
        assert api_store.get(job.job_id).cancel_requested is True

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileJobStore(tmp_path)
        job = store.enqueue("site", "kw", _input())
        store.claim_next()
        store.record_progress(job.job_id, Stage.OUTLINE, 14)
        assert list((tmp_path / "jobs").glob("*.tmp")) == []
        assert list((tmp_path / "jobs").glob(".*.tmp")) == []

    def test_keyword_writes_from_two_instances_are_not_lost(self, tmp_path):
        stores = [FileKeywordStore(tmp_path), FileKeywordStore(tmp_path)]
        barrier = threading.Barrier(2)

        def add_many(s, prefix):
            barrier.wait()
            for i in range(20):
                s.add("site", f"{prefix} keyword {i}")

        threads = [threading.Thread(target=add_many, args=(s, p)) for s, p in zip(stores, "ab")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(FileKeywordStore(tmp_path).list_by_website("site")) == 40


class TestTransitions:

    def test_record_progress_never_regresses(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        assert store.record_progress(job.job_id, Stage.DRAFT, 28)
        assert not store.record_progress(job.job_id, Stage.OUTLINE, 14)
        assert store.get(job.job_id).progress == 28

    def test_complete_sets_article_and_full_progress(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        assert store.complete(job.job_id, "art_1")
        done = store.get(job.job_id)
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.article_id == "art_1"
        assert done.finished_at is not None

    def test_terminal_job_is_immutable(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        store.complete(job.job_id, "art_1")
        assert not store.fail(job.job_id, Stage.DRAFT, "late error")
        assert not store.record_progress(job.job_id, Stage.IMAGE, 85)
        assert store.cancel(job.job_id) is None
        assert store.get(job.job_id).status == JobStatus.COMPLETED

    def test_fail_records_stage_and_clips_message(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        assert store.fail(job.job_id, Stage.DRAFT, "x" * 2000, kind="transient")
        failed = store.get(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.failed_stage == Stage.DRAFT
        assert failed.error_kind == "transient"
        assert len(failed.error_message) == MAX_ERROR_CHARS

    def test_cancel_queued_is_immediate(self, store):
        job = store.enqueue("site", "kw1", _input())
        cancelled = store.cancel(job.job_id)
        assert cancelled.status == JobStatus.CANCELLED
        assert store.claim_next() is None

    def test_cancel_processing_sets_flag_only(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        flagged = store.cancel(job.job_id)
        assert flagged.status == JobStatus.PROCESSING
        assert flagged.cancel_requested
        assert store.mark_cancelled(job.job_id)
        assert store.get(job.job_id).status == JobStatus.CANCELLED

    def test_cancelled_keyword_can_be_enqueued_again(self, store):
        job = store.enqueue("site", "kw1", _input())
        store.cancel(job.job_id)
        again = store.enqueue("site", "kw1", _input())
        assert again.job_id != job.job_id


class TestRetry:

    def _failed(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        store.record_progress(job.job_id, Stage.DRAFT, 28)
        store.fail(job.job_id, Stage.DRAFT, "timeout")
        return job

    def test_retry_creates_fresh_lineage_job(self, store):
        original = self._failed(store)
        retried = store.retry(original.job_id)
        assert retried.status == JobStatus.QUEUED
        assert retried.current_stage is None
        assert retried.progress == 0
        assert retried.retry_of == original.job_id
        assert retried.input == original.input

        old = store.get(original.job_id)
        assert old.status == JobStatus.FAILED
        assert old.failed_stage == Stage.DRAFT
        assert old.retried_by == retried.job_id

    def test_retry_twice_is_rejected(self, store):
        original = self._failed(store)
        store.retry(original.job_id)
        assert store.retry(original.job_id) is None

    def test_retry_of_non_failed_job_is_rejected(self, store):
        job = store.enqueue("site", "kw1", _input())
        assert store.retry(job.job_id) is None

    def test_retry_blocked_when_keyword_back_in_flight(self, store):
        original = self._failed(store)
        store.enqueue("site", "kw1", _input())
        with pytest.raises(DuplicateJobError):
            store.retry(original.job_id)


class TestListingAndRecovery:

    def test_list_by_website_newest_first(self, store):
        a = store.enqueue("site", "kw1", _input("a"))
        b = store.enqueue("site", "kw2", _input("b"))
        store.enqueue("other", "kw3", _input("c"))
        listed = store.list_by_website("site")
        assert [j.job_id for j in listed] == [b.job_id, a.job_id]

    def test_recover_stuck_fails_stale_processing_jobs(self, store):
        store.enqueue("site", "kw1", _input())
        job = store.claim_next()
        store.record_progress(job.job_id, Stage.TONE, 42)

        assert store.recover_stuck(utcnow() - timedelta(minutes=10)) == []

        recovered = store.recover_stuck(utcnow() + timedelta(seconds=1))
        assert [j.job_id for j in recovered] == [job.job_id]
        failed = store.get(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert failed.failed_stage == Stage.TONE
        assert failed.error_message == STUCK_JOB_MESSAGE

    def test_job_model_roundtrips_through_json(self, store):
        job = store.enqueue("site", None, _input(include_images=False))
        loaded = store.get(job.job_id)
        assert isinstance(loaded, GenerationJob)
        assert loaded.keyword_id is None
        assert loaded.input.include_images is False
