"""Unit tests for the OCR job admission queue."""

import pytest

from models.config import OcrQuotaConfiguration
from quota.hit_log import HitLog
from quota.job_queue import (
    FileInfo,
    JobQueue,
    JobStatus,
    estimate_page_count,
    format_file_size,
)
from quota.quota_tracker import QuotaTracker
from quota.results import DenialKind
from utils.suid import check_prefixed_id

PDF = "application/pdf"


@pytest.fixture(name="queue")
def queue_fixture(quota_tracker: QuotaTracker, hit_log: HitLog, clock) -> JobQueue:
    """Job queue with two concurrent slots."""
    return JobQueue(
        quota_tracker, OcrQuotaConfiguration(max_concurrent_jobs=2), hit_log, clock
    )


def pdf(size: int = 250_000, name: str = "contract.pdf") -> FileInfo:
    """Return description of a PDF file."""
    return FileInfo(name=name, size=size, content_type=PDF)


@pytest.mark.parametrize(
    "size,content_type,expected",
    [
        (0, PDF, 1),
        (1, PDF, 1),
        (100_000, PDF, 1),
        (100_001, PDF, 2),
        (512 * 1024, PDF, 6),
        (5_000_000, "image/png", 1),
    ],
)
def test_estimate_page_count(size: int, content_type: str, expected: int) -> None:
    """Test estimation of pages from file size."""
    assert estimate_page_count(size, content_type) == expected


def test_format_file_size() -> None:
    """Test human readable file sizes."""
    assert format_file_size(512) == "512 B"
    assert format_file_size(2048) == "2.0 KB"
    assert format_file_size(6 * 1024 * 1024) == "6.0 MB"


def test_validate_file(queue: JobQueue) -> None:
    """Test that a small PDF passes validation."""
    result = queue.validate_file(pdf())
    assert result.allowed is True
    assert result.limit == 5 * 1024 * 1024


def test_validate_file_too_large(queue: JobQueue, hit_log: HitLog) -> None:
    """Test rejection of a file over the size ceiling."""
    size = 6 * 1024 * 1024
    result = queue.validate_file(pdf(size), caller_id="user:alice", session_id="s1")
    assert result.allowed is False
    assert result.denial_kind == DenialKind.FILE_SIZE
    assert result.limit == 5 * 1024 * 1024
    assert result.used == size
    assert result.message == "File size (6.0 MB) exceeds the 5 MB limit."

    entry = hit_log.get_by_caller("user:alice")[0]
    assert entry.denial_kind == DenialKind.FILE_SIZE
    assert entry.metadata == {"filename": "contract.pdf"}


def test_validate_file_unsupported_type(queue: JobQueue) -> None:
    """Test rejection of a file of unsupported type."""
    result = queue.validate_file(
        FileInfo(name="notes.docx", size=10, content_type="application/msword")
    )
    assert result.allowed is False
    assert result.denial_kind == DenialKind.FILE_TYPE
    assert "application/msword is not supported" in (result.message or "")
    assert "application/pdf" in (result.message or "")


def test_validate_file_bypass(queue: JobQueue) -> None:
    """Test that the bypass key skips validation."""
    result = queue.validate_file(
        FileInfo(name="huge.bin", size=10**9, content_type="application/zip"),
        bypass_key="bypass-secret",
    )
    assert result.allowed is True
    assert result.is_override is True


def test_admit_creates_queued_job(queue: JobQueue, clock) -> None:
    """Test that admitted job is queued with estimated pages."""
    result, job = queue.admit("user:alice", "s1", pdf(250_000))
    assert result.allowed is True
    assert job is not None
    assert check_prefixed_id(job.id, "ocr")
    assert job.status == JobStatus.QUEUED
    assert job.progress == 0
    assert job.estimated_units == 3
    assert job.created_at == clock()
    assert job.filename == "contract.pdf"
    assert queue.active_job_count() == 1
    assert queue.pending_job_count() == 1


def test_admit_with_explicit_pages(queue: JobQueue) -> None:
    """Test that page count given by client is used."""
    _, job = queue.admit("user:alice", "s1", pdf(250_000), estimated_pages=7)
    assert job is not None
    assert job.estimated_units == 7


def test_admit_denied_by_quota(queue: JobQueue) -> None:
    """Test that quota ceilings are checked before the job is created."""
    result, job = queue.admit("user:alice", "s1", pdf(), estimated_pages=11)
    assert job is None
    assert result.denial_kind == DenialKind.PAGES_PER_DOCUMENT
    assert queue.active_job_count() == 0


def test_queue_full(queue: JobQueue, hit_log: HitLog) -> None:
    """Test the concurrency ceiling."""
    queue.admit("user:alice", "s1", pdf())
    queue.admit("user:bob", "s2", pdf())

    result, job = queue.admit("user:carol", "s3", pdf())
    assert job is None
    assert result.allowed is False
    assert result.denial_kind == DenialKind.QUEUE_FULL
    assert result.limit == 2
    assert result.used == 2
    assert result.message == (
        "Processing queue is full (2/2). Please wait for current jobs to complete."
    )
    assert hit_log.get_by_caller("user:carol")[0].denial_kind == DenialKind.QUEUE_FULL


def test_queue_slot_released_by_terminal_state(queue: JobQueue) -> None:
    """Test that finished jobs do not occupy slots."""
    _, first = queue.admit("user:alice", "s1", pdf())
    queue.admit("user:alice", "s1", pdf())
    assert first is not None
    queue.cancel_job(first.id)

    result, job = queue.admit("user:alice", "s1", pdf())
    assert result.allowed is True
    assert job is not None


def test_unlimited_concurrency(quota_tracker: QuotaTracker, hit_log: HitLog, clock) -> None:
    """Test that zero concurrency ceiling means no cap."""
    queue = JobQueue(
        quota_tracker, OcrQuotaConfiguration(max_concurrent_jobs=0), hit_log, clock
    )
    for i in range(5):
        _, job = queue.admit(f"caller-{i}", f"s{i}", pdf())
        assert job is not None
    assert queue.active_job_count() == 5


def test_job_lifecycle(queue: JobQueue, quota_tracker: QuotaTracker, clock) -> None:
    """Test the queued, processing and completed states."""
    _, job = queue.admit("user:alice", "s1", pdf(250_000))
    assert job is not None

    clock.advance(seconds=1)
    started = queue.start_job(job.id)
    assert started is not None
    assert started.status == JobStatus.PROCESSING
    assert started.started_at == clock()
    assert queue.pending_job_count() == 0
    assert queue.active_job_count() == 1

    progressed = queue.update_progress(job.id, 40)
    assert progressed is not None
    assert progressed.progress == 40

    # pages are not committed before completion
    assert quota_tracker.get_ocr_usage_stats("user:alice", "s1").daily_pages.used == 0

    clock.advance(seconds=5)
    completed = queue.complete_job(job.id, 2)
    assert completed is not None
    assert completed.status == JobStatus.COMPLETED
    assert completed.actual_units == 2
    assert completed.progress == 100
    assert completed.completed_at == clock()
    assert queue.active_job_count() == 0

    stats = quota_tracker.get_ocr_usage_stats("user:alice", "s1")
    assert stats.daily_pages.used == 2
    assert stats.session_documents.used == 1


def test_rejected_completion_keeps_job_processing(
    queue: JobQueue, quota_tracker: QuotaTracker
) -> None:
    """Test that job is left untouched when its pages are rejected."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None
    queue.start_job(job.id)
    queue.update_progress(job.id, 40)

    with pytest.raises(ValueError, match="can not be negative"):
        queue.complete_job(job.id, -1)

    current = queue.get_job(job.id)
    assert current is not None
    assert current.status == JobStatus.PROCESSING
    assert current.actual_units is None
    assert current.progress == 40
    assert current.completed_at is None
    assert queue.active_job_count() == 1
    assert quota_tracker.get_ocr_usage_stats("user:alice", "s1").daily_pages.used == 0

    # the job can still be completed properly
    completed = queue.complete_job(job.id, 3)
    assert completed is not None
    assert completed.status == JobStatus.COMPLETED


def test_progress_is_clamped(queue: JobQueue) -> None:
    """Test that progress stays between 0 and 100."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None
    assert queue.update_progress(job.id, 150).progress == 100
    assert queue.update_progress(job.id, -5).progress == 0


def test_failed_job_commits_nothing(queue: JobQueue, quota_tracker: QuotaTracker) -> None:
    """Test that failed job does not consume quota."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None
    queue.start_job(job.id)
    failed = queue.fail_job(job.id, "Unreadable scan")
    assert failed is not None
    assert failed.status == JobStatus.FAILED
    assert failed.error == "Unreadable scan"
    assert quota_tracker.get_ocr_usage_stats("user:alice", "s1").daily_pages.used == 0


def test_cancelled_job_commits_nothing(
    queue: JobQueue, quota_tracker: QuotaTracker
) -> None:
    """Test that processing job can be cancelled without consuming quota."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None
    queue.start_job(job.id)
    cancelled = queue.cancel_job(job.id)
    assert cancelled is not None
    assert cancelled.status == JobStatus.CANCELLED
    assert quota_tracker.get_ocr_usage_stats("user:alice", "s1").daily_pages.used == 0


def test_illegal_transitions(queue: JobQueue) -> None:
    """Test that transitions not allowed in the current state are refused."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None

    # queued job can not be completed nor failed
    assert queue.complete_job(job.id, 1) is None
    assert queue.fail_job(job.id, "error") is None

    queue.start_job(job.id)
    # processing job can not be started again
    assert queue.start_job(job.id) is None

    queue.complete_job(job.id, 1)
    # terminal states are final
    assert queue.cancel_job(job.id) is None
    assert queue.update_progress(job.id, 10) is None
    assert queue.complete_job(job.id, 1) is None
    assert queue.get_job(job.id).status == JobStatus.COMPLETED


def test_unknown_job(queue: JobQueue) -> None:
    """Test operations on job that does not exist."""
    assert queue.get_job("ocr_unknown") is None
    assert queue.start_job("ocr_unknown") is None
    assert queue.cancel_job("ocr_unknown") is None


def test_snapshots_are_detached(queue: JobQueue) -> None:
    """Test that returned jobs can not modify the queue."""
    _, job = queue.admit("user:alice", "s1", pdf())
    assert job is not None
    job.status = JobStatus.COMPLETED
    assert queue.get_job(job.id).status == JobStatus.QUEUED


def test_get_session_jobs(queue: JobQueue, clock) -> None:
    """Test that jobs of a session are listed newest first."""
    _, first = queue.admit("user:alice", "s1", pdf(name="a.pdf"))
    clock.advance(seconds=1)
    _, second = queue.admit("user:alice", "s1", pdf(name="b.pdf"))
    queue.cancel_job(second.id)
    clock.advance(seconds=1)
    queue.admit("user:alice", "s1", pdf(name="c.pdf"))
    queue.admit("user:bob", "s2", pdf(name="d.pdf"))

    jobs = queue.get_session_jobs("s1")
    assert [job.filename for job in jobs] == ["c.pdf", "b.pdf", "a.pdf"]
    assert first is not None


def test_usage_stats_include_queue(queue: JobQueue) -> None:
    """Test that OCR usage carries the queue state."""
    _, job = queue.admit("user:alice", "s1", pdf())
    queue.admit("user:alice", "s1", pdf())
    queue.start_job(job.id)

    stats = queue.get_usage_stats("user:alice", "s1")
    assert stats.queue is not None
    assert stats.queue.active_jobs == 2
    assert stats.queue.pending_jobs == 1
    assert stats.queue.max_concurrent_jobs == 2


def test_reset_session(queue: JobQueue, quota_tracker: QuotaTracker) -> None:
    """Test that session reset cancels only queued jobs of the session."""
    _, processing = queue.admit("user:alice", "s1", pdf())
    queue.start_job(processing.id)
    _, queued = queue.admit("user:alice", "s1", pdf())
    quota_tracker.track_ocr_usage("user:alice", "s1", 5)

    assert queue.reset_session("s1") == 1
    assert queue.get_job(queued.id).status == JobStatus.CANCELLED
    assert queue.get_job(processing.id).status == JobStatus.PROCESSING
    assert quota_tracker.get_ocr_usage_stats("user:alice", "s1").session_pages.used == 0


def test_cleanup(queue: JobQueue, clock) -> None:
    """Test that finished jobs are dropped after an hour."""
    _, finished = queue.admit("user:alice", "s1", pdf())
    _, waiting = queue.admit("user:alice", "s1", pdf())
    queue.cancel_job(finished.id)

    clock.advance(minutes=59)
    assert queue.cleanup() == 0

    clock.advance(minutes=2)
    assert queue.cleanup() == 1
    assert queue.get_job(finished.id) is None
    # unfinished jobs are kept regardless of age
    assert queue.get_job(waiting.id) is not None


def test_refresh_config(queue: JobQueue) -> None:
    """Test that new concurrency ceiling applies immediately."""
    queue.admit("user:alice", "s1", pdf())
    queue.refresh_config(OcrQuotaConfiguration(max_concurrent_jobs=1))
    result, job = queue.admit("user:alice", "s1", pdf())
    assert job is None
    assert result.denial_kind == DenialKind.QUEUE_FULL


def test_bypass_skips_queue_ceiling(queue: JobQueue) -> None:
    """Test that bypass key admits jobs even when the queue is full."""
    queue.admit("user:alice", "s1", pdf())
    queue.admit("user:alice", "s1", pdf())
    result, job = queue.admit(
        "user:alice", "s1", pdf(), estimated_pages=100, bypass_key="bypass-secret"
    )
    assert result.is_override is True
    assert job is not None
