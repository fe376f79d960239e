"""Admission queue of OCR jobs.

A job goes through the following states:

    queued --start--> processing --complete--> completed
                      processing --fail------> failed
    queued or processing --cancel------------> cancelled

Completed, failed and cancelled jobs are terminal and never change again.
A transition that is not allowed returns None instead of raising, so
callers racing against job completion can ignore the outcome.

Only a completed job commits OCR usage to the quota tracker: pages of a
failed or cancelled job do not count against the caller.
"""

import math
from datetime import datetime
from enum import Enum
from threading import RLock
from typing import Optional

from pydantic import BaseModel, Field, NonNegativeInt

import constants
import metrics
from log import get_logger
from models.config import OcrQuotaConfiguration
from quota.clock import Clock, utc_now
from quota.hit_log import HitLog
from quota.quota_tracker import QuotaTracker
from quota.results import AdmissionResult, DenialKind, OcrUsageStats, QueueStats
from utils.suid import prefixed_id

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Lifecycle state of a job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class FileInfo(BaseModel):
    """File submitted for OCR."""

    name: str
    size: NonNegativeInt
    content_type: str


class Job(BaseModel):
    """OCR job tracked by the queue."""

    id: str
    caller_id: str
    session_id: str
    filename: str
    file_size: int
    content_type: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    estimated_units: int
    actual_units: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a final state."""
        return self.status in TERMINAL_STATUSES


def estimate_page_count(file_size: int, content_type: str) -> int:
    """Estimate number of pages of a file before it is processed.

    Images always have one page; PDF documents are estimated from their size.
    """
    if content_type != constants.PDF_CONTENT_TYPE:
        return 1
    return max(1, math.ceil(file_size / constants.PDF_BYTES_PER_PAGE_ESTIMATE))


def format_file_size(size: int) -> str:
    """Format number of bytes for humans."""
    if size < 1024:
        return f"{size} B"
    if size < constants.BYTES_PER_MEGABYTE:
        return f"{size / 1024:.1f} KB"
    return f"{size / constants.BYTES_PER_MEGABYTE:.1f} MB"


class JobQueue:
    """Bounded pool of OCR jobs."""

    def __init__(
        self,
        quota_tracker: QuotaTracker,
        configuration: OcrQuotaConfiguration,
        hit_log: HitLog,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize empty job queue."""
        self._quota_tracker = quota_tracker
        self._configuration = configuration
        self._hit_log = hit_log
        self._clock = clock
        self._lock = RLock()
        self._jobs: dict[str, Job] = {}

    def refresh_config(self, configuration: OcrQuotaConfiguration) -> None:
        """Replace OCR ceilings; jobs are kept."""
        with self._lock:
            self._configuration = configuration
        logger.info("Job queue configuration refreshed")

    def validate_file(
        self,
        file: FileInfo,
        bypass_key: Optional[str] = None,
        caller_id: str = constants.ANONYMOUS_CALLER_ID,
        session_id: str = "",
    ) -> AdmissionResult:
        """Check size and content type of a file before a job is created."""
        if self._quota_tracker.is_ocr_bypass(bypass_key):
            return AdmissionResult.overridden()

        configuration = self._configuration
        result: Optional[AdmissionResult] = None
        if file.size > configuration.max_file_size_bytes:
            result = AdmissionResult.denied(
                DenialKind.FILE_SIZE,
                limit=configuration.max_file_size_bytes,
                used=file.size,
                message=(
                    f"File size ({format_file_size(file.size)}) exceeds the "
                    f"{configuration.max_file_size_mb} MB limit."
                ),
            )
        elif file.content_type not in configuration.supported_content_types:
            result = AdmissionResult.denied(
                DenialKind.FILE_TYPE,
                limit=0,
                used=0,
                message=(
                    f"File type {file.content_type} is not supported. Supported "
                    f"types: {', '.join(configuration.supported_content_types)}."
                ),
            )

        if result is None:
            return AdmissionResult(
                allowed=True,
                limit=configuration.max_file_size_bytes,
                used=file.size,
                remaining=configuration.max_file_size_bytes - file.size,
            )
        self._hit_log.log_denial(
            caller_id, session_id, result, metadata={"filename": file.name}
        )
        return result

    def check_limits(
        self,
        caller_id: str,
        session_id: str,
        estimated_pages: int,
        bypass_key: Optional[str] = None,
    ) -> AdmissionResult:
        """Decide whether a new job can be admitted.

        Quota ceilings are evaluated first; the concurrency ceiling is the
        last check, so a caller over quota is told about the quota.
        """
        with self._lock:
            result = self._quota_tracker.check_ocr_limits(
                caller_id, session_id, estimated_pages, bypass_key
            )
            if not result.allowed or result.is_override:
                return result

            maximum = self._configuration.max_concurrent_jobs
            active = self._active_count()

        if maximum > 0 and active >= maximum:
            result = AdmissionResult.denied(
                DenialKind.QUEUE_FULL,
                limit=maximum,
                used=active,
                message=(
                    f"Processing queue is full ({active}/{maximum}). "
                    "Please wait for current jobs to complete."
                ),
            )
            self._hit_log.log_denial(caller_id, session_id, result)
        return result

    def create_job(
        self,
        caller_id: str,
        session_id: str,
        file: FileInfo,
        estimated_pages: Optional[int] = None,
    ) -> Job:
        """Create a queued job without any admission check."""
        if estimated_pages is None:
            estimated_pages = estimate_page_count(file.size, file.content_type)
        with self._lock:
            job = Job(
                id=prefixed_id("ocr"),
                caller_id=caller_id,
                session_id=session_id,
                filename=file.name,
                file_size=file.size,
                content_type=file.content_type,
                estimated_units=estimated_pages,
                created_at=self._clock(),
            )
            self._jobs[job.id] = job
            self._update_active_gauge()
        logger.info("OCR job %s queued for caller %s", job.id, caller_id)
        return job.model_copy()

    def admit(
        self,
        caller_id: str,
        session_id: str,
        file: FileInfo,
        estimated_pages: Optional[int] = None,
        bypass_key: Optional[str] = None,
    ) -> tuple[AdmissionResult, Optional[Job]]:
        """Check limits and create a job in one step.

        The concurrency ceiling can not be overshot, because no other job
        can be created between the check and the creation.
        """
        if estimated_pages is None:
            estimated_pages = estimate_page_count(file.size, file.content_type)
        with self._lock:
            result = self.check_limits(
                caller_id, session_id, estimated_pages, bypass_key
            )
            if not result.allowed:
                return result, None
            job = self.create_job(caller_id, session_id, file, estimated_pages)
        return result, job

    def start_job(self, job_id: str) -> Optional[Job]:
        """Move a queued job to processing."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.QUEUED:
                return None
            job.status = JobStatus.PROCESSING
            job.started_at = self._clock()
            return job.model_copy()

    def update_progress(self, job_id: str, progress: int) -> Optional[Job]:
        """Set progress of a job that has not finished yet."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            job.progress = min(100, max(0, progress))
            return job.model_copy()

    def complete_job(self, job_id: str, actual_units: int) -> Optional[Job]:
        """Finish a processing job and commit its pages to the quota tracker."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return None
            # the job stays processing when the pages are rejected
            self._quota_tracker.track_ocr_usage(
                job.caller_id, job.session_id, actual_units
            )
            job.status = JobStatus.COMPLETED
            job.actual_units = actual_units
            job.progress = 100
            job.completed_at = self._clock()
            self._update_active_gauge()
            completed = job.model_copy()
        metrics.ocr_jobs_finished_total.labels(JobStatus.COMPLETED.value).inc()
        logger.info("OCR job %s completed with %d pages", job_id, actual_units)
        return completed

    def fail_job(self, job_id: str, error: str) -> Optional[Job]:
        """Mark a processing job as failed; no usage is committed."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return None
            job.status = JobStatus.FAILED
            job.error = error
            job.completed_at = self._clock()
            self._update_active_gauge()
            failed = job.model_copy()
        metrics.ocr_jobs_finished_total.labels(JobStatus.FAILED.value).inc()
        logger.warning("OCR job %s failed: %s", job_id, error)
        return failed

    def cancel_job(self, job_id: str) -> Optional[Job]:
        """Cancel a job that has not finished; no usage is committed."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            job.status = JobStatus.CANCELLED
            job.completed_at = self._clock()
            self._update_active_gauge()
            cancelled = job.model_copy()
        metrics.ocr_jobs_finished_total.labels(JobStatus.CANCELLED.value).inc()
        logger.info("OCR job %s cancelled", job_id)
        return cancelled

    def get_job(self, job_id: str) -> Optional[Job]:
        """Return a snapshot of the job."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job is not None else None

    def get_session_jobs(self, session_id: str) -> list[Job]:
        """Return jobs of the session, newest first."""
        with self._lock:
            jobs = [
                job.model_copy()
                for job in self._jobs.values()
                if job.session_id == session_id
            ]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def active_job_count(self) -> int:
        """Return number of queued and processing jobs."""
        with self._lock:
            return self._active_count()

    def pending_job_count(self) -> int:
        """Return number of queued jobs."""
        with self._lock:
            return sum(
                1 for job in self._jobs.values() if job.status == JobStatus.QUEUED
            )

    def get_usage_stats(self, caller_id: str, session_id: str) -> OcrUsageStats:
        """Return OCR usage of the caller together with the queue state."""
        stats = self._quota_tracker.get_ocr_usage_stats(caller_id, session_id)
        stats.queue = QueueStats(
            active_jobs=self.active_job_count(),
            pending_jobs=self.pending_job_count(),
            max_concurrent_jobs=self._configuration.max_concurrent_jobs,
        )
        return stats

    def reset_session(self, session_id: str) -> int:
        """Reset session counters and cancel its queued jobs.

        Returns number of cancelled jobs.
        """
        self._quota_tracker.reset_session(session_id)
        with self._lock:
            queued = [
                job.id
                for job in self._jobs.values()
                if job.session_id == session_id and job.status == JobStatus.QUEUED
            ]
            for job_id in queued:
                self.cancel_job(job_id)
        return len(queued)

    def cleanup(self) -> int:
        """Drop terminal jobs finished more than an hour ago."""
        with self._lock:
            cutoff = self._clock() - constants.JOB_RETENTION
            finished = [
                job.id
                for job in self._jobs.values()
                if job.is_terminal
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]
            for job_id in finished:
                del self._jobs[job_id]
        if finished:
            logger.info("Removed %d finished OCR jobs", len(finished))
        return len(finished)

    def _active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status in ACTIVE_STATUSES)

    def _update_active_gauge(self) -> None:
        metrics.ocr_active_jobs.set(self._active_count())
