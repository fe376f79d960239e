"""Models for REST API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from models.config import (
    FeatureFlagsConfiguration,
    OcrQuotaConfiguration,
    Tier,
    TierLimitsConfiguration,
    TokenQuotaConfiguration,
)
from quota.hit_log import HitLogEntry, HitLogStats
from quota.job_queue import Job, JobStatus
from quota.results import (
    AdmissionResult,
    DenialKind,
    OcrUsageStats,
    RateLimitResult,
    RateLimitStats,
    UsageStats,
)


class InfoResponse(BaseModel):
    """Model representing a response to an info request.

    Attributes:
        name: Service name.
        service_version: Service version.
        features: Feature flags announced to clients.

    Example:
        ```python
        info_response = InfoResponse(
            name="Usage Gate",
            service_version="1.0.0",
            features=FeatureFlagsConfiguration(),
        )
        ```
    """

    name: str = Field(
        description="Service name",
        examples=["Usage Gate"],
    )

    service_version: str = Field(
        description="Service version",
        examples=["0.1.0", "0.2.0", "1.0.0"],
    )

    features: FeatureFlagsConfiguration = Field(
        description="Feature flags announced to clients, not enforced by the service",
    )


class ReadinessResponse(BaseModel):
    """Model representing response to a readiness request.

    Attributes:
        ready: If service is ready.
        reason: The reason for the readiness.
    """

    ready: bool = Field(
        ...,
        description="Flag indicating if service is ready",
        examples=[True, False],
    )

    reason: str = Field(
        ...,
        description="The reason for the readiness",
        examples=["Service is ready", "Admission components are not initialized"],
    )


class LivenessResponse(BaseModel):
    """Model representing a response to a liveness request.

    Attributes:
        alive: If app is alive.

    Example:
        ```python
        liveness_response = LivenessResponse(alive=True)
        ```
    """

    alive: bool = Field(
        ...,
        description="Flag indicating that the app is alive",
        examples=[True, False],
    )

    # provides examples for /docs endpoint
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "alive": True,
                }
            ]
        }
    }


class AdmissionResponse(BaseModel):
    """Model representing an admitted chat completion.

    Attributes:
        caller_id: Identifier of the caller.
        session_id: Identifier of the session.
        tier: Tier the caller was resolved to.
        estimated_tokens: Tokens used for the admission decision.
        is_override: Whether the admin override skipped quota ceilings.
        quota: Outcome of the quota check.
        rate_limit: Outcome of the rate check.
    """

    caller_id: str = Field(description="Identifier of the caller", examples=["ip:10.0.0.1"])
    session_id: str = Field(description="Identifier of the session")
    tier: Tier = Field(description="Tier the caller was resolved to")
    estimated_tokens: int = Field(
        description="Tokens used for the admission decision", examples=[2104]
    )
    is_override: bool = Field(
        False, description="Whether the admin override skipped quota ceilings"
    )
    quota: AdmissionResult
    rate_limit: RateLimitResult


class UsageCommitResponse(BaseModel):
    """Model representing committed usage of a chat completion."""

    caller_id: str
    session_id: str
    tokens_committed: int
    usage: UsageStats


class UsageResponse(BaseModel):
    """Model representing token and request usage of a caller.

    Attributes:
        caller_id: Identifier of the caller.
        session_id: Identifier of the session.
        tier: Tier the caller was resolved to.
        tokens: Token usage in all horizons.
        rate_limit: Request counts in all windows.
    """

    caller_id: str
    session_id: str
    tier: Tier
    tokens: UsageStats
    rate_limit: RateLimitStats


class SessionResetResponse(BaseModel):
    """Model representing a session reset.

    Attributes:
        session_id: Identifier of the reset session.
        success: Whether the reset was performed.
        cancelled_jobs: Number of queued OCR jobs cancelled by the reset.
    """

    session_id: str
    success: bool = True
    cancelled_jobs: int = 0


class FileValidationResponse(BaseModel):
    """Model representing an accepted file.

    Attributes:
        valid: Always true, rejected files are reported as errors.
        filename: Name of the file.
        file_size: Human readable file size.
        estimated_pages: Estimated number of pages of the file.
        is_override: Whether the OCR bypass skipped validation.
    """

    valid: bool = True
    filename: str
    file_size: str = Field(examples=["512.0 KB"])
    estimated_pages: int
    is_override: bool = False


class JobResponse(BaseModel):
    """Model representing an OCR job as seen by clients.

    Attributes:
        id: Job identifier.
        status: Current state of the job.
        progress: Progress in percents.
        filename: Name of the processed file.
        estimated_units: Estimated number of pages.
        actual_units: Processed pages, set when the job completes.
        error: Failure reason, set when the job fails.
    """

    id: str = Field(examples=["ocr_b7d4ad6e-1f38-4f39-b2de-5f4a0cbf5d3e"])
    status: JobStatus
    progress: int
    filename: str
    estimated_units: int
    actual_units: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        """Construct response from job tracked by the queue."""
        return cls(
            **job.model_dump(
                exclude={"caller_id", "session_id", "file_size", "content_type"}
            )
        )


class JobListResponse(BaseModel):
    """Model representing OCR jobs of a session."""

    session_id: str
    jobs: list[JobResponse]
    active_jobs: int
    max_concurrent_jobs: int


class OcrUsageResponse(BaseModel):
    """Model representing OCR usage of a caller."""

    caller_id: str
    session_id: str
    usage: OcrUsageStats


class HitLogAnalytics(BaseModel):
    """Model representing analytics computed from the hit log."""

    callers_approaching_limits: list[str]
    most_hit_kind: Optional[DenialKind] = None
    hourly_distribution: list[int]


class AdminLimitsResponse(BaseModel):
    """Model representing ceilings in effect and the state of the service.

    Attributes:
        tokens: Token ceilings.
        ocr: OCR ceilings.
        rate_limits: Request rate ceilings per tier.
        features: Feature flags.
        admin_override_enabled: Whether the admin override can be used.
        ocr_bypass_enabled: Whether the OCR bypass can be used.
        hits: Aggregated hit log.
        analytics: Analytics computed from the hit log.
    """

    tokens: TokenQuotaConfiguration
    ocr: OcrQuotaConfiguration
    rate_limits: dict[str, TierLimitsConfiguration]
    features: FeatureFlagsConfiguration
    admin_override_enabled: bool
    ocr_bypass_enabled: bool
    tracked_sessions: int
    tracked_rate_records: int
    active_jobs: int
    hits: HitLogStats
    analytics: HitLogAnalytics


class HitLogResponse(BaseModel):
    """Model representing selected hit log entries."""

    total_hits: int
    hits_today: int
    entries: list[HitLogEntry]


class StatusResponse(BaseModel):
    """Model representing result of an administrative action."""

    success: bool
    message: str


class DetailModel(BaseModel):
    """Nested detail model for error responses."""

    response: str = Field(..., description="Short summary of the error")
    cause: str = Field(..., description="Detailed explanation of what caused the error")


class AbstractErrorResponse(BaseModel):
    """Base class for all error responses.

    Contains a nested `detail` field.
    """

    detail: DetailModel

    def dump_detail(self) -> dict:
        """Return dict in FastAPI HTTPException format."""
        return self.detail.model_dump()


class NotFoundResponse(AbstractErrorResponse):
    """404 Not Found - Resource does not exist."""

    def __init__(self, resource: str, resource_id: str):
        """Initialize a NotFoundResponse when a resource cannot be located."""
        super().__init__(
            detail=DetailModel(
                response=f"{resource.title()} not found",
                cause=f"{resource.title()} with ID {resource_id} does not exist.",
            )
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "detail": {
                        "response": "Job not found",
                        "cause": "Job with ID ocr_123e4567-e89b-12d3-a456-426614174000 does not exist.",  # pylint: disable=line-too-long
                    }
                }
            ]
        }
    }


class ConflictResponse(AbstractErrorResponse):
    """409 Conflict - Transition is not allowed in the current state."""

    def __init__(self, resource_id: str, action: str, state: str):
        """Initialize a ConflictResponse for illegal job transitions."""
        super().__init__(
            detail=DetailModel(
                response="Invalid job transition",
                cause=f"Can not {action} job {resource_id} in state {state}.",
            )
        )


class ForbiddenResponse(AbstractErrorResponse):
    """403 Forbidden - Admin key is missing or invalid."""

    def __init__(self) -> None:
        """Initialize a ForbiddenResponse for administrative endpoints."""
        super().__init__(
            detail=DetailModel(
                response="Access denied",
                cause="A valid admin key is required to access this endpoint.",
            )
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "detail": {
                        "response": "Access denied",
                        "cause": "A valid admin key is required to access this endpoint.",
                    }
                }
            ]
        }
    }


class LimitExceededResponse(BaseModel):
    """429 Too Many Requests or 400 Bad Request - a limit has been hit.

    The same body is used for rate, quota, queue and file denials.
    """

    detail: dict[str, Any]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "detail": {
                        "response": "Daily limit of 100,000 tokens reached. Resets at midnight UTC.",  # pylint: disable=line-too-long
                        "cause": "TOKEN_LIMIT_EXCEEDED",
                        "denial_kind": "daily",
                        "limit": 100000,
                        "used": 98000,
                        "remaining": 2000,
                        "resets_at": "2025-03-15T00:00:00+00:00",
                    }
                },
                {
                    "detail": {
                        "response": "Rate limit exceeded: 10 requests per minute. Please wait.",
                        "cause": "RATE_LIMIT_EXCEEDED",
                        "denial_kind": "requests_per_minute",
                        "limit": 10,
                        "used": 10,
                        "remaining": 0,
                        "tier": "demo",
                        "retry_after": 42.5,
                    }
                },
            ]
        }
    }
