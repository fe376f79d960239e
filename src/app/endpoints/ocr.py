"""Handlers for validation, admission and tracking of OCR jobs."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.dependencies import get_caller, get_gate
from models.requests import (
    FileValidationRequest,
    JobCreateRequest,
    JobUpdateRequest,
)
from models.responses import (
    ConflictResponse,
    FileValidationResponse,
    JobListResponse,
    JobResponse,
    LimitExceededResponse,
    NotFoundResponse,
    OcrUsageResponse,
)
from quota.gate import AdmissionGate
from quota.job_queue import Job, estimate_page_count, format_file_size
from utils.caller import CallerContext
from utils.quota import raise_for_denial

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(prefix="/ocr", tags=["ocr"])


validate_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "File can be submitted",
        "model": FileValidationResponse,
    },
    400: {
        "description": "File is too large or of unsupported type",
        "model": LimitExceededResponse,
    },
}

create_job_responses: dict[int | str, dict[str, Any]] = {
    201: {
        "description": "Job has been queued",
        "model": JobResponse,
    },
    400: {
        "description": "File is too large or of unsupported type",
        "model": LimitExceededResponse,
    },
    429: {
        "description": "OCR limit has been reached or the queue is full",
        "model": LimitExceededResponse,
    },
}

job_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Current state of the job",
        "model": JobResponse,
    },
    404: {
        "description": "Job does not exist",
        "model": NotFoundResponse,
    },
    409: {
        "description": "Transition is not allowed in the current state",
        "model": ConflictResponse,
    },
}


def get_own_job(gate: AdmissionGate, caller: CallerContext, job_id: str) -> Job:
    """Return job owned by the caller, admins can see all jobs.

    Raises:
        HTTPException: 404 when the job does not exist or is not visible.
    """
    job = gate.job_queue.get_job(job_id)
    if job is None or (
        job.caller_id != caller.caller_id and not caller.claims.is_admin
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=NotFoundResponse(resource="job", resource_id=job_id).dump_detail(),
        )
    return job


@router.post("/validate", responses=validate_responses)
async def validate_file_endpoint_handler(
    file_request: FileValidationRequest,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> FileValidationResponse:
    """
    Check size and content type of a file before it is uploaded.

    Raises:
        HTTPException: 400 when the file is rejected.
    """
    result = gate.job_queue.validate_file(
        file_request.to_file_info(),
        caller.bypass_key,
        caller.caller_id,
        caller.session_id,
    )
    raise_for_denial(result)
    return FileValidationResponse(
        filename=file_request.filename,
        file_size=format_file_size(file_request.file_size),
        estimated_pages=estimate_page_count(
            file_request.file_size, file_request.content_type
        ),
        is_override=result.is_override,
    )


@router.post(
    "/jobs", status_code=status.HTTP_201_CREATED, responses=create_job_responses
)
async def create_job_endpoint_handler(
    job_request: JobCreateRequest,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> JobResponse:
    """
    Validate the file, check OCR limits and queue a new job.

    Pages are committed to the quota only when the job completes.

    Raises:
        HTTPException: 400 when the file is rejected, 429 when an OCR
            limit has been reached or the processing queue is full.
    """
    file = job_request.to_file_info()
    queue = gate.job_queue
    raise_for_denial(
        queue.validate_file(file, caller.bypass_key, caller.caller_id, caller.session_id)
    )
    result, job = queue.admit(
        caller.caller_id,
        caller.session_id,
        file,
        job_request.estimated_pages,
        caller.bypass_key,
    )
    raise_for_denial(result)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"response": "Job was not created", "cause": "Unknown error"},
        )
    return JobResponse.from_job(job)


@router.get("/jobs")
async def list_jobs_endpoint_handler(
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> JobListResponse:
    """Return OCR jobs of the caller's session, newest first."""
    queue = gate.job_queue
    return JobListResponse(
        session_id=caller.session_id,
        jobs=[JobResponse.from_job(job) for job in queue.get_session_jobs(caller.session_id)],
        active_jobs=queue.active_job_count(),
        max_concurrent_jobs=gate.quota_tracker.ocr_limits.max_concurrent_jobs,
    )


@router.get("/jobs/{job_id}", responses=job_responses)
async def get_job_endpoint_handler(
    job_id: str,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> JobResponse:
    """Return current state of one OCR job."""
    return JobResponse.from_job(get_own_job(gate, caller, job_id))


@router.patch("/jobs/{job_id}", responses=job_responses)
async def update_job_endpoint_handler(
    job_id: str,
    update_request: JobUpdateRequest,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> JobResponse:
    """
    Move an OCR job to the next state.

    Allowed transitions are queued to processing (`start`), processing to
    completed (`complete`) or failed (`fail`), and any unfinished state to
    cancelled (`cancel`). Progress can be updated until the job finishes.

    Raises:
        HTTPException: 404 for unknown jobs, 409 for transitions that are
            not allowed in the current state.
    """
    job = get_own_job(gate, caller, job_id)
    queue = gate.job_queue
    match update_request.action:
        case "start":
            updated = queue.start_job(job_id)
        case "progress":
            updated = queue.update_progress(job_id, update_request.progress or 0)
        case "complete":
            updated = queue.complete_job(job_id, update_request.actual_pages or 0)
        case "fail":
            updated = queue.fail_job(job_id, update_request.error or "Unknown error")
        case _:
            updated = queue.cancel_job(job_id)

    if updated is None:
        current = queue.get_job(job_id) or job
        logger.warning(
            "Refused to %s job %s in state %s",
            update_request.action,
            job_id,
            current.status.value,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=ConflictResponse(
                resource_id=job_id,
                action=update_request.action,
                state=current.status.value,
            ).dump_detail(),
        )
    return JobResponse.from_job(updated)


@router.get("/usage")
async def ocr_usage_endpoint_handler(
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> OcrUsageResponse:
    """Return pages and documents processed by the caller and the queue state."""
    return OcrUsageResponse(
        caller_id=caller.caller_id,
        session_id=caller.session_id,
        usage=gate.job_queue.get_usage_stats(caller.caller_id, caller.session_id),
    )
