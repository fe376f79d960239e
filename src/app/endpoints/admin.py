"""Administrative handlers: ceilings, hit log and configuration refresh."""

import logging
from typing import Annotated, Any, Optional

import yaml
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

import constants
from app.dependencies import get_gate, require_admin
from configuration import LogicError, configuration
from models.config import Tier
from models.responses import (
    AdminLimitsResponse,
    ForbiddenResponse,
    HitLogAnalytics,
    HitLogResponse,
    StatusResponse,
)
from quota.gate import AdmissionGate
from quota.results import DenialKind
from utils.caller import CallerContext

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(prefix="/admin", tags=["admin"])


forbidden_response: dict[int | str, dict[str, Any]] = {
    403: {
        "description": "Admin key is missing or invalid",
        "model": ForbiddenResponse,
    },
}


@router.get(
    "/limits",
    responses={200: {"model": AdminLimitsResponse}, **forbidden_response},
)
async def limits_endpoint_handler(
    _admin: Annotated[CallerContext, Depends(require_admin)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> AdminLimitsResponse:
    """
    Return ceilings in effect together with tracked state and hit analytics.

    Rate ceilings are listed for every tier, including the unbounded admin
    tier.
    """
    handlers = gate.configuration
    hit_log = gate.hit_log
    return AdminLimitsResponse(
        tokens=gate.quota_tracker.token_limits,
        ocr=gate.quota_tracker.ocr_limits,
        rate_limits={tier.value: gate.rate_limiter.get_tier_limits(tier) for tier in Tier},
        features=configuration.features,
        admin_override_enabled=handlers.admin.override_enabled,
        ocr_bypass_enabled=handlers.admin.ocr_bypass_enabled,
        tracked_sessions=gate.quota_tracker.session_count(),
        tracked_rate_records=gate.rate_limiter.record_count(),
        active_jobs=gate.job_queue.active_job_count(),
        hits=hit_log.get_stats(),
        analytics=HitLogAnalytics(
            callers_approaching_limits=hit_log.callers_approaching_limits(),
            most_hit_kind=hit_log.most_hit_kind(),
            hourly_distribution=hit_log.hourly_distribution(),
        ),
    )


@router.get("/hits", responses={200: {"model": HitLogResponse}, **forbidden_response})
async def hits_endpoint_handler(
    _admin: Annotated[CallerContext, Depends(require_admin)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
    caller_id: Optional[str] = None,
    denial_kind: Optional[DenialKind] = None,
    limit: Annotated[int, Query(ge=1)] = constants.HIT_LOG_DEFAULT_QUERY_SIZE,
) -> HitLogResponse:
    """Return newest hit log entries, optionally of one caller or denial kind."""
    hit_log = gate.hit_log
    if caller_id is not None:
        entries = hit_log.get_by_caller(caller_id, hit_log.capacity)
        if denial_kind is not None:
            entries = [entry for entry in entries if entry.denial_kind == denial_kind]
        entries = entries[:limit]
    elif denial_kind is not None:
        entries = hit_log.get_by_kind(denial_kind, limit)
    else:
        entries = hit_log.get_recent(limit)
    stats = hit_log.get_stats()
    return HitLogResponse(
        total_hits=stats.total_hits, hits_today=stats.hits_today, entries=entries
    )


@router.delete("/hits", responses=forbidden_response)
async def clear_hits_endpoint_handler(
    admin: Annotated[CallerContext, Depends(require_admin)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> StatusResponse:
    """Drop all hit log entries."""
    gate.hit_log.clear()
    logger.info("Hit log cleared by %s", admin.caller_id)
    return StatusResponse(success=True, message="Hit log cleared")


@router.post("/config/refresh", responses=forbidden_response)
async def refresh_config_endpoint_handler(
    admin: Annotated[CallerContext, Depends(require_admin)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> StatusResponse:
    """
    Read configuration file and environment again and apply new ceilings.

    Usage counters, rate history and jobs are kept.

    Raises:
        HTTPException: 500 when the configuration can not be read.
    """
    try:
        configuration.reload()
    except (LogicError, OSError, yaml.YAMLError, ValidationError) as e:
        logger.error("Unable to refresh configuration: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "response": "Unable to refresh configuration",
                "cause": str(e),
            },
        ) from e
    gate.refresh_config(configuration.quota_handlers_configuration)
    logger.info("Configuration refreshed by %s", admin.caller_id)
    return StatusResponse(success=True, message="Configuration refreshed")


@router.delete("/rate/{caller_id}", responses=forbidden_response)
async def reset_rate_endpoint_handler(
    caller_id: str,
    _admin: Annotated[CallerContext, Depends(require_admin)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> StatusResponse:
    """Forget request history of one caller."""
    if gate.rate_limiter.reset_caller(caller_id):
        return StatusResponse(
            success=True, message=f"Rate history of {caller_id} removed"
        )
    return StatusResponse(success=False, message=f"No rate history for {caller_id}")
