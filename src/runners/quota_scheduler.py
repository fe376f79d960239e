"""Quota housekeeping scheduler runner."""

from threading import Thread
from time import sleep
from typing import Optional

from log import get_logger
from models.config import QuotaSchedulerConfiguration
from quota.gate import AdmissionGate

logger = get_logger(__name__)


def quota_scheduler(
    gate: AdmissionGate, config: Optional[QuotaSchedulerConfiguration]
) -> bool:
    """Quota scheduler task."""
    if config is None:
        logger.warning("Quota scheduler is not configured, skipping")
        return False

    period = config.period
    logger.info(
        "Quota scheduler started in separated thread with period set to %d seconds",
        period,
    )

    while True:
        run_cleanup(gate)
        sleep(period)


def run_cleanup(gate: AdmissionGate) -> None:
    """Run one cleanup pass, logging instead of propagating failures."""
    logger.info("Quota scheduler sync started")
    try:
        report = gate.cleanup()
        logger.info(
            "Removed %d sessions, %d rate limit records and %d jobs",
            report.expired_sessions,
            report.idle_rate_records,
            report.finished_jobs,
        )
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Quota cleanup error: %s", e)
    logger.info("Quota scheduler sync finished")


def start_quota_scheduler(
    gate: AdmissionGate, configuration: QuotaSchedulerConfiguration
) -> Optional[Thread]:
    """Start quota housekeeping in separate daemon thread."""
    if not configuration.enabled:
        logger.info("Quota scheduler is disabled")
        return None
    logger.info("Starting quota scheduler")
    thread = Thread(
        target=quota_scheduler,
        daemon=True,
        args=(
            gate,
            configuration,
        ),
    )
    thread.start()
    return thread
