"""Utility functions for metrics handling."""

import metrics
from log import get_logger
from models.config import QuotaHandlersConfiguration, Tier

logger = get_logger(__name__)


def setup_limit_metrics(configuration: QuotaHandlersConfiguration) -> None:
    """Publish the ceilings in effect as gauges."""
    logger.info("Setting up limit metrics")
    tokens = configuration.tokens
    for horizon, value in (
        ("per_request", tokens.per_request),
        ("per_session", tokens.per_session),
        ("daily", tokens.daily),
        ("monthly", tokens.monthly),
    ):
        metrics.configured_limit.labels("tokens", horizon).set(value)

    ocr = configuration.ocr
    for horizon, value in (
        ("pages_per_document", ocr.max_pages_per_document),
        ("documents_per_session", ocr.max_documents_per_session),
        ("pages_per_session", ocr.max_pages_per_session),
        ("documents_per_day", ocr.max_documents_per_day),
        ("pages_per_day", ocr.max_pages_per_day),
        ("concurrent_jobs", ocr.max_concurrent_jobs),
        ("file_size_mb", ocr.max_file_size_mb),
    ):
        metrics.configured_limit.labels("ocr", horizon).set(value)

    for tier in (Tier.DEMO, Tier.AUTHENTICATED, Tier.PREMIUM):
        limits = configuration.rate_limits.for_tier(tier)
        for horizon, value in (
            ("requests_per_minute", limits.requests_per_minute),
            ("requests_per_hour", limits.requests_per_hour),
            ("requests_per_day", limits.requests_per_day),
        ):
            metrics.configured_limit.labels(f"rate_{tier.value}", horizon).set(
                value or 0
            )
    logger.info("Limit metrics setup complete")


def record_admission(resource: str, allowed: bool) -> None:
    """Count one admission check of the given resource."""
    outcome = "allowed" if allowed else "denied"
    metrics.admission_checks_total.labels(resource, outcome).inc()
