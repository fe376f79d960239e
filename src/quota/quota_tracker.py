"""Per-caller and per-session quota accounting.

The tracker keeps one usage record per caller (daily and monthly counters)
and one record per session. Records are created on first use and their
counters are rolled over whenever they are fetched after a reset boundary
(UTC midnight for daily counters, the first day of a month for monthly
counters). Sessions are removed by the periodic cleanup once they have
been idle for longer than the session TTL.

Chat completions are measured in tokens, OCR jobs in pages and documents.
Both are accounted on the same records.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Optional

from pydantic import SecretStr

import constants
import metrics
from log import get_logger
from models.config import (
    AdminConfiguration,
    OcrQuotaConfiguration,
    TokenQuotaConfiguration,
)
from quota.clock import Clock, first_of_next_month, next_utc_midnight, utc_now
from quota.hit_log import HitLog
from quota.results import (
    AdmissionResult,
    DenialKind,
    HorizonUsage,
    OcrUsageStats,
    TokenLimits,
    UsageStats,
    remaining_units,
)

logger = get_logger(__name__)


@dataclass
class UsageRecord:
    """Counters of one caller."""

    daily_reset_at: datetime
    monthly_reset_at: datetime
    daily_consumed: int = 0
    monthly_consumed: int = 0
    daily_pages_consumed: int = 0
    daily_documents_consumed: int = 0
    request_count: int = 0
    last_request_at: Optional[datetime] = None


@dataclass
class SessionRecord:
    """Counters of one session."""

    created_at: datetime
    last_activity_at: datetime
    consumed: int = 0
    pages_consumed: int = 0
    documents_consumed: int = 0


@dataclass
class _Check:
    """One ceiling evaluated by an admission check."""

    kind: DenialKind
    limit: int
    used: int
    exceeded: bool
    remaining: int = 0
    resets_at: Optional[datetime] = None


def key_matches(enabled: bool, secret: Optional[SecretStr], key: Optional[str]) -> bool:
    """Check the key against a configured secret.

    The key never matches when the switch is disabled or no secret is set.
    """
    if not enabled or secret is None or not key:
        return False
    expected = secret.get_secret_value()
    if not expected:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), key.encode("utf-8"))


class QuotaTracker:  # pylint: disable=too-many-instance-attributes
    """Quota tracker for tokens and OCR pages."""

    def __init__(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        tokens: TokenQuotaConfiguration,
        ocr: OcrQuotaConfiguration,
        admin: AdminConfiguration,
        hit_log: HitLog,
        clock: Clock = utc_now,
        session_ttl: timedelta = constants.SESSION_TTL,
    ) -> None:
        """Initialize quota tracker with empty stores."""
        self._tokens = tokens
        self._ocr = ocr
        self._admin = admin
        self._hit_log = hit_log
        self._clock = clock
        self._session_ttl = session_ttl
        self._lock = RLock()
        self._usage: dict[str, UsageRecord] = {}
        self._sessions: dict[str, SessionRecord] = {}

    def refresh_config(
        self,
        tokens: TokenQuotaConfiguration,
        ocr: OcrQuotaConfiguration,
        admin: AdminConfiguration,
        session_ttl: Optional[timedelta] = None,
    ) -> None:
        """Replace ceilings; counters are kept."""
        with self._lock:
            self._tokens = tokens
            self._ocr = ocr
            self._admin = admin
            if session_ttl is not None:
                self._session_ttl = session_ttl
        logger.info("Quota tracker configuration refreshed")

    @property
    def token_limits(self) -> TokenQuotaConfiguration:
        """Token ceilings in effect."""
        return self._tokens

    @property
    def ocr_limits(self) -> OcrQuotaConfiguration:
        """OCR ceilings in effect."""
        return self._ocr

    def is_override(self, key: Optional[str]) -> bool:
        """Check if the key is the admin override key."""
        return key_matches(
            self._admin.override_enabled, self._admin.override_key, key
        )

    def is_ocr_bypass(self, key: Optional[str]) -> bool:
        """Check if the key is the OCR bypass key."""
        return key_matches(
            self._admin.ocr_bypass_enabled, self._admin.ocr_bypass_key, key
        )

    def check_limits(
        self,
        caller_id: str,
        session_id: str,
        requested_units: int,
        override_key: Optional[str] = None,
    ) -> AdmissionResult:
        """Decide whether a request of `requested_units` tokens is admitted.

        Ceilings are evaluated from the narrowest horizon to the widest one
        and the first exceeded ceiling is reported. A valid override key
        admits the request without evaluating any ceiling.
        """
        if self.is_override(override_key):
            logger.info("Admin override used by %s", caller_id)
            return AdmissionResult.overridden()

        tokens = self._tokens
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now)
            checks = (
                _Check(
                    DenialKind.PER_REQUEST,
                    tokens.per_request,
                    requested_units,
                    _exceeds(requested_units, tokens.per_request),
                ),
                _Check(
                    DenialKind.PER_SESSION,
                    tokens.per_session,
                    session.consumed,
                    _exceeds(session.consumed + requested_units, tokens.per_session),
                    remaining_units(session.consumed, tokens.per_session),
                ),
                _Check(
                    DenialKind.DAILY,
                    tokens.daily,
                    usage.daily_consumed,
                    _exceeds(usage.daily_consumed + requested_units, tokens.daily),
                    remaining_units(usage.daily_consumed, tokens.daily),
                    usage.daily_reset_at,
                ),
                _Check(
                    DenialKind.MONTHLY,
                    tokens.monthly,
                    usage.monthly_consumed,
                    _exceeds(usage.monthly_consumed + requested_units, tokens.monthly),
                    remaining_units(usage.monthly_consumed, tokens.monthly),
                    usage.monthly_reset_at,
                ),
            )
            daily_consumed = usage.daily_consumed

        for check in checks:
            if check.exceeded:
                result = AdmissionResult.denied(
                    check.kind,
                    limit=check.limit,
                    used=check.used,
                    remaining=check.remaining,
                    resets_at=check.resets_at,
                    message=_token_denial_message(check.kind, check.limit),
                )
                self._hit_log.log_denial(
                    caller_id,
                    session_id,
                    result,
                    metadata={"requested_units": requested_units},
                )
                return result

        return AdmissionResult(
            allowed=True,
            limit=tokens.daily,
            used=daily_consumed,
            remaining=remaining_units(daily_consumed, tokens.daily),
        )

    def track_usage(self, caller_id: str, session_id: str, actual_units: int) -> None:
        """Commit tokens consumed by a completed request."""
        if actual_units < 0:
            raise ValueError("Consumed units can not be negative")
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now)
            session.consumed += actual_units
            session.last_activity_at = now
            usage.daily_consumed += actual_units
            usage.monthly_consumed += actual_units
            usage.request_count += 1
            usage.last_request_at = now
        metrics.units_committed_total.labels("tokens").inc(actual_units)
        logger.debug(
            "Tracked %d tokens for caller %s in session %s",
            actual_units,
            caller_id,
            session_id,
        )

    def reset_session(self, session_id: str) -> None:
        """Zero counters of one session, leaving daily and monthly usage intact."""
        with self._lock:
            now = self._clock()
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.consumed = 0
            session.pages_consumed = 0
            session.documents_consumed = 0
            session.last_activity_at = now
        logger.info("Session %s has been reset", session_id)

    def get_usage_stats(self, caller_id: str, session_id: str) -> UsageStats:
        """Return token usage for all horizons."""
        tokens = self._tokens
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now, touch=False)
            return UsageStats(
                session=HorizonUsage.of(session.consumed, tokens.per_session),
                daily=HorizonUsage.of(
                    usage.daily_consumed, tokens.daily, usage.daily_reset_at
                ),
                monthly=HorizonUsage.of(
                    usage.monthly_consumed, tokens.monthly, usage.monthly_reset_at
                ),
                limits=TokenLimits(
                    per_request=tokens.per_request,
                    per_session=tokens.per_session,
                    daily=tokens.daily,
                    monthly=tokens.monthly,
                ),
                request_count=usage.request_count,
                last_request_at=usage.last_request_at,
            )

    def check_ocr_limits(
        self,
        caller_id: str,
        session_id: str,
        estimated_pages: int,
        bypass_key: Optional[str] = None,
    ) -> AdmissionResult:
        """Decide whether a document of `estimated_pages` pages is admitted."""
        if self.is_ocr_bypass(bypass_key):
            logger.info("OCR bypass used by %s", caller_id)
            return AdmissionResult.overridden()

        ocr = self._ocr
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now)
            checks = (
                _Check(
                    DenialKind.PAGES_PER_DOCUMENT,
                    ocr.max_pages_per_document,
                    estimated_pages,
                    _exceeds(estimated_pages, ocr.max_pages_per_document),
                ),
                _Check(
                    DenialKind.DOCUMENTS_PER_SESSION,
                    ocr.max_documents_per_session,
                    session.documents_consumed,
                    _exceeds(
                        session.documents_consumed + 1, ocr.max_documents_per_session
                    ),
                ),
                _Check(
                    DenialKind.PAGES_PER_SESSION,
                    ocr.max_pages_per_session,
                    session.pages_consumed,
                    _exceeds(
                        session.pages_consumed + estimated_pages,
                        ocr.max_pages_per_session,
                    ),
                    remaining_units(session.pages_consumed, ocr.max_pages_per_session),
                ),
                _Check(
                    DenialKind.DOCUMENTS_PER_DAY,
                    ocr.max_documents_per_day,
                    usage.daily_documents_consumed,
                    _exceeds(
                        usage.daily_documents_consumed + 1, ocr.max_documents_per_day
                    ),
                    resets_at=usage.daily_reset_at,
                ),
                _Check(
                    DenialKind.PAGES_PER_DAY,
                    ocr.max_pages_per_day,
                    usage.daily_pages_consumed,
                    _exceeds(
                        usage.daily_pages_consumed + estimated_pages,
                        ocr.max_pages_per_day,
                    ),
                    remaining_units(usage.daily_pages_consumed, ocr.max_pages_per_day),
                    usage.daily_reset_at,
                ),
            )
            daily_pages = usage.daily_pages_consumed
            remaining = _smallest_remaining(
                (session.pages_consumed, ocr.max_pages_per_session),
                (usage.daily_pages_consumed, ocr.max_pages_per_day),
            )

        for check in checks:
            if check.exceeded:
                result = AdmissionResult.denied(
                    check.kind,
                    limit=check.limit,
                    used=check.used,
                    remaining=check.remaining,
                    resets_at=check.resets_at,
                    message=_ocr_denial_message(check, estimated_pages),
                )
                self._hit_log.log_denial(
                    caller_id,
                    session_id,
                    result,
                    metadata={"estimated_pages": estimated_pages},
                )
                return result

        return AdmissionResult(
            allowed=True,
            limit=ocr.max_pages_per_day or None,
            used=daily_pages,
            remaining=remaining,
        )

    def track_ocr_usage(self, caller_id: str, session_id: str, pages: int) -> None:
        """Commit one processed document of `pages` pages."""
        if pages < 0:
            raise ValueError("Processed pages can not be negative")
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now)
            session.pages_consumed += pages
            session.documents_consumed += 1
            session.last_activity_at = now
            usage.daily_pages_consumed += pages
            usage.daily_documents_consumed += 1
        metrics.units_committed_total.labels("pages").inc(pages)
        logger.debug(
            "Tracked %d OCR pages for caller %s in session %s",
            pages,
            caller_id,
            session_id,
        )

    def get_ocr_usage_stats(self, caller_id: str, session_id: str) -> OcrUsageStats:
        """Return OCR usage of the caller and session."""
        ocr = self._ocr
        with self._lock:
            now = self._clock()
            usage = self._get_or_create_usage(caller_id, now)
            session = self._get_or_create_session(session_id, now, touch=False)
            return OcrUsageStats(
                session_pages=HorizonUsage.of(
                    session.pages_consumed, ocr.max_pages_per_session
                ),
                session_documents=HorizonUsage.of(
                    session.documents_consumed, ocr.max_documents_per_session
                ),
                daily_pages=HorizonUsage.of(
                    usage.daily_pages_consumed,
                    ocr.max_pages_per_day,
                    usage.daily_reset_at,
                ),
                daily_documents=HorizonUsage.of(
                    usage.daily_documents_consumed,
                    ocr.max_documents_per_day,
                    usage.daily_reset_at,
                ),
                max_file_size_mb=ocr.max_file_size_mb,
                max_pages_per_document=ocr.max_pages_per_document,
                supported_types=ocr.supported_content_types,
            )

    def cleanup_expired_sessions(self) -> int:
        """Remove sessions idle for longer than the session TTL."""
        with self._lock:
            cutoff = self._clock() - self._session_ttl
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.last_activity_at < cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            logger.info("Removed %d expired sessions", len(expired))
        return len(expired)

    def session_count(self) -> int:
        """Return number of sessions held in memory."""
        with self._lock:
            return len(self._sessions)

    def _get_or_create_usage(self, caller_id: str, now: datetime) -> UsageRecord:
        usage = self._usage.get(caller_id)
        if usage is None:
            usage = UsageRecord(
                daily_reset_at=next_utc_midnight(now),
                monthly_reset_at=first_of_next_month(now),
            )
            self._usage[caller_id] = usage
            return usage

        if now >= usage.daily_reset_at:
            logger.debug("Daily counters of %s rolled over", caller_id)
            usage.daily_consumed = 0
            usage.daily_pages_consumed = 0
            usage.daily_documents_consumed = 0
            usage.daily_reset_at = next_utc_midnight(now)
        if now >= usage.monthly_reset_at:
            logger.debug("Monthly counters of %s rolled over", caller_id)
            usage.monthly_consumed = 0
            usage.monthly_reset_at = first_of_next_month(now)
        return usage

    def _get_or_create_session(
        self, session_id: str, now: datetime, touch: bool = True
    ) -> SessionRecord:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionRecord(created_at=now, last_activity_at=now)
            self._sessions[session_id] = session
        elif touch:
            session.last_activity_at = now
        return session


def _exceeds(total: int, limit: int) -> bool:
    """Check a total against a ceiling where zero means no cap."""
    return limit > 0 and total > limit


def _smallest_remaining(*counters: tuple[int, int]) -> Optional[int]:
    """Return the smallest remaining amount among capped counters."""
    remaining = [remaining_units(used, limit) for used, limit in counters if limit > 0]
    return min(remaining) if remaining else None


def _token_denial_message(kind: DenialKind, limit: int) -> str:
    match kind:
        case DenialKind.PER_REQUEST:
            return (
                f"Request exceeds maximum token limit of {limit:,} tokens. "
                "Please reduce your message length."
            )
        case DenialKind.PER_SESSION:
            return (
                f"Session limit of {limit:,} tokens reached. "
                "Please start a new session or clear your chat."
            )
        case DenialKind.DAILY:
            return f"Daily limit of {limit:,} tokens reached. Resets at midnight UTC."
        case _:
            return (
                f"Monthly limit of {limit:,} tokens reached. "
                "Resets on the 1st of next month."
            )


def _ocr_denial_message(check: _Check, estimated_pages: int) -> str:
    match check.kind:
        case DenialKind.PAGES_PER_DOCUMENT:
            return (
                f"Document has approximately {estimated_pages} pages, which exceeds "
                f"the {check.limit} page limit per document."
            )
        case DenialKind.DOCUMENTS_PER_SESSION:
            return (
                f"Session limit of {check.limit} documents reached. "
                "Please start a new session to process more documents."
            )
        case DenialKind.PAGES_PER_SESSION:
            return (
                f"Processing this document would exceed the session limit of "
                f"{check.limit} pages. {check.remaining} pages remaining."
            )
        case DenialKind.DOCUMENTS_PER_DAY:
            return (
                f"Daily limit of {check.limit} documents reached. "
                "Resets at midnight UTC."
            )
        case _:
            return (
                f"Daily OCR limit of {check.limit} pages reached. "
                f"{check.remaining} pages remaining today. Resets at midnight UTC."
            )
