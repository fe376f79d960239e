"""Identification of callers from HTTP requests."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

import constants
from quota.clock import utc_now
from quota.tiers import CallerClaims, Tier, resolve_tier


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, in which session and with which privileges."""

    caller_id: str
    session_id: str
    tier: Tier
    claims: CallerClaims
    override_key: Optional[str] = None
    bypass_key: Optional[str] = None


def get_caller_id(request: Request) -> str:
    """Derive caller identifier from request headers.

    Authenticated user id wins over a custom user id, which wins over the
    client address. Requests without any of them share one anonymous
    identity.
    """
    headers = request.headers
    auth_user_id = headers.get(constants.HEADER_AUTH_USER_ID)
    if auth_user_id:
        return f"{constants.USER_CALLER_PREFIX}{auth_user_id}"

    user_id = headers.get(constants.HEADER_USER_ID)
    if user_id:
        return f"{constants.CUSTOM_CALLER_PREFIX}{user_id}"

    forwarded_for = headers.get(constants.HEADER_FORWARDED_FOR)
    if forwarded_for:
        address = forwarded_for.split(",")[0].strip()
        if address:
            return f"{constants.IP_CALLER_PREFIX}{address}"

    real_ip = headers.get(constants.HEADER_REAL_IP)
    if real_ip:
        return f"{constants.IP_CALLER_PREFIX}{real_ip}"

    return constants.ANONYMOUS_CALLER_ID


def get_session_id(
    request: Request, caller_id: str, now: Optional[datetime] = None
) -> str:
    """Derive session identifier, falling back to one session per caller and day."""
    session_id = request.headers.get(constants.HEADER_SESSION_ID)
    if session_id:
        return session_id
    session_id = request.cookies.get(constants.COOKIE_SESSION_ID)
    if session_id:
        return session_id
    now = now or utc_now()
    return f"{caller_id}:{now.date().isoformat()}"


def get_override_key(request: Request) -> Optional[str]:
    """Return admin override key sent in header or query string."""
    return request.headers.get(constants.HEADER_ADMIN_KEY) or request.query_params.get(
        constants.QUERY_ADMIN_KEY
    )


def extract_caller_context(
    request: Request,
    is_admin_key: Callable[[Optional[str]], bool],
    now: Optional[datetime] = None,
) -> CallerContext:
    """Collect caller identity, session, tier and privilege keys."""
    caller_id = get_caller_id(request)
    override_key = get_override_key(request)
    auth_user_id = request.headers.get(constants.HEADER_AUTH_USER_ID)
    claims = CallerClaims(
        user_id=auth_user_id,
        is_authenticated=bool(auth_user_id),
        is_premium=request.headers.get(constants.HEADER_USER_PREMIUM, "").lower()
        == "true",
        is_admin=is_admin_key(override_key),
    )
    return CallerContext(
        caller_id=caller_id,
        session_id=get_session_id(request, caller_id, now),
        tier=resolve_tier(claims),
        claims=claims,
        override_key=override_key,
        bypass_key=request.headers.get(constants.HEADER_OCR_BYPASS_KEY),
    )
