"""Mapping of caller claims to tiers.

Admission components never inspect request headers or tokens: they only
receive a resolved tier. Claims are collected by the HTTP layer from an
already authenticated identity.
"""

from dataclasses import dataclass
from typing import Optional

from models.config import Tier

__all__ = ["CallerClaims", "Tier", "resolve_tier"]


@dataclass(frozen=True)
class CallerClaims:
    """Facts about the caller that decide its tier."""

    user_id: Optional[str] = None
    is_authenticated: bool = False
    is_premium: bool = False
    is_admin: bool = False


def resolve_tier(claims: CallerClaims) -> Tier:
    """Return the most generous tier the claims entitle the caller to."""
    if claims.is_admin:
        return Tier.ADMIN
    if claims.is_premium:
        return Tier.PREMIUM
    if claims.is_authenticated or claims.user_id:
        return Tier.AUTHENTICATED
    return Tier.DEMO
