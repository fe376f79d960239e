"""Fixtures shared by endpoint handler tests."""

import pytest

from configuration import configuration
from models.config import QuotaHandlersConfiguration
from quota.gate import AdmissionGate
from quota.tiers import CallerClaims, Tier
from utils.caller import CallerContext


@pytest.fixture(name="gate")
def gate_fixture(quota_handlers: QuotaHandlersConfiguration, clock) -> AdmissionGate:
    """Admission gate driven by the fake clock."""
    return AdmissionGate(quota_handlers, clock)


@pytest.fixture(name="demo_caller")
def demo_caller_fixture() -> CallerContext:
    """Anonymous caller identified by its address."""
    return CallerContext(
        caller_id="ip:10.0.0.1",
        session_id="session-1",
        tier=Tier.DEMO,
        claims=CallerClaims(),
    )


@pytest.fixture(name="other_caller")
def other_caller_fixture() -> CallerContext:
    """Authenticated caller in a different session."""
    return CallerContext(
        caller_id="user:bob",
        session_id="session-2",
        tier=Tier.AUTHENTICATED,
        claims=CallerClaims(user_id="bob", is_authenticated=True),
    )


@pytest.fixture(name="admin_caller")
def admin_caller_fixture() -> CallerContext:
    """Caller that sent a valid admin key."""
    return CallerContext(
        caller_id="user:admin",
        session_id="session-admin",
        tier=Tier.ADMIN,
        claims=CallerClaims(user_id="admin", is_authenticated=True, is_admin=True),
        override_key="admin-secret",
    )


@pytest.fixture(name="loaded_configuration")
def loaded_configuration_fixture() -> None:
    """Load minimal configuration into the global configuration object."""
    configuration.init_from_dict(
        {
            "name": "foo",
            "features": {"enable_export": True},
        }
    )
