"""Shared fixtures for integration tests."""

import os
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

import constants
from configuration import AppConfig, configuration

TEST_CONFIGURATION_PATH = (
    Path(__file__).parent.parent / "configuration" / "usage-gate.yaml"
).resolve()

# the application loads configuration from this path when it is imported
os.environ.setdefault(
    constants.CONFIGURATION_PATH_ENV_VAR, str(TEST_CONFIGURATION_PATH)
)


@pytest.fixture(autouse=True)
def reset_configuration_state() -> Generator:
    """Reset configuration state before each integration test.

    This autouse fixture ensures test independence by resetting the
    singleton configuration state before each test runs. This allows
    tests to verify both loaded and unloaded configuration states
    regardless of execution order.
    """
    # pylint: disable=protected-access
    configuration._configuration = None
    yield


@pytest.fixture(name="test_config", scope="function")
def test_config_fixture() -> Generator[AppConfig, None, None]:
    """Load real configuration for integration tests.

    This fixture loads the actual configuration file used in testing,
    demonstrating integration with the configuration system.
    """
    assert (
        TEST_CONFIGURATION_PATH.exists()
    ), f"Config file not found: {TEST_CONFIGURATION_PATH}"

    # Load configuration
    configuration.load_configuration(str(TEST_CONFIGURATION_PATH))

    yield configuration
    # Note: Cleanup is handled by the autouse reset_configuration_state fixture


@pytest.fixture(name="current_config", scope="function")
def current_config_fixture() -> Generator[AppConfig, None, None]:
    """Load configuration shipped in the project root."""
    config_path = Path(__file__).parent.parent.parent / "usage-gate.yaml"
    assert config_path.exists(), f"Config file not found: {config_path}"

    configuration.load_configuration(str(config_path))

    yield configuration


@pytest.fixture(name="client")
def client_fixture(test_config: AppConfig) -> Generator[TestClient, None, None]:
    """Run the whole application with fresh admission state.

    Admission components are created by the application lifespan, so every
    test starts with empty counters, rate history, jobs and hit log.
    """
    _ = test_config
    from app.main import app  # pylint: disable=import-outside-toplevel

    with TestClient(app) as client:
        yield client
