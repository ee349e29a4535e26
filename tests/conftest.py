"""
Shared pytest fixtures for CloudOnboard tests.

This module provides common test fixtures used across the unit tests.
Fixtures include a fake clock, a mocked control plane, saga contexts and
sample accounts and GraphQL payloads.

Usage:
    def test_something(saga, make_account):
        # Fixtures are injected automatically by pytest
        account = make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)])
"""

from collections.abc import Callable, Sequence
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID

import pytest
from _pytest.monkeypatch import MonkeyPatch

from cloudonboard.config import Settings, get_settings
from cloudonboard.context import ClientContext, SagaContext
from cloudonboard.control_plane import ControlPlane
from cloudonboard.features import Feature
from cloudonboard.models import CloudAccount, FeatureState, FeatureStatus
from cloudonboard.polling import Cancellation

NATIVE_ID = "123456789012"
CLOUD_ACCOUNT_ID = UUID("6f1b2f7e-3c1a-4c55-9d0e-5a2b7c8d9e01")
BASE_URL = "https://acme.my.example.com"


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """
    Clock whose time only moves when something sleeps on it.

    Attributes:
        now: Current monotonic time
        sleeps: Every requested sleep, in order
        on_sleep: Called after each sleep, e.g. to cancel the saga
    """

    def __init__(self, start: float = 1000.0, on_sleep: Callable[["FakeClock"], None] | None = None) -> None:
        self.now: float = start
        self.sleeps: list[float] = []
        self.on_sleep: Callable[[FakeClock], None] | None = on_sleep

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancellation: Cancellation) -> None:
        _ = cancellation
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(self)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a fake clock starting at t=1000."""
    return FakeClock()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch: MonkeyPatch) -> dict[str, str]:
    """
    Set up mock environment variables for testing.

    Provides all required environment variables with fake values
    so Settings can be instantiated without real credentials.

    Args:
        monkeypatch: pytest monkeypatch fixture

    Returns:
        Dictionary of environment variable names and values
    """
    env_vars = {
        "CLOUDONBOARD_BASE_URL": BASE_URL,
        "CLOUDONBOARD_CLIENT_ID": "client|test-client",
        "CLOUDONBOARD_CLIENT_SECRET": "test-client-secret",
        "CLOUDONBOARD_AWS_REGION": "us-east-2",
        "CLOUDONBOARD_STACK_POLL_INTERVAL_SECONDS": "5",
        "CLOUDONBOARD_JOB_POLL_INTERVAL_SECONDS": "2",
        "CLOUDONBOARD_LOG_LEVEL": "DEBUG",
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    return env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Settings:
    """
    Provide test Settings instance with fake credentials.

    The lru_cache on get_settings is bypassed by creating Settings directly.
    """
    _ = mock_env_vars
    return Settings()  # pyright: ignore[reportCallIssue]


# =============================================================================
# Saga Fixtures
# =============================================================================


@pytest.fixture
def control_plane() -> MagicMock:
    """Provide a mocked ControlPlane."""
    return MagicMock(spec=ControlPlane)


@pytest.fixture
def client_context(control_plane: MagicMock, fake_clock: FakeClock) -> ClientContext:
    """Provide a ClientContext wired to the mocked control plane and fake clock."""
    return ClientContext(
        control_plane=control_plane,
        clock=fake_clock,
        stack_poll_interval=10.0,
        job_poll_interval=5.0,
    )


@pytest.fixture
def saga(client_context: ClientContext) -> SagaContext:
    """Provide a fresh saga without deadline."""
    return client_context.new_saga()


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def make_account() -> Callable[..., CloudAccount]:
    """
    Provide a factory for CloudAccount read views.

    Returns:
        Function taking (feature, status) pairs and optional regions, name
        and native id
    """

    def _make(
        features: Sequence[tuple[Feature, FeatureStatus]] = (),
        regions: Sequence[str] = ("us-east-2",),
        name: str = "prod",
        native_id: str = NATIVE_ID,
        cloud_account_id: UUID = CLOUD_ACCOUNT_ID,
    ) -> CloudAccount:
        return CloudAccount(
            id=cloud_account_id,
            native_id=native_id,
            name=name,
            features=[
                FeatureState(
                    name=feature.name,
                    permission_groups=list(feature.permission_groups),
                    regions=list(regions),
                    role_arn=f"arn:aws:iam::{native_id}:role/platform-{feature.name.lower()}",
                    stack_arn=f"arn:aws:cloudformation:us-east-2:{native_id}:stack/PlatformStack/abc",
                    status=status,
                )
                for feature, status in features
            ],
        )

    return _make


@pytest.fixture
def account_payload() -> dict[str, Any]:
    """
    Provide a GraphQL cloud account item as returned by the control plane.

    Includes a feature unknown to this SDK, which must be dropped.
    """
    return {
        "awsCloudAccount": {
            "id": str(CLOUD_ACCOUNT_ID),
            "nativeId": NATIVE_ID,
            "accountName": "prod",
        },
        "featureDetails": [
            {
                "feature": "CLOUD_NATIVE_PROTECTION",
                "permissionsGroups": ["BASIC"],
                "awsRegions": ["US_EAST_2", "EU_WEST_1"],
                "roleArn": f"arn:aws:iam::{NATIVE_ID}:role/platform",
                "stackArn": f"arn:aws:cloudformation:us-east-2:{NATIVE_ID}:stack/PlatformStack/abc",
                "status": "CONNECTED",
            },
            {
                "feature": "SOME_FUTURE_FEATURE",
                "permissionsGroups": [],
                "awsRegions": ["US_EAST_2"],
                "roleArn": "",
                "stackArn": "",
                "status": "CONNECTED",
            },
        ],
    }
