"""Shared fixtures: an in-memory session with fixed clocks."""

from datetime import date, datetime, timezone

import pytest

from mei_ledger.context import StaticIdentityProvider
from mei_ledger.notifications import InMemoryNotificationCache
from mei_ledger.orchestrator import create_app_components


TODAY = date(2026, 10, 15)
NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)
OWNER = "owner-1"


@pytest.fixture
def identity():
    return StaticIdentityProvider(OWNER)


@pytest.fixture
def app(identity):
    return create_app_components(
        identity,
        use_storage=False,
        notification_cache=InMemoryNotificationCache(),
        today=lambda: TODAY,
        now=lambda: NOW,
    )
