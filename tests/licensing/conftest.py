"""Fixtures for licensing tests."""

from datetime import UTC, datetime

import pytest
import pytest_asyncio

from taskflow.platform.events import Event, EventBus
from taskflow.platform.licensing.catalog import CatalogStore, load_default_catalog
from taskflow.platform.licensing.evaluator import EntitlementEvaluator
from taskflow.platform.licensing.ledger import LicensePoolLedger
from taskflow.platform.licensing.models import UsageKey, UserAccount
from taskflow.platform.licensing.repository import InMemoryLicensingStore
from taskflow.platform.licensing.users import UserLifecycleService

TENANT_ID = "tenant-acme"


@pytest.fixture
def catalog() -> CatalogStore:
    return CatalogStore(load_default_catalog())


@pytest.fixture
def store() -> InMemoryLicensingStore:
    return InMemoryLicensingStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Events seen on ``event_bus``, in publish order (await ``event_bus.drain()`` first)."""
    seen: list[Event] = []
    original = event_bus.publish

    async def recording_publish(*args, **kwargs):
        event = await original(*args, **kwargs)
        seen.append(event)
        return event

    event_bus.publish = recording_publish
    return seen


@pytest.fixture
def ledger(store, catalog) -> LicensePoolLedger:
    return LicensePoolLedger(store, catalog)


class RecordingNotifier:
    """Invitation notifier double remembering who it was asked to invite."""

    def __init__(self, error: Exception | None = None) -> None:
        self.invited: list[UserAccount] = []
        self.error = error

    async def __call__(self, user: UserAccount) -> None:
        self.invited.append(user)
        if self.error is not None:
            raise self.error


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store, catalog, ledger, notifier, event_bus) -> UserLifecycleService:
    return UserLifecycleService(
        store, catalog, ledger=ledger, notifier=notifier, event_bus=event_bus
    )


@pytest.fixture
def evaluator(store, catalog, event_bus) -> EntitlementEvaluator:
    return EntitlementEvaluator(catalog, store.usage, event_bus=event_bus)


@pytest.fixture
def usage_key() -> UsageKey:
    return UsageKey(owner_id=TENANT_ID, anchor=datetime(2024, 1, 10, 9, 30, tzinfo=UTC))


@pytest_asyncio.fixture
async def tenant(ledger) -> str:
    """Tenant with 2 PLAN seats, 1 EXECUTE seat and 3 EXPLORE seats."""
    result = await ledger.provision_pool(TENANT_ID, {"PLAN": 2, "EXECUTE": 1, "EXPLORE": 3})
    assert result.success
    return TENANT_ID


def user_data(**overrides) -> dict:
    data = {
        "name": "Ada Lovelace",
        "email": "ada@acme.io",
        "role": "REGULAR",
        "plan_code": "PLAN",
        "department": "Engineering",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_user_data():
    return user_data
