"""Integration tests for the SQLAlchemy licensing store (in-memory SQLite)."""

import asyncio
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import taskflow.platform.licensing.tables  # noqa: F401
from taskflow.platform.db import create_all_tables_async, drop_all_tables_async
from taskflow.platform.licensing.evaluator import EntitlementEvaluator
from taskflow.platform.licensing.exceptions import LedgerIntegrityError, PoolExhaustedError
from taskflow.platform.licensing.ledger import LicensePoolLedger
from taskflow.platform.licensing.models import SeatCount, UsageKey, UserStatus
from taskflow.platform.licensing.sql_repository import SQLAlchemyLicensingStore
from taskflow.platform.licensing.tables import PoolSeatTable, UsageCounterTable
from taskflow.platform.licensing.users import UserLifecycleService
from tests.licensing.conftest import RecordingNotifier, user_data

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

TENANT = "tenant-sql"
MID_MARCH = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all_tables_async(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await drop_all_tables_async(engine)
    await engine.dispose()


@pytest.fixture
def sql_store(session_maker) -> SQLAlchemyLicensingStore:
    return SQLAlchemyLicensingStore(session_maker)


@pytest.fixture
def sql_ledger(sql_store, catalog) -> LicensePoolLedger:
    return LicensePoolLedger(sql_store, catalog)


@pytest.fixture
def sql_service(sql_store, catalog, sql_ledger, event_bus) -> UserLifecycleService:
    return UserLifecycleService(
        sql_store, catalog, ledger=sql_ledger, notifier=RecordingNotifier(), event_bus=event_bus
    )


async def _seat(ledger, plan_code) -> SeatCount:
    return (await ledger.get_pool(TENANT)).unwrap().seats_for(plan_code)


class TestSQLLedger:
    async def test_provision_and_reserve(self, sql_ledger, session_maker):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 2})

        seat = (await sql_ledger.reserve_seat(TENANT, "PLAN")).unwrap()

        assert seat == SeatCount(total=2, used=1, available=1)
        async with session_maker() as session:
            row = await session.get(PoolSeatTable, (TENANT, "PLAN"))
            assert (row.total, row.used, row.available) == (2, 1, 1)

    async def test_duplicate_pool(self, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 2})
        result = await sql_ledger.provision_pool(TENANT, {"PLAN": 2})
        assert result.error_code == "POOL_EXISTS"

    async def test_exhaustion(self, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 1})
        await sql_ledger.reserve_seat(TENANT, "PLAN")

        result = await sql_ledger.reserve_seat(TENANT, "PLAN")

        assert isinstance(result.error, PoolExhaustedError)
        assert await _seat(sql_ledger, "PLAN") == SeatCount(total=1, used=1, available=0)

    async def test_release_below_zero(self, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 1})
        with pytest.raises(LedgerIntegrityError):
            await sql_ledger.release_seat(TENANT, "PLAN")

    async def test_failed_move_rolls_back(self, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 1, "EXECUTE": 1})

        with pytest.raises(LedgerIntegrityError):
            await sql_ledger.move_seat(TENANT, "PLAN", "EXECUTE")

        assert await _seat(sql_ledger, "EXECUTE") == SeatCount(total=1, used=0, available=1)


class TestSQLUserLifecycle:
    async def test_full_lifecycle(self, sql_service, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 2, "EXECUTE": 1})

        user = (await sql_service.add_user(TENANT, user_data())).unwrap()
        activated = (await sql_service.activate_user(TENANT, user.user_id)).unwrap()
        assert activated.last_login.tzinfo is not None

        moved = (
            await sql_service.update_user(TENANT, user.user_id, {"plan_code": "EXECUTE"})
        ).unwrap()
        assert moved.plan_code == "EXECUTE"
        assert await _seat(sql_ledger, "PLAN") == SeatCount(total=2, used=0, available=2)
        assert await _seat(sql_ledger, "EXECUTE") == SeatCount(total=1, used=1, available=0)

        await sql_service.deactivate_user(TENANT, user.user_id)
        stored = (await sql_service.get_user(TENANT, user.user_id)).unwrap()
        assert stored.status == UserStatus.INACTIVE
        assert stored.department == "Engineering"

        await sql_service.remove_user(TENANT, user.user_id)
        assert (await sql_service.list_users(TENANT)).value == []
        assert await _seat(sql_ledger, "EXECUTE") == SeatCount(total=1, used=0, available=1)

    async def test_duplicate_email(self, sql_service, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 2})
        await sql_service.add_user(TENANT, user_data())

        result = await sql_service.add_user(TENANT, user_data(email="Ada@Acme.io"))

        assert result.error.field_errors == {"email": "Email address is already registered"}
        assert await _seat(sql_ledger, "PLAN") == SeatCount(total=2, used=1, available=1)

    async def test_exhausted_plan_creates_no_user(self, sql_service, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"EXECUTE": 1})

        results = await asyncio.gather(
            *(
                sql_service.add_user(
                    TENANT, user_data(email=f"u{i}@acme.io", plan_code="EXECUTE")
                )
                for i in range(3)
            )
        )

        assert sum(1 for r in results if r.success) == 1
        assert len((await sql_service.list_users(TENANT)).value) == 1

    async def test_failed_plan_change_keeps_user(self, sql_service, sql_ledger):
        await sql_ledger.provision_pool(TENANT, {"PLAN": 1, "EXECUTE": 1})
        await sql_service.add_user(TENANT, user_data(email="exec@acme.io", plan_code="EXECUTE"))
        user = (await sql_service.add_user(TENANT, user_data())).unwrap()

        result = await sql_service.update_user(
            TENANT, user.user_id, {"plan_code": "EXECUTE", "name": "Renamed"}
        )

        assert isinstance(result.error, PoolExhaustedError)
        stored = (await sql_service.get_user(TENANT, user.user_id)).unwrap()
        assert (stored.name, stored.plan_code) == ("Ada Lovelace", "PLAN")


class TestSQLUsage:
    async def test_increment_until_limit(self, sql_store, catalog, session_maker):
        evaluator = EntitlementEvaluator(catalog, sql_store.usage)
        key = UsageKey(owner_id=TENANT, anchor=datetime(2024, 1, 1, tzinfo=UTC))

        counts = []
        for _ in range(6):
            result = await evaluator.record_usage("EXPLORE", "REPORT_BASIC", key, now=MID_MARCH)
            counts.append(result.value.used if result.success else result.error_code)

        assert counts == [1, 2, 3, 4, 5, "QUOTA_EXCEEDED"]
        async with session_maker() as session:
            rows = (await session.execute(select(UsageCounterTable))).scalars().all()
        assert [(r.count, r.window_start, r.window_end) for r in rows] == [
            (5, datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 4, 1, tzinfo=UTC))
        ]

    async def test_unlimited_and_purge(self, sql_store, catalog):
        evaluator = EntitlementEvaluator(catalog, sql_store.usage)
        key = UsageKey(owner_id=TENANT, anchor=datetime(2024, 1, 1, tzinfo=UTC))
        january = datetime(2024, 1, 20, tzinfo=UTC)

        await evaluator.record_usage("PLAN", "TASK_BASIC", key, now=january)
        unlimited = (
            await evaluator.record_usage("PLAN", "NOTIF_BASIC", key, now=january)
        ).unwrap()
        assert unlimited.remaining is None

        assert await evaluator.purge_usage_counters(datetime(2024, 2, 3, tzinfo=UTC)) == 0
        assert await evaluator.purge_usage_counters(datetime(2024, 3, 1, tzinfo=UTC)) == 1

        check = (await evaluator.check_feature("PLAN", "NOTIF_BASIC", key)).unwrap()
        assert check.used == 1
