"""
SQLAlchemy-backed licensing store.

Seat reservation and release are single conditional UPDATE statements
(compare-and-decrement), so two transactions racing for the last seat can
never both succeed. Usage counters are incremented with
``count = count + 1 WHERE count < limit``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.platform.domain import DuplicateEntityError, RepositoryError
from taskflow.platform.licensing.models import (
    LicensePool,
    SeatCount,
    UserAccount,
    UserRole,
    UserStatus,
)
from taskflow.platform.licensing.tables import (
    LicensedUserTable,
    PoolSeatTable,
    UsageCounterTable,
)

logger = structlog.get_logger(__name__)

_USER_FIELDS = (
    "user_id",
    "tenant_id",
    "name",
    "email",
    "plan_code",
    "department",
    "designation",
    "location",
    "date_created",
    "updated_at",
    "last_login",
    "tasks_assigned",
    "tasks_completed",
    "forms_created",
    "active_processes",
)


def _seat(row: PoolSeatTable) -> SeatCount:
    return SeatCount(total=row.total, used=row.used, available=row.available)


def _to_account(row: LicensedUserTable) -> UserAccount:
    data = {field: getattr(row, field) for field in _USER_FIELDS}
    return UserAccount(role=UserRole(row.role), status=UserStatus(row.status), **data)


def _apply_account(row: LicensedUserTable, user: UserAccount) -> None:
    for field in _USER_FIELDS:
        setattr(row, field, getattr(user, field))
    row.role = user.role.value
    row.status = user.status.value


class SQLAlchemyPoolRepository:
    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self) -> LicensePool | None:
        result = await self._session.execute(
            select(PoolSeatTable).where(PoolSeatTable.tenant_id == self._tenant_id)
        )
        rows = result.scalars().all()
        if not rows:
            return None
        return LicensePool(
            tenant_id=self._tenant_id,
            seats={row.plan_code: _seat(row) for row in rows},
            created_at=min(row.created_at for row in rows),
        )

    async def create(self, pool: LicensePool) -> None:
        for plan_code, seat in pool.seats.items():
            self._session.add(
                PoolSeatTable(
                    tenant_id=self._tenant_id,
                    plan_code=plan_code,
                    total=seat.total,
                    used=seat.used,
                    available=seat.available,
                    created_at=pool.created_at,
                    updated_at=pool.created_at,
                )
            )
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(
                f"License pool for tenant {self._tenant_id} already exists"
            ) from e

    async def get_seat(self, plan_code: str) -> SeatCount | None:
        row = await self._session.get(
            PoolSeatTable, (self._tenant_id, plan_code), populate_existing=True
        )
        return _seat(row) if row else None

    async def try_reserve(self, plan_code: str) -> SeatCount | None:
        stmt = (
            update(PoolSeatTable)
            .where(
                PoolSeatTable.tenant_id == self._tenant_id,
                PoolSeatTable.plan_code == plan_code,
                PoolSeatTable.available > 0,
            )
            .values(used=PoolSeatTable.used + 1, available=PoolSeatTable.available - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_seat(plan_code)

    async def try_release(self, plan_code: str) -> SeatCount | None:
        stmt = (
            update(PoolSeatTable)
            .where(
                PoolSeatTable.tenant_id == self._tenant_id,
                PoolSeatTable.plan_code == plan_code,
                PoolSeatTable.used > 0,
            )
            .values(used=PoolSeatTable.used - 1, available=PoolSeatTable.available + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_seat(plan_code)


class SQLAlchemyUserRepository:
    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def _row(self, user_id: str) -> LicensedUserTable | None:
        row = await self._session.get(LicensedUserTable, user_id)
        if row is None or row.tenant_id != self._tenant_id:
            return None
        return row

    async def get(self, user_id: str) -> UserAccount | None:
        row = await self._row(user_id)
        return _to_account(row) if row else None

    async def get_by_email(self, email: str) -> UserAccount | None:
        result = await self._session.execute(
            select(LicensedUserTable).where(
                LicensedUserTable.tenant_id == self._tenant_id,
                func.lower(LicensedUserTable.email) == email.strip().lower(),
            )
        )
        row = result.scalars().first()
        return _to_account(row) if row else None

    async def find_all(self, status: UserStatus | None = None) -> list[UserAccount]:
        stmt = select(LicensedUserTable).where(LicensedUserTable.tenant_id == self._tenant_id)
        if status is not None:
            stmt = stmt.where(LicensedUserTable.status == status.value)
        result = await self._session.execute(stmt.order_by(LicensedUserTable.date_created))
        return [_to_account(row) for row in result.scalars().all()]

    async def add(self, user: UserAccount) -> None:
        row = LicensedUserTable()
        _apply_account(row, user)
        self._session.add(row)
        await self._flush(user)

    async def update(self, user: UserAccount) -> None:
        row = await self._row(user.user_id)
        if row is None:
            raise RepositoryError(f"User {user.user_id} not found for update")
        _apply_account(row, user)
        await self._flush(user)

    async def delete(self, user_id: str) -> None:
        await self._session.execute(
            delete(LicensedUserTable).where(
                LicensedUserTable.user_id == user_id,
                LicensedUserTable.tenant_id == self._tenant_id,
            ).execution_options(synchronize_session=False)
        )

    async def _flush(self, user: UserAccount) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"Email {user.email} already registered") from e


class SQLAlchemyUnitOfWork:
    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        self.session = session
        self.pools = SQLAlchemyPoolRepository(session, tenant_id)
        self.users = SQLAlchemyUserRepository(session, tenant_id)


class SQLAlchemyUsageRepository:
    """Usage counters, each increment in its own short transaction."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def get_count(self, owner_key: str, feature_code: str, window_start: datetime) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(UsageCounterTable.count).where(
                    UsageCounterTable.owner_key == owner_key,
                    UsageCounterTable.feature_code == feature_code,
                    UsageCounterTable.window_start == window_start,
                )
            )
            return result.scalar_one_or_none() or 0

    async def increment_if_below(
        self,
        owner_key: str,
        feature_code: str,
        window_start: datetime,
        window_end: datetime | None,
        limit: int | None,
    ) -> int | None:
        if limit is not None and limit <= 0:
            return None

        key = (
            UsageCounterTable.owner_key == owner_key,
            UsageCounterTable.feature_code == feature_code,
            UsageCounterTable.window_start == window_start,
        )
        # A concurrent first use may insert the row between our UPDATE and
        # INSERT; the primary key rejects the second insert and we retry.
        for _attempt in range(2):
            async with self._session_maker() as session:
                try:
                    async with session.begin():
                        stmt = update(UsageCounterTable).where(*key)
                        if limit is not None:
                            stmt = stmt.where(UsageCounterTable.count < limit)
                        result = await session.execute(
                            stmt.values(count=UsageCounterTable.count + 1).execution_options(
                                synchronize_session=False
                            )
                        )
                        if result.rowcount:
                            current = await session.execute(
                                select(UsageCounterTable.count).where(*key)
                            )
                            return current.scalar_one()

                        existing = await session.execute(
                            select(UsageCounterTable.count).where(*key)
                        )
                        if existing.scalar_one_or_none() is not None:
                            return None

                        session.add(
                            UsageCounterTable(
                                owner_key=owner_key,
                                feature_code=feature_code,
                                window_start=window_start,
                                window_end=window_end,
                                count=1,
                            )
                        )
                        await session.flush()
                        return 1
                except IntegrityError:
                    logger.debug(
                        "Usage counter insert raced, retrying",
                        owner_key=owner_key,
                        feature_code=feature_code,
                    )
        raise DuplicateEntityError(
            f"Could not create usage counter {owner_key}/{feature_code} at {window_start}"
        )

    async def purge_ended_before(self, cutoff: datetime) -> int:
        async with self._session_maker() as session, session.begin():
            result = await session.execute(
                delete(UsageCounterTable).where(
                    UsageCounterTable.window_end.is_not(None),
                    UsageCounterTable.window_end <= cutoff,
                ).execution_options(synchronize_session=False)
            )
            return result.rowcount or 0


class SQLAlchemyLicensingStore:
    """Licensing store over an async SQLAlchemy session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker
        self.usage = SQLAlchemyUsageRepository(session_maker)

    @asynccontextmanager
    async def unit_of_work(self, tenant_id: str) -> AsyncIterator[SQLAlchemyUnitOfWork]:
        async with self._session_maker() as session:
            async with session.begin():
                yield SQLAlchemyUnitOfWork(session, tenant_id)
