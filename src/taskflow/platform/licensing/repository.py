"""
Licensing persistence interfaces and the in-memory store.

Pool and user changes happen inside a tenant-scoped unit of work: every
change made inside ``store.unit_of_work(tenant_id)`` is discarded when the
block raises. Usage counters live outside units of work and are changed
only through an atomic conditional increment.
"""

import copy
import threading
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol, runtime_checkable

from taskflow.platform.domain import DuplicateEntityError
from taskflow.platform.licensing.models import (
    LicensePool,
    SeatCount,
    UsageCounter,
    UserAccount,
    UserStatus,
)

# ============================================================================
# Protocols
# ============================================================================


@runtime_checkable
class PoolRepository(Protocol):
    """Seat counters of one tenant."""

    async def get(self) -> LicensePool | None: ...

    async def create(self, pool: LicensePool) -> None: ...

    async def get_seat(self, plan_code: str) -> SeatCount | None: ...

    async def try_reserve(self, plan_code: str) -> SeatCount | None:
        """Move one seat from available to used; None when none is available."""
        ...

    async def try_release(self, plan_code: str) -> SeatCount | None:
        """Move one seat from used to available; None when ``used`` is already 0."""
        ...


@runtime_checkable
class UserRepository(Protocol):
    """User records of one tenant."""

    async def get(self, user_id: str) -> UserAccount | None: ...

    async def get_by_email(self, email: str) -> UserAccount | None: ...

    async def find_all(self, status: UserStatus | None = None) -> list[UserAccount]: ...

    async def add(self, user: UserAccount) -> None: ...

    async def update(self, user: UserAccount) -> None: ...

    async def delete(self, user_id: str) -> None: ...


@runtime_checkable
class LicensingUnitOfWork(Protocol):
    tenant_id: str
    pools: PoolRepository
    users: UserRepository


@runtime_checkable
class UsageRepository(Protocol):
    """Per-window usage counters."""

    async def get_count(self, owner_key: str, feature_code: str, window_start: datetime) -> int: ...

    async def increment_if_below(
        self,
        owner_key: str,
        feature_code: str,
        window_start: datetime,
        window_end: datetime | None,
        limit: int | None,
    ) -> int | None:
        """Atomically add one use; return the new count, or None when ``limit`` is reached."""
        ...

    async def purge_ended_before(self, cutoff: datetime) -> int:
        """Delete counters whose window ended at or before ``cutoff``."""
        ...


@runtime_checkable
class LicensingStore(Protocol):
    usage: UsageRepository

    def unit_of_work(self, tenant_id: str) -> AbstractAsyncContextManager[LicensingUnitOfWork]: ...


# ============================================================================
# In-memory implementation
# ============================================================================


class _TenantPartition:
    def __init__(self) -> None:
        self.pool: LicensePool | None = None
        self.users: dict[str, UserAccount] = {}


class InMemoryPoolRepository:
    def __init__(self, partition: _TenantPartition) -> None:
        self._partition = partition

    async def get(self) -> LicensePool | None:
        pool = self._partition.pool
        return pool.model_copy(deep=True) if pool else None

    async def create(self, pool: LicensePool) -> None:
        if self._partition.pool is not None:
            raise DuplicateEntityError(f"License pool for tenant {pool.tenant_id} already exists")
        self._partition.pool = pool.model_copy(deep=True)

    async def get_seat(self, plan_code: str) -> SeatCount | None:
        pool = self._partition.pool
        return pool.seats_for(plan_code) if pool else None

    async def try_reserve(self, plan_code: str) -> SeatCount | None:
        seat = await self.get_seat(plan_code)
        if seat is None or seat.available <= 0:
            return None
        updated = SeatCount(total=seat.total, used=seat.used + 1, available=seat.available - 1)
        self._partition.pool.seats[plan_code] = updated  # type: ignore[union-attr]
        return updated

    async def try_release(self, plan_code: str) -> SeatCount | None:
        seat = await self.get_seat(plan_code)
        if seat is None or seat.used <= 0:
            return None
        updated = SeatCount(total=seat.total, used=seat.used - 1, available=seat.available + 1)
        self._partition.pool.seats[plan_code] = updated  # type: ignore[union-attr]
        return updated


class InMemoryUserRepository:
    def __init__(self, partition: _TenantPartition) -> None:
        self._partition = partition

    async def get(self, user_id: str) -> UserAccount | None:
        user = self._partition.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_by_email(self, email: str) -> UserAccount | None:
        wanted = email.strip().lower()
        for user in self._partition.users.values():
            if user.email.lower() == wanted:
                return user.model_copy(deep=True)
        return None

    async def find_all(self, status: UserStatus | None = None) -> list[UserAccount]:
        users = sorted(self._partition.users.values(), key=lambda u: u.date_created)
        return [u.model_copy(deep=True) for u in users if status is None or u.status == status]

    async def add(self, user: UserAccount) -> None:
        self._check_email_free(user)
        if user.user_id in self._partition.users:
            raise DuplicateEntityError(f"User {user.user_id} already exists")
        self._partition.users[user.user_id] = user.model_copy(deep=True)

    async def update(self, user: UserAccount) -> None:
        self._check_email_free(user)
        self._partition.users[user.user_id] = user.model_copy(deep=True)

    async def delete(self, user_id: str) -> None:
        self._partition.users.pop(user_id, None)

    def _check_email_free(self, user: UserAccount) -> None:
        wanted = user.email.lower()
        for other in self._partition.users.values():
            if other.user_id != user.user_id and other.email.lower() == wanted:
                raise DuplicateEntityError(f"Email {user.email} already registered")


class InMemoryUnitOfWork:
    def __init__(self, tenant_id: str, partition: _TenantPartition) -> None:
        self.tenant_id = tenant_id
        self.pools = InMemoryPoolRepository(partition)
        self.users = InMemoryUserRepository(partition)


class InMemoryUsageRepository:
    """Usage counters guarded by a lock so increments never lose updates."""

    def __init__(self) -> None:
        self._counters: dict[tuple[str, str, datetime], UsageCounter] = {}
        self._lock = threading.Lock()

    async def get_count(self, owner_key: str, feature_code: str, window_start: datetime) -> int:
        counter = self._counters.get((owner_key, feature_code, window_start))
        return counter.count if counter else 0

    async def increment_if_below(
        self,
        owner_key: str,
        feature_code: str,
        window_start: datetime,
        window_end: datetime | None,
        limit: int | None,
    ) -> int | None:
        key = (owner_key, feature_code, window_start)
        with self._lock:
            counter = self._counters.get(key)
            count = counter.count if counter else 0
            if limit is not None and count >= limit:
                return None
            self._counters[key] = UsageCounter(
                owner_key=owner_key,
                feature_code=feature_code,
                window_start=window_start,
                window_end=window_end,
                count=count + 1,
            )
            return count + 1

    async def purge_ended_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [
                key
                for key, counter in self._counters.items()
                if counter.window_end is not None and counter.window_end <= cutoff
            ]
            for key in expired:
                del self._counters[key]
        return len(expired)

    def counters(self) -> list[UsageCounter]:
        with self._lock:
            return list(self._counters.values())


class InMemoryLicensingStore:
    """
    Process-local store, partitioned by tenant.

    Records are copied on the way in and out, so callers never mutate stored
    state directly. A unit of work snapshots the tenant partition and
    restores it if the block raises; callers hold the tenant lock for the
    duration of the unit of work.
    """

    def __init__(self) -> None:
        self._partitions: dict[str, _TenantPartition] = {}
        self.usage = InMemoryUsageRepository()

    def tenant_ids(self) -> list[str]:
        """Tenants that currently hold a pool or users."""
        return sorted(self._partitions)

    @asynccontextmanager
    async def unit_of_work(self, tenant_id: str) -> AsyncIterator[InMemoryUnitOfWork]:
        # Unknown tenants work on a scratch partition that is only kept if it gains data.
        partition = self._partitions.get(tenant_id)
        if partition is None:
            partition = _TenantPartition()
        snapshot = (copy.deepcopy(partition.pool), copy.deepcopy(partition.users))
        try:
            yield InMemoryUnitOfWork(tenant_id, partition)
        except BaseException:
            partition.pool, partition.users = snapshot
            raise
        else:
            if partition.pool is None and not partition.users:
                self._partitions.pop(tenant_id, None)
            else:
                self._partitions[tenant_id] = partition
