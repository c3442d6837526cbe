"""Per-tenant mutexes serializing ledger and lifecycle operations."""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class TenantLockRegistry:
    """
    One ``asyncio.Lock`` per tenant.

    Operations of the same tenant run one at a time for the whole
    validate -> reserve -> persist sequence; different tenants never wait
    on each other. The locks are not reentrant.

    Locks are held weakly: an entry lives only while some caller holds or
    waits on the lock, so the registry does not grow with every tenant id
    it has ever seen.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        async with self.lock_for(tenant_id):
            yield

    def is_held(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
