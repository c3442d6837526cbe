"""
License Pool Ledger.

Per-tenant seat counters keyed by plan code, with the conservation
invariant ``used + available == total`` and ``used >= 0``,
``available >= 0`` for every plan at all times.

Public operations take the tenant lock and open their own unit of work.
The ``*_in`` variants run inside a unit of work opened by the caller
(the user lifecycle service), which already holds the tenant lock.
"""

from collections.abc import Mapping

import structlog

from taskflow.platform.domain import DuplicateEntityError
from taskflow.platform.licensing.catalog import CatalogStore
from taskflow.platform.licensing.exceptions import (
    LedgerIntegrityError,
    PoolExhaustedError,
    PoolNotFoundError,
    PoolProvisioningError,
)
from taskflow.platform.licensing.locks import TenantLockRegistry
from taskflow.platform.licensing.models import LicensePool, SeatCount
from taskflow.platform.licensing.repository import LicensingStore, LicensingUnitOfWork
from taskflow.platform.licensing.results import returns_result
from taskflow.platform.logging import log_audit_event

logger = structlog.get_logger(__name__)


class LicensePoolLedger:
    """Seat accounting for tenant license pools."""

    def __init__(
        self,
        store: LicensingStore,
        catalog: CatalogStore,
        locks: TenantLockRegistry | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.locks = locks or TenantLockRegistry()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @returns_result("ledger.provision_pool")
    async def provision_pool(self, tenant_id: str, seats: Mapping[str, int]) -> LicensePool:
        """
        Create a tenant's license pool.

        Args:
            tenant_id: Tenant the pool belongs to
            seats: Seats purchased per plan code

        Returns:
            The new pool with every seat available
        """
        self._check_provisioning(tenant_id, seats)
        pool = LicensePool(
            tenant_id=tenant_id,
            seats={code: SeatCount.fresh(total) for code, total in seats.items()},
        )

        async with self.locks.hold(tenant_id):
            try:
                async with self.store.unit_of_work(tenant_id) as uow:
                    if await uow.pools.get() is not None:
                        raise DuplicateEntityError(f"License pool for tenant {tenant_id} exists")
                    await uow.pools.create(pool)
            except DuplicateEntityError as e:
                raise PoolProvisioningError(
                    f"License pool for tenant {tenant_id} already exists",
                    tenant_id,
                    error_code="POOL_EXISTS",
                    status_code=409,
                ) from e

        logger.info("License pool provisioned", tenant_id=tenant_id, seats=dict(seats))
        log_audit_event(
            action="pool.provisioned",
            category="licensing",
            tenant_id=tenant_id,
            resource_type="license_pool",
            resource_id=tenant_id,
            seats=dict(seats),
        )
        return pool

    @returns_result("ledger.get_pool")
    async def get_pool(self, tenant_id: str) -> LicensePool:
        async with self.store.unit_of_work(tenant_id) as uow:
            pool = await uow.pools.get()
        if pool is None:
            raise PoolNotFoundError(tenant_id)
        return pool

    @returns_result("ledger.reserve_seat")
    async def reserve_seat(self, tenant_id: str, plan_code: str) -> SeatCount:
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                return await self.reserve_in(uow, plan_code)

    @returns_result("ledger.release_seat")
    async def release_seat(self, tenant_id: str, plan_code: str) -> SeatCount:
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                return await self.release_in(uow, plan_code)

    @returns_result("ledger.move_seat")
    async def move_seat(
        self, tenant_id: str, from_plan: str, to_plan: str
    ) -> dict[str, SeatCount]:
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                return await self.move_in(uow, from_plan, to_plan)

    # ------------------------------------------------------------------
    # Unit-of-work variants
    # ------------------------------------------------------------------

    async def reserve_in(self, uow: LicensingUnitOfWork, plan_code: str) -> SeatCount:
        """Take one seat of ``plan_code``; a missing pool entry counts as exhausted."""
        seat = await uow.pools.try_reserve(plan_code)
        if seat is None:
            logger.info("No seat available", tenant_id=uow.tenant_id, plan_code=plan_code)
            raise PoolExhaustedError(plan_code, uow.tenant_id)
        logger.debug(
            "Seat reserved",
            tenant_id=uow.tenant_id,
            plan_code=plan_code,
            used=seat.used,
            available=seat.available,
        )
        return seat

    async def release_in(self, uow: LicensingUnitOfWork, plan_code: str) -> SeatCount:
        """
        Return one seat of ``plan_code`` to the pool.

        Raises:
            PoolNotFoundError: The pool has no entry for the plan
            LedgerIntegrityError: ``used`` is already 0, so some earlier
                operation lost track of a seat
        """
        current = await uow.pools.get_seat(plan_code)
        if current is None:
            raise PoolNotFoundError(uow.tenant_id, plan_code)

        seat = await uow.pools.try_release(plan_code)
        if seat is None:
            logger.error(
                "Seat release would drive used below zero",
                tenant_id=uow.tenant_id,
                plan_code=plan_code,
                total=current.total,
                used=current.used,
                available=current.available,
            )
            raise LedgerIntegrityError(
                f"Release of plan {plan_code} seat would make used negative",
                uow.tenant_id,
                plan_code,
            )
        logger.debug(
            "Seat released",
            tenant_id=uow.tenant_id,
            plan_code=plan_code,
            used=seat.used,
            available=seat.available,
        )
        return seat

    async def move_in(
        self, uow: LicensingUnitOfWork, from_plan: str, to_plan: str
    ) -> dict[str, SeatCount]:
        """Reserve a ``to_plan`` seat, then release the ``from_plan`` seat.

        The release is skipped when the reserve fails; the caller's unit of
        work discards the reserve when the release fails.
        """
        if from_plan == to_plan:
            seat = await uow.pools.get_seat(from_plan)
            if seat is None:
                raise PoolNotFoundError(uow.tenant_id, from_plan)
            return {from_plan: seat}

        reserved = await self.reserve_in(uow, to_plan)
        released = await self.release_in(uow, from_plan)
        return {to_plan: reserved, from_plan: released}

    # ------------------------------------------------------------------

    def _check_provisioning(self, tenant_id: str, seats: Mapping[str, int]) -> None:
        if not seats:
            raise PoolProvisioningError("A license pool needs at least one plan", tenant_id)
        for plan_code, total in seats.items():
            plan = self.catalog.get_plan(plan_code)
            if total < 1:
                raise PoolProvisioningError(
                    f"Seat count for plan {plan_code} must be at least 1",
                    tenant_id,
                    context={"plan_code": plan_code, "total": total},
                )
            if not plan.is_unlimited and total > plan.max_users:
                raise PoolProvisioningError(
                    f"Plan {plan_code} allows at most {plan.max_users} seats",
                    tenant_id,
                    context={"plan_code": plan_code, "total": total, "max_users": plan.max_users},
                )
