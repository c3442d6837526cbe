"""
User Lifecycle Manager.

Owns the user records of each tenant. Every mutation runs under the tenant
lock inside one unit of work in validate -> reserve -> persist order, so a
failed validation or an exhausted pool leaves both the user set and the
seat counters untouched.

Status transitions: PENDING -> ACTIVE (activation), PENDING or ACTIVE ->
INACTIVE (deactivation), INACTIVE -> ACTIVE (reactivation). Removal is a
separate destructive operation, not a status. Deactivation keeps the
seat; only removal frees it.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict
from datetime import timedelta
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from taskflow.platform.domain import DuplicateEntityError
from taskflow.platform.events import EventBus
from taskflow.platform.licensing.catalog import CatalogStore
from taskflow.platform.licensing.events import (
    LicensingEvents,
    emit_invitation_resend,
    emit_user_event,
)
from taskflow.platform.licensing.exceptions import (
    AlreadyActiveError,
    AlreadyInactiveError,
    HasActiveWorkError,
    NotPendingError,
    UserNotFoundError,
    UserValidationError,
)
from taskflow.platform.licensing.ledger import LicensePoolLedger
from taskflow.platform.licensing.locks import TenantLockRegistry
from taskflow.platform.licensing.models import (
    UserAccount,
    UserCreateRequest,
    UserStatus,
    UserUpdateRequest,
    utcnow,
)
from taskflow.platform.licensing.repository import LicensingStore, LicensingUnitOfWork
from taskflow.platform.licensing.results import returns_result
from taskflow.platform.licensing.validation import (
    ValidatedUserFields,
    normalize_email,
    validate_user_fields,
)
from taskflow.platform.logging import log_audit_event
from taskflow.platform.settings import get_settings

logger = structlog.get_logger(__name__)

InvitationNotifier = Callable[[UserAccount], Awaitable[None]]

ACTIVITY_COUNTERS = ("tasks_assigned", "tasks_completed", "forms_created", "active_processes")
ACTIVITY_ERROR_MESSAGES = {
    "greater_than_equal": "Must not be negative",
    "int_parsing": "Must be a whole number",
    "int_from_float": "Must be a whole number",
    "int_type": "Must be a whole number",
}

RequestT = TypeVar("RequestT", UserCreateRequest, UserUpdateRequest)


def _coerce_request(data: RequestT | Mapping[str, Any], model: type[RequestT]) -> RequestT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise UserValidationError(_field_errors(e)) from e


def _field_errors(
    error: ValidationError, messages: Mapping[str, str] | None = None
) -> dict[str, str]:
    field_errors: dict[str, str] = {}
    for err in error.errors():
        field = str(err["loc"][0]) if err["loc"] else "__root__"
        field_errors.setdefault(field, (messages or {}).get(err["type"], err["msg"]))
    return field_errors


def _duplicate_email() -> UserValidationError:
    return UserValidationError({"email": "Email address is already registered"})


class UserLifecycleService:
    """Creates, edits, deactivates, reactivates, activates and removes tenant users."""

    def __init__(
        self,
        store: LicensingStore,
        catalog: CatalogStore,
        ledger: LicensePoolLedger | None = None,
        notifier: InvitationNotifier | None = None,
        event_bus: EventBus | None = None,
        reinvite_after_days: int | None = None,
        max_field_length: int | None = None,
    ) -> None:
        licensing_settings = get_settings().licensing
        self.store = store
        self.catalog = catalog
        self.ledger = ledger or LicensePoolLedger(store, catalog, TenantLockRegistry())
        self.locks = self.ledger.locks
        self.event_bus = event_bus
        self.notifier = notifier or self._emit_invitation
        if reinvite_after_days is None:
            reinvite_after_days = licensing_settings.reinvite_after_days
        self.reinvite_after = timedelta(days=reinvite_after_days)
        self.max_field_length = max_field_length or licensing_settings.user_field_max_length

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    @returns_result("users.add")
    async def add_user(
        self, tenant_id: str, data: UserCreateRequest | Mapping[str, Any]
    ) -> UserAccount:
        """Validate, reserve a seat of the chosen plan, then create a PENDING user."""
        request = _coerce_request(data, UserCreateRequest)

        async with self.locks.hold(tenant_id):
            try:
                async with self.store.unit_of_work(tenant_id) as uow:
                    fields = await self._validate(uow, request)
                    await self.ledger.reserve_in(uow, fields.plan_code)
                    user = UserAccount(
                        tenant_id=tenant_id, status=UserStatus.PENDING, **asdict(fields)
                    )
                    await uow.users.add(user)
            except DuplicateEntityError as e:
                raise _duplicate_email() from e

        logger.info(
            "User added", tenant_id=tenant_id, user_id=user.user_id, plan_code=user.plan_code
        )
        self._audit("user.added", user, plan_code=user.plan_code, role=user.role.value)
        await self._emit(LicensingEvents.USER_ADDED, user)
        return user

    @returns_result("users.update")
    async def update_user(
        self, tenant_id: str, user_id: str, data: UserUpdateRequest | Mapping[str, Any]
    ) -> UserAccount:
        """
        Re-validate the merged fields and apply them.

        A plan change moves the seat (reserve new, then release old) inside
        the same unit of work; the field update is only committed when the
        move succeeds.
        """
        request = _coerce_request(data, UserUpdateRequest)

        async with self.locks.hold(tenant_id):
            try:
                async with self.store.unit_of_work(tenant_id) as uow:
                    current = await self._require_user(uow, user_id)
                    fields = await self._validate(uow, request.merged_with(current), current)
                    if fields.plan_code != current.plan_code:
                        await self.ledger.move_in(uow, current.plan_code, fields.plan_code)
                    updated = current.model_copy(
                        update={**asdict(fields), "updated_at": utcnow()}
                    )
                    await uow.users.update(updated)
            except DuplicateEntityError as e:
                raise _duplicate_email() from e

        changed = sorted(
            field for field, value in asdict(fields).items() if getattr(current, field) != value
        )
        logger.info("User updated", tenant_id=tenant_id, user_id=user_id, changed=changed)
        self._audit(
            "user.updated",
            updated,
            changed_fields=changed,
            previous_plan_code=current.plan_code,
            plan_code=updated.plan_code,
        )
        await self._emit(LicensingEvents.USER_UPDATED, updated, changed_fields=changed)
        return updated

    @returns_result("users.deactivate")
    async def deactivate_user(self, tenant_id: str, user_id: str) -> UserAccount:
        """Mark the user INACTIVE. The seat stays reserved."""
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                user = await self._require_user(uow, user_id)
                if user.status == UserStatus.INACTIVE:
                    raise AlreadyInactiveError(user_id)
                previous_status = user.status
                user = user.model_copy(
                    update={"status": UserStatus.INACTIVE, "updated_at": utcnow()}
                )
                await uow.users.update(user)

        logger.info("User deactivated", tenant_id=tenant_id, user_id=user_id)
        self._audit("user.deactivated", user, previous_status=previous_status.value)
        await self._emit(LicensingEvents.USER_DEACTIVATED, user)
        return user

    @returns_result("users.reactivate")
    async def reactivate_user(self, tenant_id: str, user_id: str) -> UserAccount:
        """
        Mark the user ACTIVE again.

        When the user never logged in, or last logged in longer ago than the
        reinvite threshold, an invitation resend is requested after commit.
        A failing notifier is logged and does not fail the reactivation.
        """
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                user = await self._require_user(uow, user_id)
                if user.status == UserStatus.ACTIVE:
                    raise AlreadyActiveError(user_id)
                previous_status = user.status
                now = utcnow()
                user = user.model_copy(update={"status": UserStatus.ACTIVE, "updated_at": now})
                await uow.users.update(user)

        reinvite = user.last_login is None or now - user.last_login > self.reinvite_after
        logger.info(
            "User reactivated", tenant_id=tenant_id, user_id=user_id, reinvite=reinvite
        )
        self._audit("user.reactivated", user, previous_status=previous_status.value)
        await self._emit(LicensingEvents.USER_REACTIVATED, user)
        if reinvite:
            await self._notify(user)
        return user

    @returns_result("users.remove")
    async def remove_user(self, tenant_id: str, user_id: str) -> UserAccount:
        """Delete the user and free their seat; refused while they own active processes."""
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                user = await self._require_user(uow, user_id)
                if user.active_processes > 0:
                    raise HasActiveWorkError(user_id, user.active_processes)
                await uow.users.delete(user_id)
                seat = await self.ledger.release_in(uow, user.plan_code)

        logger.info(
            "User removed",
            tenant_id=tenant_id,
            user_id=user_id,
            plan_code=user.plan_code,
            available=seat.available,
        )
        self._audit("user.removed", user, plan_code=user.plan_code, email=user.email)
        await self._emit(LicensingEvents.USER_REMOVED, user)
        return user

    @returns_result("users.activate")
    async def activate_user(self, tenant_id: str, user_id: str) -> UserAccount:
        """Complete invitation acceptance: PENDING -> ACTIVE, stamping ``last_login``."""
        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                user = await self._require_user(uow, user_id)
                if user.status != UserStatus.PENDING:
                    raise NotPendingError(user_id, user.status.value)
                now = utcnow()
                user = user.model_copy(
                    update={"status": UserStatus.ACTIVE, "last_login": now, "updated_at": now}
                )
                await uow.users.update(user)

        logger.info("User activated", tenant_id=tenant_id, user_id=user_id)
        self._audit("user.activated", user)
        await self._emit(LicensingEvents.USER_ACTIVATED, user)
        return user

    # ------------------------------------------------------------------
    # Queries and collaborator entry points
    # ------------------------------------------------------------------

    @returns_result("users.get")
    async def get_user(self, tenant_id: str, user_id: str) -> UserAccount:
        async with self.store.unit_of_work(tenant_id) as uow:
            return await self._require_user(uow, user_id)

    @returns_result("users.list")
    async def list_users(
        self, tenant_id: str, status: UserStatus | None = None
    ) -> list[UserAccount]:
        async with self.store.unit_of_work(tenant_id) as uow:
            return await uow.users.find_all(status)

    @returns_result("users.record_activity")
    async def record_activity(self, tenant_id: str, user_id: str, **counters: int) -> UserAccount:
        """Overwrite activity counters reported by the task and form subsystems."""
        unknown = sorted(set(counters) - set(ACTIVITY_COUNTERS))
        if unknown:
            raise UserValidationError({field: "Unknown activity counter" for field in unknown})

        async with self.locks.hold(tenant_id):
            async with self.store.unit_of_work(tenant_id) as uow:
                user = await self._require_user(uow, user_id)
                try:
                    user = UserAccount.model_validate({**user.model_dump(), **counters})
                except ValidationError as e:
                    raise UserValidationError(_field_errors(e, ACTIVITY_ERROR_MESSAGES)) from e
                await uow.users.update(user)
        return user

    # ------------------------------------------------------------------

    async def _require_user(self, uow: LicensingUnitOfWork, user_id: str) -> UserAccount:
        user = await uow.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id, uow.tenant_id)
        return user

    async def _validate(
        self,
        uow: LicensingUnitOfWork,
        request: UserCreateRequest,
        current: UserAccount | None = None,
    ) -> ValidatedUserFields:
        email_owner_id = None
        if request.email and request.email.strip():
            owner = await uow.users.get_by_email(normalize_email(request.email))
            email_owner_id = owner.user_id if owner else None
        plans = {plan.plan_code: plan for plan in self.catalog.list_plans()}
        return validate_user_fields(
            request,
            plans,
            email_owner_id=email_owner_id,
            current_user_id=current.user_id if current else None,
            current_plan_code=current.plan_code if current else None,
            max_length=self.max_field_length,
        )

    def _audit(self, action: str, user: UserAccount, **details: Any) -> None:
        log_audit_event(
            action=action,
            category="licensing",
            tenant_id=user.tenant_id,
            resource_type="user",
            resource_id=user.user_id,
            **details,
        )

    async def _emit(self, event_type: str, user: UserAccount, **extra: Any) -> None:
        try:
            await emit_user_event(event_type, user, event_bus=self.event_bus, **extra)
        except Exception as e:
            logger.warning(
                "Failed to publish user event",
                event_type=event_type,
                user_id=user.user_id,
                error=str(e),
            )

    async def _emit_invitation(self, user: UserAccount) -> None:
        await emit_invitation_resend(user, event_bus=self.event_bus)

    async def _notify(self, user: UserAccount) -> None:
        try:
            await self.notifier(user)
        except Exception as e:
            logger.warning(
                "Invitation resend failed",
                tenant_id=user.tenant_id,
                user_id=user.user_id,
                error=str(e),
            )
