"""
Licensing system exceptions.

Every expected outcome of a lifecycle or entitlement operation (bad input,
no seat left, unknown user, state machine misuse, quota spent) has its own
error type carrying an error code, an HTTP-style status code, context and a
recovery hint. The exposed operations return these as values.

Integrity errors are different: they mean a ledger or catalog invariant has
already been broken elsewhere and they are always raised.
"""

from typing import Any


class LicensingError(Exception):
    """
    Base licensing error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    recoverable = True

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "LICENSING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# ============================================================================
# Validation
# ============================================================================


class UserValidationError(LicensingError):
    """Field-level validation failure with one message per offending field."""

    def __init__(self, field_errors: dict[str, str]) -> None:
        self.field_errors = dict(field_errors)
        summary = ", ".join(f"{field}: {msg}" for field, msg in sorted(self.field_errors.items()))
        super().__init__(
            f"Validation failed: {summary}",
            "VALIDATION_ERROR",
            status_code=422,
            context={"field_errors": self.field_errors},
            recovery_hint="Correct the listed fields and retry",
        )


# ============================================================================
# Seats
# ============================================================================


class PoolExhaustedError(LicensingError):
    """No seat is available for the requested plan."""

    def __init__(self, plan_code: str, tenant_id: str | None = None) -> None:
        context: dict[str, Any] = {"plan_code": plan_code}
        if tenant_id:
            context["tenant_id"] = tenant_id
        super().__init__(
            f"No seats available for plan {plan_code}",
            "POOL_EXHAUSTED",
            status_code=409,
            context=context,
            recovery_hint="Remove a user on this plan or purchase additional seats",
        )


class PoolProvisioningError(LicensingError):
    """Requested pool layout is not allowed by the catalog."""

    def __init__(
        self,
        message: str,
        tenant_id: str,
        error_code: str = "POOL_PROVISIONING",
        status_code: int = 422,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            error_code,
            status_code=status_code,
            context={"tenant_id": tenant_id, **(context or {})},
            recovery_hint="Check plan codes and seat counts against the catalog",
        )


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(LicensingError):
    """A referenced entity does not exist."""

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_FOUND",
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, error_code, status_code=404, context=context, recovery_hint=recovery_hint
        )


class PlanNotFoundError(NotFoundError):
    """License plan not found."""

    def __init__(self, plan_code: str) -> None:
        super().__init__(
            f"License plan {plan_code} not found",
            "PLAN_NOT_FOUND",
            context={"plan_code": plan_code},
            recovery_hint="Verify the plan code against the active catalog",
        )


class FeatureNotFoundError(NotFoundError):
    """Feature not found."""

    def __init__(self, feature_code: str) -> None:
        super().__init__(
            f"Feature {feature_code} not found",
            "FEATURE_NOT_FOUND",
            context={"feature_code": feature_code},
            recovery_hint="Verify the feature code against the active catalog",
        )


class EntitlementNotFoundError(NotFoundError):
    """No entitlement row for a (plan, feature) pair."""

    def __init__(self, plan_code: str, feature_code: str) -> None:
        super().__init__(
            f"No entitlement for feature {feature_code} under plan {plan_code}",
            "ENTITLEMENT_NOT_FOUND",
            context={"plan_code": plan_code, "feature_code": feature_code},
        )


class UserNotFoundError(NotFoundError):
    """User account not found."""

    def __init__(self, user_id: str, tenant_id: str | None = None) -> None:
        context = {"user_id": user_id}
        if tenant_id:
            context["tenant_id"] = tenant_id
        super().__init__(
            f"User {user_id} not found",
            "USER_NOT_FOUND",
            context=context,
            recovery_hint="Verify the user ID and tenant",
        )


class PoolNotFoundError(NotFoundError):
    """Tenant has no license pool, or the pool has no entry for a plan."""

    def __init__(self, tenant_id: str, plan_code: str | None = None) -> None:
        context = {"tenant_id": tenant_id}
        if plan_code:
            context["plan_code"] = plan_code
            message = f"License pool for tenant {tenant_id} has no entry for plan {plan_code}"
        else:
            message = f"License pool for tenant {tenant_id} not found"
        super().__init__(
            message,
            "POOL_NOT_FOUND",
            context=context,
            recovery_hint="Provision the tenant's license pool first",
        )


# ============================================================================
# User state machine
# ============================================================================


class UserStateError(LicensingError):
    """Invalid user status transition."""

    def __init__(
        self,
        message: str,
        error_code: str,
        user_id: str,
        current_status: str,
        requested_status: str,
    ):
        super().__init__(
            message,
            error_code,
            status_code=409,
            context={
                "user_id": user_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
            recovery_hint=f"Cannot transition from {current_status} to {requested_status}. Check user status first.",
        )


class AlreadyActiveError(UserStateError):
    """User is already active."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"User {user_id} is already active", "ALREADY_ACTIVE", user_id, "ACTIVE", "ACTIVE"
        )


class AlreadyInactiveError(UserStateError):
    """User is already inactive."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"User {user_id} is already inactive",
            "ALREADY_INACTIVE",
            user_id,
            "INACTIVE",
            "INACTIVE",
        )


class NotPendingError(UserStateError):
    """Activation requested for a user that is not pending."""

    def __init__(self, user_id: str, current_status: str) -> None:
        super().__init__(
            f"User {user_id} is not in pending status",
            "NOT_PENDING",
            user_id,
            current_status,
            "ACTIVE",
        )


class HasActiveWorkError(LicensingError):
    """User still owns active processes and cannot be removed."""

    def __init__(self, user_id: str, active_processes: int) -> None:
        super().__init__(
            f"Cannot remove user {user_id}: {active_processes} active process(es) assigned",
            "HAS_ACTIVE_WORK",
            status_code=409,
            context={"user_id": user_id, "active_processes": active_processes},
            recovery_hint="Reassign the user's active work before removal",
        )


# ============================================================================
# Quotas
# ============================================================================


class QuotaExceededError(LicensingError):
    """Usage recorded against a feature whose quota for the window is spent."""

    def __init__(
        self,
        feature_code: str,
        plan_code: str,
        limit_value: int | None = None,
        message: str | None = None,
    ):
        super().__init__(
            message or f"Quota for feature {feature_code} under plan {plan_code} is exhausted",
            "QUOTA_EXCEEDED",
            status_code=429,
            context={
                "feature_code": feature_code,
                "plan_code": plan_code,
                "limit_value": limit_value,
            },
            recovery_hint="Wait for the quota window to reset or upgrade the plan",
        )


class FeatureDisabledError(QuotaExceededError):
    """Usage recorded against a feature the plan does not enable."""

    def __init__(self, feature_code: str, plan_code: str) -> None:
        super().__init__(
            feature_code,
            plan_code,
            limit_value=0,
            message=f"Feature {feature_code} is not enabled for plan {plan_code}",
        )
        self.error_code = "FEATURE_DISABLED"
        self.status_code = 403
        self.recovery_hint = "Upgrade to a plan that includes this feature"


# ============================================================================
# Integrity (never returned as values)
# ============================================================================


class LicensingIntegrityError(LicensingError):
    """An invariant has already been violated; the operation must halt."""

    recoverable = False

    def __init__(self, message: str, error_code: str, context: dict[str, Any] | None = None):
        super().__init__(message, error_code, status_code=500, context=context)


class LedgerIntegrityError(LicensingIntegrityError):
    """A seat release would drive ``used`` negative, or counters do not balance."""

    def __init__(self, message: str, tenant_id: str, plan_code: str) -> None:
        super().__init__(
            message,
            "LEDGER_INTEGRITY",
            context={"tenant_id": tenant_id, "plan_code": plan_code},
        )


class CatalogIntegrityError(LicensingIntegrityError):
    """A catalog failed referential or entitlement validation."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__(
            f"Catalog failed validation with {len(self.problems)} problem(s): "
            + "; ".join(self.problems),
            "CATALOG_INTEGRITY",
            context={"problems": self.problems},
        )


__all__ = [
    "LicensingError",
    "UserValidationError",
    "PoolExhaustedError",
    "PoolProvisioningError",
    "NotFoundError",
    "PlanNotFoundError",
    "FeatureNotFoundError",
    "EntitlementNotFoundError",
    "UserNotFoundError",
    "PoolNotFoundError",
    "UserStateError",
    "AlreadyActiveError",
    "AlreadyInactiveError",
    "NotPendingError",
    "HasActiveWorkError",
    "QuotaExceededError",
    "FeatureDisabledError",
    "LicensingIntegrityError",
    "LedgerIntegrityError",
    "CatalogIntegrityError",
]
