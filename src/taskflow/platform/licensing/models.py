"""
Licensing data model.

Catalog values (plans, features, entitlement rows) and seat counters are
immutable; user accounts and pools are mutable records owned by the
lifecycle manager and ledger.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import Field, model_validator

from taskflow.platform.domain import BaseModel, FrozenModel

UNLIMITED_USERS = -1


def utcnow() -> datetime:
    return datetime.now(UTC)


class BillingCycle(str, Enum):
    """How a plan is billed."""

    TRIAL = "TRIAL"
    MONTHLY = "MONTHLY"
    NONE = "NONE"


class FeatureCategory(str, Enum):
    """Feature tier."""

    CORE = "CORE"
    ADVANCED = "ADVANCED"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"


class LimitPeriod(str, Enum):
    """Quota window length."""

    DAY = "DAY"
    MONTH = "MONTH"
    LIFETIME = "LIFETIME"


class UserRole(str, Enum):
    """Role of a user inside the organization."""

    REGULAR = "REGULAR"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @property
    def label(self) -> str:
        return _ROLE_LABELS[self]

    @classmethod
    def parse(cls, value: "str | UserRole") -> "UserRole":
        """Accept an enum value or its display label ("Company Admin")."""
        if isinstance(value, UserRole):
            return value
        normalized = value.strip()
        for role, label in _ROLE_LABELS.items():
            if normalized.upper() == role.value or normalized.lower() == label.lower():
                return role
        raise ValueError(f"Unknown role: {value}")


_ROLE_LABELS = {
    UserRole.REGULAR: "Regular User",
    UserRole.MANAGER: "Manager",
    UserRole.ADMIN: "Company Admin",
}


class UserStatus(str, Enum):
    """User account status.

    PENDING -> ACTIVE (activation), ACTIVE -> INACTIVE (deactivation),
    INACTIVE -> ACTIVE (reactivation). PENDING -> INACTIVE is also allowed
    through deactivation. Removal is not a status.
    """

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class UsageOwner(str, Enum):
    """Whose consumption a usage counter measures."""

    TENANT = "tenant"
    USER = "user"


# ============================================================================
# Catalog
# ============================================================================


class LicensePlan(FrozenModel):
    """A license plan definition."""

    plan_code: str = Field(min_length=1)
    name: str
    description: str = ""
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    price_monthly: Decimal = Decimal("0")
    price_yearly: Decimal = Decimal("0")
    max_users: int = Field(UNLIMITED_USERS, ge=UNLIMITED_USERS)
    trial_days: int = Field(0, ge=0)
    auto_downgrade_to: str | None = None
    is_active: bool = True

    @property
    def is_unlimited(self) -> bool:
        return self.max_users == UNLIMITED_USERS

    @property
    def is_trial(self) -> bool:
        return self.trial_days > 0


class Feature(FrozenModel):
    """A system feature that plans can entitle."""

    feature_code: str = Field(min_length=1)
    name: str
    description: str = ""
    category: FeatureCategory


class EntitlementRow(FrozenModel):
    """Enablement and quota of one feature under one plan.

    ``limit_value`` of None means unlimited. A disabled row carries no quota:
    ``limit_value`` is 0 and ``limit_period`` is None.
    """

    plan_code: str
    feature_code: str
    limit_value: int | None = Field(None, ge=0)
    limit_period: LimitPeriod | None = None
    is_enabled: bool = True

    @model_validator(mode="after")
    def check_quota_shape(self) -> "EntitlementRow":
        if not self.is_enabled:
            if self.limit_value != 0 or self.limit_period is not None:
                raise ValueError(
                    f"disabled entitlement {self.plan_code}/{self.feature_code} "
                    "must have limit_value 0 and no limit_period"
                )
        elif self.limit_value is None:
            if self.limit_period is not None:
                raise ValueError(
                    f"unlimited entitlement {self.plan_code}/{self.feature_code} "
                    "cannot have a limit_period"
                )
        elif self.limit_period is None:
            raise ValueError(
                f"limited entitlement {self.plan_code}/{self.feature_code} needs a limit_period"
            )
        return self

    @property
    def is_unlimited(self) -> bool:
        return self.is_enabled and self.limit_value is None


# ============================================================================
# Seats
# ============================================================================


class SeatCount(FrozenModel):
    """Seat counters of one plan inside a tenant pool."""

    total: int = Field(ge=0)
    used: int = Field(0, ge=0)
    available: int = Field(ge=0)

    @model_validator(mode="after")
    def check_conservation(self) -> "SeatCount":
        if self.used + self.available != self.total:
            raise ValueError(
                f"seat counters do not balance: used={self.used} + "
                f"available={self.available} != total={self.total}"
            )
        return self

    @classmethod
    def fresh(cls, total: int) -> "SeatCount":
        return cls(total=total, used=0, available=total)


class LicensePool(BaseModel):
    """Per-tenant seat counters keyed by plan code."""

    tenant_id: str
    seats: dict[str, SeatCount] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def seats_for(self, plan_code: str) -> SeatCount | None:
        return self.seats.get(plan_code)

    @property
    def total_used(self) -> int:
        return sum(seat.used for seat in self.seats.values())


# ============================================================================
# Users
# ============================================================================


class UserAccount(BaseModel):
    """A user of a tenant, occupying one seat of ``plan_code``."""

    user_id: str = Field(default_factory=lambda: str(uuid4()))
    tenant_id: str
    name: str
    email: str
    role: UserRole
    plan_code: str
    department: str | None = None
    designation: str | None = None
    location: str | None = None
    status: UserStatus = UserStatus.PENDING
    date_created: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_login: datetime | None = None

    # Activity counters are written by the task and form subsystems.
    tasks_assigned: int = Field(0, ge=0)
    tasks_completed: int = Field(0, ge=0)
    forms_created: int = Field(0, ge=0)
    active_processes: int = Field(0, ge=0)

    @property
    def completion_rate(self) -> float:
        if self.tasks_assigned == 0:
            return 0.0
        return self.tasks_completed * 100 / self.tasks_assigned


class UserCreateRequest(BaseModel):
    """Input of ``add_user``. Fields are checked by the validation layer."""

    name: str | None = None
    email: str | None = None
    role: str | None = None
    plan_code: str | None = None
    department: str | None = None
    designation: str | None = None
    location: str | None = None


class UserUpdateRequest(BaseModel):
    """Input of ``update_user``; omitted fields keep their current value."""

    name: str | None = None
    email: str | None = None
    role: str | None = None
    plan_code: str | None = None
    department: str | None = None
    designation: str | None = None
    location: str | None = None

    def merged_with(self, user: UserAccount) -> UserCreateRequest:
        """Overlay the provided fields on the user's current values."""
        current = UserCreateRequest(
            name=user.name,
            email=user.email,
            role=user.role.value,
            plan_code=user.plan_code,
            department=user.department,
            designation=user.designation,
            location=user.location,
        )
        return current.model_copy(update=self.model_dump(exclude_unset=True))


# ============================================================================
# Usage
# ============================================================================


class UsageKey(FrozenModel):
    """Identifies whose usage is counted and when its lifetime window began."""

    owner_type: UsageOwner = UsageOwner.TENANT
    owner_id: str
    anchor: datetime = Field(description="Account creation time; start of the LIFETIME window")

    @property
    def owner_key(self) -> str:
        return f"{self.owner_type.value}:{self.owner_id}"


class UsageCounter(FrozenModel):
    """Consumption count of one feature in one quota window.

    ``window_end`` is None for LIFETIME windows, which never roll over.
    """

    owner_key: str
    feature_code: str
    window_start: datetime
    window_end: datetime | None = None
    count: int = Field(0, ge=0)


class FeatureCheck(FrozenModel):
    """Answer to "may this feature be used now, and how much is left".

    ``remaining`` is None when the quota is unlimited.
    """

    plan_code: str
    feature_code: str
    enabled: bool
    remaining: int | None
    limit_value: int | None = None
    limit_period: LimitPeriod | None = None
    used: int = 0
    reset_at: datetime | None = None

    @property
    def unlimited(self) -> bool:
        return self.enabled and self.remaining is None
