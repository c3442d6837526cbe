"""
Licensing and user lifecycle module.

Provides:
- Catalog store of license plans, features and plan -> feature entitlements
- License pool ledger of per-tenant seat counters
- User lifecycle service coordinating user changes with seat consumption
- Entitlement evaluator with per-window usage quotas
- Trial status and user reporting helpers

Integrated with Taskflow platform services.
"""

from taskflow.platform.licensing.catalog import (
    CatalogDefinition,
    CatalogStore,
    get_catalog_store,
    load_catalog_file,
    load_default_catalog,
    reset_catalog_store,
)
from taskflow.platform.licensing.evaluator import EntitlementEvaluator, window_bounds
from taskflow.platform.licensing.exceptions import (
    AlreadyActiveError,
    AlreadyInactiveError,
    CatalogIntegrityError,
    EntitlementNotFoundError,
    FeatureDisabledError,
    FeatureNotFoundError,
    HasActiveWorkError,
    LedgerIntegrityError,
    LicensingError,
    LicensingIntegrityError,
    NotFoundError,
    NotPendingError,
    PlanNotFoundError,
    PoolExhaustedError,
    PoolNotFoundError,
    PoolProvisioningError,
    QuotaExceededError,
    UserNotFoundError,
    UserStateError,
    UserValidationError,
)
from taskflow.platform.licensing.ledger import LicensePoolLedger
from taskflow.platform.licensing.locks import TenantLockRegistry
from taskflow.platform.licensing.models import (
    BillingCycle,
    EntitlementRow,
    Feature,
    FeatureCategory,
    FeatureCheck,
    LicensePlan,
    LicensePool,
    LimitPeriod,
    SeatCount,
    UsageKey,
    UsageOwner,
    UserAccount,
    UserCreateRequest,
    UserRole,
    UserStatus,
    UserUpdateRequest,
)
from taskflow.platform.licensing.repository import InMemoryLicensingStore, LicensingStore
from taskflow.platform.licensing.results import OperationResult
from taskflow.platform.licensing.users import UserLifecycleService

__all__ = [
    # Catalog
    "CatalogDefinition",
    "CatalogStore",
    "get_catalog_store",
    "load_catalog_file",
    "load_default_catalog",
    "reset_catalog_store",
    # Services
    "EntitlementEvaluator",
    "LicensePoolLedger",
    "TenantLockRegistry",
    "UserLifecycleService",
    "window_bounds",
    # Storage
    "InMemoryLicensingStore",
    "LicensingStore",
    # Models
    "BillingCycle",
    "EntitlementRow",
    "Feature",
    "FeatureCategory",
    "FeatureCheck",
    "LicensePlan",
    "LicensePool",
    "LimitPeriod",
    "OperationResult",
    "SeatCount",
    "UsageKey",
    "UsageOwner",
    "UserAccount",
    "UserCreateRequest",
    "UserRole",
    "UserStatus",
    "UserUpdateRequest",
    # Exceptions
    "AlreadyActiveError",
    "AlreadyInactiveError",
    "CatalogIntegrityError",
    "EntitlementNotFoundError",
    "FeatureDisabledError",
    "FeatureNotFoundError",
    "HasActiveWorkError",
    "LedgerIntegrityError",
    "LicensingError",
    "LicensingIntegrityError",
    "NotFoundError",
    "NotPendingError",
    "PlanNotFoundError",
    "PoolExhaustedError",
    "PoolNotFoundError",
    "PoolProvisioningError",
    "QuotaExceededError",
    "UserNotFoundError",
    "UserStateError",
    "UserValidationError",
]
