"""
Catalog Store.

Holds the license plans, system features and the plan x feature entitlement
matrix. A catalog version is an immutable snapshot; updates validate a full
replacement set and swap it in with a single reference assignment, so a
reader holding the previous snapshot never sees rows from two versions.
"""

import json
import threading
from collections import Counter
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, ValidationError

from taskflow.platform.domain import ConfigurationError, FrozenModel
from taskflow.platform.licensing.exceptions import (
    CatalogIntegrityError,
    EntitlementNotFoundError,
    FeatureNotFoundError,
    PlanNotFoundError,
)
from taskflow.platform.licensing.models import (
    EntitlementRow,
    Feature,
    FeatureCategory,
    LicensePlan,
)
from taskflow.platform.logging import log_audit_event
from taskflow.platform.settings import get_settings

logger = structlog.get_logger(__name__)

DEFAULT_CATALOG_RESOURCE = "data/default_catalog.json"


class CatalogDefinition(FrozenModel):
    """A full catalog version: plans, features and entitlement rows."""

    version: str = "unversioned"
    plans: tuple[LicensePlan, ...] = Field(default_factory=tuple)
    features: tuple[Feature, ...] = Field(default_factory=tuple)
    entitlements: tuple[EntitlementRow, ...] = Field(default_factory=tuple)


def parse_catalog(data: Mapping[str, Any] | CatalogDefinition) -> CatalogDefinition:
    """Build a definition from raw data, reporting schema errors as integrity problems."""
    if isinstance(data, CatalogDefinition):
        return data
    try:
        return CatalogDefinition.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise CatalogIntegrityError(problems) from e


def validate_catalog(
    definition: CatalogDefinition, previous: CatalogDefinition | None = None
) -> list[str]:
    """
    Check referential and entitlement integrity of a catalog.

    Args:
        definition: Candidate catalog
        previous: Catalog currently in service, for add-only feature checks

    Returns:
        List of problems; empty when the catalog is valid
    """
    problems: list[str] = []

    plan_counts = Counter(plan.plan_code for plan in definition.plans)
    feature_counts = Counter(feature.feature_code for feature in definition.features)
    problems.extend(f"duplicate plan code {code}" for code, n in plan_counts.items() if n > 1)
    problems.extend(
        f"duplicate feature code {code}" for code, n in feature_counts.items() if n > 1
    )

    for plan in definition.plans:
        if plan.auto_downgrade_to and plan.auto_downgrade_to not in plan_counts:
            problems.append(
                f"plan {plan.plan_code} downgrades to unknown plan {plan.auto_downgrade_to}"
            )

    row_counts = Counter((row.plan_code, row.feature_code) for row in definition.entitlements)
    for (plan_code, feature_code), n in row_counts.items():
        if plan_code not in plan_counts:
            problems.append(f"entitlement {plan_code}/{feature_code} references unknown plan")
        if feature_code not in feature_counts:
            problems.append(f"entitlement {plan_code}/{feature_code} references unknown feature")
        if n > 1:
            problems.append(f"duplicate entitlement {plan_code}/{feature_code}")

    for plan_code in plan_counts:
        for feature_code in feature_counts:
            if (plan_code, feature_code) not in row_counts:
                problems.append(f"missing entitlement {plan_code}/{feature_code}")

    if previous is not None:
        current = {feature.feature_code: feature for feature in definition.features}
        referenced = {row.feature_code for row in previous.entitlements}
        for old in previous.features:
            if old.feature_code not in referenced:
                continue
            new = current.get(old.feature_code)
            if new is None:
                problems.append(f"feature {old.feature_code} cannot be removed")
            elif new.name != old.name or new.category != old.category:
                problems.append(f"feature {old.feature_code} cannot change name or category")

    return problems


class _CatalogSnapshot:
    """Indexed, read-only view over one catalog version."""

    def __init__(self, definition: CatalogDefinition) -> None:
        self.definition = definition
        self.plans = {plan.plan_code: plan for plan in definition.plans}
        self.features = {feature.feature_code: feature for feature in definition.features}
        self.rows = {(row.plan_code, row.feature_code): row for row in definition.entitlements}
        self.rows_by_plan: dict[str, tuple[EntitlementRow, ...]] = {
            plan_code: tuple(row for row in definition.entitlements if row.plan_code == plan_code)
            for plan_code in self.plans
        }


class CatalogStore:
    """Read-mostly store of the active catalog version."""

    def __init__(self, definition: Mapping[str, Any] | CatalogDefinition) -> None:
        parsed = parse_catalog(definition)
        problems = validate_catalog(parsed)
        if problems:
            logger.error("Catalog failed validation", version=parsed.version, problems=problems)
            raise CatalogIntegrityError(problems)
        self._snapshot = _CatalogSnapshot(parsed)
        self._update_lock = threading.Lock()

    @property
    def version(self) -> str:
        return self._snapshot.definition.version

    @property
    def definition(self) -> CatalogDefinition:
        return self._snapshot.definition

    def get_plan(self, plan_code: str) -> LicensePlan:
        plan = self._snapshot.plans.get(plan_code)
        if plan is None:
            raise PlanNotFoundError(plan_code)
        return plan

    def get_feature(self, feature_code: str) -> Feature:
        feature = self._snapshot.features.get(feature_code)
        if feature is None:
            raise FeatureNotFoundError(feature_code)
        return feature

    def get_entitlement(self, plan_code: str, feature_code: str) -> EntitlementRow:
        snapshot = self._snapshot
        if plan_code not in snapshot.plans:
            raise PlanNotFoundError(plan_code)
        if feature_code not in snapshot.features:
            raise FeatureNotFoundError(feature_code)
        row = snapshot.rows.get((plan_code, feature_code))
        if row is None:
            raise EntitlementNotFoundError(plan_code, feature_code)
        return row

    def list_entitlements(self, plan_code: str) -> tuple[EntitlementRow, ...]:
        snapshot = self._snapshot
        if plan_code not in snapshot.plans:
            raise PlanNotFoundError(plan_code)
        return snapshot.rows_by_plan[plan_code]

    def has_plan(self, plan_code: str) -> bool:
        return plan_code in self._snapshot.plans

    def list_plans(self, active_only: bool = False) -> list[LicensePlan]:
        plans = self._snapshot.definition.plans
        return [plan for plan in plans if plan.is_active or not active_only]

    def list_features(self, category: FeatureCategory | None = None) -> list[Feature]:
        features = self._snapshot.definition.features
        return [f for f in features if category is None or f.category == category]

    def update_catalog(self, definition: Mapping[str, Any] | CatalogDefinition) -> str:
        """
        Validate a full replacement catalog and swap it in.

        Raises:
            CatalogIntegrityError: The candidate fails validation; the active
                catalog is left untouched.
        """
        parsed = parse_catalog(definition)
        with self._update_lock:
            previous = self._snapshot.definition
            problems = validate_catalog(parsed, previous)
            if problems:
                logger.error(
                    "Catalog update rejected",
                    version=parsed.version,
                    active_version=previous.version,
                    problems=problems,
                )
                raise CatalogIntegrityError(problems)
            self._snapshot = _CatalogSnapshot(parsed)

        logger.info("Catalog updated", version=parsed.version, previous_version=previous.version)
        log_audit_event(
            action="catalog.updated",
            category="licensing",
            resource_type="catalog",
            resource_id=parsed.version,
            previous_version=previous.version,
        )
        return parsed.version

    def summary(self) -> dict[str, Any]:
        """Counts of plans, features and rows with per-plan enablement totals."""
        snapshot = self._snapshot
        by_category = Counter(f.category.value for f in snapshot.definition.features)
        per_plan = {}
        for plan_code, rows in snapshot.rows_by_plan.items():
            per_plan[plan_code] = {
                "enabled": sum(1 for row in rows if row.is_enabled),
                "disabled": sum(1 for row in rows if not row.is_enabled),
                "unlimited": sum(1 for row in rows if row.is_unlimited),
            }
        return {
            "version": snapshot.definition.version,
            "plans": len(snapshot.plans),
            "features": len(snapshot.features),
            "entitlements": len(snapshot.rows),
            "features_by_category": dict(by_category),
            "plan_entitlements": per_plan,
        }

    def feature_matrix(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Feature code -> plan code -> limit, period and enabled flag."""
        snapshot = self._snapshot
        matrix: dict[str, dict[str, dict[str, Any]]] = {}
        for feature_code in snapshot.features:
            matrix[feature_code] = {}
            for plan_code in snapshot.plans:
                row = snapshot.rows[(plan_code, feature_code)]
                matrix[feature_code][plan_code] = {
                    "limit_value": row.limit_value,
                    "limit_period": row.limit_period.value if row.limit_period else None,
                    "is_enabled": row.is_enabled,
                }
        return matrix


def load_catalog_file(path: str | Path) -> CatalogDefinition:
    """Read and parse a JSON catalog file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Catalog file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Catalog file {path} is not valid JSON: {e}") from e
    return parse_catalog(data)


def load_default_catalog() -> CatalogDefinition:
    """Read the catalog packaged with the licensing module."""
    resource = resources.files("taskflow.platform.licensing").joinpath(DEFAULT_CATALOG_RESOURCE)
    return parse_catalog(json.loads(resource.read_text(encoding="utf-8")))


_catalog_store: CatalogStore | None = None


def get_catalog_store() -> CatalogStore:
    """Get the process-wide catalog store, loading the configured catalog once."""
    global _catalog_store
    if _catalog_store is None:
        catalog_path = get_settings().licensing.catalog_path
        definition = load_catalog_file(catalog_path) if catalog_path else load_default_catalog()
        _catalog_store = CatalogStore(definition)
        logger.info("Catalog loaded", version=_catalog_store.version, source=catalog_path or "default")
    return _catalog_store


def reset_catalog_store() -> None:
    """Forget the process-wide catalog store (mainly for testing)."""
    global _catalog_store
    _catalog_store = None
