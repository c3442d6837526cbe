"""Tests for the catalog store: loading, lookups, validation and updates."""

import json

import pytest

from taskflow.platform.domain import ConfigurationError
from taskflow.platform.licensing.catalog import (
    CatalogStore,
    get_catalog_store,
    load_catalog_file,
    load_default_catalog,
    validate_catalog,
)
from taskflow.platform.licensing.exceptions import (
    CatalogIntegrityError,
    EntitlementNotFoundError,
    FeatureNotFoundError,
    PlanNotFoundError,
)
from taskflow.platform.licensing.models import FeatureCategory, LimitPeriod

pytestmark = pytest.mark.unit


def _raw_default() -> dict:
    return load_default_catalog().model_dump(mode="json")


def _small_catalog(version: str = "v1") -> dict:
    return {
        "version": version,
        "plans": [
            {"plan_code": "BASIC", "name": "Basic", "max_users": 5},
            {"plan_code": "PRO", "name": "Pro", "max_users": -1},
        ],
        "features": [
            {"feature_code": "TASKS", "name": "Tasks", "category": "CORE"},
            {"feature_code": "API", "name": "API", "category": "PREMIUM"},
        ],
        "entitlements": [
            {"plan_code": "BASIC", "feature_code": "TASKS", "limit_value": 10, "limit_period": "DAY"},
            {"plan_code": "BASIC", "feature_code": "API", "limit_value": 0, "is_enabled": False},
            {"plan_code": "PRO", "feature_code": "TASKS", "limit_value": None},
            {"plan_code": "PRO", "feature_code": "API", "limit_value": None},
        ],
    }


class TestDefaultCatalog:
    """The packaged catalog."""

    def test_counts(self, catalog):
        summary = catalog.summary()
        assert summary["version"] == "2024.1"
        assert summary["plans"] == 5
        assert summary["features"] == 17
        assert summary["entitlements"] == 85
        assert summary["features_by_category"] == {
            "CORE": 5,
            "ADVANCED": 7,
            "PREMIUM": 3,
            "ENTERPRISE": 2,
        }

    def test_every_plan_has_a_row_per_feature(self, catalog):
        for plan in catalog.list_plans():
            assert len(catalog.list_entitlements(plan.plan_code)) == 17

    def test_trial_plan(self, catalog):
        explore = catalog.get_plan("EXPLORE")
        assert explore.is_trial
        assert explore.trial_days == 15
        assert explore.max_users == 10
        assert explore.auto_downgrade_to == "EXPIRED"

    def test_unlimited_plan(self, catalog):
        assert catalog.get_plan("OPTIMIZE").is_unlimited
        assert not catalog.get_plan("PLAN").is_unlimited

    def test_disabled_row_has_no_quota(self, catalog):
        row = catalog.get_entitlement("EXPLORE", "TASK_RECUR")
        assert row.is_enabled is False
        assert row.limit_value == 0
        assert row.limit_period is None

    def test_limited_and_unlimited_rows(self, catalog):
        limited = catalog.get_entitlement("PLAN", "TASK_BASIC")
        assert limited.limit_value == 200
        assert limited.limit_period == LimitPeriod.MONTH

        unlimited = catalog.get_entitlement("PLAN", "NOTIF_BASIC")
        assert unlimited.is_unlimited
        assert unlimited.limit_period is None

    def test_feature_matrix_shape(self, catalog):
        matrix = catalog.feature_matrix()
        assert len(matrix) == 17
        assert matrix["TASK_RECUR"]["EXPLORE"] == {
            "limit_value": 0,
            "limit_period": None,
            "is_enabled": False,
        }
        assert matrix["TASK_BASIC"]["OPTIMIZE"]["limit_value"] is None

    def test_list_features_by_category(self, catalog):
        enterprise = catalog.list_features(FeatureCategory.ENTERPRISE)
        assert {f.feature_code for f in enterprise} == {"SSO_LOGIN", "DED_SUPPORT"}


class TestLookups:
    def test_unknown_plan(self, catalog):
        with pytest.raises(PlanNotFoundError):
            catalog.get_plan("GOLD")

    def test_unknown_feature(self, catalog):
        with pytest.raises(FeatureNotFoundError):
            catalog.get_feature("TELEPORT")

    def test_entitlement_checks_plan_first(self, catalog):
        with pytest.raises(PlanNotFoundError):
            catalog.get_entitlement("GOLD", "TELEPORT")
        with pytest.raises(FeatureNotFoundError):
            catalog.get_entitlement("PLAN", "TELEPORT")

    def test_has_plan(self, catalog):
        assert catalog.has_plan("EXECUTE")
        assert not catalog.has_plan("GOLD")

    def test_list_plans_active_only(self):
        raw = _small_catalog()
        raw["plans"][0]["is_active"] = False
        store = CatalogStore(raw)
        assert [p.plan_code for p in store.list_plans(active_only=True)] == ["PRO"]
        assert len(store.list_plans()) == 2


class TestValidation:
    """Referential and entitlement integrity."""

    def test_default_catalog_has_no_problems(self):
        assert validate_catalog(load_default_catalog()) == []

    def test_small_catalog_is_valid(self):
        store = CatalogStore(_small_catalog())
        assert store.version == "v1"

    def test_missing_row_is_reported(self):
        raw = _small_catalog()
        raw["entitlements"] = raw["entitlements"][:-1]
        with pytest.raises(CatalogIntegrityError) as exc_info:
            CatalogStore(raw)
        assert "missing entitlement PRO/API" in exc_info.value.problems

    def test_unknown_references_are_reported(self):
        raw = _small_catalog()
        raw["entitlements"].append(
            {"plan_code": "GOLD", "feature_code": "TELEPORT", "limit_value": None}
        )
        raw["plans"][0]["auto_downgrade_to"] = "NOWHERE"

        with pytest.raises(CatalogIntegrityError) as exc_info:
            CatalogStore(raw)
        problems = exc_info.value.problems
        assert "entitlement GOLD/TELEPORT references unknown plan" in problems
        assert "entitlement GOLD/TELEPORT references unknown feature" in problems
        assert "plan BASIC downgrades to unknown plan NOWHERE" in problems

    def test_duplicates_are_reported(self):
        raw = _small_catalog()
        raw["plans"].append({"plan_code": "PRO", "name": "Pro again"})
        raw["entitlements"].append(
            {"plan_code": "PRO", "feature_code": "API", "limit_value": None}
        )
        with pytest.raises(CatalogIntegrityError) as exc_info:
            CatalogStore(raw)
        assert "duplicate plan code PRO" in exc_info.value.problems
        assert "duplicate entitlement PRO/API" in exc_info.value.problems

    def test_disabled_row_with_quota_is_rejected(self):
        raw = _small_catalog()
        raw["entitlements"][1] = {
            "plan_code": "BASIC",
            "feature_code": "API",
            "limit_value": 5,
            "limit_period": "DAY",
            "is_enabled": False,
        }
        with pytest.raises(CatalogIntegrityError) as exc_info:
            CatalogStore(raw)
        assert any("must have limit_value 0" in p for p in exc_info.value.problems)

    def test_limited_row_needs_period(self):
        raw = _small_catalog()
        raw["entitlements"][0]["limit_period"] = None
        with pytest.raises(CatalogIntegrityError):
            CatalogStore(raw)

    def test_integrity_error_is_not_recoverable(self):
        error = CatalogIntegrityError(["x"])
        assert error.recoverable is False
        assert error.error_code == "CATALOG_INTEGRITY"


class TestUpdateCatalog:
    """Full-replacement updates swapped in atomically."""

    def test_update_swaps_version(self):
        store = CatalogStore(_small_catalog("v1"))
        before = store.definition

        raw = _small_catalog("v2")
        raw["entitlements"][0]["limit_value"] = 20
        assert store.update_catalog(raw) == "v2"

        assert store.version == "v2"
        assert store.get_entitlement("BASIC", "TASKS").limit_value == 20
        # A reader holding the old snapshot keeps seeing the old rows.
        assert before.version == "v1"
        assert before.entitlements[0].limit_value == 10

    def test_adding_a_feature_is_allowed(self):
        store = CatalogStore(_small_catalog("v1"))
        raw = _small_catalog("v2")
        raw["features"].append({"feature_code": "SSO", "name": "SSO", "category": "ENTERPRISE"})
        raw["entitlements"].extend(
            [
                {"plan_code": "BASIC", "feature_code": "SSO", "limit_value": 0, "is_enabled": False},
                {"plan_code": "PRO", "feature_code": "SSO", "limit_value": None},
            ]
        )
        store.update_catalog(raw)
        assert store.get_feature("SSO").category == FeatureCategory.ENTERPRISE

    def test_removing_a_referenced_feature_is_rejected(self):
        store = CatalogStore(_small_catalog("v1"))
        raw = _small_catalog("v2")
        raw["features"] = [f for f in raw["features"] if f["feature_code"] != "API"]
        raw["entitlements"] = [e for e in raw["entitlements"] if e["feature_code"] != "API"]

        with pytest.raises(CatalogIntegrityError) as exc_info:
            store.update_catalog(raw)

        assert "feature API cannot be removed" in exc_info.value.problems
        assert store.version == "v1"
        assert store.get_feature("API").name == "API"

    def test_renaming_a_feature_is_rejected(self):
        store = CatalogStore(_small_catalog("v1"))
        raw = _small_catalog("v2")
        raw["features"][0]["category"] = "ADVANCED"
        with pytest.raises(CatalogIntegrityError) as exc_info:
            store.update_catalog(raw)
        assert "feature TASKS cannot change name or category" in exc_info.value.problems

    def test_default_catalog_round_trips_through_update(self, catalog):
        raw = _raw_default()
        raw["version"] = "2024.2"
        assert catalog.update_catalog(raw) == "2024.2"


class TestLoading:
    def test_load_catalog_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps(_small_catalog("file")), encoding="utf-8")
        definition = load_catalog_file(path)
        assert definition.version == "file"
        assert len(definition.plans) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_catalog_file(tmp_path / "nope.json")

    def test_bad_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_catalog_file(path)

    def test_schema_errors_become_integrity_problems(self, tmp_path):
        raw = _small_catalog()
        raw["plans"][0]["max_users"] = -5
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(raw), encoding="utf-8")
        with pytest.raises(CatalogIntegrityError):
            load_catalog_file(path)

    def test_global_store_uses_configured_path(self, tmp_path, monkeypatch):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps(_small_catalog("configured")), encoding="utf-8")
        monkeypatch.setenv("LICENSING__CATALOG_PATH", str(path))

        store = get_catalog_store()
        assert store.version == "configured"
        assert get_catalog_store() is store

    def test_global_store_defaults_to_packaged_catalog(self):
        assert get_catalog_store().version == "2024.1"
