"""
Entitlement Evaluator.

Answers "is this feature enabled for the plan, and how much quota is left
in the current window" from the catalog and the usage counters, and
records usage after a gated action has been performed.

Quota windows (all UTC):
    DAY       calendar day
    MONTH     calendar month
    LIFETIME  one window from account creation that never rolls over
"""

from datetime import UTC, datetime, timedelta

import structlog

from taskflow.platform.events import EventBus
from taskflow.platform.licensing.catalog import CatalogStore
from taskflow.platform.licensing.events import emit_quota_exhausted
from taskflow.platform.licensing.exceptions import FeatureDisabledError, QuotaExceededError
from taskflow.platform.licensing.models import (
    EntitlementRow,
    FeatureCheck,
    LimitPeriod,
    UsageKey,
    UsageOwner,
    utcnow,
)
from taskflow.platform.licensing.repository import UsageRepository
from taskflow.platform.licensing.results import returns_result
from taskflow.platform.settings import get_settings

logger = structlog.get_logger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def window_bounds(
    period: LimitPeriod, now: datetime, anchor: datetime
) -> tuple[datetime, datetime | None]:
    """
    Start and end of the quota window containing ``now``.

    Args:
        period: Window length
        now: Current time
        anchor: Account creation time (start of the LIFETIME window)

    Returns:
        (start, end); end is None for LIFETIME
    """
    now = _as_utc(now)
    if period == LimitPeriod.DAY:
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=1)
    if period == LimitPeriod.MONTH:
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end
    return _as_utc(anchor), None


class EntitlementEvaluator:
    """Feature gate and quota accounting."""

    def __init__(
        self,
        catalog: CatalogStore,
        usage: UsageRepository,
        event_bus: EventBus | None = None,
        grace_days: int | None = None,
    ) -> None:
        self.catalog = catalog
        self.usage = usage
        self.event_bus = event_bus
        if grace_days is None:
            grace_days = get_settings().licensing.usage_counter_grace_days
        self.grace_period = timedelta(days=grace_days)

    @returns_result("entitlements.check_feature")
    async def check_feature(
        self,
        plan_code: str,
        feature_code: str,
        usage_key: UsageKey,
        now: datetime | None = None,
    ) -> FeatureCheck:
        """
        Evaluate a feature for a plan.

        A disabled feature answers ``enabled=False, remaining=0`` without
        reading any counter. An unlimited feature answers ``remaining=None``.
        Otherwise ``remaining = max(0, limit - used)`` and the feature is
        enabled while something remains.
        """
        row = self.catalog.get_entitlement(plan_code, feature_code)
        return await self._evaluate(row, usage_key, now or utcnow())

    @returns_result("entitlements.record_usage")
    async def record_usage(
        self,
        plan_code: str,
        feature_code: str,
        usage_key: UsageKey,
        now: datetime | None = None,
    ) -> FeatureCheck:
        """
        Count one use of a feature in the current window.

        Call only after the gated action has been performed.

        Raises:
            FeatureDisabledError: The plan does not enable the feature
            QuotaExceededError: Nothing remains in the current window; the
                counter is left unchanged
        """
        row = self.catalog.get_entitlement(plan_code, feature_code)
        if not row.is_enabled:
            raise FeatureDisabledError(feature_code, plan_code)

        now = now or utcnow()
        start, end = self._window(row, usage_key, now)
        count = await self.usage.increment_if_below(
            usage_key.owner_key, feature_code, start, end, row.limit_value
        )
        if count is None:
            logger.warning(
                "Quota exceeded",
                owner_key=usage_key.owner_key,
                plan_code=plan_code,
                feature_code=feature_code,
                limit_value=row.limit_value,
            )
            raise QuotaExceededError(feature_code, plan_code, row.limit_value)

        check = self._build(row, count, end)
        if row.limit_value is not None and count == row.limit_value:
            await self._emit_exhausted(row, usage_key)
        logger.debug(
            "Usage recorded",
            owner_key=usage_key.owner_key,
            feature_code=feature_code,
            count=count,
            remaining=check.remaining,
        )
        return check

    @returns_result("entitlements.usage_summary")
    async def usage_summary(
        self, plan_code: str, usage_key: UsageKey, now: datetime | None = None
    ) -> list[FeatureCheck]:
        """One evaluation per entitlement row of the plan."""
        now = now or utcnow()
        return [
            await self._evaluate(row, usage_key, now)
            for row in self.catalog.list_entitlements(plan_code)
        ]

    async def purge_usage_counters(self, now: datetime | None = None) -> int:
        """Delete counters whose window ended more than the grace period ago."""
        cutoff = _as_utc(now or utcnow()) - self.grace_period
        purged = await self.usage.purge_ended_before(cutoff)
        logger.info("Usage counters purged", cutoff=cutoff.isoformat(), purged=purged)
        return purged

    # ------------------------------------------------------------------

    async def _evaluate(
        self, row: EntitlementRow, usage_key: UsageKey, now: datetime
    ) -> FeatureCheck:
        if not row.is_enabled:
            return FeatureCheck(
                plan_code=row.plan_code,
                feature_code=row.feature_code,
                enabled=False,
                remaining=0,
                limit_value=0,
            )
        start, end = self._window(row, usage_key, now)
        used = await self.usage.get_count(usage_key.owner_key, row.feature_code, start)
        return self._build(row, used, end)

    def _window(
        self, row: EntitlementRow, usage_key: UsageKey, now: datetime
    ) -> tuple[datetime, datetime | None]:
        # Unlimited rows still count usage, in a lifetime window.
        period = row.limit_period or LimitPeriod.LIFETIME
        return window_bounds(period, now, usage_key.anchor)

    @staticmethod
    def _build(row: EntitlementRow, used: int, reset_at: datetime | None) -> FeatureCheck:
        if row.limit_value is None:
            return FeatureCheck(
                plan_code=row.plan_code,
                feature_code=row.feature_code,
                enabled=True,
                remaining=None,
                used=used,
            )
        remaining = max(0, row.limit_value - used)
        return FeatureCheck(
            plan_code=row.plan_code,
            feature_code=row.feature_code,
            enabled=remaining > 0,
            remaining=remaining,
            limit_value=row.limit_value,
            limit_period=row.limit_period,
            used=used,
            reset_at=reset_at,
        )

    async def _emit_exhausted(self, row: EntitlementRow, usage_key: UsageKey) -> None:
        tenant_id = usage_key.owner_id if usage_key.owner_type == UsageOwner.TENANT else None
        try:
            await emit_quota_exhausted(
                tenant_id,
                usage_key.owner_key,
                row.plan_code,
                row.feature_code,
                row.limit_value,
                event_bus=self.event_bus,
            )
        except Exception as e:
            logger.warning(
                "Failed to publish quota exhausted event",
                feature_code=row.feature_code,
                error=str(e),
            )
