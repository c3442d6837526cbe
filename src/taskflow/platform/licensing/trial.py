"""
Trial plan status.

A trial plan (``trial_days > 0``) runs for ``trial_days`` from the moment
the tenant started it; afterwards the tenant is due for downgrade to the
plan's ``auto_downgrade_to`` target.
"""

import math
from collections.abc import Iterable
from datetime import datetime, timedelta
from enum import Enum

from taskflow.platform.domain import FrozenModel
from taskflow.platform.licensing.models import LicensePlan, utcnow
from taskflow.platform.settings import get_settings

SECONDS_PER_DAY = 24 * 60 * 60


class TrialUrgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TrialStatus(FrozenModel):
    """Trial state of one tenant."""

    tenant_id: str
    plan_code: str
    is_trial: bool
    trial_end: datetime | None = None
    is_expired: bool = False
    days_remaining: int | None = None
    requires_downgrade: bool = False
    downgrade_to: str | None = None


class TrialNotice(FrozenModel):
    """A trial ending soon, with how urgently the tenant should be told."""

    tenant_id: str
    plan_code: str
    trial_end: datetime
    days_remaining: int
    urgency: TrialUrgency


def trial_end_date(plan: LicensePlan, started_at: datetime) -> datetime | None:
    if not plan.is_trial:
        return None
    return started_at + timedelta(days=plan.trial_days)


def days_until(end: datetime, now: datetime) -> int:
    """Whole days left, rounded up; 0 once ``end`` has passed."""
    return max(0, math.ceil((end - now).total_seconds() / SECONDS_PER_DAY))


def classify_urgency(days_remaining: int) -> TrialUrgency:
    if days_remaining <= 1:
        return TrialUrgency.HIGH
    if days_remaining <= 3:
        return TrialUrgency.MEDIUM
    return TrialUrgency.LOW


def check_trial_status(
    tenant_id: str,
    plan: LicensePlan,
    started_at: datetime,
    now: datetime | None = None,
) -> TrialStatus:
    """
    Evaluate a tenant's trial.

    Args:
        tenant_id: Tenant on the plan
        plan: The tenant's current plan
        started_at: When the tenant started the plan (pool creation)
        now: Evaluation time, defaults to the current UTC time
    """
    end = trial_end_date(plan, started_at)
    if end is None:
        return TrialStatus(tenant_id=tenant_id, plan_code=plan.plan_code, is_trial=False)

    now = now or utcnow()
    expired = now > end
    return TrialStatus(
        tenant_id=tenant_id,
        plan_code=plan.plan_code,
        is_trial=True,
        trial_end=end,
        is_expired=expired,
        days_remaining=days_until(end, now),
        requires_downgrade=expired and plan.auto_downgrade_to is not None,
        downgrade_to=plan.auto_downgrade_to,
    )


def expiring_soon(
    trials: Iterable[tuple[str, LicensePlan, datetime]],
    now: datetime | None = None,
    within_days: int | None = None,
) -> list[TrialNotice]:
    """
    Trials that have not ended yet but end within ``within_days``.

    Args:
        trials: (tenant_id, plan, started_at) triples
        now: Evaluation time
        within_days: Look-ahead, defaults to ``licensing.trial_expiry_warning_days``

    Returns:
        Notices ordered by trial end, soonest first
    """
    now = now or utcnow()
    if within_days is None:
        within_days = get_settings().licensing.trial_expiry_warning_days
    horizon = now + timedelta(days=within_days)

    notices = []
    for tenant_id, plan, started_at in trials:
        end = trial_end_date(plan, started_at)
        if end is None or not now <= end <= horizon:
            continue
        remaining = days_until(end, now)
        notices.append(
            TrialNotice(
                tenant_id=tenant_id,
                plan_code=plan.plan_code,
                trial_end=end,
                days_remaining=remaining,
                urgency=classify_urgency(remaining),
            )
        )
    return sorted(notices, key=lambda notice: notice.trial_end)
