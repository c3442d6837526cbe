"""
Licensing event types and event emission helpers.

Lifecycle changes are published on the platform event bus after they have
been committed. The invitation resend emitted on reactivation is the
notification hook consumed by the (external) email service.
"""

from typing import Any

import structlog

from taskflow.platform.events import EventBus, EventPriority, get_event_bus
from taskflow.platform.licensing.models import UserAccount

logger = structlog.get_logger(__name__)


# ============================================================================
# Licensing Event Types
# ============================================================================


class LicensingEvents:
    """Licensing event type constants."""

    # User lifecycle events
    USER_ADDED = "licensing.user.added"
    USER_UPDATED = "licensing.user.updated"
    USER_DEACTIVATED = "licensing.user.deactivated"
    USER_REACTIVATED = "licensing.user.reactivated"
    USER_ACTIVATED = "licensing.user.activated"
    USER_REMOVED = "licensing.user.removed"

    # Notification requests
    INVITATION_RESEND = "licensing.invitation.resend"

    # Entitlement events
    QUOTA_EXHAUSTED = "licensing.quota.exhausted"


# ============================================================================
# Event Emission Helpers
# ============================================================================


async def emit_user_event(
    event_type: str,
    user: UserAccount,
    event_bus: EventBus | None = None,
    **extra_data: Any,
) -> None:
    """
    Emit a user lifecycle event.

    Args:
        event_type: One of the ``LicensingEvents.USER_*`` constants
        user: User after the change
        event_bus: Event bus instance (injected, optional - will use global if not provided)
        **extra_data: Additional event data
    """
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=event_type,
        payload={
            "user_id": user.user_id,
            "email": user.email,
            "plan_code": user.plan_code,
            "status": user.status.value,
            **extra_data,
        },
        metadata={
            "tenant_id": user.tenant_id,
            "user_id": user.user_id,
            "source": "licensing",
        },
    )

    logger.debug("User event emitted", event_type=event_type, user_id=user.user_id)


async def emit_invitation_resend(
    user: UserAccount,
    event_bus: EventBus | None = None,
    **extra_data: Any,
) -> None:
    """Ask the notification service to send the user a fresh invitation."""
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=LicensingEvents.INVITATION_RESEND,
        payload={
            "user_id": user.user_id,
            "email": user.email,
            "name": user.name,
            "last_login": user.last_login.isoformat() if user.last_login else None,
            **extra_data,
        },
        metadata={
            "tenant_id": user.tenant_id,
            "user_id": user.user_id,
            "source": "licensing",
        },
        priority=EventPriority.HIGH,
    )

    logger.info("Invitation resend event emitted", user_id=user.user_id, email=user.email)


async def emit_quota_exhausted(
    tenant_id: str | None,
    owner_key: str,
    plan_code: str,
    feature_code: str,
    limit_value: int | None,
    event_bus: EventBus | None = None,
) -> None:
    """Emit quota exhausted event."""
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=LicensingEvents.QUOTA_EXHAUSTED,
        payload={
            "owner_key": owner_key,
            "plan_code": plan_code,
            "feature_code": feature_code,
            "limit_value": limit_value,
        },
        metadata={"tenant_id": tenant_id, "source": "licensing"},
        priority=EventPriority.LOW,
    )
