"""User statistics and CSV export for tenant administrators."""

import csv
import io
from collections.abc import Iterable
from typing import Any

from taskflow.platform.licensing.models import UserAccount

EXPORT_COLUMNS = (
    "Name",
    "Email",
    "Role",
    "License",
    "Department",
    "Designation",
    "Location",
    "Status",
    "Date Joined",
    "Last Login",
    "Tasks Assigned",
    "Tasks Completed",
    "Forms Created",
    "Active Processes",
    "Completion Rate",
)

NOT_AVAILABLE = "N/A"


def user_stats(users: Iterable[UserAccount]) -> dict[str, int]:
    """Count users by status."""
    stats = {"total": 0, "active": 0, "inactive": 0, "pending": 0}
    for user in users:
        stats["total"] += 1
        stats[user.status.value.lower()] += 1
    return stats


def export_row(user: UserAccount) -> dict[str, Any]:
    return {
        "Name": user.name,
        "Email": user.email,
        "Role": user.role.label,
        "License": user.plan_code,
        "Department": user.department or NOT_AVAILABLE,
        "Designation": user.designation or NOT_AVAILABLE,
        "Location": user.location or NOT_AVAILABLE,
        "Status": user.status.value.capitalize(),
        "Date Joined": user.date_created.date().isoformat(),
        "Last Login": user.last_login.date().isoformat() if user.last_login else "Never",
        "Tasks Assigned": user.tasks_assigned,
        "Tasks Completed": user.tasks_completed,
        "Forms Created": user.forms_created,
        "Active Processes": user.active_processes,
        "Completion Rate": f"{user.completion_rate:.1f}%",
    }


def export_users_csv(users: Iterable[UserAccount]) -> str:
    """Render users as CSV text with a header row."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(export_row(user) for user in users)
    return buffer.getvalue()


__all__ = ["EXPORT_COLUMNS", "export_row", "export_users_csv", "user_stats"]
