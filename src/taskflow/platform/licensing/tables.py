"""
Licensing database tables.

One row per (tenant, plan) seat counter, one row per user with a unique
(tenant, email) index, and one row per (owner, feature, window) usage
counter.
"""

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.platform.db import Base, TimestampMixin, UTCDateTime


class PoolSeatTable(Base, TimestampMixin):
    """Seat counters of one plan in one tenant's license pool."""

    __tablename__ = "licensing_pool_seats"

    tenant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    plan_code: Mapped[str] = mapped_column(String(50), primary_key=True)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_pool_seats_used_non_negative"),
        CheckConstraint("available >= 0", name="ck_pool_seats_available_non_negative"),
        CheckConstraint("used + available = total", name="ck_pool_seats_conservation"),
    )


class LicensedUserTable(Base):
    """A tenant user occupying one seat."""

    __tablename__ = "licensing_users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    plan_code: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[str | None] = mapped_column(String(255))
    designation: Mapped[str | None] = mapped_column(String(255))
    location: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    date_created: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC), nullable=False
    )
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime())

    tasks_assigned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    forms_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_processes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_licensing_users_tenant_email"),
        Index("ix_licensing_users_tenant_status", "tenant_id", "status"),
    )


class UsageCounterTable(Base):
    """Feature usage count of one owner in one quota window."""

    __tablename__ = "licensing_usage_counters"

    owner_key: Mapped[str] = mapped_column(String(300), primary_key=True)
    feature_code: Mapped[str] = mapped_column(String(50), primary_key=True)
    window_start: Mapped[datetime] = mapped_column(UTCDateTime(), primary_key=True)
    window_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (CheckConstraint("count >= 0", name="ck_usage_counters_count_non_negative"),)
