# backend/strataguard/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    # naive UTC everywhere; SQLite has no tz-aware comparisons
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


VIOLATION_STATUSES = ("new", "pending_approval", "approved", "disputed", "rejected")
USER_ROLES = ("admin", "council", "user")
UNIT_ROLES = ("owner", "tenant")


# -----------------------------
# Users (auth collaborator)
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")  # admin|council|user
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# -----------------------------
# Units / persons
# -----------------------------
class PropertyUnit(Base):
    __tablename__ = "property_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    unit_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    strata_lot: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    floor: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    townhouse: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    roles: Mapped[List["UnitPersonRole"]] = relationship(
        back_populates="unit", cascade="all, delete-orphan", passive_deletes=True
    )


class Person(Base):
    __tablename__ = "persons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    auth_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    full_name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class UnitPersonRole(Base):
    __tablename__ = "unit_person_roles"
    __table_args__ = (UniqueConstraint("unit_id", "person_id", "role", name="uq_unit_person_roles_unit_person_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("property_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # owner|tenant
    receive_email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    unit: Mapped[PropertyUnit] = relationship(back_populates="roles")
    person: Mapped[Person] = relationship()


# -----------------------------
# Categories
# -----------------------------
class ViolationCategory(Base):
    __tablename__ = "violation_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bylaw_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    # whole currency units
    default_fine_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# -----------------------------
# Bylaws
# -----------------------------
class Bylaw(Base):
    __tablename__ = "bylaws"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_uuid)
    section_number: Mapped[str] = mapped_column(String(60), nullable=False, unique=True, index=True)  # "Section 4", "3.4.2"
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    parent_section_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("bylaws.id", ondelete="SET NULL"), nullable=True
    )
    section_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    part_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # "PART 2"
    part_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def reference(self) -> str:
        """Text copied into a violation's bylaw reference."""
        return f"{self.section_number}: {self.title}"[:120]


class BylawRevision(Base):
    """Snapshot of a bylaw's wording taken before each edit."""

    __tablename__ = "bylaw_revisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bylaw_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bylaws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    revision_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    created_by: Mapped[Optional[AppUser]] = relationship()

    @property
    def created_by_name(self) -> Optional[str]:
        if self.created_by is None:
            return None
        return self.created_by.full_name or self.created_by.email


# -----------------------------
# Violations (lifecycle core)
# -----------------------------
class Violation(Base):
    __tablename__ = "violations"
    __table_args__ = (
        Index("ix_violations_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True, default=_uuid)
    reference_number: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_uuid)

    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("property_units.id"), nullable=False, index=True)
    reported_by_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("violation_categories.id"), nullable=True, index=True
    )

    violation_type: Mapped[str] = mapped_column(String(120), nullable=False)
    violation_date: Mapped[date] = mapped_column(Date, nullable=False)
    violation_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    bylaw_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending_approval", index=True)
    # whole currency units; only written by the fine-setting operations
    fine_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    incident_area: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    concierge_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    people_involved: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    noticed_by: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    damage_to_property: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)  # yes|no
    damage_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    police_involved: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)  # yes|no
    police_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    unit: Mapped[PropertyUnit] = relationship()
    category: Mapped[Optional[ViolationCategory]] = relationship()
    reported_by: Mapped[AppUser] = relationship()
    history: Mapped[List["ViolationHistory"]] = relationship(
        back_populates="violation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="[ViolationHistory.created_at, ViolationHistory.id]",
    )

    @property
    def unit_number(self) -> Optional[str]:
        return self.unit.unit_number if self.unit is not None else None

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category is not None else None

    @property
    def reporter_name(self) -> Optional[str]:
        if self.reported_by is None:
            return None
        return self.reported_by.full_name or self.reported_by.email


class ViolationHistory(Base):
    """Insert-only trail; rows go away only with their violation."""

    __tablename__ = "violation_histories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    violation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("violations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # null for system / public actions
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(120), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    violation: Mapped[Violation] = relationship(back_populates="history")
    user: Mapped[Optional[AppUser]] = relationship()

    @property
    def user_name(self) -> Optional[str]:
        if self.user is None:
            return None
        return self.user.full_name or self.user.email


# -----------------------------
# Public dispute flow
# -----------------------------
class ViolationAccessLink(Base):
    __tablename__ = "violation_access_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    violation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("violations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    violation_uuid: Mapped[str] = mapped_column(String(36), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(200), nullable=False)
    token: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True, default=_uuid)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class EmailVerificationCode(Base):
    __tablename__ = "email_verification_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    violation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("violations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class PublicUserSession(Base):
    __tablename__ = "public_user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True, default=_uuid)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("property_units.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    full_name: Mapped[str] = mapped_column(String(160), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class PublicRateBucket(Base):
    """Fixed-window request counter for unauthenticated endpoints."""

    __tablename__ = "public_rate_buckets"
    __table_args__ = (UniqueConstraint("bucket_key", "window_start", name="uq_public_rate_buckets_key_window"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bucket_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# -----------------------------
# Audit + notification outbox
# -----------------------------
class AuditEvent(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True
    )
    actor_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    actor_email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    violation_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("violations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    recipient_email: Mapped[str] = mapped_column(String(200), nullable=False)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)  # pending|sent|failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
