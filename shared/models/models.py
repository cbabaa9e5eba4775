"""
shared/models/models.py
All SQLAlchemy ORM models for the Cleaning Marketplace.
UUID primary keys throughout; JSON columns become JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CLEANER = "cleaner"
    MANAGER = "manager"
    ADMIN = "admin"
    DEMO_MANAGER = "demo_manager"
    DEMO_CLEANER = "demo_cleaner"


MANAGER_ROLES = (UserRole.MANAGER, UserRole.DEMO_MANAGER)
CLEANER_ROLES = (UserRole.CLEANER, UserRole.DEMO_CLEANER)
DEMO_ROLES = (UserRole.DEMO_MANAGER, UserRole.DEMO_CLEANER)


class ProfileStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"


class ApartmentType(str, PyEnum):
    STUDIO = "studio"
    ONE_PLUS_ONE = "1+1"
    TWO_PLUS_ONE = "2+1"


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReportFileType(str, PyEnum):
    IMAGE = "image"
    VIDEO = "video"


class NotificationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


TIME_SLOTS = ("10:00", "12:00", "14:00", "16:00", "18:00")


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class Profile(TimestampMixin, Base):
    """User account and marketplace profile. Soft-deleted via is_active, never removed."""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, default=UserRole.MANAGER)
    status: Mapped[ProfileStatus] = mapped_column(
        Enum(ProfileStatus), nullable=False, default=ProfileStatus.PENDING
    )
    rating: Mapped[Optional[float]] = mapped_column(Numeric(3, 2), nullable=True)
    completed_orders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Global prices per apartment type
    price_studio: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_one_plus_one: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_two_plus_one: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    telegram_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(back_populates="profile")

    __table_args__ = (
        Index("ix_profiles_role", "role"),
        Index("ix_profiles_status", "status"),
    )

    @property
    def is_demo(self) -> bool:
        return self.role in DEMO_ROLES

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def __repr__(self) -> str:
        return f"<Profile {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    profile: Mapped["Profile"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class ResidentialComplex(TimestampMixin, Base):
    """A named group of objects (a building), optionally owned by one manager."""
    __tablename__ = "residential_complexes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )


class PropertyObject(TimestampMixin, Base):
    """An apartment owned by a manager."""
    __tablename__ = "objects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    complex_name: Mapped[str] = mapped_column(String(255), nullable=False)
    apartment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    apartment_type: Mapped[ApartmentType] = mapped_column(Enum(ApartmentType), nullable=False)
    residential_complex_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("residential_complexes.id", ondelete="SET NULL"), nullable=True
    )
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_objects_user_id", "user_id"),
        Index("ix_objects_complex_id", "residential_complex_id"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.complex_name}, apt. {self.apartment_number}"


class Order(TimestampMixin, Base):
    """
    A scheduled cleaning. At most one non-cancelled order may hold a
    (cleaner, date, slot) triple; the partial unique index enforces it.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    manager_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    cleaner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    object_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("objects.id"), nullable=False
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING
    )
    cleaner_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)

    report: Mapped[Optional["CompletionReport"]] = relationship(
        back_populates="order", uselist=False
    )

    __table_args__ = (
        CheckConstraint(
            "cleaner_rating IS NULL OR (cleaner_rating BETWEEN 1 AND 5)",
            name="ck_orders_rating_range",
        ),
        Index(
            "uq_orders_cleaner_active_slot",
            "cleaner_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
        Index("ix_orders_manager_id", "manager_id"),
        Index("ix_orders_object_id", "object_id"),
        Index("ix_orders_scheduled_date", "scheduled_date"),
    )


class CleanerUnavailability(Base):
    """A full-day block on a cleaner's calendar."""
    __tablename__ = "cleaner_unavailability"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    cleaner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("cleaner_id", "date", name="uq_cleaner_unavailability_day"),
    )


class CompletionReport(Base):
    """Cleaner-submitted evidence for an order. One per order."""
    __tablename__ = "completion_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    order: Mapped["Order"] = relationship(back_populates="report")
    files: Mapped[List["ReportFile"]] = relationship(back_populates="report")


class ReportFile(Base):
    __tablename__ = "report_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("completion_reports.id", ondelete="CASCADE"), nullable=False
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)  # Storage key, not a URL
    file_type: Mapped[ReportFileType] = mapped_column(Enum(ReportFileType), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    report: Mapped["CompletionReport"] = relationship(back_populates="files")

    __table_args__ = (Index("ix_report_files_report_id", "report_id"),)


class CleanerPricing(TimestampMixin, Base):
    """Complex-specific prices; overrides the cleaner's global profile prices."""
    __tablename__ = "cleaner_pricing"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    complex_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("residential_complexes.id", ondelete="CASCADE"), nullable=False
    )
    price_studio: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_one_plus_one: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_two_plus_one: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "complex_id", name="uq_cleaner_pricing_complex"),
    )


class Dialog(Base):
    """One conversation per (manager, cleaner) pair."""
    __tablename__ = "dialogs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    manager_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    cleaner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    manager_last_read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cleaner_last_read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("manager_id", "cleaner_id", name="uq_dialogs_pair"),
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dialog_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("dialogs.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)
    text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    files: Mapped[List["MessageFile"]] = relationship(back_populates="message")

    __table_args__ = (Index("ix_messages_dialog_created", "dialog_id", "created_at"),)


class MessageFile(Base):
    __tablename__ = "message_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    file_url: Mapped[str] = mapped_column(Text, nullable=False)  # Storage key
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    message: Mapped["Message"] = relationship(back_populates="files")


class AdminNotification(Base):
    """Items in the admin inbox (new registrations awaiting moderation)."""
    __tablename__ = "admin_notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    notification_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="user_registration"
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(20), nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("ix_admin_notifications_status", "status", "created_at"),)


class AdminAuditLog(Base):
    """Append-only record of admin mutations. Written best effort."""
    __tablename__ = "admin_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_entity", "entity_type", "entity_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
