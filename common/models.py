"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


class BookingStatus(str, Enum):
    RESERVED = "RESERVED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_BOOKING_STATUSES = (BookingStatus.RESERVED, BookingStatus.CHECKED_IN)


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.CUSTOMER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="customer")


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (UniqueConstraint("studio_id", "name", name="uq_resources_studio_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    quantity: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    holds: Mapped[List["ResourceHold"]] = relationship(back_populates="resource")


class StudioSession(Base):
    """A time-boxed Open Studio session generated by the class scheduler."""

    __tablename__ = "studio_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    class_id: Mapped[int] = mapped_column(Integer)
    class_name: Mapped[str] = mapped_column(String(100), default="Open Studio")
    session_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="session")


class ResourceHold(Base):
    """Units of a resource reserved by a scheduled class on a given date."""

    __tablename__ = "resource_holds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), index=True)
    label: Mapped[str] = mapped_column(String(100), default="Class")
    session_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    quantity: Mapped[int] = mapped_column(Integer)
    allocated_quantity: Mapped[int] = mapped_column(Integer, default=0)
    reserve_full_capacity: Mapped[bool] = mapped_column(Boolean, default=True)
    release_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    resource: Mapped[Resource] = relationship(back_populates="holds")


class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(100))
    benefits: Mapped[Optional[dict]] = mapped_column(JSON, default=None)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    membership_id: Mapped[int] = mapped_column(ForeignKey("memberships.id"), index=True)
    status: Mapped[SubscriptionStatus] = mapped_column(SqlEnum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    membership: Mapped[Membership] = relationship()


class PunchPass(Base):
    """A customer's purchased punch pass."""

    __tablename__ = "punch_passes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    punch_pass_product_id: Mapped[int] = mapped_column(Integer)
    punches_remaining: Mapped[int] = mapped_column(Integer)
    total_punches: Mapped[int] = mapped_column(Integer)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    is_transferable: Mapped[bool] = mapped_column(Boolean, default=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CustomerSuspension(Base):
    __tablename__ = "customer_suspensions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    reason: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    suspended_until: Mapped[datetime] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_resource_session", "resource_id", "session_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("studio_sessions.id"), index=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    subscription_id: Mapped[Optional[int]] = mapped_column(ForeignKey("subscriptions.id"), default=None, index=True)
    punch_pass_id: Mapped[Optional[int]] = mapped_column(ForeignKey("punch_passes.id"), default=None, index=True)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.RESERVED, index=True)
    is_walk_in: Mapped[bool] = mapped_column(Boolean, default=False)
    entitlement_consumed: Mapped[bool] = mapped_column(Boolean, default=True)
    reserved_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, default=None)

    customer: Mapped[User] = relationship(back_populates="bookings")
    session: Mapped[StudioSession] = relationship(back_populates="bookings")
    resource: Mapped[Resource] = relationship()


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (Index("ix_waitlist_group", "resource_id", "session_id", "start_time"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    studio_id: Mapped[int] = mapped_column(Integer, index=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id"))
    session_id: Mapped[int] = mapped_column(ForeignKey("studio_sessions.id"))
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    subscription_id: Mapped[Optional[int]] = mapped_column(ForeignKey("subscriptions.id"), default=None)
    punch_pass_id: Mapped[Optional[int]] = mapped_column(ForeignKey("punch_passes.id"), default=None)
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    position: Mapped[int] = mapped_column(Integer)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    removal_reason: Mapped[Optional[str]] = mapped_column(String(20), default=None)

    session: Mapped[StudioSession] = relationship()
    resource: Mapped[Resource] = relationship()


class BookingGuard(Base):
    """Per (resource, session) row locked by every write that must see a consistent slot group."""

    __tablename__ = "booking_guards"

    resource_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
