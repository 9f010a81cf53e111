"""Pydantic schemas shared across the services.

Payloads travel in camelCase on the wire and are populated by field name
inside Python.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, List, Optional

from humps import camelize
from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from .models import BookingStatus, SubscriptionStatus
from .time_utils import is_hhmm


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=camelize, populate_by_name=True)


class CamelOrmBase(CamelModel):
    model_config = ConfigDict(from_attributes=True)


def _check_hhmm(value: str) -> str:
    if not is_hhmm(value):
        raise ValueError("time must be formatted as HH:MM")
    return value


HHMM = Annotated[str, AfterValidator(_check_hhmm)]


class ResourceBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    quantity: int = Field(..., ge=0)
    is_active: bool = True


class ResourceCreate(ResourceBase):
    pass


class ResourceUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ResourceRead(ResourceBase, CamelOrmBase):
    id: int
    studio_id: int


class ResourceHoldCreate(CamelModel):
    label: str = Field("Class", max_length=100)
    session_date: date
    start_time: HHMM
    end_time: HHMM
    quantity: int = Field(..., ge=0)
    allocated_quantity: int = Field(0, ge=0)
    reserve_full_capacity: bool = True
    release_at: Optional[datetime] = None


class ResourceHoldRead(ResourceHoldCreate, CamelOrmBase):
    id: int
    resource_id: int


class SessionRead(CamelOrmBase):
    id: int
    studio_id: int
    class_id: int
    class_name: str
    session_date: date
    start_time: str
    end_time: str
    is_cancelled: bool = False


class UpcomingSession(SessionRead):
    active_bookings: int = 0


class EntitlementRef(CamelModel):
    subscription_id: Optional[int] = None
    customer_punch_pass_id: Optional[int] = None


class BookingCreate(EntitlementRef):
    session_id: int
    resource_id: int
    start_time: HHMM
    end_time: HHMM


class WalkInCreate(EntitlementRef):
    customer_id: Optional[int] = None
    session_id: int
    resource_id: int
    start_time: Optional[HHMM] = None
    end_time: Optional[HHMM] = None


class BookingRead(CamelOrmBase):
    id: int
    session_id: int
    resource_id: int
    customer_id: int
    subscription_id: Optional[int] = None
    punch_pass_id: Optional[int] = None
    start_time: str
    end_time: str
    status: BookingStatus
    is_walk_in: bool
    reserved_at: datetime
    checked_in_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class CancellationRead(CamelModel):
    booking: BookingRead
    credited: bool
    promoted_waitlist_id: Optional[int] = None


class SlotRead(CamelModel):
    start_time: str
    end_time: str
    held: int
    booked: int
    available: int
    status: str


class BookingSummary(CamelModel):
    id: int
    start_time: str
    end_time: str
    status: BookingStatus


class ResourceAvailabilityRead(CamelModel):
    resource_id: int
    resource_name: str
    total_quantity: int
    held_by_classes: int
    currently_booked: int
    available: int
    bookings: List[BookingSummary]
    slots: List[SlotRead]


class AvailabilityRead(CamelModel):
    session: SessionRead
    resources: List[ResourceAvailabilityRead]


class WaitlistJoin(BookingCreate):
    pass


class WaitlistRead(CamelOrmBase):
    id: int
    resource_id: int
    session_id: int
    customer_id: int
    subscription_id: Optional[int] = None
    punch_pass_id: Optional[int] = None
    start_time: str
    end_time: str
    position: int
    joined_at: datetime
    promoted_at: Optional[datetime] = None
    removed_at: Optional[datetime] = None
    removal_reason: Optional[str] = None


class OpenStudioBenefits(CamelModel):
    """Open Studio gates of a membership. Every field is required."""

    max_block_minutes: int = Field(..., gt=0)
    max_bookings_per_week: int = Field(..., ge=0)
    advance_booking_days: int = Field(..., ge=0)
    walk_in_allowed: bool
    premium_time_access: bool

    model_config = ConfigDict(strict=True)


class SubscriptionRead(CamelOrmBase):
    id: int
    customer_id: int
    membership_id: int
    membership_name: str
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    benefits: Optional[OpenStudioBenefits] = None
    bookings_this_week: int


class PunchPassRead(CamelOrmBase):
    id: int
    customer_id: int
    punch_pass_product_id: int
    punches_remaining: int
    total_punches: int
    expires_at: datetime
    is_transferable: bool


class ExpiredPromotions(CamelModel):
    lapsed: List[int]
    promoted: List[int]
