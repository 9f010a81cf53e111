"""Availability Engine.

Every figure is recomputed from the current bookings, holds and resource
quantity on each call. Nothing here is cached.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from .config import get_settings
from .models import ACTIVE_BOOKING_STATUSES, Booking, BookingGuard, Resource, ResourceHold, StudioSession
from .schemas import AvailabilityRead, BookingSummary, ResourceAvailabilityRead, SessionRead, SlotRead
from .session_calendar import get_session
from .time_utils import from_minutes, now as clock_now, overlaps, peak_usage, to_minutes

Interval = Tuple[int, int, int]


class SlotStatus(str, Enum):
    OPEN = "OPEN"
    HELD = "HELD"
    BOOKED = "BOOKED"


@dataclass(frozen=True)
class Slot:
    start: int
    end: int
    held: int
    booked: int
    available: int
    status: SlotStatus


def hold_quantity(hold: ResourceHold, now: datetime) -> int:
    """Units a class hold takes away from Open Studio at ``now``.

    A class reserving its full capacity keeps every unit until its release
    time; afterwards only the units allocated to confirmed students count.
    """
    allocated = hold.allocated_quantity or 0
    if hold.reserve_full_capacity and (hold.release_at is None or now < hold.release_at):
        return max(hold.quantity, allocated)
    return allocated


def classify(quantity: int, held: int, booked: int) -> SlotStatus:
    if quantity - held - booked > 0:
        return SlotStatus.OPEN
    if held >= quantity:
        return SlotStatus.HELD
    return SlotStatus.BOOKED


def build_slots(
    session_start: int,
    session_end: int,
    quantity: int,
    holds: Sequence[Interval],
    bookings: Sequence[Interval],
    slot_minutes: int,
) -> List[Slot]:
    slots: List[Slot] = []
    cursor = session_start
    while cursor < session_end:
        slot_end = min(cursor + slot_minutes, session_end)
        held = sum(weight for start, end, weight in holds if overlaps(start, end, cursor, slot_end))
        booked = sum(weight for start, end, weight in bookings if overlaps(start, end, cursor, slot_end))
        slots.append(
            Slot(
                start=cursor,
                end=slot_end,
                held=held,
                booked=booked,
                available=quantity - held - booked,
                status=classify(quantity, held, booked),
            )
        )
        cursor = slot_end
    return slots


def lock_slot_group(db: Session, resource_id: int, session_id: int) -> None:
    """Serialize writers of one (resource, session) pair for the rest of the transaction."""
    result = db.execute(
        update(BookingGuard)
        .where(BookingGuard.resource_id == resource_id, BookingGuard.session_id == session_id)
        .values(version=BookingGuard.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # A concurrent first writer surfaces as an IntegrityError and is retried.
        db.add(BookingGuard(resource_id=resource_id, session_id=session_id, version=1))
        db.flush()


def active_bookings(db: Session, resource_id: int, session_id: int) -> List[Booking]:
    return (
        db.query(Booking)
        .filter(
            Booking.resource_id == resource_id,
            Booking.session_id == session_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        .order_by(Booking.start_time.asc(), Booking.id.asc())
        .all()
    )


def holds_for(db: Session, resource_id: int, session: StudioSession) -> List[ResourceHold]:
    return (
        db.query(ResourceHold)
        .filter(
            ResourceHold.resource_id == resource_id,
            ResourceHold.session_date == session.session_date,
            ResourceHold.start_time < session.end_time,
            ResourceHold.end_time > session.start_time,
        )
        .all()
    )


def _hold_intervals(holds: Iterable[ResourceHold], now: datetime) -> List[Interval]:
    return [(to_minutes(h.start_time), to_minutes(h.end_time), hold_quantity(h, now)) for h in holds]


def _booking_intervals(bookings: Iterable[Booking]) -> List[Interval]:
    return [(to_minutes(b.start_time), to_minutes(b.end_time), 1) for b in bookings]


def remaining_capacity(
    db: Session,
    session: StudioSession,
    resource: Resource,
    start: int,
    end: int,
    now: datetime,
) -> int:
    """Units still free at the busiest instant of ``[start, end)``."""
    intervals = _hold_intervals(holds_for(db, resource.id, session), now)
    intervals += _booking_intervals(active_bookings(db, resource.id, session.id))
    return resource.quantity - peak_usage(intervals, start, end)


def resource_availability(
    db: Session,
    session: StudioSession,
    resource: Resource,
    now: datetime,
    slot_minutes: Optional[int] = None,
) -> ResourceAvailabilityRead:
    bookings = active_bookings(db, resource.id, session.id)
    holds = _hold_intervals(holds_for(db, resource.id, session), now)
    slots = build_slots(
        to_minutes(session.start_time),
        to_minutes(session.end_time),
        resource.quantity,
        holds,
        _booking_intervals(bookings),
        slot_minutes or get_settings().slot_minutes,
    )
    return ResourceAvailabilityRead(
        resource_id=resource.id,
        resource_name=resource.name,
        total_quantity=resource.quantity,
        held_by_classes=max((slot.held for slot in slots), default=0),
        currently_booked=len(bookings),
        available=max(0, min((slot.available for slot in slots), default=0)),
        bookings=[
            BookingSummary(id=b.id, start_time=b.start_time, end_time=b.end_time, status=b.status) for b in bookings
        ],
        slots=[
            SlotRead(
                start_time=from_minutes(slot.start),
                end_time=from_minutes(slot.end),
                held=slot.held,
                booked=slot.booked,
                available=max(0, slot.available),
                status=slot.status.value,
            )
            for slot in slots
        ],
    )


def session_availability(
    db: Session,
    session_id: int,
    studio_id: Optional[int] = None,
    resource_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AvailabilityRead:
    now = now or clock_now()
    session = get_session(db, session_id, studio_id)
    query = db.query(Resource).filter(Resource.studio_id == session.studio_id, Resource.is_active.is_(True))
    if resource_id is not None:
        query = query.filter(Resource.id == resource_id)
    resources = query.order_by(Resource.name.asc()).all()
    return AvailabilityRead(
        session=SessionRead.model_validate(session),
        resources=[resource_availability(db, session, resource, now) for resource in resources],
    )
