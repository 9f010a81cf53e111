"""Booking Engine: the reservation state machine.

RESERVED -> CHECKED_IN -> COMPLETED, and RESERVED/CHECKED_IN -> CANCELLED.
COMPLETED and CANCELLED are terminal.

Creating a booking re-checks capacity, authorizes and debits the
entitlement and inserts the row in one transaction that holds the
(resource, session) guard, so two requests for the last unit can never
both succeed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from . import entitlements, events, waitlist
from .availability import lock_slot_group, remaining_capacity
from .config import get_settings
from .database import run_atomic
from .entitlements import EntitlementRef
from .errors import ErrorCode, OpenStudioError
from .models import Booking, BookingStatus, Resource, StudioSession, WaitlistEntry
from .session_calendar import get_session, invalidate_upcoming
from .time_utils import at, from_minutes, now as clock_now, to_minutes

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.RESERVED: {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED},
    BookingStatus.CHECKED_IN: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


@dataclass
class Cancellation:
    booking: Booking
    credited: bool
    promoted: Optional[WaitlistEntry] = None


def _transition(booking: Booking, target: BookingStatus) -> None:
    if target not in TRANSITIONS[booking.status]:
        raise OpenStudioError(
            ErrorCode.INVALID_BOOKING_STATE,
            f"Cannot move a {booking.status.value} booking to {target.value}",
        )
    booking.status = target


def _booking_payload(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "customer_id": booking.customer_id,
        "resource_id": booking.resource_id,
        "session_id": booking.session_id,
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "status": booking.status.value,
        "is_walk_in": booking.is_walk_in,
    }


def _active_resource(db: Session, studio_id: int, resource_id: int) -> Resource:
    resource = (
        db.query(Resource)
        .filter(Resource.id == resource_id, Resource.studio_id == studio_id, Resource.is_active.is_(True))
        .first()
    )
    if resource is None:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Resource not found or inactive")
    return resource


def _bookable_session(db: Session, studio_id: int, session_id: int) -> StudioSession:
    session = get_session(db, session_id, studio_id)
    if session.is_cancelled:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Session not found")
    return session


def _validate_window(session: StudioSession, start: int, end: int, now: datetime, walk_in: bool) -> None:
    if end <= start:
        raise OpenStudioError(ErrorCode.INVALID_TIME_RANGE)
    if start < to_minutes(session.start_time) or end > to_minutes(session.end_time):
        raise OpenStudioError(
            ErrorCode.OUTSIDE_SESSION_WINDOW,
            f"Requested time must fall within {session.start_time}-{session.end_time}",
        )
    if not walk_in and at(session.session_date, from_minutes(start)) < now:
        raise OpenStudioError(ErrorCode.OUTSIDE_SESSION_WINDOW, "Requested start time has already passed")


def check_in_window(session: StudioSession) -> tuple[datetime, datetime]:
    opens = at(session.session_date, session.start_time) - timedelta(minutes=get_settings().check_in_grace_minutes)
    return opens, at(session.session_date, session.end_time)


def _reserve(
    db: Session,
    customer_id: int,
    studio_id: int,
    session_id: int,
    resource_id: int,
    start_time: str,
    end_time: str,
    ref: EntitlementRef,
    now: datetime,
    walk_in: bool,
) -> Booking:
    session = _bookable_session(db, studio_id, session_id)
    resource = _active_resource(db, studio_id, resource_id)
    start, end = to_minutes(start_time), to_minutes(end_time)
    _validate_window(session, start, end, now, walk_in)

    if entitlements.active_suspension(db, customer_id, studio_id, now):
        raise OpenStudioError(ErrorCode.ACCOUNT_SUSPENDED)

    lock_slot_group(db, resource.id, session.id)
    authorization = entitlements.authorize(db, customer_id, ref, end - start, now, lock=True)
    if authorization.reason is ErrorCode.BLOCK_TOO_LONG:
        authorization.raise_for_reason()

    if remaining_capacity(db, session, resource, start, end, now) < 1:
        logger.info(
            "Rejected booking for resource %s session %s %s-%s: slot unavailable",
            resource.id,
            session.id,
            start_time,
            end_time,
        )
        raise OpenStudioError(ErrorCode.SLOT_UNAVAILABLE)

    authorization.raise_for_reason()
    benefits = authorization.benefits
    if walk_in:
        if benefits is not None and not benefits.walk_in_allowed:
            raise OpenStudioError(ErrorCode.WALK_IN_NOT_ALLOWED)
    elif benefits is not None and (session.session_date - now.date()).days > benefits.advance_booking_days:
        raise OpenStudioError(
            ErrorCode.ADVANCE_WINDOW_EXCEEDED,
            f"You can only book up to {benefits.advance_booking_days} day(s) in advance",
        )

    booking = Booking(
        studio_id=studio_id,
        session_id=session.id,
        resource_id=resource.id,
        customer_id=customer_id,
        subscription_id=ref.subscription_id,
        punch_pass_id=ref.punch_pass_id,
        start_time=start_time,
        end_time=end_time,
        status=BookingStatus.CHECKED_IN if walk_in else BookingStatus.RESERVED,
        is_walk_in=walk_in,
        reserved_at=now,
        checked_in_at=now if walk_in else None,
    )
    entitlements.debit(db, ref, booking)
    db.add(booking)
    waitlist.remove_for_booking(db, customer_id, resource.id, session.id, start_time, now)
    db.flush()
    return booking


def _commit_booking(
    db: Session,
    customer_id: int,
    studio_id: int,
    session_id: int,
    resource_id: int,
    start_time: str,
    end_time: str,
    ref: EntitlementRef,
    now: datetime,
    walk_in: bool,
) -> Booking:
    booking = run_atomic(
        db,
        lambda: _reserve(db, customer_id, studio_id, session_id, resource_id, start_time, end_time, ref, now, walk_in),
        get_settings().booking_retry_attempts,
        on_exhausted=lambda: OpenStudioError(ErrorCode.SLOT_UNAVAILABLE),
    )
    db.refresh(booking)
    invalidate_upcoming(studio_id)
    logger.info(
        "Booking %s created: customer %s resource %s session %s %s-%s%s",
        booking.id,
        customer_id,
        resource_id,
        session_id,
        start_time,
        end_time,
        " (walk-in)" if walk_in else "",
    )
    events.publish_event(events.BOOKING_CREATED, _booking_payload(booking))
    return booking


def create_booking(
    db: Session,
    customer_id: int,
    studio_id: int,
    session_id: int,
    resource_id: int,
    start_time: str,
    end_time: str,
    ref: EntitlementRef,
    now: Optional[datetime] = None,
) -> Booking:
    return _commit_booking(
        db, customer_id, studio_id, session_id, resource_id, start_time, end_time, ref, now or clock_now(), walk_in=False
    )


def create_walk_in(
    db: Session,
    studio_id: int,
    session_id: int,
    resource_id: int,
    ref: EntitlementRef,
    customer_id: Optional[int] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Book and check in a member who turned up at the studio.

    Without an explicit window the block starts now (or at session start)
    and runs for the membership's maximum block, capped at session end;
    punch-pass walk-ins run to session end.
    """
    now = now or clock_now()
    owner = entitlements.owner_of(db, ref)
    if owner is None or (customer_id is not None and owner != customer_id):
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Entitlement not found for this customer")

    session = _bookable_session(db, studio_id, session_id)
    opens, closes = check_in_window(session)
    if not opens <= now <= closes:
        raise OpenStudioError(ErrorCode.CHECK_IN_WINDOW_CLOSED, "Walk-ins are only accepted during the check-in window")

    session_start, session_end = to_minutes(session.start_time), to_minutes(session.end_time)
    if start_time is None:
        current = now.hour * 60 + now.minute if now.date() == session.session_date else session_start
        start = max(current, session_start)
        start_time = from_minutes(min(start, session_end - 1)) if session_end > session_start else session.start_time
    if end_time is None:
        start = to_minutes(start_time)
        end = session_end
        if ref.is_subscription:
            benefits = entitlements.benefits_for(db, owner, ref)
            if benefits is None:
                raise OpenStudioError(ErrorCode.BENEFITS_INVALID)
            end = min(start + benefits.max_block_minutes, session_end)
        end_time = from_minutes(end)

    return _commit_booking(db, owner, studio_id, session_id, resource_id, start_time, end_time, ref, now, walk_in=True)


def get_booking(db: Session, booking_id: int, studio_id: Optional[int] = None) -> Booking:
    query = db.query(Booking).filter(Booking.id == booking_id)
    if studio_id is not None:
        query = query.filter(Booking.studio_id == studio_id)
    booking = query.first()
    if not booking:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Booking not found")
    return booking


def _locked_booking(db: Session, booking_id: int) -> Booking:
    """Take the booking's slot guard, then reload the row from the store.

    The status is only trustworthy after the guard is held; a copy already
    sitting in the session may predate another request's commit.
    """
    booking = get_booking(db, booking_id)
    lock_slot_group(db, booking.resource_id, booking.session_id)
    return db.query(Booking).filter(Booking.id == booking_id).populate_existing().with_for_update().one()


def check_in(db: Session, booking_id: int, now: Optional[datetime] = None) -> Booking:
    now = now or clock_now()

    def work() -> Booking:
        booking = _locked_booking(db, booking_id)
        if booking.status != BookingStatus.RESERVED:
            raise OpenStudioError(ErrorCode.INVALID_BOOKING_STATE, "Only reserved bookings can be checked in")
        opens, closes = check_in_window(booking.session)
        if not opens <= now <= closes:
            raise OpenStudioError(
                ErrorCode.CHECK_IN_WINDOW_CLOSED,
                f"Check-in is open from {opens:%Y-%m-%d %H:%M} to {closes:%Y-%m-%d %H:%M}",
            )
        _transition(booking, BookingStatus.CHECKED_IN)
        booking.checked_in_at = now
        return booking

    booking = run_atomic(db, work, get_settings().booking_retry_attempts)
    db.refresh(booking)
    logger.info("Booking %s checked in", booking.id)
    return booking


def complete(db: Session, booking_id: int, now: Optional[datetime] = None) -> Booking:
    now = now or clock_now()

    def work() -> Booking:
        booking = _locked_booking(db, booking_id)
        _transition(booking, BookingStatus.COMPLETED)
        booking.completed_at = now
        return booking

    booking = run_atomic(db, work, get_settings().booking_retry_attempts)
    db.refresh(booking)
    return booking


def cancel(db: Session, booking_id: int, actor_id: int, now: Optional[datetime] = None) -> Cancellation:
    """Cancel a booking, refund it if it has not started and promote the waitlist."""
    now = now or clock_now()

    def work() -> Cancellation:
        booking = _locked_booking(db, booking_id)
        if booking.status not in (BookingStatus.RESERVED, BookingStatus.CHECKED_IN):
            raise OpenStudioError(
                ErrorCode.INVALID_BOOKING_STATE,
                f"A {booking.status.value} booking cannot be cancelled",
            )
        credited = entitlements.credit(db, booking, now)
        _transition(booking, BookingStatus.CANCELLED)
        booking.cancelled_at = now
        booking.cancelled_by = actor_id
        db.flush()
        promoted = waitlist.promote_next(db, booking.resource_id, booking.session_id, booking.start_time, now)
        return Cancellation(booking=booking, credited=credited, promoted=promoted)

    result = run_atomic(db, work, get_settings().booking_retry_attempts)
    db.refresh(result.booking)
    invalidate_upcoming(result.booking.studio_id)
    logger.info("Booking %s cancelled by %s (credited=%s)", booking_id, actor_id, result.credited)
    events.publish_event(events.BOOKING_CANCELLED, {**_booking_payload(result.booking), "credited": result.credited})
    if result.promoted is not None:
        events.publish_event(events.WAITLIST_PROMOTED, waitlist.promotion_payload(result.promoted))
    return result


def list_for_customer(db: Session, customer_id: int) -> List[Booking]:
    return (
        db.query(Booking)
        .filter(
            Booking.customer_id == customer_id,
            Booking.status.in_((BookingStatus.RESERVED, BookingStatus.CHECKED_IN, BookingStatus.COMPLETED)),
        )
        .order_by(Booking.reserved_at.desc(), Booking.id.desc())
        .all()
    )
