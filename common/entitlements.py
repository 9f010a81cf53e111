"""Entitlement Ledger: membership quotas and punch passes.

``authorize`` never raises for business conditions; it returns an
``Authorization`` carrying the reason. ``debit`` and ``credit`` run inside
the caller's transaction and never commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import ValidationError
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from .errors import ErrorCode, OpenStudioError
from .models import (
    Booking,
    BookingStatus,
    CustomerSuspension,
    PunchPass,
    Subscription,
    SubscriptionStatus,
)
from .schemas import OpenStudioBenefits
from .time_utils import at, iso_week_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementRef:
    subscription_id: Optional[int] = None
    punch_pass_id: Optional[int] = None

    @property
    def is_subscription(self) -> bool:
        return self.subscription_id is not None

    @classmethod
    def of(cls, subscription_id: Optional[int], punch_pass_id: Optional[int]) -> "EntitlementRef":
        if (subscription_id is None) == (punch_pass_id is None):
            raise OpenStudioError(ErrorCode.ENTITLEMENT_REQUIRED)
        return cls(subscription_id=subscription_id, punch_pass_id=punch_pass_id)


@dataclass(frozen=True)
class Authorization:
    ok: bool
    reason: Optional[ErrorCode] = None
    message: Optional[str] = None
    benefits: Optional[OpenStudioBenefits] = None

    def raise_for_reason(self) -> None:
        if not self.ok:
            raise OpenStudioError(self.reason or ErrorCode.NO_ACTIVE_SUBSCRIPTION, self.message)


def _deny(reason: ErrorCode, message: Optional[str] = None, benefits: Optional[OpenStudioBenefits] = None) -> Authorization:
    return Authorization(ok=False, reason=reason, message=message, benefits=benefits)


def parse_benefits(raw: Any) -> Optional[OpenStudioBenefits]:
    """Validate a membership benefits blob; ``None`` means deny."""
    if not isinstance(raw, dict):
        return None
    section = raw.get("openStudio", raw)
    try:
        return OpenStudioBenefits.model_validate(section)
    except ValidationError:
        logger.warning("Rejecting malformed Open Studio benefits: %s", section)
        return None


def weekly_usage(db: Session, subscription_id: int, week_of: date) -> int:
    """Bookings charged against the subscription in the ISO week containing ``week_of``."""
    week_start, week_end = iso_week_bounds(week_of)
    return (
        db.query(func.count(Booking.id))
        .filter(
            Booking.subscription_id == subscription_id,
            Booking.entitlement_consumed.is_(True),
            Booking.reserved_at >= week_start,
            Booking.reserved_at < week_end,
        )
        .scalar()
        or 0
    )


def get_subscription(db: Session, customer_id: int, subscription_id: int, lock: bool = False) -> Optional[Subscription]:
    query = db.query(Subscription).filter(Subscription.id == subscription_id, Subscription.customer_id == customer_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def get_punch_pass(db: Session, customer_id: int, punch_pass_id: int, lock: bool = False) -> Optional[PunchPass]:
    query = db.query(PunchPass).filter(PunchPass.id == punch_pass_id, PunchPass.customer_id == customer_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def owner_of(db: Session, ref: EntitlementRef) -> Optional[int]:
    if ref.is_subscription:
        return db.query(Subscription.customer_id).filter(Subscription.id == ref.subscription_id).scalar()
    return db.query(PunchPass.customer_id).filter(PunchPass.id == ref.punch_pass_id).scalar()


def benefits_for(db: Session, customer_id: int, ref: EntitlementRef) -> Optional[OpenStudioBenefits]:
    if not ref.is_subscription:
        return None
    subscription = get_subscription(db, customer_id, ref.subscription_id)
    if subscription is None:
        return None
    return parse_benefits(subscription.membership.benefits)


def authorize(
    db: Session,
    customer_id: int,
    ref: EntitlementRef,
    requested_minutes: int,
    now: datetime,
    lock: bool = False,
) -> Authorization:
    if ref.is_subscription:
        subscription = get_subscription(db, customer_id, ref.subscription_id, lock=lock)
        if subscription is None:
            return _deny(ErrorCode.NOT_FOUND, "Subscription not found")
        if subscription.status != SubscriptionStatus.ACTIVE:
            return _deny(ErrorCode.NO_ACTIVE_SUBSCRIPTION, "Subscription is not active")
        benefits = parse_benefits(subscription.membership.benefits)
        if benefits is None:
            return _deny(ErrorCode.BENEFITS_INVALID)
        if requested_minutes > benefits.max_block_minutes:
            return _deny(
                ErrorCode.BLOCK_TOO_LONG,
                f"Block length {requested_minutes} minutes exceeds your maximum of {benefits.max_block_minutes} minutes",
                benefits,
            )
        used = weekly_usage(db, subscription.id, now.date())
        if used >= benefits.max_bookings_per_week:
            return _deny(
                ErrorCode.WEEKLY_LIMIT_REACHED,
                f"You have reached your limit of {benefits.max_bookings_per_week} bookings per week",
                benefits,
            )
        return Authorization(ok=True, benefits=benefits)

    punch_pass = get_punch_pass(db, customer_id, ref.punch_pass_id, lock=lock)
    if punch_pass is None:
        return _deny(ErrorCode.NOT_FOUND, "Punch pass not found")
    if punch_pass.punches_remaining <= 0:
        return _deny(ErrorCode.PASS_EXHAUSTED)
    if punch_pass.expires_at <= now:
        return _deny(ErrorCode.PASS_EXPIRED)
    return Authorization(ok=True)


def debit(db: Session, ref: EntitlementRef, booking: Booking) -> None:
    """Charge one unit for ``booking``.

    Punch passes lose a punch through a conditional decrement; the
    subscription's weekly usage is derived from the booking itself.
    """
    if ref.punch_pass_id is not None:
        result = db.execute(
            update(PunchPass)
            .where(PunchPass.id == ref.punch_pass_id, PunchPass.punches_remaining > 0)
            .values(punches_remaining=PunchPass.punches_remaining - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise OpenStudioError(ErrorCode.PASS_EXHAUSTED)
    booking.entitlement_consumed = True


def credit(db: Session, booking: Booking, now: datetime) -> bool:
    """Give back the unit charged for ``booking`` if it has not started yet."""
    if booking.status != BookingStatus.RESERVED or not booking.entitlement_consumed:
        return False
    if now >= at(booking.session.session_date, booking.start_time):
        return False
    if booking.punch_pass_id is not None:
        db.execute(
            update(PunchPass)
            .where(PunchPass.id == booking.punch_pass_id, PunchPass.punches_remaining < PunchPass.total_punches)
            .values(punches_remaining=PunchPass.punches_remaining + 1)
            .execution_options(synchronize_session=False)
        )
    booking.entitlement_consumed = False
    return True


def active_suspension(db: Session, customer_id: int, studio_id: int, now: datetime) -> Optional[CustomerSuspension]:
    return (
        db.query(CustomerSuspension)
        .filter(
            CustomerSuspension.customer_id == customer_id,
            CustomerSuspension.studio_id == studio_id,
            CustomerSuspension.is_active.is_(True),
            CustomerSuspension.suspended_until > now,
        )
        .first()
    )


def current_subscription(db: Session, customer_id: int) -> Optional[Subscription]:
    """The customer's active subscription, or their most recent one if none is active."""
    active = (
        db.query(Subscription)
        .filter(Subscription.customer_id == customer_id, Subscription.status == SubscriptionStatus.ACTIVE)
        .order_by(Subscription.id.desc())
        .first()
    )
    if active is not None:
        return active
    return db.query(Subscription).filter(Subscription.customer_id == customer_id).order_by(Subscription.id.desc()).first()


def list_punch_passes(db: Session, customer_id: int, usable_at: Optional[datetime] = None) -> List[PunchPass]:
    query = db.query(PunchPass).filter(PunchPass.customer_id == customer_id)
    if usable_at is not None:
        query = query.filter(PunchPass.punches_remaining > 0, PunchPass.expires_at > usable_at)
    return query.order_by(PunchPass.expires_at.asc(), PunchPass.id.asc()).all()
