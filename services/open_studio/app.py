from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common import booking as bookings
from common import waitlist
from common.availability import session_availability
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_user, is_staff
from common.entitlements import EntitlementRef
from common.errors import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, RoleEnum, StudioSession, User, WaitlistEntry
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    AvailabilityRead,
    BookingCreate,
    BookingRead,
    CancellationRead,
    ExpiredPromotions,
    SessionRead,
    UpcomingSession,
    WaitlistJoin,
    WaitlistRead,
    WalkInCreate,
)
from common.session_calendar import get_session, list_upcoming

settings = get_settings()
staff_only = allow_roles(RoleEnum.ADMIN, RoleEnum.STAFF)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Open Studio Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "open_studio")
    add_error_handlers(fastapi_app)
    if settings.metrics_enabled:
        Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _ensure_owner_or_staff(current_user: User, customer_id: int) -> None:
    if not is_staff(current_user) and customer_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "open_studio"}


@app.get("/open-studio/sessions", response_model=List[UpcomingSession])
@limiter.limit("60/minute")
def upcoming_sessions(
    request: Request,
    horizon_days: Optional[int] = Query(None, ge=0, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[UpcomingSession]:
    return list_upcoming(db, current_user.studio_id, horizon_days=horizon_days)


@app.get("/open-studio/sessions/{session_id}", response_model=SessionRead)
@limiter.limit("60/minute")
def read_session(
    request: Request,
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StudioSession:
    return get_session(db, session_id, current_user.studio_id)


@app.get("/open-studio/sessions/{session_id}/availability", response_model=AvailabilityRead)
@limiter.limit("60/minute")
def read_availability(
    request: Request,
    session_id: int,
    resource_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    return session_availability(db, session_id, current_user.studio_id, resource_id=resource_id)


@app.post("/open-studio/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    ref = EntitlementRef.of(booking_in.subscription_id, booking_in.customer_punch_pass_id)
    return bookings.create_booking(
        db,
        current_user.id,
        current_user.studio_id,
        booking_in.session_id,
        booking_in.resource_id,
        booking_in.start_time,
        booking_in.end_time,
        ref,
    )


@app.post("/open-studio/walk-in", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_walk_in(
    request: Request,
    walk_in: WalkInCreate,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> Booking:
    ref = EntitlementRef.of(walk_in.subscription_id, walk_in.customer_punch_pass_id)
    return bookings.create_walk_in(
        db,
        current_user.studio_id,
        walk_in.session_id,
        walk_in.resource_id,
        ref,
        customer_id=walk_in.customer_id,
        start_time=walk_in.start_time,
        end_time=walk_in.end_time,
    )


@app.delete("/open-studio/bookings/{booking_id}", response_model=CancellationRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CancellationRead:
    booking = bookings.get_booking(db, booking_id, current_user.studio_id)
    _ensure_owner_or_staff(current_user, booking.customer_id)
    result = bookings.cancel(db, booking_id, current_user.id)
    return CancellationRead(
        booking=BookingRead.model_validate(result.booking),
        credited=result.credited,
        promoted_waitlist_id=result.promoted.id if result.promoted is not None else None,
    )


@app.post("/open-studio/bookings/{booking_id}/check-in", response_model=BookingRead)
@limiter.limit("30/minute")
def check_in_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = bookings.get_booking(db, booking_id, current_user.studio_id)
    _ensure_owner_or_staff(current_user, booking.customer_id)
    return bookings.check_in(db, booking_id)


@app.post("/open-studio/bookings/{booking_id}/complete", response_model=BookingRead)
@limiter.limit("30/minute")
def complete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> Booking:
    bookings.get_booking(db, booking_id, current_user.studio_id)
    return bookings.complete(db, booking_id)


@app.get("/open-studio/my-bookings", response_model=List[BookingRead])
@limiter.limit("60/minute")
def my_bookings(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    return bookings.list_for_customer(db, current_user.id)


@app.post("/open-studio/waitlist", response_model=WaitlistRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def join_waitlist(
    request: Request,
    entry_in: WaitlistJoin,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WaitlistEntry:
    ref = EntitlementRef.of(entry_in.subscription_id, entry_in.customer_punch_pass_id)
    return waitlist.join(
        db,
        current_user.id,
        current_user.studio_id,
        entry_in.resource_id,
        entry_in.session_id,
        entry_in.start_time,
        entry_in.end_time,
        ref,
    )


@app.delete("/open-studio/waitlist/{waitlist_id}", response_model=WaitlistRead)
@limiter.limit("20/minute")
def leave_waitlist(
    request: Request,
    waitlist_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WaitlistEntry:
    entry = waitlist.get_entry(db, waitlist_id)
    if entry.studio_id != current_user.studio_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Waitlist entry not found")
    _ensure_owner_or_staff(current_user, entry.customer_id)
    return waitlist.leave(db, waitlist_id)


@app.get("/open-studio/my-waitlist", response_model=List[WaitlistRead])
@limiter.limit("60/minute")
def my_waitlist(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[WaitlistEntry]:
    return waitlist.list_for_customer(db, current_user.id)


@app.get("/open-studio/waitlist", response_model=List[WaitlistRead])
@limiter.limit("60/minute")
def session_waitlist(
    request: Request,
    session_id: int,
    resource_id: Optional[int] = None,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> List[WaitlistEntry]:
    get_session(db, session_id, current_user.studio_id)
    return waitlist.list_for_session(db, session_id, resource_id=resource_id)


@app.post("/open-studio/waitlist/expire", response_model=ExpiredPromotions)
@limiter.limit("10/minute")
def expire_waitlist_promotions(
    request: Request,
    session_id: Optional[int] = None,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> ExpiredPromotions:
    sweep = waitlist.expire_promotions(db, session_id=session_id, studio_id=current_user.studio_id)
    return ExpiredPromotions(
        lapsed=[entry.id for entry in sweep.lapsed],
        promoted=[entry.id for entry in sweep.promoted],
    )
