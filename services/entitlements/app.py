from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common import entitlements
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_current_user
from common.errors import ErrorCode, OpenStudioError, add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import PunchPass, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import PunchPassRead, SubscriptionRead
from common.time_utils import now as clock_now

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Entitlements Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "entitlements")
    add_error_handlers(fastapi_app)
    if settings.metrics_enabled:
        Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "entitlements"}


@app.get("/memberships/my-subscription", response_model=SubscriptionRead)
@limiter.limit("60/minute")
def my_subscription(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubscriptionRead:
    subscription = entitlements.current_subscription(db, current_user.id)
    if subscription is None:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "No subscription on file")
    return SubscriptionRead(
        id=subscription.id,
        customer_id=subscription.customer_id,
        membership_id=subscription.membership_id,
        membership_name=subscription.membership.name,
        status=subscription.status,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        benefits=entitlements.parse_benefits(subscription.membership.benefits),
        bookings_this_week=entitlements.weekly_usage(db, subscription.id, clock_now().date()),
    )


@app.get("/punch-passes/my-passes", response_model=List[PunchPassRead])
@limiter.limit("60/minute")
def my_punch_passes(
    request: Request,
    usable_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[PunchPass]:
    return entitlements.list_punch_passes(db, current_user.id, usable_at=clock_now() if usable_only else None)
