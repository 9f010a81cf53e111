import os
from datetime import date, datetime, timedelta
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./test-logs")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import issue_token  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import (  # noqa: E402
    Membership,
    PunchPass,
    Resource,
    RoleEnum,
    StudioSession,
    Subscription,
    SubscriptionStatus,
    User,
)
from common.session_calendar import upcoming_cache  # noqa: E402
from services.entitlements.app import app as entitlements_app  # noqa: E402
from services.open_studio.app import app as open_studio_app  # noqa: E402
from services.resources.app import app as resources_app  # noqa: E402

STUDIO_ID = 1

DEFAULT_BENEFITS = {
    "openStudio": {
        "maxBlockMinutes": 180,
        "maxBookingsPerWeek": 3,
        "advanceBookingDays": 7,
        "walkInAllowed": True,
        "premiumTimeAccess": False,
    }
}


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    upcoming_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def resources_client() -> Generator[TestClient, None, None]:
    with TestClient(resources_app) as client:
        yield client


@pytest.fixture()
def open_studio_client() -> Generator[TestClient, None, None]:
    with TestClient(open_studio_app) as client:
        yield client


@pytest.fixture()
def entitlements_client() -> Generator[TestClient, None, None]:
    with TestClient(entitlements_app) as client:
        yield client


def auth_header(user: User) -> dict[str, str]:
    token = issue_token(user.username, role=user.role.value, studio_id=user.studio_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    def factory(username: str, role: RoleEnum = RoleEnum.CUSTOMER, studio_id: int = STUDIO_ID) -> User:
        user = User(
            studio_id=studio_id,
            name=username.title(),
            username=username,
            email=f"{username}@example.com",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def make_resource(db_session) -> Callable[..., Resource]:
    def factory(name: str = "Wheel", quantity: int = 2, studio_id: int = STUDIO_ID) -> Resource:
        resource = Resource(studio_id=studio_id, name=name, quantity=quantity, is_active=True)
        db_session.add(resource)
        db_session.commit()
        db_session.refresh(resource)
        return resource

    return factory


@pytest.fixture()
def make_session(db_session) -> Callable[..., StudioSession]:
    def factory(
        session_date: date,
        start_time: str = "10:00",
        end_time: str = "14:00",
        studio_id: int = STUDIO_ID,
        is_cancelled: bool = False,
    ) -> StudioSession:
        session = StudioSession(
            studio_id=studio_id,
            class_id=1,
            class_name="Open Studio",
            session_date=session_date,
            start_time=start_time,
            end_time=end_time,
            is_cancelled=is_cancelled,
        )
        db_session.add(session)
        db_session.commit()
        db_session.refresh(session)
        return session

    return factory


@pytest.fixture()
def make_subscription(db_session) -> Callable[..., Subscription]:
    def factory(
        customer: User,
        benefits: Optional[dict] = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        membership = Membership(
            studio_id=customer.studio_id,
            name="Studio Member",
            benefits=DEFAULT_BENEFITS if benefits is None else benefits,
        )
        db_session.add(membership)
        db_session.flush()
        subscription = Subscription(customer_id=customer.id, membership_id=membership.id, status=status)
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return factory


@pytest.fixture()
def make_punch_pass(db_session) -> Callable[..., PunchPass]:
    def factory(
        customer: User,
        punches: int = 5,
        total: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> PunchPass:
        punch_pass = PunchPass(
            customer_id=customer.id,
            punch_pass_product_id=1,
            punches_remaining=punches,
            total_punches=punches if total is None else total,
            expires_at=expires_at or datetime(2099, 1, 1),
        )
        db_session.add(punch_pass)
        db_session.commit()
        db_session.refresh(punch_pass)
        return punch_pass

    return factory


@pytest.fixture()
def tomorrow() -> date:
    return date.today() + timedelta(days=1)


@pytest.fixture()
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_header
