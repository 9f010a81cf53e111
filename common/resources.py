"""Resource Registry: the bookable inventory of a studio and the class holds on it."""
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import ErrorCode, OpenStudioError
from .models import Resource, ResourceHold
from .schemas import ResourceCreate, ResourceHoldCreate, ResourceUpdate
from .time_utils import to_minutes

logger = logging.getLogger(__name__)


def list_resources(db: Session, studio_id: int, active_only: bool = False) -> List[Resource]:
    query = db.query(Resource).filter(Resource.studio_id == studio_id)
    if active_only:
        query = query.filter(Resource.is_active.is_(True))
    return query.order_by(Resource.name.asc()).all()


def get_resource(db: Session, studio_id: int, resource_id: int) -> Resource:
    resource = db.query(Resource).filter(Resource.id == resource_id, Resource.studio_id == studio_id).first()
    if not resource:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Resource not found")
    return resource


def _ensure_unique_name(db: Session, studio_id: int, name: str, exclude_id: int | None = None) -> None:
    query = db.query(Resource).filter(
        Resource.studio_id == studio_id,
        func.lower(Resource.name) == name.lower(),
    )
    if exclude_id is not None:
        query = query.filter(Resource.id != exclude_id)
    if query.first():
        raise OpenStudioError(ErrorCode.RESOURCE_NAME_TAKEN)


def create_resource(db: Session, studio_id: int, resource_in: ResourceCreate) -> Resource:
    _ensure_unique_name(db, studio_id, resource_in.name)
    resource = Resource(studio_id=studio_id, **resource_in.model_dump())
    db.add(resource)
    db.commit()
    db.refresh(resource)
    logger.info("Created resource %s (%s x%s) for studio %s", resource.id, resource.name, resource.quantity, studio_id)
    return resource


def update_resource(db: Session, studio_id: int, resource_id: int, resource_update: ResourceUpdate) -> Resource:
    """Apply a partial update.

    Quantity changes never touch existing bookings; availability is always
    recomputed against the current quantity.
    """
    resource = get_resource(db, studio_id, resource_id)
    data = resource_update.model_dump(exclude_unset=True)
    if data.get("name"):
        _ensure_unique_name(db, studio_id, data["name"], exclude_id=resource.id)
    for key, value in data.items():
        setattr(resource, key, value)
    db.commit()
    db.refresh(resource)
    return resource


def deactivate_resource(db: Session, studio_id: int, resource_id: int) -> Resource:
    resource = get_resource(db, studio_id, resource_id)
    resource.is_active = False
    db.commit()
    db.refresh(resource)
    logger.info("Deactivated resource %s", resource.id)
    return resource


def list_holds(db: Session, studio_id: int, resource_id: int) -> List[ResourceHold]:
    get_resource(db, studio_id, resource_id)
    return (
        db.query(ResourceHold)
        .filter(ResourceHold.resource_id == resource_id)
        .order_by(ResourceHold.session_date.asc(), ResourceHold.start_time.asc())
        .all()
    )


def add_hold(db: Session, studio_id: int, resource_id: int, hold_in: ResourceHoldCreate) -> ResourceHold:
    get_resource(db, studio_id, resource_id)
    if to_minutes(hold_in.end_time) <= to_minutes(hold_in.start_time):
        raise OpenStudioError(ErrorCode.INVALID_TIME_RANGE)
    hold = ResourceHold(studio_id=studio_id, resource_id=resource_id, **hold_in.model_dump())
    db.add(hold)
    db.commit()
    db.refresh(hold)
    return hold


def remove_hold(db: Session, studio_id: int, hold_id: int) -> None:
    hold = db.query(ResourceHold).filter(ResourceHold.id == hold_id, ResourceHold.studio_id == studio_id).first()
    if not hold:
        raise OpenStudioError(ErrorCode.NOT_FOUND, "Hold not found")
    db.delete(hold)
    db.commit()
