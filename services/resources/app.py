from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common import resources as registry
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles
from common.errors import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Resource, ResourceHold, RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import ResourceCreate, ResourceHoldCreate, ResourceHoldRead, ResourceRead, ResourceUpdate

settings = get_settings()
staff_only = allow_roles(RoleEnum.ADMIN, RoleEnum.STAFF)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Resources Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "resources")
    add_error_handlers(fastapi_app)
    if settings.metrics_enabled:
        Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "resources"}


@app.get("/resources", response_model=List[ResourceRead])
@limiter.limit("60/minute")
def list_resources(
    request: Request,
    active_only: bool = False,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> List[Resource]:
    return registry.list_resources(db, current_user.studio_id, active_only=active_only)


@app.post("/resources", response_model=ResourceRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_resource(
    request: Request,
    resource_in: ResourceCreate,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> Resource:
    return registry.create_resource(db, current_user.studio_id, resource_in)


@app.put("/resources/{resource_id}", response_model=ResourceRead)
@limiter.limit("20/minute")
def update_resource(
    request: Request,
    resource_id: int,
    resource_update: ResourceUpdate,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> Resource:
    return registry.update_resource(db, current_user.studio_id, resource_id, resource_update)


@app.delete("/resources/{resource_id}", response_model=ResourceRead)
@limiter.limit("10/minute")
def deactivate_resource(
    request: Request,
    resource_id: int,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> Resource:
    return registry.deactivate_resource(db, current_user.studio_id, resource_id)


@app.get("/resources/{resource_id}/holds", response_model=List[ResourceHoldRead])
@limiter.limit("60/minute")
def list_holds(
    request: Request,
    resource_id: int,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> List[ResourceHold]:
    return registry.list_holds(db, current_user.studio_id, resource_id)


@app.post("/resources/{resource_id}/holds", response_model=ResourceHoldRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def add_hold(
    request: Request,
    resource_id: int,
    hold_in: ResourceHoldCreate,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> ResourceHold:
    return registry.add_hold(db, current_user.studio_id, resource_id, hold_in)


@app.delete("/holds/{hold_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def remove_hold(
    request: Request,
    hold_id: int,
    current_user: User = Depends(staff_only),
    db: Session = Depends(get_db),
) -> None:
    registry.remove_hold(db, current_user.studio_id, hold_id)
