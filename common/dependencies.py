"""Request dependencies: the calling user, studio scoping and role guards."""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import read_claims
from .database import get_db
from .models import RoleEnum, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

STAFF_ROLES = {RoleEnum.ADMIN, RoleEnum.STAFF}


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    claims = read_claims(token)
    user = db.query(User).filter(User.username == claims.username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    # A token scoped to one studio never grants access to another.
    if claims.studio_id is not None and claims.studio_id != user.studio_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued for another studio")
    return user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def is_staff(user: User) -> bool:
    return user.role in STAFF_ROLES
