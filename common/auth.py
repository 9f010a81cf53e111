"""Bearer tokens for the Open Studio services.

Tokens are minted by the studio's auth service. The services only verify
them; ``issue_token`` exists for scripts and tests that need to act as a
signed-in customer or staff member.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from .config import get_settings

settings = get_settings()


@dataclass(frozen=True)
class TokenClaims:
    username: str
    role: Optional[str] = None
    studio_id: Optional[int] = None


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_token(username: str, role: Optional[str] = None, studio_id: Optional[int] = None) -> str:
    claims: Dict[str, Any] = {"sub": username}
    if role is not None:
        claims["role"] = role
    if studio_id is not None:
        claims["studio_id"] = studio_id
    return create_access_token(claims)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def read_claims(token: str) -> TokenClaims:
    """Decode ``token`` into the claims the services act on."""
    payload = decode_token(token)
    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    studio_id = payload.get("studio_id")
    if studio_id is not None and not isinstance(studio_id, int):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid studio claim")
    return TokenClaims(username=username, role=payload.get("role"), studio_id=studio_id)
