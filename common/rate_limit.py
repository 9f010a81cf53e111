"""SlowAPI limits keyed by the calling customer, falling back to client IP."""
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .auth import read_claims
from .config import get_settings

settings = get_settings()


def caller_key(request: Request) -> str:
    """Bucket requests by token subject so customers sharing a studio IP don't throttle each other."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            claims = read_claims(token)
        except HTTPException:
            # Unauthenticated requests are rejected later; count them per IP.
            return f"ip:{get_remote_address(request)}"
        return f"user:{claims.studio_id}:{claims.username}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=caller_key,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limiting_enabled,
)


def rate_limit_handler(_: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "RATE_LIMITED", "detail": f"Rate limit exceeded: {exc.detail}"},
    )


def apply_rate_limiter(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
