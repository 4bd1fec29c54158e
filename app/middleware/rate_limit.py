from __future__ import annotations

import logging
from typing import Generator

from fastapi import HTTPException, Request

from app.core.config import get_settings
from app.schemas.auth import LoginRequest, VerifyCodeRequest
from app.services.auth_errors import AuthError, AuthErrorKind
from app.services.rate_limit import RateLimiter, get_rate_limiters


logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    if get_settings().trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _guard(limiter: RateLimiter, key: str, *, message: str, skip_successful: bool = False) -> Generator[None, None, None]:
    result = limiter.hit(key)
    if not result.allowed:
        logger.warning("Rate limit exceeded for %s", key)
        err = AuthError(AuthErrorKind.RATE_LIMITED, message)
        raise HTTPException(
            status_code=err.status_code,
            detail=err.message,
            headers={
                "Retry-After": str(result.retry_after),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(result.retry_after),
            },
        )
    # Errors raised by the endpoint propagate out of the yield and keep the hit
    yield
    if skip_successful:
        limiter.undo(key)


def api_rate_limit(request: Request) -> Generator[None, None, None]:
    yield from _guard(
        get_rate_limiters().api,
        client_ip(request),
        message="Too many requests, please try again later",
    )


def login_rate_limit(request: Request, payload: LoginRequest) -> Generator[None, None, None]:
    yield from _guard(
        get_rate_limiters().login,
        f"{client_ip(request)}-{(payload.email or 'anonymous').strip().lower()}",
        message="Too many authentication attempts, please try again later",
        skip_successful=True,
    )


def verify_rate_limit(request: Request) -> Generator[None, None, None]:
    token = request.query_params.get("token") or "anonymous"
    yield from _guard(
        get_rate_limiters().verify,
        f"{client_ip(request)}-{token}",
        message="Too many verification attempts, please try again later",
    )


def verify_code_rate_limit(request: Request, payload: VerifyCodeRequest) -> Generator[None, None, None]:
    yield from _guard(
        get_rate_limiters().verify,
        f"{client_ip(request)}-{(payload.email or 'anonymous').strip().lower()}",
        message="Too many verification attempts, please try again later",
    )


def refresh_rate_limit(request: Request) -> Generator[None, None, None]:
    yield from _guard(
        get_rate_limiters().refresh,
        client_ip(request),
        message="Too many refresh attempts, please try again later",
    )
