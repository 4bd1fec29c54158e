from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from app.api.deps import get_auth_service
from app.core.config import get_settings
from app.core.security import optional_auth, require_auth
from app.domain.models.user import User
from app.middleware.rate_limit import (
    client_ip,
    login_rate_limit,
    refresh_rate_limit,
    verify_code_rate_limit,
    verify_rate_limit,
)
from app.schemas.auth import (
    AuthStatus,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    UserOut,
    VerifyCodeRequest,
    VerifyResponse,
)
from app.services.auth import AuthService
from app.services.auth_errors import AuthError

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def _http_error(exc: AuthError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str, remember_me: bool) -> None:
    settings = get_settings()
    # Without remember-me both cookies die with the browser session
    access_max_age = settings.access_token_expires_minutes * 60 if remember_me else None
    refresh_max_age = settings.refresh_expires_days * 24 * 60 * 60 if remember_me else None
    response.set_cookie(
        settings.access_cookie_name,
        access_token,
        max_age=access_max_age,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=refresh_max_age,
        path=settings.refresh_cookie_path,
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )


def _clear_auth_cookies(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(settings.access_cookie_name, path="/", domain=settings.cookie_domain)
    response.delete_cookie(settings.refresh_cookie_name, path=settings.refresh_cookie_path, domain=settings.cookie_domain)


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(login_rate_limit)])
def request_login(payload: LoginRequest, request: Request, service: AuthService = Depends(get_auth_service)):
    try:
        result = service.request_login(payload.email, ip_address=client_ip(request), remember_me=payload.remember_me)
    except AuthError as exc:
        logger.info("Login request rejected: %s", exc.kind.value)
        raise _http_error(exc)
    return LoginResponse(message=result.message, email=result.email, code=result.code)


@router.get("/verify", response_model=VerifyResponse, dependencies=[Depends(verify_rate_limit)])
def verify_token(
    response: Response,
    token: str | None = Query(default=None),
    remember_me: bool = Query(default=False, alias="rememberMe"),
    service: AuthService = Depends(get_auth_service),
):
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")
    try:
        result = service.verify_by_link(token, remember_me=remember_me)
    except AuthError as exc:
        raise _http_error(exc)

    _set_auth_cookies(response, result.access_token, result.refresh_token, result.remember_me)
    return VerifyResponse(user=UserOut.from_user(result.user), message="Login successful")


@router.post("/verify-code", response_model=VerifyResponse, dependencies=[Depends(verify_code_rate_limit)])
def verify_code(payload: VerifyCodeRequest, response: Response, service: AuthService = Depends(get_auth_service)):
    try:
        result = service.verify_by_code(payload.email, payload.code, remember_me=payload.remember_me)
    except AuthError as exc:
        raise _http_error(exc)

    _set_auth_cookies(response, result.access_token, result.refresh_token, result.remember_me)
    return VerifyResponse(user=UserOut.from_user(result.user), message="Login successful")


@router.post("/refresh", response_model=MessageResponse, dependencies=[Depends(refresh_rate_limit)])
def refresh(request: Request, response: Response, service: AuthService = Depends(get_auth_service)):
    refresh_token = request.cookies.get(get_settings().refresh_cookie_name)
    if not refresh_token:
        raise HTTPException(status_code=401, detail="Refresh token required")
    try:
        result = service.refresh(refresh_token)
    except AuthError as exc:
        raise _http_error(exc)

    _set_auth_cookies(response, result.access_token, result.refresh_token, result.remember_me)
    return MessageResponse(message="Token refreshed successfully")


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    user: User = Depends(require_auth),
    service: AuthService = Depends(get_auth_service),
):
    refresh_token = request.cookies.get(get_settings().refresh_cookie_name)
    if refresh_token:
        service.logout(refresh_token)
    _clear_auth_cookies(response)
    return MessageResponse(message="Logout successful")


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(require_auth)):
    return UserOut.from_user(user)


@router.get("/status", response_model=AuthStatus)
def auth_status(user: User | None = Depends(optional_auth)):
    if user is None:
        return AuthStatus(authenticated=False)
    return AuthStatus(authenticated=True, user=UserOut.from_user(user))
