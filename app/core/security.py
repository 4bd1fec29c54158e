from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.api.deps import get_auth_service
from app.core.config import get_settings
from app.domain.models.user import User
from app.services.auth import AuthService
from app.services.auth_errors import AuthError, AuthErrorKind


auth_scheme = HTTPBearer(auto_error=False)


def extract_credential(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    """Bearer header first, then the access-token cookie."""
    if credentials is not None and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(get_settings().access_cookie_name) or None


def require_auth(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(auth_scheme)],
    service: AuthService = Depends(get_auth_service),
) -> User:
    token = extract_credential(request, credentials)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    user = service.resolve_user(token)
    if user is None:
        err = AuthError(AuthErrorKind.UNAUTHORIZED)
        raise HTTPException(status_code=err.status_code, detail=err.message)
    request.state.user = user
    return user


def optional_auth(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(auth_scheme)],
    service: AuthService = Depends(get_auth_service),
) -> User | None:
    token = extract_credential(request, credentials)
    user = service.resolve_user(token) if token else None
    request.state.user = user
    return user
