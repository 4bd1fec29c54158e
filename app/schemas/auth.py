from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Plain str so a malformed address reaches the service and maps to 400
    email: str
    remember_me: bool = Field(default=False, alias="rememberMe")


class LoginResponse(BaseModel):
    message: str
    email: str
    code: str


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    # Any JSON value; non-strings are rejected as a bad code format, not a 422
    code: Any = None
    remember_me: bool = Field(default=False, alias="rememberMe")


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    email_verified: bool
    last_login: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user) -> "UserOut":
        return cls(
            id=str(user.id),
            email=user.email,
            email_verified=user.email_verified,
            last_login=user.last_login,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class VerifyResponse(BaseModel):
    user: UserOut
    message: str


class MessageResponse(BaseModel):
    message: str


class AuthStatus(BaseModel):
    authenticated: bool
    user: UserOut | None = None
