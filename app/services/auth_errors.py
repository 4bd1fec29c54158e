from __future__ import annotations

import enum


class AuthErrorKind(str, enum.Enum):
    INVALID_EMAIL = "invalid_email"
    INVALID_CODE_FORMAT = "invalid_code_format"
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
    TOKEN_EXPIRED = "token_expired"
    USER_NOT_FOUND = "user_not_found"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    UNAUTHORIZED = "unauthorized"
    EMAIL_DELIVERY_FAILED = "email_delivery_failed"
    RATE_LIMITED = "rate_limited"


_STATUS = {
    AuthErrorKind.INVALID_EMAIL: 400,
    AuthErrorKind.INVALID_CODE_FORMAT: 400,
    AuthErrorKind.INVALID_OR_EXPIRED_TOKEN: 400,
    AuthErrorKind.TOKEN_EXPIRED: 400,
    AuthErrorKind.USER_NOT_FOUND: 400,
    AuthErrorKind.EMAIL_DELIVERY_FAILED: 400,
    AuthErrorKind.INVALID_REFRESH_TOKEN: 401,
    AuthErrorKind.SESSION_NOT_FOUND: 401,
    AuthErrorKind.SESSION_EXPIRED: 401,
    AuthErrorKind.UNAUTHORIZED: 401,
    AuthErrorKind.RATE_LIMITED: 429,
}

# Expired, consumed and unknown tokens must read the same to the caller
_MESSAGES = {
    AuthErrorKind.INVALID_EMAIL: "Invalid email address",
    AuthErrorKind.INVALID_CODE_FORMAT: "Code must be exactly 6 digits",
    AuthErrorKind.INVALID_OR_EXPIRED_TOKEN: "Invalid or expired token",
    AuthErrorKind.TOKEN_EXPIRED: "Invalid or expired token",
    AuthErrorKind.USER_NOT_FOUND: "Invalid or expired token",
    AuthErrorKind.INVALID_REFRESH_TOKEN: "Invalid refresh token",
    AuthErrorKind.SESSION_NOT_FOUND: "Session not found",
    AuthErrorKind.SESSION_EXPIRED: "Session has expired",
    AuthErrorKind.UNAUTHORIZED: "Invalid or expired token",
    AuthErrorKind.EMAIL_DELIVERY_FAILED: "Failed to send magic link email",
    AuthErrorKind.RATE_LIMITED: "Too many requests, please try again later",
}


class AuthError(Exception):
    def __init__(self, kind: AuthErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or _MESSAGES[kind]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return _STATUS[self.kind]

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"
