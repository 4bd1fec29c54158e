from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from jose import JWTError, jwt


UTC = timezone.utc

MAGIC_TOKEN_SEPARATOR = "-"
CODE_LENGTH = 6

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def code_prefix(magic_token: str) -> str:
    return magic_token.split(MAGIC_TOKEN_SEPARATOR, 1)[0]


def is_valid_code(code: object) -> bool:
    return (
        isinstance(code, str)
        and len(code) == CODE_LENGTH
        and all(ch in "0123456789" for ch in code)
    )


@dataclass(frozen=True)
class AccessTokenPayload:
    user_id: uuid.UUID
    email: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class RefreshTokenPayload:
    user_id: uuid.UUID
    session_id: uuid.UUID
    issued_at: int
    expires_at: int


class TokenCodec:
    """Signs and verifies access/refresh JWTs and mints magic tokens.

    Verification never raises: malformed, tampered, mistyped and expired
    tokens all come back as ``None`` so callers cannot tell them apart.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def now(self) -> datetime:
        return as_utc(self._clock())

    def issue_access_token(self, user_id: uuid.UUID | str, email: str) -> str:
        now = self.now()
        exp = now + self.access_ttl
        claims = {
            "sub": str(user_id),
            "email": email,
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_refresh_token(self, user_id: uuid.UUID | str, session_id: uuid.UUID | str) -> str:
        now = self.now()
        exp = now + self.refresh_ttl
        claims = {
            "sub": str(user_id),
            "sid": str(session_id),
            "type": "refresh",
            "jti": secrets.token_hex(8),
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify_access_token(self, token: str | None) -> AccessTokenPayload | None:
        claims = self._decode(token, "access")
        if claims is None:
            return None
        email = claims.get("email")
        if not isinstance(email, str):
            return None
        try:
            user_id = uuid.UUID(claims["sub"])
        except (KeyError, TypeError, ValueError):
            return None
        return AccessTokenPayload(user_id=user_id, email=email, issued_at=claims["iat"], expires_at=claims["exp"])

    def verify_refresh_token(self, token: str | None) -> RefreshTokenPayload | None:
        claims = self._decode(token, "refresh")
        if claims is None:
            return None
        try:
            user_id = uuid.UUID(claims["sub"])
            session_id = uuid.UUID(claims["sid"])
        except (KeyError, TypeError, ValueError):
            return None
        return RefreshTokenPayload(user_id=user_id, session_id=session_id, issued_at=claims["iat"], expires_at=claims["exp"])

    def _decode(self, token: str | None, expected_type: str) -> dict[str, Any] | None:
        if not token or not isinstance(token, str):
            return None
        try:
            # Expiry is checked below against our own clock
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm], options={"verify_exp": False})
        except JWTError:
            return None
        if claims.get("type") != expected_type:
            return None
        exp = claims.get("exp")
        iat = claims.get("iat")
        if not isinstance(exp, int) or not isinstance(iat, int):
            return None
        if exp <= self.now().timestamp():
            return None
        return claims

    @staticmethod
    def issue_magic_token() -> str:
        code = f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"
        return f"{code}{MAGIC_TOKEN_SEPARATOR}{secrets.token_hex(4)}"

    def expiry_timestamp(self, minutes: float) -> datetime:
        return self.now() + timedelta(minutes=minutes)

    def is_expired(self, timestamp: datetime) -> bool:
        return as_utc(timestamp) <= self.now()
