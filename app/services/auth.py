from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

from email_validator import EmailNotValidError, validate_email

from app.core.config import Settings
from app.core.tokens import TokenCodec, is_valid_code
from app.domain.models.magic_token import MagicToken
from app.domain.models.user import User
from app.repositories.auth_repository import AuthRepository
from app.services.auth_errors import AuthError, AuthErrorKind
from app.services.email import EmailDeliveryError, Notifier


logger = logging.getLogger(__name__)

Dispatcher = Callable[[Callable[[], None]], None]


def run_in_background(fn: Callable[[], None]) -> None:
    t = threading.Thread(target=fn, name="auth-background", daemon=True)
    t.start()


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class AuthConfig:
    app_url: str = "http://localhost:3000"
    verify_path: str = "/auth/verify"
    magic_token_ttl_minutes: int = 15
    session_ttl_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            app_url=settings.app_url.rstrip("/"),
            magic_token_ttl_minutes=settings.magic_token_expires_minutes,
            session_ttl_days=settings.refresh_expires_days,
        )


@dataclass
class LoginResult:
    message: str
    email: str
    code: str


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: str
    remember_me: bool = False


@dataclass
class RefreshResult:
    access_token: str
    refresh_token: str
    remember_me: bool = False


class AuthService:
    """Passwordless login: magic link/code issuance, verification and sessions.

    States per login attempt run NoSession -> LinkIssued -> Verified ->
    Refreshed* -> LoggedOut. Requesting a new login invalidates every unused
    magic token of the user, so only the newest link or code is honorable.
    """

    def __init__(
        self,
        repo: AuthRepository,
        codec: TokenCodec,
        notifier: Notifier,
        config: AuthConfig,
        *,
        dispatch: Dispatcher = run_in_background,
    ) -> None:
        self.repo = repo
        self.codec = codec
        self.notifier = notifier
        self.config = config
        self._dispatch = dispatch

    def request_login(self, email: str, ip_address: str | None = None, remember_me: bool = False) -> LoginResult:
        normalized = normalize_email(email or "")
        try:
            validate_email(normalized, check_deliverability=False)
        except EmailNotValidError:
            raise AuthError(AuthErrorKind.INVALID_EMAIL)

        user = self.repo.get_or_create_user(normalized)

        token = self.codec.issue_magic_token()
        expires_at = self.codec.expiry_timestamp(self.config.magic_token_ttl_minutes)
        magic, invalidated = self.repo.replace_magic_token(user.id, token, expires_at)

        link = self.build_verify_link(token, remember_me)
        code = magic.code_prefix
        try:
            self.notifier.send_login_credential(normalized, link, code)
        except EmailDeliveryError as exc:
            raise AuthError(AuthErrorKind.EMAIL_DELIVERY_FAILED) from exc

        logger.info(
            "Login requested for user %s from %s (%d earlier tokens invalidated)",
            user.id, ip_address or "unknown", invalidated,
        )
        # The code is returned on purpose so the client can offer code entry
        return LoginResult(message="Magic link sent to your email", email=normalized, code=code)

    def build_verify_link(self, token: str, remember_me: bool = False) -> str:
        params = {"token": token}
        if remember_me:
            params["rememberMe"] = "true"
        return f"{self.config.app_url}{self.config.verify_path}?{urlencode(params)}"

    def verify_by_link(self, token: str, remember_me: bool = False) -> AuthResult:
        magic = self.repo.find_unused_magic_token(token) if token else None
        if magic is None:
            logger.info("Link verification rejected: unknown or used token")
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_TOKEN)
        return self._complete_verification(magic, remember_me)

    def verify_by_code(self, email: str, code: object, remember_me: bool = False) -> AuthResult:
        if not is_valid_code(code):
            raise AuthError(AuthErrorKind.INVALID_CODE_FORMAT)

        user = self.repo.find_user_by_email(normalize_email(email or ""))
        if user is None:
            logger.info("Code verification rejected: unknown email")
            raise AuthError(AuthErrorKind.USER_NOT_FOUND, "Invalid or expired code")

        magic = self.repo.find_unused_magic_token_by_user_and_prefix(user.id, code)
        if magic is None:
            logger.info("Code verification rejected for user %s: no unused token", user.id)
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired code")
        return self._complete_verification(magic, remember_me, message="Invalid or expired code")

    def _complete_verification(self, magic: MagicToken, remember_me: bool, message: str | None = None) -> AuthResult:
        if self.codec.is_expired(magic.expires_at):
            logger.info("Verification rejected for user %s: token expired", magic.user_id)
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED, message)

        if not self.repo.mark_magic_token_used(magic.id):
            logger.info("Verification rejected for user %s: token consumed concurrently", magic.user_id)
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_TOKEN, message)

        user = self.repo.find_user_by_id(magic.user_id)
        if user is None:
            logger.error("Magic token %s points at a missing user", magic.id)
            raise AuthError(AuthErrorKind.USER_NOT_FOUND, message)

        first_login = not user.email_verified
        self.repo.touch_last_login(user.id)

        access_token, refresh_token = self._open_session(user, remember_me)

        if first_login:
            self._dispatch(lambda: self._send_welcome(user.email))

        logger.info("User %s signed in", user.id)
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_token, remember_me=remember_me)

    def _open_session(self, user: User, remember_me: bool) -> tuple[str, str]:
        # Backing expiry is the full session TTL; remember-me only affects cookies
        session_id = uuid.uuid4()
        refresh_token = self.codec.issue_refresh_token(user.id, session_id)
        expires_at = self.codec.expiry_timestamp(self.config.session_ttl_days * 24 * 60)
        self.repo.create_session(user.id, refresh_token, expires_at, session_id=session_id, remember_me=remember_me)
        access_token = self.codec.issue_access_token(user.id, user.email)
        return access_token, refresh_token

    def _send_welcome(self, email: str) -> None:
        try:
            self.notifier.send_welcome(email)
        except Exception:
            logger.exception("Welcome email to %s failed", email)

    def refresh(self, refresh_token: str) -> RefreshResult:
        payload = self.codec.verify_refresh_token(refresh_token)
        if payload is None:
            raise AuthError(AuthErrorKind.INVALID_REFRESH_TOKEN)

        session = self.repo.find_session_by_refresh_token(refresh_token)
        if session is None or session.id != payload.session_id:
            raise AuthError(AuthErrorKind.SESSION_NOT_FOUND)

        if self.codec.is_expired(session.expires_at):
            raise AuthError(AuthErrorKind.SESSION_EXPIRED)

        user = self.repo.find_user_by_id(session.user_id)
        if user is None:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND)

        remember_me = session.remember_me
        self.repo.touch_session_last_used(session.id)
        # Old session goes first; losing this delete means a concurrent refresh won
        if not self.repo.delete_session(session.id):
            raise AuthError(AuthErrorKind.SESSION_NOT_FOUND)

        access_token, new_refresh_token = self._open_session(user, remember_me)
        logger.info("Session rotated for user %s", user.id)
        return RefreshResult(access_token=access_token, refresh_token=new_refresh_token, remember_me=remember_me)

    def logout(self, refresh_token: str) -> None:
        if not refresh_token:
            return
        session = self.repo.find_session_by_refresh_token(refresh_token)
        if session is not None:
            self.repo.delete_session(session.id)
            logger.info("User %s logged out", session.user_id)

    def resolve_user(self, access_token: str | None) -> User | None:
        payload = self.codec.verify_access_token(access_token)
        if payload is None:
            return None
        return self.repo.find_user_by_id(payload.user_id)
