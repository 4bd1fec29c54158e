from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.tokens import TokenCodec
from app.infrastructure.db import get_db
from app.repositories.auth_repository import AuthRepository
from app.services.auth import AuthConfig, AuthService, Dispatcher, run_in_background
from app.services.email import EmailNotifier, Notifier


@lru_cache
def get_token_codec() -> TokenCodec:
    s = get_settings()
    return TokenCodec(
        s.jwt_secret,
        algorithm=s.jwt_algorithm,
        access_ttl=timedelta(minutes=s.access_token_expires_minutes),
        refresh_ttl=timedelta(days=s.refresh_expires_days),
    )


@lru_cache
def get_notifier() -> Notifier:
    return EmailNotifier.from_settings(get_settings())


def get_dispatcher() -> Dispatcher:
    return run_in_background


def get_auth_service(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    notifier: Notifier = Depends(get_notifier),
    dispatch: Dispatcher = Depends(get_dispatcher),
) -> AuthService:
    repo = AuthRepository(db, clock=codec.now)
    return AuthService(repo, codec, notifier, AuthConfig.from_settings(get_settings()), dispatch=dispatch)
