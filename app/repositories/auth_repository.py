from __future__ import annotations

import hashlib
import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.tokens import MAGIC_TOKEN_SEPARATOR, Clock, utcnow
from app.domain.models.magic_token import MagicToken
from app.domain.models.session import UserSession
from app.domain.models.user import User


def hash_refresh_token(refresh_token: str) -> str:
    return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()


class AuthRepository:
    """Users, magic tokens and sessions backed by a SQLAlchemy session.

    Every mutation commits on its own so callers never hold a transaction
    open across an outbound call.
    """

    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    # Users

    def find_user_by_email(self, email: str) -> User | None:
        return self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def find_user_by_id(self, user_id: uuid.UUID) -> User | None:
        return self.db.get(User, user_id)

    def create_user(self, email: str) -> User:
        now = self._clock()
        user = User(email=email, created_at=now, updated_at=now)
        self.db.add(user)
        self.db.commit()
        return user

    def get_or_create_user(self, email: str) -> User:
        user = self.find_user_by_email(email)
        if user is not None:
            return user
        try:
            return self.create_user(email)
        except IntegrityError:
            # Lost the race against a concurrent request for the same email
            self.db.rollback()
            user = self.find_user_by_email(email)
            if user is None:
                raise
            return user

    def touch_last_login(self, user_id: uuid.UUID) -> None:
        now = self._clock()
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(last_login=now, email_verified=True, updated_at=now)
        )
        self.db.commit()
        user = self.db.get(User, user_id)
        if user is not None:
            self.db.refresh(user)

    # Magic tokens

    def create_magic_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> MagicToken:
        rec = MagicToken(user_id=user_id, token=token, expires_at=expires_at, created_at=self._clock())
        self.db.add(rec)
        self.db.commit()
        return rec

    def find_unused_magic_token(self, token: str) -> MagicToken | None:
        return self.db.execute(
            select(MagicToken).where(MagicToken.token == token, MagicToken.used.is_(False))
        ).scalar_one_or_none()

    def find_unused_magic_token_by_user_and_prefix(self, user_id: uuid.UUID, prefix: str) -> MagicToken | None:
        return self.db.execute(
            select(MagicToken)
            .where(
                MagicToken.user_id == user_id,
                MagicToken.used.is_(False),
                MagicToken.token.startswith(f"{prefix}{MAGIC_TOKEN_SEPARATOR}", autoescape=True),
            )
            .order_by(MagicToken.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def mark_magic_token_used(self, token_id: uuid.UUID) -> bool:
        """Consume a token. Returns False when another request got there first."""
        res = self.db.execute(
            update(MagicToken)
            .where(MagicToken.id == token_id, MagicToken.used.is_(False))
            .values(used=True)
        )
        self.db.commit()
        return res.rowcount == 1

    def replace_magic_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> tuple[MagicToken, int]:
        """Invalidate the user's unused tokens and store a new one in a single transaction.

        The user row is locked first so concurrent login requests for the same
        user serialize here and at most one unused token survives.
        Returns the new token and how many earlier tokens were invalidated.
        """
        self.db.execute(select(User.id).where(User.id == user_id).with_for_update())
        invalidated = self.db.execute(
            update(MagicToken)
            .where(MagicToken.user_id == user_id, MagicToken.used.is_(False))
            .values(used=True)
        ).rowcount
        rec = MagicToken(user_id=user_id, token=token, expires_at=expires_at, created_at=self._clock())
        self.db.add(rec)
        self.db.commit()
        return rec, invalidated

    # Sessions

    def create_session(
        self,
        user_id: uuid.UUID,
        refresh_token: str,
        expires_at: datetime,
        *,
        session_id: uuid.UUID | None = None,
        remember_me: bool = False,
    ) -> UserSession:
        now = self._clock()
        rec = UserSession(
            id=session_id or uuid.uuid4(),
            user_id=user_id,
            refresh_token_hash=hash_refresh_token(refresh_token),
            remember_me=remember_me,
            expires_at=expires_at,
            created_at=now,
            last_used=now,
        )
        self.db.add(rec)
        self.db.commit()
        return rec

    def find_session_by_refresh_token(self, refresh_token: str) -> UserSession | None:
        return self.db.execute(
            select(UserSession).where(UserSession.refresh_token_hash == hash_refresh_token(refresh_token))
        ).scalar_one_or_none()

    def delete_session(self, session_id: uuid.UUID) -> bool:
        res = self.db.execute(
            delete(UserSession).where(UserSession.id == session_id)
        )
        self.db.commit()
        return res.rowcount == 1

    def touch_session_last_used(self, session_id: uuid.UUID) -> None:
        self.db.execute(
            update(UserSession)
            .where(UserSession.id == session_id)
            .values(last_used=self._clock())
        )
        self.db.commit()
