from .user import User
from .magic_token import MagicToken
from .session import UserSession

__all__ = [
    "User",
    "MagicToken",
    "UserSession",
]
