"""User service — profile registration and lookup.

Credentials are owned by the auth gateway in front of the API; a user here
is only the record that tasks, clients and the ledger hang off.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError, ValidationError
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import User

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)

_MIN_USERNAME_LENGTH = 3


class UserService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def register(self, username: str, email: str = "") -> User:
        username = (username or "").strip()
        if len(username) < _MIN_USERNAME_LENGTH:
            raise ValidationError(
                f"username must be at least {_MIN_USERNAME_LENGTH} characters"
            )
        if self._store.users.find_by_username(username) is not None:
            raise ValidationError(f"username '{username}' is already taken")
        try:
            return self._store.users.add_user(
                username, email=email.strip(), created_at=to_iso(self._clock()),
            )
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent registration of the same name
            raise ValidationError(f"username '{username}' is already taken") from None

    def get(self, user_id: int) -> User:
        user = self._store.users.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
