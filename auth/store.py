"""
auth/store.py -- User directory: the collaborator the core reads accounts from.

The core does not own user rows. It needs four operations from whoever does
(UserDirectory). UserStore is the SQLAlchemy Core implementation used by the
reference binding and the tests; any object with the same methods can be
passed to AuthService instead.

The two write methods take an optional Connection so the recovery flows can
change a credential or the verified flag inside the same transaction that
consumes the token.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper.

Emails are compared case-insensitively: they are lower-cased on write and on
lookup.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.engine import Connection, Engine

from auth.clock import Clock, utcnow
from auth.models import User
from auth.schema import from_iso, to_iso, transaction, users


class UserDirectory(Protocol):
    def get_user_by_id(self, user_id: int) -> User | None: ...

    def get_user_by_email(self, email: str) -> User | None: ...

    def set_credential_hash(self, user_id: int, hashed_password: str, conn: Connection | None = None) -> bool: ...

    def set_email_verified(self, user_id: int, conn: Connection | None = None) -> bool: ...


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(create_db_engine("sqlite:///authcore.db"))
        uid = store.create_user(User(email="a@example.com", hashed_password=hasher.hash("secret")))
        user = store.get_user_by_email("a@example.com")
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email.strip().lower(),
                    hashed_password=user.hashed_password,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    created_at=to_iso(self._clock()),
                )
            )
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_credential_hash(self, user_id: int, hashed_password: str, conn: Connection | None = None) -> bool:
        """Replace the stored password hash. Returns False if user_id does not exist."""
        with transaction(self.engine, conn) as c:
            result = c.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(hashed_password=hashed_password, last_password_change=to_iso(self._clock()))
            )
        return result.rowcount > 0

    def set_email_verified(self, user_id: int, conn: Connection | None = None) -> bool:
        with transaction(self.engine, conn) as c:
            result = c.execute(users.update().where(users.c.id == user_id).values(email_verified=1))
        return result.rowcount > 0

    def set_active(self, user_id: int, active: bool) -> bool:
        """Enable or disable an account. Owned by user management; exposed for bootstrap scripts and tests."""
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_active=1 if active else 0))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        created_at=from_iso(row.created_at),
        last_password_change=from_iso(row.last_password_change),
    )
