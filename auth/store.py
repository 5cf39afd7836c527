"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. The service never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of username, email and refresh token value is enforced by UNIQUE
  constraints, not by read-then-insert checks in code. A concurrent duplicate
  insert fails with IntegrityError, which the stores translate to
  ConflictError. Username and email additionally carry a UNIQUE index on
  lower(column) so "Alice" and "alice" cannot both register.

Transactions:
  Every store method accepts an optional `conn`. When given, the method runs on
  that connection and leaves commit/rollback to the caller -- AuthService uses
  Database.transaction() to put "insert user" and "insert refresh token" in one
  failure domain. Without `conn`, the method opens and commits its own
  short transaction.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
string comparison in SQL (purge_expired) orders the same as datetime
comparison.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import ConflictError, StoreUnavailable
from auth.models import RefreshToken, User

logger = logging.getLogger("authkeep.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authkeep.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("hashed_password", String(255), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

Index("ux_users_username_lower", func.lower(_users.c.username), unique=True)
Index("ux_users_email_lower", func.lower(_users.c.email), unique=True)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes
    ON DELETE CASCADE on refresh_tokens.user_id actually fire.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and schema; hands out connections and transactions.

    Usage:
        db = Database("sqlite:///auth.db")
        users, tokens = UserStore(db), RefreshTokenStore(db)
        with db.transaction() as conn:
            uid = users.create_user(user, conn=conn)
            tokens.create(uid, value, expires_at, conn=conn)
        db.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        with self._guard():
            _metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside BEGIN ... COMMIT; roll back on any exception."""
        with self._guard(), self.engine.begin() as conn:
            yield conn

    @contextmanager
    def connect(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Reuse the caller's connection, or open a short transaction of our own."""
        if conn is not None:
            with self._guard():
                yield conn
            return
        with self.transaction() as own:
            yield own

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as exc:
            logger.error("Auth store unavailable: %s", exc.orig)
            raise StoreUnavailable("Auth store unavailable") from exc

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health check."""
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except OperationalError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned ID.

        user.hashed_password must already be a hash -- the store never hashes.
        Raises ConflictError if the username or email is taken (in any case).
        """
        now = _now_iso()
        try:
            with self.db.connect(conn) as c:
                result = c.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        is_active=1 if user.is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError("Username or email already exists") from exc
        return user_id

    def get_by_id(self, user_id: int, conn: Connection | None = None) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.db.connect(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, conn: Connection | None = None) -> User | None:
        """Look up a user by email, case-insensitively."""
        with self.db.connect(conn) as c:
            row = c.execute(
                _users.select().where(func.lower(_users.c.email) == email.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str, conn: Connection | None = None) -> User | None:
        """Look up a user by username, case-insensitively."""
        with self.db.connect(conn) as c:
            row = c.execute(
                _users.select().where(func.lower(_users.c.username) == username.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_active(self, user_id: int, is_active: bool, conn: Connection | None = None) -> bool:
        """Activate or deactivate a user. Returns False if user_id was not found."""
        with self.db.connect(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if is_active else 0, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def set_password(self, user_id: int, hashed_password: str, conn: Connection | None = None) -> bool:
        """Replace the stored hash. The caller hashes; the store only persists."""
        with self.db.connect(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_now_iso())
            )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for issued refresh tokens.

    Revocation is monotonic: nothing in this class ever sets is_revoked back
    to 0, and token / expires_at are never updated after insert.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        user_id: int,
        token: str,
        expires_at: datetime,
        conn: Connection | None = None,
    ) -> RefreshToken:
        """Persist a refresh token. Raises ConflictError if the value already exists."""
        created_at = _now_iso()
        try:
            with self.db.connect(conn) as c:
                result = c.execute(
                    _refresh_tokens.insert().values(
                        user_id=user_id,
                        token=token,
                        expires_at=_iso(expires_at),
                        is_revoked=0,
                        created_at=created_at,
                    )
                )
                token_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError("Refresh token already exists") from exc
        return RefreshToken(
            id=token_id,
            user_id=user_id,
            token=token,
            expires_at=_parse_iso(_iso(expires_at)),
            is_revoked=False,
            created_at=created_at,
        )

    def find_active(self, token: str, user_id: int) -> RefreshToken | None:
        """Return the non-revoked record matching both token and owner, or None.

        Expiry is NOT checked here -- callers compare expires_at themselves so
        they can tell "revoked/unknown" apart from "expired".
        """
        with self.db.connect() as c:
            row = c.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token)
                    & (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.is_revoked == 0)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke(self, token: str, user_id: int) -> bool:
        """Revoke one token owned by user_id. Idempotent.

        Both conditions must match, so a caller cannot revoke another user's
        token even if they know its value [IDOR guard]. Returns True if an
        active record was revoked; no match is not an error.
        """
        with self.db.connect() as c:
            result = c.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token == token)
                    & (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.is_revoked == 0)
                )
                .values(is_revoked=1)
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every active token for a user. Returns the number revoked."""
        with self.db.connect() as c:
            result = c.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1)
            )
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete records whose expires_at is at or before now. Returns rows removed."""
        with self.db.connect() as c:
            result = c.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _iso(now)))
        return result.rowcount

    def list_for_user(self, user_id: int) -> list[RefreshToken]:
        """Return all of a user's records, newest first, revoked ones included."""
        with self.db.connect() as c:
            rows = c.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_parse_iso(row.expires_at),
        is_revoked=bool(row.is_revoked),
        created_at=row.created_at,
    )
