"""SQLite-backed persistence for user accounts."""
from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Union

from passlib.context import CryptContext

from .models import User

logger = logging.getLogger("usermanager.database")
sql_logger = logging.getLogger("usermanager.sql")

MEMORY_DATABASE = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
"""

_MUTABLE_FIELDS = frozenset({"name", "email", "password"})


class StorageErrorKind(str, Enum):
    """Classification of persistence failures exposed to callers."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class StorageError(RuntimeError):
    """Raised when the database rejects or fails an operation."""

    kind = StorageErrorKind.INTERNAL


class UserNotFoundError(StorageError):
    kind = StorageErrorKind.NOT_FOUND


class EmailConflictError(StorageError):
    kind = StorageErrorKind.CONFLICT


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _hash_password(password: Optional[str]) -> Optional[str]:
    # A missing password is passed through so the NOT NULL constraint rejects it.
    if password is None:
        return None
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _is_unique_violation(exc: sqlite3.Error) -> bool:
    error_name = getattr(exc, "sqlite_errorname", None)
    if error_name is not None:
        return error_name == "SQLITE_CONSTRAINT_UNIQUE"
    return "UNIQUE constraint failed" in str(exc)


def _classify_error(exc: sqlite3.Error) -> StorageError:
    if isinstance(exc, sqlite3.IntegrityError) and _is_unique_violation(exc):
        return EmailConflictError("A user with that email already exists")
    return StorageError(str(exc))


class Database:
    """Simple wrapper around SQLite for persisting users.

    ``path`` may be a filesystem path or ``":memory:"``. In-memory databases
    keep a single connection open for the lifetime of the handle, otherwise
    every call would see a fresh, empty database.
    """

    def __init__(self, path: Union[Path, str], *, echo_sql: bool = False) -> None:
        self._echo_sql = echo_sql
        self._lock = threading.Lock()
        self._shared: Optional[sqlite3.Connection] = None

        if str(path) == MEMORY_DATABASE:
            self._path: Union[Path, str] = MEMORY_DATABASE
            self._shared = self._open()
        else:
            self._path = Path(path)
            _ensure_directory(self._path)

    @property
    def path(self) -> Union[Path, str]:
        return self._path

    @property
    def is_memory(self) -> bool:
        return self._path == MEMORY_DATABASE

    @property
    def echo_sql(self) -> bool:
        return self._echo_sql

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self._echo_sql:
            conn.set_trace_callback(sql_logger.debug)
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, translating driver errors."""

        try:
            if self._shared is not None:
                with self._lock, self._shared:
                    yield self._shared
                return

            conn = self._open()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise _classify_error(exc) from exc

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Schema ensured for %s", self._path)

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def create_user(
        self,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> User:
        """Insert a new user and return it.

        Raises :class:`EmailConflictError` when the email is already taken and
        :class:`StorageError` for any other rejection, including missing fields.
        """

        user_id = str(uuid.uuid4())
        created_at = _current_timestamp()
        password_hash = _hash_password(password)

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, name, email, password_hash, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    name,
                    email,
                    password_hash,
                    _serialize_datetime(created_at),
                    _serialize_datetime(created_at),
                ),
            )

        return User(
            id=user_id,
            name=str(name),
            email=str(email),
            password_hash=str(password_hash),
            created_at=created_at,
            updated_at=created_at,
        )

    def save_user(self, user: User, **changes: Optional[str]) -> User:
        """Merge ``changes`` onto ``user`` and persist the result.

        Only ``name``, ``email`` and ``password`` may be changed. Fields that are
        not supplied keep their current values.
        """

        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(sorted(unknown))}")

        name = changes["name"] if "name" in changes else user.name
        email = changes["email"] if "email" in changes else user.email
        if "password" in changes:
            password_hash = _hash_password(changes["password"])
        else:
            password_hash = user.password_hash
        updated_at = _current_timestamp()

        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET name = ?, email = ?, password_hash = ?, updated_at = ?
                 WHERE id = ?
                """,
                (name, email, password_hash, _serialize_datetime(updated_at), user.id),
            )
            if cursor.rowcount == 0:
                raise UserNotFoundError(f"User {user.id} no longer exists")

        return User(
            id=user.id,
            name=str(name),
            email=str(email),
            password_hash=str(password_hash),
            created_at=user.created_at,
            updated_at=updated_at,
        )

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    def verify_user_password(self, user_id: str, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        user = self.get_user(user_id)
        if user is None or not user.password_hash:
            return False
        return _verify_password(password, user.password_hash)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            password_hash=str(row["password_hash"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = [
    "Database",
    "EmailConflictError",
    "MEMORY_DATABASE",
    "StorageError",
    "StorageErrorKind",
    "UserNotFoundError",
    "resolve_database_path",
]
