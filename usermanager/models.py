"""Domain models for the user management service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the users table."""

    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime


__all__ = ["User"]
