"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
session manager do the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class User:
    """A registered user, identified by phone number.

    Owned by the user directory. The token core only ever reads id, phone
    and name (they are embedded in token claims); local/area/city are the
    signup profile fields and are never put in a token.

    id is None before the record is written to the database.
    """

    phone: str
    name: str
    id: str | None = None  # UUID string, assigned by UserStore.create_user()
    local: str | None = None
    area: str | None = None
    city: str | None = None
    created_at: str | None = None


@dataclass
class RefreshRecord:
    """Server-side record of one issued refresh token.

    One record per jti. revoked only ever goes False -> True; revoked_at is
    stamped in the same write. replaced_by is the jti of the successor and
    is set only when the record was revoked by a rotation.

    id is None before the record is written to the database.
    """

    jti: str
    user_id: str
    expires_at: datetime
    created_at: datetime
    revoked: bool = False
    replaced_by: str | None = None
    revoked_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class RecordState(str, Enum):
    """Derived lifecycle state of a RefreshRecord at a given instant."""

    ACTIVE = "active"
    EXPIRED = "expired"
    ROTATED = "rotated"
    COMPROMISED_REVOKED = "compromised_revoked"


class RevokeOutcome(str, Enum):
    """Result of a conditional revoke.

    REVOKED means this call performed the False -> True transition.
    ALREADY_REVOKED means another call (or an earlier one) got there first --
    the signal reuse detection is built on.
    """

    REVOKED = "revoked"
    ALREADY_REVOKED = "already_revoked"
    NOT_FOUND = "not_found"
