"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _row_to_user / _row_to_record are the mappers. The session
manager and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  compare_and_revoke() and rotate() are the only operations with a real
  atomicity requirement. Both are a single conditional UPDATE guarded by
  "revoked = 0"; the affected row count says whether THIS call performed the
  transition. The database serializes the writers (row lock + re-evaluated
  WHERE on PostgreSQL, the database write lock on SQLite), so two callers
  racing on one jti can never both see rowcount == 1. Application code
  never reads the revoked flag and then writes it.

  rotate() issues the conditional UPDATE and the INSERT of the successor on
  one connection and commits once. A lost race rolls back before the insert,
  so a record is never left revoked with a replaced_by pointing at a jti that
  does not exist.

Timestamps are stored as fixed-width ISO 8601 UTC strings
(2024-01-01T00:00:00.000000+00:00) so SQL string comparison orders them.

DB path: auth/farmerauth.db by default (see core.config.Settings.database_url).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateJtiError
from auth.models import RefreshRecord, RevokeOutcome, User
from core.clock import ensure_utc, utc_now

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID string
    Column("phone", String(20), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("local", String(255)),
    Column("area", String(255)),
    Column("city", String(255)),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("jti", String(64), nullable=False, unique=True),
    Column("user_id", String(36), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("replaced_by", String(64)),  # jti of the successor; set only by rotation
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Index("ix_refresh_tokens_user_revoked", "user_id", "revoked"),
    Index("ix_refresh_tokens_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # FastAPI runs sync handlers in a thread pool; pooled connections are
        # handed to whichever worker thread asks next.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _to_db(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _default_url() -> str:
    from core.config import get_settings

    return get_settings().database_url


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (lookup by id and by phone).

    Usage:
        store = UserStore()
        user_id = store.create_user(User(phone="+919800000001", name="Asha"))
        user = store.get_by_phone("+919800000001")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = _make_engine(db_url or _default_url())

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned UUID.

        Raises sqlalchemy.exc.IntegrityError if the phone is already
        registered. Callers (POST /auth/signup) translate that into 409.
        """
        user_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    phone=user.phone,
                    name=user.name,
                    local=user.local,
                    area=user.area,
                    city=user.city,
                    created_at=_to_db(utc_now()),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_phone(self, phone: str) -> User | None:
        """Look up a user by exact phone number. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.phone == phone)).fetchone()
        return _row_to_user(row) if row is not None else None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh token records
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for RefreshRecord entities.

    Usage:
        store = RefreshTokenStore()
        store.create(record)
        outcome = store.compare_and_revoke(jti, now)
        outcome = store.rotate(old_jti, successor, now)
        store.revoke_all_for_user(user_id, now)
        store.delete_expired(now)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = _make_engine(db_url or _default_url())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, record: RefreshRecord) -> int:
        """Insert a new record and return its assigned database ID.

        Raises DuplicateJtiError if the jti is already stored.
        """
        with self.engine.connect() as conn:
            try:
                result = conn.execute(_insert_record(record))
            except IntegrityError as exc:
                raise DuplicateJtiError(record.jti) from exc
            conn.commit()
        return result.inserted_primary_key[0]

    def compare_and_revoke(self, jti: str, now: datetime, replaced_by: str | None = None) -> RevokeOutcome:
        """Atomically flip revoked False -> True for jti.

        Returns REVOKED if this call performed the transition (revoked_at and
        replaced_by are written in the same UPDATE), ALREADY_REVOKED if the
        record was revoked before this call, NOT_FOUND if no such jti exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == jti) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=_to_db(now), replaced_by=replaced_by)
            )
            if result.rowcount == 1:
                conn.commit()
                return RevokeOutcome.REVOKED
            conn.rollback()
            return _outcome_for_miss(conn, jti)

    def rotate(self, old_jti: str, successor: RefreshRecord, now: datetime) -> RevokeOutcome:
        """Revoke old_jti in favour of successor and insert successor, in one transaction.

        The successor is only written when the conditional revoke wins. On
        ALREADY_REVOKED / NOT_FOUND nothing is changed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == old_jti) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=_to_db(now), replaced_by=successor.jti)
            )
            if result.rowcount != 1:
                conn.rollback()
                return _outcome_for_miss(conn, old_jti)
            try:
                conn.execute(_insert_record(successor))
            except IntegrityError as exc:
                conn.rollback()
                raise DuplicateJtiError(successor.jti) from exc
            conn.commit()
        return RevokeOutcome.REVOKED

    def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        """Revoke every non-revoked record of user_id. Returns the number of rows changed.

        Already-revoked records keep their original revoked_at and replaced_by.
        Idempotent: a second call changes nothing and returns 0.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, revoked_at=_to_db(now))
            )
            conn.commit()
        return result.rowcount

    def delete_expired(self, now: datetime) -> int:
        """Delete every record whose expires_at is at or before now. Returns rows removed.

        Revocation status is irrelevant here: an unexpired revoked record is
        kept because it is the evidence that turns a late replay into reuse
        detection instead of "not recognized".
        """
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_db(now)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_jti(self, jti: str) -> RefreshRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.jti == jti)).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_valid_by_jti(self, jti: str, now: datetime) -> RefreshRecord | None:
        """Return the record only if it is unrevoked and unexpired.

        Fast-path check only. The refresh flow never relies on it because
        the answer can be stale by the time the caller acts on it.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.jti == jti)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > _to_db(now))
                )
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_expired(self, now: datetime) -> list[RefreshRecord]:
        """Return every record whose expires_at is at or before now, oldest expiry first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.expires_at <= _to_db(now))
                .order_by(_refresh_tokens.c.expires_at)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_for_user(self, user_id: str) -> list[RefreshRecord]:
        """Return all records of user_id in issue order (oldest first)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id).order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_active_for_user(self, user_id: str, now: datetime) -> int:
        """Number of unrevoked, unexpired records of user_id (one per signed-in device)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_refresh_tokens)
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > _to_db(now))
                )
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Statement helpers
# ---------------------------------------------------------------------------


def _insert_record(record: RefreshRecord):
    return _refresh_tokens.insert().values(
        jti=record.jti,
        user_id=record.user_id,
        expires_at=_to_db(record.expires_at),
        revoked=1 if record.revoked else 0,
        replaced_by=record.replaced_by,
        created_at=_to_db(record.created_at),
        revoked_at=_to_db(record.revoked_at) if record.revoked_at else None,
    )


def _outcome_for_miss(conn, jti: str) -> RevokeOutcome:
    """Tell a lost race (row exists, already revoked) apart from a missing row."""
    exists = conn.execute(select(_refresh_tokens.c.id).where(_refresh_tokens.c.jti == jti)).first()
    return RevokeOutcome.ALREADY_REVOKED if exists is not None else RevokeOutcome.NOT_FOUND


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        phone=row.phone,
        name=row.name,
        local=row.local,
        area=row.area,
        city=row.city,
        created_at=row.created_at,
    )


def _row_to_record(row) -> RefreshRecord:
    return RefreshRecord(
        id=row.id,
        jti=row.jti,
        user_id=row.user_id,
        expires_at=_from_db(row.expires_at),
        revoked=bool(row.revoked),
        replaced_by=row.replaced_by,
        created_at=_from_db(row.created_at),
        revoked_at=_from_db(row.revoked_at),
    )
