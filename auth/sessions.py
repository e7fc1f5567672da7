"""
auth/sessions.py -- Session manager: login, refresh-token rotation, reuse detection.

Each refresh token is a link in a per-user chain of RefreshRecords. Using a
token rotates it: the record is revoked with replaced_by pointing at a new
record, and a new access/refresh pair is returned. Presenting a token whose
record is already revoked means someone holds a copy of a spent token, so
every session of that user is revoked and ReuseDetectedError is raised.

Ordering rule: the revoked check is the store's compare-and-revoke itself,
and it always runs before the expiry classification. A replayed token that
is also expired is therefore reported as reuse, never downgraded to expiry.

The manager holds no mutable state of its own; any number of instances (in
any number of processes) can share one store.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

from auth.errors import ReuseDetectedError, TokenExpiredError, TokenNotRecognizedError
from auth.models import RecordState, RefreshRecord, RevokeOutcome, TokenPair, User
from auth.store import RefreshTokenStore
from auth.tokens import TokenCodec, new_jti

logger = logging.getLogger("farmerauth.auth.sessions")
# Security-relevant events go to their own logger so operators can route
# them to alerting independently of routine auth logging.
security_logger = logging.getLogger("farmerauth.security")


class UserLookup(Protocol):
    def get_by_id(self, user_id: str) -> User | None: ...


def classify(record: RefreshRecord, now: datetime) -> RecordState:
    """Derive the lifecycle state of record at instant now."""
    if record.revoked:
        return RecordState.ROTATED if record.replaced_by else RecordState.COMPROMISED_REVOKED
    if record.expires_at <= now:
        return RecordState.EXPIRED
    return RecordState.ACTIVE


class SessionManager:
    """Issue, verify, rotate and revoke credentials.

    Usage:
        manager = SessionManager(codec, refresh_store, user_store)
        pair = manager.login(user)
        pair = manager.refresh(pair.refresh_token)
        claims = manager.verify_access(pair.access_token)
        manager.logout_all(user.id)
    """

    def __init__(self, codec: TokenCodec, store: RefreshTokenStore, users: UserLookup) -> None:
        self.codec = codec
        self.store = store
        self.users = users

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def login(self, user: User) -> TokenPair:
        """Start a new session for an already-authenticated user.

        Called by the identity-proof flow (phone + OTP, outside this core)
        once it has established who the caller is. Existing sessions of the
        user are left untouched. Store failures propagate.
        """
        now = self.codec.now()
        pair, record = self._issue(user, now)
        self.store.create(record)
        logger.info("Session started user_id=%s jti=%s", user.id, record.jti)
        return pair

    def _issue(self, user: User, now: datetime) -> tuple[TokenPair, RefreshRecord]:
        jti = new_jti()
        record = RefreshRecord(
            jti=jti,
            user_id=user.id,
            expires_at=self.codec.refresh_expiry(now),
            created_at=now,
        )
        pair = TokenPair(
            access_token=self.codec.issue_access_token(user, issued_at=now),
            refresh_token=self.codec.issue_refresh_token(user, jti, issued_at=now),
        )
        return pair, record

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new access/refresh pair.

        Raises:
            InvalidTokenError:       bad signature / malformed. Nothing is changed.
            TokenNotRecognizedError: signed by us, but no matching record.
            ReuseDetectedError:      the record was already revoked. Every
                                     session of the user has been revoked.
            TokenExpiredError:       the token or its record has expired. The
                                     record is now revoked, without replaced_by.
        """
        claims = self.codec.verify_refresh(refresh_token, check_expiry=False)
        user_id: str = claims["user_id"]
        jti: str = claims["refresh_jti"]

        record = self.store.find_by_jti(jti)
        if record is None or record.user_id != user_id:
            logger.info("Refresh token not recognized user_id=%s jti=%s", user_id, jti)
            raise TokenNotRecognizedError()

        now = self.codec.now()
        if self.codec.is_expired(claims) or record.expires_at <= now:
            outcome = self.store.compare_and_revoke(jti, now)
            self._check_outcome(outcome, user_id, jti, now)
            logger.info("Refresh token expired user_id=%s jti=%s", user_id, jti)
            raise TokenExpiredError()

        user = self.users.get_by_id(user_id)
        if user is None:
            outcome = self.store.compare_and_revoke(jti, now)
            self._check_outcome(outcome, user_id, jti, now)
            logger.info("Refresh token owner no longer exists user_id=%s jti=%s", user_id, jti)
            raise TokenNotRecognizedError()

        pair, successor = self._issue(user, now)
        outcome = self.store.rotate(jti, successor, now)
        self._check_outcome(outcome, user_id, jti, now)
        logger.info("Refresh token rotated user_id=%s jti=%s replaced_by=%s", user_id, jti, successor.jti)
        return pair

    def _check_outcome(self, outcome: RevokeOutcome, user_id: str, jti: str, now: datetime) -> None:
        """Turn a lost compare-and-revoke into the reuse response."""
        if outcome is RevokeOutcome.REVOKED:
            return
        if outcome is RevokeOutcome.NOT_FOUND:
            # Swept between the lookup and the revoke.
            raise TokenNotRecognizedError()
        revoked = self.store.revoke_all_for_user(user_id, now)
        security_logger.warning(
            "Refresh token reuse detected user_id=%s jti=%s sessions_revoked=%d",
            user_id,
            jti,
            revoked,
        )
        raise ReuseDetectedError(user_id, jti)

    # ------------------------------------------------------------------
    # Verify / revoke
    # ------------------------------------------------------------------

    def verify_access(self, access_token: str) -> dict[str, Any]:
        """Return the claims of a valid access token. Never touches the store."""
        return self.codec.verify_access(access_token)

    def logout_all(self, user_id: str) -> int:
        """Revoke every session of user_id. Idempotent; returns rows changed."""
        revoked = self.store.revoke_all_for_user(user_id, self.codec.now())
        logger.info("All sessions revoked user_id=%s count=%d", user_id, revoked)
        return revoked

    def active_sessions(self, user_id: str) -> int:
        return self.store.count_active_for_user(user_id, self.codec.now())
