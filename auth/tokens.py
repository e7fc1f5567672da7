"""
auth/tokens.py -- Credential codec: issue and verify signed access/refresh JWTs.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are self-contained
       (claims + signature) so verifying one never needs a database round-trip.
       Both carry user_id, phone, name, sub (= phone), iss, aud, iat, exp and a
       typ claim ("access" / "refresh"). Refresh tokens add refresh_jti, the key
       of their server-side record.

  Keys: refresh tokens are signed with REFRESH_SECRET_KEY when one is
       configured, otherwise with SECRET_KEY. The typ claim is checked either
       way, so a refresh token is never accepted where an access token is
       expected (and vice versa).

  Verification order: signature and structure first, expiry second. The
       library's own exp check is switched off and expiry is decided against
       the codec's clock, so a forged token is rejected as invalid before its
       exp claim is ever looked at, and tests can move time deterministically.

  Timestamps: iat is truncated to whole seconds before exp is derived from
       it. JWT NumericDate has second resolution, so the refresh token's exp
       and its stored record's expires_at are the same instant.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from core.clock import Clock, ensure_utc, utc_now
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("farmerauth.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

_IDENTITY_CLAIMS = ("user_id", "phone", "name")


def new_jti() -> str:
    """Return a fresh, globally unique token identifier (uuid4)."""
    return str(uuid.uuid4())


class TokenCodec:
    """Encode and verify access/refresh JWTs.

    Usage:
        codec = TokenCodec.from_settings()
        access = codec.issue_access_token(user)
        refresh = codec.issue_refresh_token(user, new_jti())
        claims = codec.verify_access(access)
    """

    def __init__(
        self,
        secret_key: str,
        *,
        refresh_secret_key: str | None = None,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        issuer: str = "auth-service",
        audience: str = "auth-service-backend",
        clock: Clock = utc_now,
    ) -> None:
        self._access_key = secret_key
        self._refresh_key = refresh_secret_key or secret_key
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.issuer = issuer
        self.audience = audience
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None, clock: Clock = utc_now) -> "TokenCodec":
        cfg = settings or get_settings()
        return cls(
            cfg.secret_key,
            refresh_secret_key=cfg.refresh_secret_key or None,
            access_ttl_seconds=cfg.access_token_ttl_seconds,
            refresh_ttl_seconds=cfg.refresh_token_ttl_seconds,
            issuer=cfg.jwt_issuer,
            audience=cfg.jwt_audience,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        """Current instant truncated to whole seconds (JWT NumericDate resolution)."""
        return ensure_utc(self.clock()).replace(microsecond=0)

    def refresh_expiry(self, issued_at: datetime) -> datetime:
        """Absolute expiry of a refresh token issued at issued_at."""
        return issued_at + self.refresh_ttl

    def issue_access_token(self, user: User, issued_at: datetime | None = None) -> str:
        iat = issued_at or self.now()
        claims = self._identity_claims(user, iat, iat + self.access_ttl, ACCESS)
        return jwt.encode(claims, self._access_key, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user: User, jti: str, issued_at: datetime | None = None) -> str:
        iat = issued_at or self.now()
        claims = self._identity_claims(user, iat, self.refresh_expiry(iat), REFRESH)
        claims["refresh_jti"] = jti
        return jwt.encode(claims, self._refresh_key, algorithm=_ALGORITHM)

    def _identity_claims(self, user: User, iat: datetime, exp: datetime, token_type: str) -> dict[str, Any]:
        return {
            "user_id": user.id,
            "phone": user.phone,
            "name": user.name,
            "sub": user.phone,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(iat.timestamp()),
            "exp": int(exp.timestamp()),
            "typ": token_type,
        }

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, token_type: str = ACCESS, check_expiry: bool = True) -> dict[str, Any]:
        """Verify a token and return its claims.

        Raises InvalidTokenError on a bad signature, malformed token, wrong
        issuer/audience, wrong typ or missing identity claims. Only after all
        of that passes is expiry consulted: TokenExpiredError when exp <= now.

        check_expiry=False is for the refresh flow, which must classify reuse
        before expiry and therefore decides expiry itself.
        """
        key = self._refresh_key if token_type == REFRESH else self._access_key
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                # jose turns verify_<claim> back on for every require_<claim>,
                # so exp and iat presence is checked below instead.
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError(f"Invalid token: {exc}") from exc

        if claims.get("typ") != token_type:
            raise InvalidTokenError(f"Token is not an {token_type} token")
        required = _IDENTITY_CLAIMS + (("refresh_jti",) if token_type == REFRESH else ())
        missing = [name for name in required if claims.get(name) is None]
        if missing:
            raise InvalidTokenError(f"Token is missing claims: {', '.join(missing)}")
        for name in ("exp", "iat"):
            if not isinstance(claims.get(name), int):
                raise InvalidTokenError(f"Token {name} claim is not a NumericDate")

        if check_expiry and self.is_expired(claims):
            raise TokenExpiredError()
        return claims

    def verify_access(self, token: str) -> dict[str, Any]:
        return self.verify(token, ACCESS)

    def verify_refresh(self, token: str, check_expiry: bool = True) -> dict[str, Any]:
        return self.verify(token, REFRESH, check_expiry=check_expiry)

    def is_expired(self, claims: dict[str, Any]) -> bool:
        """True when the claim set's exp is at or before now() (whole seconds).

        Uses the same truncated instant as the refresh flow's record check, so
        a token and its record are always judged against one "now".
        """
        return claims["exp"] <= self.now().timestamp()
