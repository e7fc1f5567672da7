"""
auth/errors.py -- Typed failures of the token core.

Every AuthError carries a stable machine-readable code. At the HTTP edge all
of them collapse to 401 "Please log in again.", but the code survives into
the response body and the logs so reuse detection stays distinguishable from
an ordinary expiry.

Store I/O failures are NOT wrapped here -- sqlalchemy exceptions propagate
unchanged to the caller.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for client-correctable authentication failures."""

    code = "auth_error"
    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        self.message = message
        super().__init__(message)


class InvalidTokenError(AuthError):
    """Malformed token, bad signature, wrong issuer/audience or wrong token type."""

    code = "invalid_token"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpiredError(AuthError):
    """Signature is valid but the token (or its stored record) has expired."""

    code = "token_expired"

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class TokenNotRecognizedError(AuthError):
    """Well-formed token signed by us, but no server-side record matches it."""

    code = "token_not_recognized"

    def __init__(self, message: str = "Refresh token not recognized"):
        super().__init__(message)


class ReuseDetectedError(AuthError):
    """An already-revoked refresh token was presented again.

    Raised only after every session of the user has been revoked.
    """

    code = "reuse_detected"

    def __init__(self, user_id: str, jti: str):
        self.user_id = user_id
        self.jti = jti
        super().__init__("Refresh token reuse detected. All sessions revoked.")


class StoreError(Exception):
    """Store invariant violation (not an infrastructure failure)."""


class DuplicateJtiError(StoreError):
    def __init__(self, jti: str):
        self.jti = jti
        super().__init__(f"Refresh token jti already exists: {jti}")
