"""
auth/dependencies.py -- FastAPI Depends() helpers for request authentication.

Requests authenticate with an access token in the Authorization header:
    Authorization: Bearer <access token>

The token is verified by the session manager's codec alone -- no store
round-trip -- and the user is then resolved from the user directory.

get_current_user() raises HTTP 401 if the request is unauthenticated, with
the failure's code (unauthorized / invalid_token / token_expired) in the
error body.

Layer rule: auth/dependencies.py may import from fastapi (for
Depends/HTTPException/Request) because this module is part of the FastAPI
dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def _authenticate(request: Request) -> User:
    """Resolve the calling user or raise AuthError / HTTPException."""
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    claims = request.app.state.sessions.verify_access(token)
    user = request.app.state.user_store.get_by_id(claims["user_id"])
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...

    AuthError raised by the codec propagates to the AuthError exception
    handler in api/main.py, which answers 401 with the specific error code.
    """
    return _authenticate(request)
