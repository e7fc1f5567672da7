"""
api/routes/v1/auth.py -- Session REST endpoints.

Routes:
  POST /api/v1/auth/signup      -- register a phone number (public, rate limited)
  POST /api/v1/auth/refresh     -- rotate a refresh token (public, rate limited)
  GET  /api/v1/auth/me          -- current user + active session count (requires auth)
  POST /api/v1/auth/logout-all  -- revoke every session of the caller (requires auth)

There is no login route here. Login is phone + OTP, which is owned by the
OTP service; once it has verified the phone it calls
SessionManager.login(user) in-process and returns the pair itself.

Security:
  Cache-Control: no-store on every response that carries tokens.
  AuthError raised by the session manager is handled in api/main.py: 401,
  "Please log in again.", and the specific code (reuse_detected is logged
  at WARNING by the session manager before it gets here).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    LogoutAllResponse,
    MeResponse,
    RefreshRequest,
    SignupRequest,
    SignupResponse,
    TokenPairResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/signup:      public -- creates the account the OTP flow will log into
# - POST /api/v1/auth/refresh:     public -- the refresh token is the credential
# - GET  /api/v1/auth/me:          requires auth (get_current_user)
# - POST /api/v1/auth/logout-all:  requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Register a new user. 409 if the phone number is already registered."""
    user_store: UserStore = request.app.state.user_store
    try:
        user_id = user_store.create_user(
            User(phone=body.phone, name=body.name, local=body.local, area=body.area, city=body.city)
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Phone number already exists."},
        ) from exc
    return SignupResponse(user_id=user_id, phone=body.phone, city=body.city)


@limiter.limit(_settings.refresh_rate_limit)
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent either way."""
    sessions: SessionManager = request.app.state.sessions
    pair = sessions.refresh(body.refresh_token)
    resp = JSONResponse(
        content=TokenPairResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=int(sessions.codec.access_ttl.total_seconds()),
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    sessions: SessionManager = request.app.state.sessions
    return MeResponse.from_user(current_user, sessions.active_sessions(current_user.id))


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> LogoutAllResponse:
    """Revoke every refresh token of the caller (all devices).

    Access tokens already issued stay valid until they expire; they are
    short-lived and verified without a store lookup.
    """
    sessions: SessionManager = request.app.state.sessions
    return LogoutAllResponse(revoked=sessions.logout_all(current_user.id))
