"""
API request and response models for the farmer-auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Optional leading +, then 7-15 digits (E.164 length limits).
PHONE_PATTERN = r"^\+?\d{7,15}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    The phone validator strips the spaces, dashes and parentheses people
    type into phone fields before the pattern check runs, so
    "+91 98000-00001" and "+919800000001" register the same account.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(pattern=PHONE_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    local: Optional[str] = Field(default=None, max_length=255)
    area: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=255)

    @field_validator("phone", mode="before")
    @classmethod
    def normalize_phone(cls, value: str) -> str:
        return "".join(ch for ch in str(value) if ch not in " -()")


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    phone: str
    city: Optional[str] = None


class TokenPairResponse(BaseModel):
    """New access/refresh pair returned by POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    phone: str
    name: str
    city: Optional[str] = None
    active_sessions: int

    @classmethod
    def from_user(cls, user: User, active_sessions: int) -> "MeResponse":
        return cls(
            user_id=user.id,
            phone=user.phone,
            name=user.name,
            city=user.city,
            active_sessions=active_sessions,
        )


class LogoutAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
