"""
API request and response models for Seedgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check types and coarse lengths. Field-level rules
(username alphabet, password length, email shape) live in auth/registration
so they produce the same field-identifying errors whatever the caller.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.models import User
from auth.permissions import labels_of

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    name: str = Field(max_length=64)
    email: str = Field(max_length=320)
    password: str = Field(max_length=1024)


class LoginRequest(BaseModel):
    """identifier is either an email address or a username."""

    identifier: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class SetAdminRequest(BaseModel):
    """Target by exactly one of id, name or email. revoke=False grants admin."""

    id: Optional[int] = Field(default=None, gt=0)
    name: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=320)
    revoke: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "SetAdminRequest":
        if self.id is None and not self.name and not self.email:
            raise ValueError("One of id, name or email is required.")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    """Public view of an account. Credential material is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    permissions: int
    capabilities: list[str]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            permissions=user.permissions,
            capabilities=sorted(labels_of(user.permissions)),
            created_at=user.created_at.isoformat() if user.created_at else "",
        )


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    user: UserResponse


class UserMessageResponse(BaseModel):
    message: str
    user: UserResponse


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
