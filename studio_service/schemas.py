"""Pydantic schemas for request validation and response shaping."""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&]).{8,}$")
MAX_PASSWORD_BYTES = 72


def _require_text(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field} is required")
    return value


# --- User schemas ---

class UserCreate(BaseModel):
    """Data required to register a new user."""
    name: str = Field(..., max_length=50)
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = _require_text(value, "name")
        if len(value) < 2:
            raise ValueError("name must be between 2 and 50 characters")
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = _require_text(value, "email").lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError(f"{value} is not a valid email address!")
        return value

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("password is required")
        if not PASSWORD_PATTERN.match(value):
            raise ValueError("Password must contain uppercase, lowercase, number and special character")
        # bcrypt refuses secrets longer than 72 bytes
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _require_text(value, "email").lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("password is required")
        return value


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class UserResponse(BaseModel):
    """User as returned to clients; never includes the password hash or refresh token."""
    id: int
    name: str
    email: str
    credit_balance: int = Field(serialization_alias="creditBalance")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)


def serialize_user(user) -> dict:
    return UserResponse.model_validate(user).model_dump(mode="json", by_alias=True)


# --- Token schemas ---

class TokenPair(BaseModel):
    accessToken: str
    refreshToken: str


class TokenPayload(BaseModel):
    """Decoded claims of a valid token."""
    sub: str
    exp: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
