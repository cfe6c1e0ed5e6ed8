"""
API request and response models for the O'secours REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
otp/models.py, which own the internal domain representation. Route handlers
map between the two.

Every request body forbids unknown fields (extra="forbid"): a body carrying a
field the endpoint does not accept is rejected with 400, like a body missing
a required one.

Every response uses the same envelope: {"message": str, "data": object | null}.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_NAME_PATTERN = re.compile(r"^[A-Za-zÀ-ÿ\s]+$")
_SPECIAL_CHARS = set("@$!%*?&")


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_Body):
    """Request body for POST /auth/login."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=72)

    @field_validator("email")
    @classmethod
    def email_shape(cls, value: str) -> str:
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("A valid email address is required")
        return value.lower()


class RefreshRequest(_Body):
    """Request body for POST /auth/refresh."""

    refreshToken: str = Field(min_length=1)


class OtpRequest(_Body):
    """Request body for POST /auth/otp-request.

    Only presence is checked here; digit normalization and the 8-10 length
    rule belong to the OTP engine, which applies them before any store access.
    """

    phoneNumber: str = Field(min_length=1, max_length=30)


class OtpVerifyRequest(_Body):
    """Request body for POST /auth/verify-otp.

    otp must be a JSON string: a number cannot carry the leading zeros a code
    may have, so numbers are rejected rather than converted.
    """

    phoneNumber: str = Field(min_length=1, max_length=30)
    otp: str = Field(min_length=1, max_length=10)

    @field_validator("otp")
    @classmethod
    def otp_digits(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("The OTP code must contain digits only")
        return value


class CitizenRegisterRequest(_Body):
    """Request body for POST /citizen/register.

    nom is the full name; it is split into first and last name on creation.
    """

    nom: str = Field(min_length=2, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=72)
    numero: str = Field(pattern=r"^[0-9]{8,10}$")

    @field_validator("nom")
    @classmethod
    def name_letters(cls, value: str) -> str:
        if not _NAME_PATTERN.match(value):
            raise ValueError("The name may only contain letters and spaces")
        return value

    @field_validator("email")
    @classmethod
    def email_shape(cls, value: str) -> str:
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("A valid email address is required")
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not (
            any(c.islower() for c in value)
            and any(c.isupper() for c in value)
            and any(c.isdigit() for c in value)
            and any(c in _SPECIAL_CHARS for c in value)
        ):
            raise ValueError(
                "The password must contain at least one lowercase letter, one uppercase letter, "
                "one digit and one special character"
            )
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """Uniform response body for every endpoint, success or failure."""

    message: str
    data: Optional[Any] = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = "ok"
    version: str
