"""
API request and response models for permgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Internal numeric ids never appear in any response model -- only public ids.
"""

from typing import Annotated, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, HttpUrl, StrictStr, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt refuses inputs over 72 bytes. max_length on the fields counts
# characters, so _check_password_bytes enforces the byte limit as well.
_PASSWORD_MAX = 72

# Annotated type applying a length bound to every element in a list.
_PublicId = Annotated[str, Field(min_length=1, max_length=64)]


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _PASSWORD_MAX:
        raise ValueError(f"Password must be at most {_PASSWORD_MAX} bytes when UTF-8 encoded.")
    return value


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


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


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    role: Optional[str] = Field(default=None, min_length=1, max_length=50)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class SetupRequest(BaseModel):
    """Request body for POST /api/v1/auth/setup (first admin account)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    public_id: str


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    username: str
    role: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_id: str
    username: str
    role: str


class ChangePasswordRequest(BaseModel):
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class ChangeRoleRequest(BaseModel):
    """Request body for POST /api/v1/users/change-role.

    Accepts both snake_case and the camelCase names older clients send.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user_public_id: str = Field(min_length=1, validation_alias=AliasChoices("user_public_id", "userPublicId"))
    new_role: str = Field(min_length=1, validation_alias=AliasChoices("new_role", "newRole"))


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class ApiKeyCreate(BaseModel):
    """One key in the POST /api/v1/api-keys body (object or array of these)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    permissions: Optional[list[StrictStr]] = None


ApiKeyCreateBody = Union[ApiKeyCreate, list[ApiKeyCreate]]


class ApiKeyCreatedItem(BaseModel):
    """Returned ONCE at creation. raw_key is never retrievable afterwards."""

    model_config = ConfigDict(frozen=True)

    public_id: str
    name: str
    permissions: list[str]
    created_at: str
    raw_key: str
    message: str


class ApiKeyCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    created: list[ApiKeyCreatedItem]


class ApiKeyResponse(BaseModel):
    """Public key metadata. The raw key is never included."""

    model_config = ConfigDict(frozen=True)

    public_id: str
    name: str
    permissions: list[str]
    created_at: str
    disabled: bool


class ApiKeyDelete(BaseModel):
    public_ids: list[_PublicId] = Field(min_length=1, max_length=100)


class ApiKeyDeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    deleted: int


class ApiKeyPatch(BaseModel):
    disabled: bool


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    """One product in the POST /api/v1/products body (object or array of these)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    images: list[HttpUrl] = Field(default_factory=list, max_length=20)
    external_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


ProductCreateBody = Union[ProductCreate, list[ProductCreate]]


class ProductResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_id: str
    name: str
    images: list[str]
    external_id: Optional[str]
    sales_count: int
    created_at: str


class ProductCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    created: list[ProductResponse]


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class SaleLineItem(BaseModel):
    product_id: Union[int, str]
    quantity: int = Field(ge=0)


class SaleEvent(BaseModel):
    """Payload of POST /api/v1/webhooks/sales."""

    id: Union[int, str]
    line_items: list[SaleLineItem] = Field(min_length=1)


class SaleWebhookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    updated: int
