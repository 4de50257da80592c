"""
API request and response models for Storefront REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
shop/models.py, which own the internal domain representation. Route handlers
map between the two.

Request bodies use camelCase on the wire (countInStock, currentPassword,
serviceName, ...). populate_by_name=True also accepts the snake_case field
names so Python callers and tests can use either.

Every successful response uses the same envelope, built by envelope():
    {"status": "success", "message": "...", "data": {...}}
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from auth.credentials import check_email_address

# Must match auth.models.ROLES; Literal needs the values spelled out.
RoleName = Literal["customer", "vendor", "admin"]

# Validated like EmailStr but kept exactly as sent; EmailStr would lowercase
# the domain and break verbatim lookups.
Email = Annotated[str, AfterValidator(check_email_address)]

_request_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)


def envelope(data: Optional[dict] = None, message: Optional[str] = None, **extra: Any) -> dict:
    """Build the success envelope. extra keys (count, pagination) sit beside data."""
    body: dict = {"status": "success"}
    if message:
        body["message"] = message
    body.update(extra)
    body["data"] = data if data is not None else {}
    return body


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = _request_config

    name: str = Field(min_length=2, max_length=50)
    email: Email
    # max_length keeps inputs well under bcrypt's 72-byte truncation for ASCII.
    password: str = Field(min_length=6, max_length=72)


class VerifyEmailRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email.

    otp may arrive as a JSON number; it is coerced to a trimmed string. The
    length bound is loose because OTP_LENGTH is configurable -- a wrong-length
    code simply fails verification.
    """

    model_config = _request_config

    email: Email
    otp: str = Field(min_length=1, max_length=32)

    @field_validator("otp", mode="before")
    @classmethod
    def coerce_otp(cls, value: Any) -> str:
        if value is None:
            return value
        return str(value).strip()


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = _request_config

    email: Email
    password: str = Field(min_length=1, max_length=72)


class EmailRequest(BaseModel):
    """Request body for POST /api/v1/auth/resend-otp."""

    model_config = _request_config

    email: Email


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/token."""

    model_config = _request_config

    token: str = Field(min_length=1, max_length=4096)


class ServiceTokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/service-token (admin only).

    expiresIn accepts seconds or a duration string: "30s", "15m", "1h", "7d".
    """

    model_config = _request_config

    service_name: str = Field(alias="serviceName", min_length=1, max_length=100)
    permissions: list[str] = Field(default_factory=list, max_length=50)
    expires_in: Optional[Union[int, str]] = Field(default=None, alias="expiresIn")


# ---------------------------------------------------------------------------
# User management request models
# ---------------------------------------------------------------------------


class VendorCreate(BaseModel):
    """Request body for POST /api/v1/users/vendors (admin only)."""

    model_config = _request_config

    name: str = Field(min_length=2, max_length=50)
    email: Email


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id} (admin only). All fields optional."""

    model_config = _request_config

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[Email] = None
    role: Optional[RoleName] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/profile."""

    model_config = _request_config

    name: str = Field(min_length=2, max_length=50)


class PasswordUpdate(BaseModel):
    """Request body for PUT /api/v1/users/password."""

    model_config = _request_config

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=72)
    new_password: str = Field(alias="newPassword", min_length=6, max_length=72)


# ---------------------------------------------------------------------------
# Catalogue request models
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    """Request body for POST /api/v1/products."""

    model_config = _request_config

    name: str = Field(min_length=2, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    price: float = Field(ge=0)
    category: str = Field(min_length=1, max_length=100)
    image: Optional[str] = Field(default=None, max_length=500)
    count_in_stock: int = Field(alias="countInStock", ge=0)


class ProductUpdate(BaseModel):
    """Request body for PUT /api/v1/products/{id}. Only supplied fields change."""

    model_config = _request_config

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    image: Optional[str] = Field(default=None, max_length=500)
    count_in_stock: Optional[int] = Field(default=None, alias="countInStock", ge=0)


# ---------------------------------------------------------------------------
# Order request models
# ---------------------------------------------------------------------------


class OrderItemIn(BaseModel):
    model_config = _request_config

    product: int = Field(ge=1)
    qty: int = Field(ge=1, le=1000)


class ShippingAddressIn(BaseModel):
    model_config = _request_config

    address: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(alias="postalCode", min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)


class OrderCreate(BaseModel):
    """Request body for POST /api/v1/orders.

    Prices are not accepted from the client; name, image and price are copied
    from each product and tax/shipping are computed server-side.
    """

    model_config = _request_config

    order_items: list[OrderItemIn] = Field(alias="orderItems", min_length=1, max_length=100)
    shipping_address: ShippingAddressIn = Field(alias="shippingAddress")
    payment_method: str = Field(alias="paymentMethod", min_length=1, max_length=50)


class PaymentResultIn(BaseModel):
    """Request body for PUT /api/v1/orders/{id}/pay (payment provider receipt)."""

    model_config = _request_config

    id: str = Field(min_length=1, max_length=100)
    status: str = Field(min_length=1, max_length=50)
    update_time: str = Field(min_length=1, max_length=50)
    email_address: Email


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status: Literal["fail", "error"]
    code: str
    message: str
    errors: Optional[list[dict]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
