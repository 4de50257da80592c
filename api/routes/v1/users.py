"""
api/routes/v1/users.py -- User management and self-service profile endpoints.

Routes:
  GET    /api/v1/users              -- list all users (admin only)
  POST   /api/v1/users/vendors      -- create a vendor and email an OTP (admin only)
  PUT    /api/v1/users/profile      -- update own name (requires auth)
  PUT    /api/v1/users/password     -- change own password (requires auth)
  GET    /api/v1/users/{id}         -- single user (admin only)
  PUT    /api/v1/users/{id}         -- update name/email/role/isActive (admin only)
  DELETE /api/v1/users/{id}         -- delete user (admin only)

Route registration order matters: /users/vendors, /users/profile and
/users/password must be registered before /users/{user_id} or FastAPI captures
the literal segment as a path parameter.

Security:
  [M4] An admin cannot deactivate, demote or delete their own account.
  Password changes require the current password and do not revoke tokens.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import PasswordUpdate, ProfileUpdate, UserUpdate, VendorCreate, envelope
from auth.dependencies import authorize, get_current_user
from auth.models import ROLE_ADMIN, ROLE_VENDOR, User
from core.errors import AuthenticationError, BadRequest, DuplicateResource, NotFound
from core.mailer import PURPOSE_VENDOR

logger = logging.getLogger("storefront.api")

# Auth policy:
# - PUT /users/profile, PUT /users/password: requires auth (get_current_user)
# - everything else: requires admin (authorize("admin"))
router = APIRouter()

_admin = authorize(ROLE_ADMIN)


def _get_or_404(request: Request, user_id: int) -> User:
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise NotFound(f"User not found with id of {user_id}")
    return user


# ---------------------------------------------------------------------------
# Admin: listing and vendor onboarding
# ---------------------------------------------------------------------------


@router.get("/users")
def list_users(request: Request, admin: User = Depends(_admin)) -> dict:
    users = request.app.state.user_store.list_users()
    return envelope({"users": [u.public_dict() for u in users]}, count=len(users))


@router.post("/users/vendors", status_code=201)
def create_vendor(request: Request, body: VendorCreate, admin: User = Depends(_admin)) -> JSONResponse:
    """Create a vendor with a random temporary password and email a verification OTP.

    The temporary password goes into the same email as the code; it is never
    logged or returned in the response.
    """
    state = request.app.state
    temp_password = secrets.token_urlsafe(9)
    vendor = state.credentials.create_user(body.name, body.email, temp_password, role=ROLE_VENDOR)
    code = state.otp.issue(vendor)
    state.mailer.send_otp(vendor.email, code, vendor.name, PURPOSE_VENDOR, temporary_password=temp_password)
    logger.info("Vendor user_id=%s created by admin user_id=%s", vendor.id, admin.id)
    return JSONResponse(
        status_code=201,
        content=envelope(
            {"user": vendor.public_dict()},
            message="Vendor created successfully. Verification email sent.",
        ),
    )


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.put("/users/profile")
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> dict:
    store = request.app.state.user_store
    store.update_user(current_user.id, name=body.name)
    return envelope({"user": store.get_by_id(current_user.id).public_dict()})


@router.put("/users/password")
def update_password(
    request: Request,
    body: PasswordUpdate,
    current_user: User = Depends(get_current_user),
) -> dict:
    credentials = request.app.state.credentials
    user = credentials.find_by_id(current_user.id, include_secrets=True)
    if not credentials.verify_password(user, body.current_password):
        raise AuthenticationError("Current password is incorrect")
    credentials.update_password(user.id, body.new_password)
    return envelope(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Admin: single-user operations
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}")
def get_user(request: Request, user_id: int, admin: User = Depends(_admin)) -> dict:
    return envelope({"user": _get_or_404(request, user_id).public_dict()})


@router.put("/users/{user_id}")
def update_user(request: Request, user_id: int, body: UserUpdate, admin: User = Depends(_admin)) -> dict:
    """Update name, email, role or active flag. Only supplied fields change.

    [M4] An admin may not deactivate or demote their own account -- doing so
    could leave the system with no active admin.
    """
    store = request.app.state.user_store
    _get_or_404(request, user_id)

    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise BadRequest("Provide at least one of: name, email, role, isActive.")
    if user_id == admin.id:
        if fields.get("is_active") is False:
            raise BadRequest("You cannot deactivate your own account.")
        if "role" in fields and fields["role"] != ROLE_ADMIN:
            raise BadRequest("You cannot change your own role.")

    try:
        store.update_user(user_id, **fields)
    except IntegrityError:
        raise DuplicateResource("Email already in use") from None
    logger.info("User user_id=%s updated by admin user_id=%s fields=%s", user_id, admin.id, sorted(fields))
    return envelope({"user": store.get_by_id(user_id).public_dict()})


@router.delete("/users/{user_id}")
def delete_user(request: Request, user_id: int, admin: User = Depends(_admin)) -> dict:
    if user_id == admin.id:
        raise BadRequest("You cannot delete your own account.")
    _get_or_404(request, user_id)
    request.app.state.user_store.delete_user(user_id)
    logger.info("User user_id=%s deleted by admin user_id=%s", user_id, admin.id)
    return envelope(message="User deleted successfully")
