"""
web/routes.py -- Jinja2 template routes for the Storefront web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores, token issuer, OTP issuer, mailer) but return HTML and
redirects instead of JSON envelopes.

The cart lives in the signed Starlette session cookie as {product_id: qty}.
It holds ids and quantities only; names and prices are read fresh from the
catalogue on every render and copied into the order at checkout.

Protected pages redirect to /login?next=<path>; next is accepted only as a
relative path [C2].

Routes:
  GET  /                   -- product list (search, category, paging)
  GET  /products/{id}      -- product detail with add-to-cart form
  GET  /cart               -- cart contents and totals
  POST /cart/add           -- add a product, redirect /cart
  POST /cart/remove        -- remove a product, redirect /cart
  GET  /checkout           -- shipping form (auth required)
  POST /checkout           -- place the order (verified customer)
  GET  /orders/{id}        -- order detail (owner or admin)
  GET  /login              -- login form
  POST /login              -- handle password login
  GET  /register           -- registration form
  POST /register           -- create account, email OTP, go to /verify-email
  GET  /verify-email       -- OTP form
  POST /verify-email       -- verify (or resend) the OTP
  POST /logout             -- clear cookie, redirect /
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.credentials import check_email_address
from auth.dependencies import try_get_current_user
from auth.models import ROLE_ADMIN, ROLE_CUSTOMER, User
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.errors import StorefrontError
from core.mailer import PURPOSE_REGISTRATION
from shop.models import OrderItem, ShippingAddress
from shop.store import ProductQuery, pagination_meta, price_order

logger = logging.getLogger("storefront.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can render the
# account menu without every handler passing current_user explicitly.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

_PAGE_SIZE = 12
_MAX_CART_QTY = 99

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= / ?notice= query params [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted query strings.
_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "account_disabled": "Your account has been deactivated.",
    "verify_required": "Please verify your email address before placing an order.",
    "customers_only": "Only customer accounts can place orders.",
    "registered": "Account created. Enter the code we emailed you.",
    "otp_resent": "A new code has been sent. Earlier codes no longer work.",
    "cart_empty": "Your cart is empty.",
}


def _message(key: Optional[str]) -> Optional[str]:
    return _MESSAGES.get(key or "")


def _valid_email(email: str) -> bool:
    """Same check as the API models; the address itself is stored as typed."""
    try:
        check_email_address(email)
    except ValueError:
        return False
    return True


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative "//host" targets, which would
    redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return "/"


def _require_auth(request: Request) -> tuple[Optional[User], Optional[RedirectResponse]]:
    """Return (user, None) when logged in, else (None, redirect to /login?next=<path>)."""
    user = try_get_current_user(request)
    if user is None:
        return None, RedirectResponse(f"/login?next={quote(request.url.path)}", status_code=302)
    return user, None


def _login_response(request: Request, user: User, next_url: str) -> RedirectResponse:
    """Record a session, set the jwt cookie, and redirect."""
    state = request.app.state
    state.sessions.record(user)
    token = state.tokens.issue(user)
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token, state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Cart helpers
# ---------------------------------------------------------------------------


def _get_cart(request: Request) -> dict[str, int]:
    cart = request.session.get("cart")
    return dict(cart) if isinstance(cart, dict) else {}


def _cart_lines(request: Request) -> list[OrderItem]:
    """Resolve session cart entries against the catalogue.

    Products deleted since they were added are dropped silently.
    """
    store = request.app.state.shop_store
    lines = []
    for pid, qty in _get_cart(request).items():
        product = store.get_product(int(pid))
        if product is None:
            continue
        lines.append(
            OrderItem(product_id=product.id, qty=qty, name=product.name, image=product.image, price=product.price)
        )
    return lines


def _cart_context(request: Request) -> dict:
    lines = _cart_lines(request)
    items_price, tax_price, shipping_price, total_price = price_order(lines)
    return {
        "lines": lines,
        "items_price": items_price,
        "tax_price": tax_price,
        "shipping_price": shipping_price,
        "total_price": total_price,
    }


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def product_list(
    request: Request,
    search: Optional[str] = None,
    category: Optional[str] = None,
    page: int = 1,
) -> HTMLResponse:
    """Render the product grid with search, category filter and paging."""
    page = max(page, 1)
    store = request.app.state.shop_store
    query = ProductQuery(
        search=(search or "").strip()[:100] or None,
        category=category or None,
        page=page,
        limit=_PAGE_SIZE,
    )
    products, total = store.list_products(query)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "products": products,
            "categories": store.list_categories(),
            "search": query.search or "",
            "category": query.category or "",
            "pagination": pagination_meta(page, _PAGE_SIZE, total),
        },
    )


@router.get("/products/{product_id}", response_class=HTMLResponse)
def product_detail(request: Request, product_id: int) -> HTMLResponse:
    product = request.app.state.shop_store.get_product(product_id)
    if product is None:
        return templates.TemplateResponse(request, "not_found.html", {"what": "Product"}, status_code=404)
    return templates.TemplateResponse(request, "product.html", {"product": product})


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


@router.get("/cart", response_class=HTMLResponse)
def cart_view(request: Request) -> HTMLResponse:
    context = _cart_context(request)
    context["notice"] = _message(request.query_params.get("notice"))
    return templates.TemplateResponse(request, "cart.html", context)


@router.post("/cart/add")
def cart_add(request: Request, product_id: int = Form(...), qty: int = Form(1)) -> RedirectResponse:
    """Add `qty` of a product, capped at the current stock."""
    product = request.app.state.shop_store.get_product(product_id)
    if product is None or product.count_in_stock < 1:
        return RedirectResponse("/cart", status_code=303)
    cart = _get_cart(request)
    key = str(product_id)
    wanted = cart.get(key, 0) + max(qty, 1)
    cart[key] = min(wanted, product.count_in_stock, _MAX_CART_QTY)
    request.session["cart"] = cart
    return RedirectResponse("/cart", status_code=303)


@router.post("/cart/remove")
def cart_remove(request: Request, product_id: int = Form(...)) -> RedirectResponse:
    cart = _get_cart(request)
    cart.pop(str(product_id), None)
    request.session["cart"] = cart
    return RedirectResponse("/cart", status_code=303)


# ---------------------------------------------------------------------------
# Checkout and orders
# ---------------------------------------------------------------------------


def _checkout_gate(user: User) -> Optional[str]:
    """Return a _MESSAGES key when `user` may not place orders."""
    if user.role != ROLE_CUSTOMER:
        return "customers_only"
    if not user.is_verified:
        return "verify_required"
    return None


@router.get("/checkout", response_class=HTMLResponse)
def checkout_form(request: Request) -> HTMLResponse:
    user, redirect = _require_auth(request)
    if redirect:
        return redirect
    context = _cart_context(request)
    if not context["lines"]:
        return RedirectResponse("/cart?notice=cart_empty", status_code=302)
    context["error_msg"] = _message(_checkout_gate(user))
    return templates.TemplateResponse(request, "checkout.html", context)


@router.post("/checkout", response_class=HTMLResponse)
def checkout_post(
    request: Request,
    address: str = Form(...),
    city: str = Form(...),
    postal_code: str = Form(...),
    country: str = Form(...),
    payment_method: str = Form("PayPal"),
) -> HTMLResponse:
    """Place the order from the session cart, then clear the cart."""
    user, redirect = _require_auth(request)
    if redirect:
        return redirect
    context = _cart_context(request)
    if not context["lines"]:
        return RedirectResponse("/cart?notice=cart_empty", status_code=302)

    gate = _checkout_gate(user)
    if gate:
        context["error_msg"] = _message(gate)
        return templates.TemplateResponse(request, "checkout.html", context, status_code=403)

    fields = [address.strip(), city.strip(), postal_code.strip(), country.strip(), payment_method.strip()]
    if not all(fields):
        context["error_msg"] = "All shipping fields are required."
        return templates.TemplateResponse(request, "checkout.html", context, status_code=400)

    try:
        order = request.app.state.shop_store.place_order(
            user.id,
            [(line.product_id, line.qty) for line in context["lines"]],
            ShippingAddress(address=fields[0], city=fields[1], postal_code=fields[2], country=fields[3]),
            fields[4][:50],
        )
    except StorefrontError as exc:
        context["error_msg"] = exc.message
        return templates.TemplateResponse(request, "checkout.html", context, status_code=exc.status_code)

    request.session["cart"] = {}
    logger.info("Web order id=%s placed by user_id=%s", order.id, user.id)
    return RedirectResponse(f"/orders/{order.id}", status_code=303)


@router.get("/orders/{order_id}", response_class=HTMLResponse)
def order_detail(request: Request, order_id: int) -> HTMLResponse:
    user, redirect = _require_auth(request)
    if redirect:
        return redirect
    order = request.app.state.shop_store.get_order(order_id)
    # Same 404 for "missing" and "not yours" so ids cannot be probed.
    if order is None or (order.user_id != user.id and user.role != ROLE_ADMIN):
        return templates.TemplateResponse(request, "not_found.html", {"what": "Order"}, status_code=404)
    return templates.TemplateResponse(request, "order.html", {"order": order})


# ---------------------------------------------------------------------------
# Login, registration, verification
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    if try_get_current_user(request) is not None:
        return RedirectResponse("/", status_code=302)
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": _message(request.query_params.get("error")),
            "next": _safe_next(request.query_params.get("next")),
        },
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
) -> RedirectResponse:
    """Handle the login form. Uses CredentialStore.authenticate() [C1]."""
    next_url = _safe_next(next)  # [C2]
    user = request.app.state.credentials.authenticate(email.strip(), password)
    if user is None:
        return RedirectResponse(f"/login?error=bad_credentials&next={quote(next_url)}", status_code=303)
    if not user.is_active:
        return RedirectResponse("/login?error=account_disabled", status_code=303)
    return _login_response(request, user, next_url)


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "register.html", {})


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
) -> HTMLResponse:
    """Create a customer account and email the verification code.

    Field rules mirror the API's RegisterRequest. Failures re-render the form
    with the submitted name and email (never the password).
    """
    state = request.app.state
    name, email = name.strip(), email.strip()
    context = {"name": name, "email": email}
    if not 2 <= len(name) <= 50:
        context["error_msg"] = "Name must be between 2 and 50 characters."
    elif not _valid_email(email):
        context["error_msg"] = "Please enter a valid email address."
    elif not 6 <= len(password) <= 72:
        context["error_msg"] = "Password must be between 6 and 72 characters."
    if "error_msg" in context:
        return templates.TemplateResponse(request, "register.html", context, status_code=400)

    try:
        user = state.credentials.create_user(name, email, password)
    except StorefrontError as exc:
        context["error_msg"] = exc.message
        return templates.TemplateResponse(request, "register.html", context, status_code=exc.status_code)

    code = state.otp.issue(user)
    try:
        state.mailer.send_otp(user.email, code, user.name, PURPOSE_REGISTRATION)
    except StorefrontError as exc:
        # The account exists; the verify page offers a resend.
        return templates.TemplateResponse(
            request,
            "verify_email.html",
            {"email": user.email, "error_msg": exc.message},
            status_code=exc.status_code,
        )
    return RedirectResponse(f"/verify-email?email={quote(user.email)}&notice=registered", status_code=303)


@router.get("/verify-email", response_class=HTMLResponse)
def verify_email_form(request: Request, email: str = "") -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "verify_email.html",
        {"email": email[:255], "notice": _message(request.query_params.get("notice"))},
    )


@router.post("/verify-email", response_class=HTMLResponse)
def verify_email_post(
    request: Request,
    email: str = Form(...),
    otp: str = Form(""),
    action: str = Form("verify"),
) -> HTMLResponse:
    """Verify the submitted code, or issue a fresh one when action=resend.

    Unknown email and wrong code show the same message on the verify path.
    """
    state = request.app.state
    email = email.strip()
    user = state.credentials.find_by_email(email, include_secrets=True)

    if action == "resend":
        if user is not None and not user.is_verified:
            code = state.otp.issue(user)
            try:
                state.mailer.send_otp(user.email, code, user.name, PURPOSE_REGISTRATION)
            except StorefrontError as exc:
                return templates.TemplateResponse(
                    request,
                    "verify_email.html",
                    {"email": email, "error_msg": exc.message},
                    status_code=exc.status_code,
                )
        return RedirectResponse(f"/verify-email?email={quote(email)}&notice=otp_resent", status_code=303)

    if user is None or not state.otp.verify(user, otp):
        return templates.TemplateResponse(
            request,
            "verify_email.html",
            {"email": email, "error_msg": "Invalid or expired code."},
            status_code=400,
        )
    state.user_store.mark_verified(user.id)
    logger.info("Email verified via web user_id=%s", user.id)
    return _login_response(request, state.credentials.find_by_id(user.id), "/")


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the jwt cookie and redirect to the catalogue. The cart is kept."""
    resp = RedirectResponse("/", status_code=303)
    clear_auth_cookie(resp)
    return resp
