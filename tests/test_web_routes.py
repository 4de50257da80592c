"""
tests/test_web_routes.py -- Integration tests for the server-rendered shop (web/routes.py).

Uses the web fixture (follow_redirects=False) so redirect Location headers can
be asserted directly.

Coverage:
  - Catalogue, product detail and 404 pages render
  - Cart lives in the signed session cookie; quantities are capped at stock
  - Checkout requires login, a verified customer and a non-empty cart
  - Login / register / verify-email forms set the jwt cookie on success
  - Open-redirect prevention for next=
  - Form-registered addresses are kept as typed and work with the JSON API
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from auth.models import ROLE_VENDOR
from shop.models import ShippingAddress
from tests.helpers import PASSWORD, mixed_case_email, unique_email

CHECKOUT_FORM = {
    "address": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
    "payment_method": "PayPal",
}


def _login(web, email: str, password: str = PASSWORD, next_url: str = "/"):
    return web.client.post("/login", data={"email": email, "password": password, "next": next_url})


class TestCatalogue:
    def test_home_lists_products(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        web.make_product(vendor.id, name="Copper Kettle", category="Kitchen")
        resp = web.client.get("/")
        assert resp.status_code == 200
        assert "Copper Kettle" in resp.text
        assert "Kitchen" in resp.text

    def test_search_filters_grid(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        web.make_product(vendor.id, name="Velvet Armchair")
        resp = web.client.get("/", params={"search": "velvet"})
        assert "Velvet Armchair" in resp.text
        resp = web.client.get("/", params={"search": "no-such-thing-anywhere"})
        assert "No products found" in resp.text

    def test_product_detail_and_missing(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id, name="Glass Carafe")
        assert "Glass Carafe" in web.client.get(f"/products/{product.id}").text
        missing = web.client.get("/products/999999")
        assert missing.status_code == 404
        assert "Product not found" in missing.text

    def test_search_text_is_escaped(self, web) -> None:
        resp = web.client.get("/", params={"search": "<script>alert(1)</script>"})
        assert "<script>alert(1)</script>" not in resp.text


class TestCart:
    def test_add_caps_at_stock_and_remove(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id, name="Tea Tin", price=12.0, count_in_stock=3)
        resp = web.client.post("/cart/add", data={"product_id": product.id, "qty": 10})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/cart"

        cart = web.client.get("/cart")
        assert "Tea Tin" in cart.text
        assert "$36.00" in cart.text, "Quantity must be capped at the 3 units in stock"

        web.client.post("/cart/remove", data={"product_id": product.id})
        assert "Your cart is empty" in web.client.get("/cart").text

    def test_out_of_stock_product_not_added(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id, name="Sold Out Mug", count_in_stock=0)
        web.client.post("/cart/add", data={"product_id": product.id, "qty": 1})
        assert "Sold Out Mug" not in web.client.get("/cart").text


class TestCheckout:
    def test_requires_login(self, web) -> None:
        resp = web.client.get("/checkout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/checkout"

    def test_empty_cart_redirects(self, web) -> None:
        user, token = web.make_user()
        web.client.cookies.set("jwt", token)
        resp = web.client.get("/checkout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/cart?notice=cart_empty"

    def test_unverified_customer_blocked(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id, count_in_stock=5)
        _, token = web.make_user(verified=False)
        web.client.cookies.set("jwt", token)
        web.client.post("/cart/add", data={"product_id": product.id, "qty": 1})
        resp = web.client.post("/checkout", data=CHECKOUT_FORM)
        assert resp.status_code == 403
        assert "verify your email" in resp.text
        assert web.shop_store.get_product(product.id).count_in_stock == 5

    def test_verified_customer_places_order(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id, name="Oak Board", price=60.0, count_in_stock=5)
        customer, token = web.make_user()
        web.client.cookies.set("jwt", token)
        web.client.post("/cart/add", data={"product_id": product.id, "qty": 2})

        resp = web.client.post("/checkout", data=CHECKOUT_FORM)
        assert resp.status_code == 303, resp.text
        location = resp.headers["location"]
        assert location.startswith("/orders/")
        assert web.shop_store.get_product(product.id).count_in_stock == 3

        page = web.client.get(location)
        assert page.status_code == 200
        assert "Oak Board" in page.text
        assert "$138.00" in page.text  # 120 items + 18 tax, free shipping
        assert "Your cart is empty" in web.client.get("/cart").text

    def test_order_page_hidden_from_other_users(self, web) -> None:
        vendor, _ = web.make_user(role=ROLE_VENDOR)
        product = web.make_product(vendor.id)
        owner, _ = web.make_user()
        address = ShippingAddress(address="1 Main St", city="Springfield", postal_code="12345", country="US")
        order = web.shop_store.place_order(owner.id, [(product.id, 1)], address, "PayPal")
        _, stranger_token = web.make_user()
        web.client.cookies.set("jwt", stranger_token)
        assert web.client.get(f"/orders/{order.id}").status_code == 404


class TestLoginForm:
    def test_successful_login_sets_cookie_and_redirects(self, web) -> None:
        user, _ = web.make_user()
        resp = _login(web, user.email, next_url="/cart")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/cart"
        assert "jwt" in resp.cookies

    def test_bad_credentials(self, web) -> None:
        user, _ = web.make_user()
        resp = _login(web, user.email, password="wrong-pass")
        assert resp.status_code == 303
        assert "error=bad_credentials" in resp.headers["location"]
        page = web.client.get(resp.headers["location"])
        assert "Invalid email or password." in page.text

    def test_deactivated_account(self, web) -> None:
        user, _ = web.make_user()
        web.user_store.update_user(user.id, is_active=False)
        resp = _login(web, user.email)
        assert resp.headers["location"] == "/login?error=account_disabled"

    def test_unknown_error_key_is_not_reflected(self, web) -> None:
        resp = web.client.get("/login", params={"error": "<b>pwned</b>"})
        assert "pwned" not in resp.text

    def test_open_redirect_rejected(self, web) -> None:
        user, _ = web.make_user()
        for target in ("https://evil.example", "//evil.example", "/\\evil.example"):
            resp = _login(web, user.email, next_url=target)
            assert resp.headers["location"] == "/", f"next={target!r} must fall back to /"
            web.client.cookies.clear()

    def test_protected_redirect_next_is_relative(self, web) -> None:
        resp = web.client.get("/orders/1")
        parsed = urlparse(resp.headers["location"])
        (next_path,) = parse_qs(parsed.query)["next"]
        assert next_path.startswith("/") and not next_path.startswith("//")

    def test_logout_clears_cookie(self, web) -> None:
        resp = web.client.post("/logout")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/"
        assert resp.headers.get("set-cookie", "").startswith("jwt=")


class TestRegistrationForms:
    def test_register_then_verify(self, web) -> None:
        email = unique_email("webreg")
        resp = web.client.post("/register", data={"name": "Wendy Web", "email": email, "password": PASSWORD})
        assert resp.status_code == 303
        assert resp.headers["location"].startswith("/verify-email?email=")

        code = web.mailer.last_code_for(email)
        verify = web.client.post("/verify-email", data={"email": email, "otp": code, "action": "verify"})
        assert verify.status_code == 302
        assert "jwt" in verify.cookies
        assert web.user_store.get_by_email(email).is_verified is True

    def test_register_validation_rerenders_form(self, web) -> None:
        resp = web.client.post("/register", data={"name": "W", "email": unique_email(), "password": PASSWORD})
        assert resp.status_code == 400
        assert "Name must be between 2 and 50 characters." in resp.text

    def test_wrong_code(self, web) -> None:
        email = unique_email("webotp")
        web.client.post("/register", data={"name": "Otto Otp", "email": email, "password": PASSWORD})
        code = web.mailer.last_code_for(email)
        wrong = "000000" if code != "000000" else "111111"
        resp = web.client.post("/verify-email", data={"email": email, "otp": wrong, "action": "verify"})
        assert resp.status_code == 400
        assert "Invalid or expired code." in resp.text

    def test_resend(self, web) -> None:
        email = unique_email("webresend")
        web.client.post("/register", data={"name": "Rex Resend", "email": email, "password": PASSWORD})
        before = len(web.mailer.sent)
        resp = web.client.post("/verify-email", data={"email": email, "action": "resend"})
        assert resp.status_code == 303
        assert "notice=otp_resent" in resp.headers["location"]
        assert len(web.mailer.sent) == before + 1

    def test_invalid_email_rerenders_form(self, web) -> None:
        resp = web.client.post("/register", data={"name": "Wendy Web", "email": "a@b", "password": PASSWORD})
        assert resp.status_code == 400
        assert "Please enter a valid email address." in resp.text
        assert web.user_store.get_by_email("a@b") is None

    def test_mixed_case_address_works_on_both_surfaces(self, web) -> None:
        email = mixed_case_email("Web.User")
        resp = web.client.post("/register", data={"name": "Wendy Web", "email": email, "password": PASSWORD})
        assert resp.status_code == 303
        assert web.user_store.get_by_email(email).email == email

        api_login = web.client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
        assert api_login.status_code == 200, api_login.text
        assert api_login.json()["data"]["user"]["email"] == email

        web.client.cookies.clear()
        form_login = _login(web, email)
        assert form_login.status_code == 302
        assert "jwt" in form_login.cookies
