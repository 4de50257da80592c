"""
tests/conftest.py -- Shared test fixtures for Storefront integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + shop
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api: ApiHarness for API integration tests (client + helpers)
  - web: ApiHarness whose client does not follow redirects

FakeMailer (tests/helpers.py) captures every OTP email instead of talking to SMTP.

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import wire_components
from asgi import app
from auth.credentials import CredentialStore
from auth.models import ROLE_CUSTOMER, User
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings
from core.mailer import Mailer
from shop.models import Product
from shop.store import ShopStore
from tests.helpers import PASSWORD, FakeMailer, make_settings, unique_email

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ShopStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the module name is used).
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    shop_url = f"sqlite:///file:test_shop_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), ShopStore(db_url=shop_url)


def _patch_lifespan(settings: Settings, user_store: UserStore, shop_store: ShopStore, mailer: Mailer):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel, as it does in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, settings, user_store, shop_store, mailer=mailer)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


class ApiHarness:
    """A running TestClient plus direct handles on the stores behind it."""

    def __init__(self, client: TestClient, settings: Settings, user_store: UserStore, shop_store: ShopStore, mailer):
        self.client = client
        self.settings = settings
        self.user_store = user_store
        self.shop_store = shop_store
        self.mailer = mailer
        self.credentials = CredentialStore(user_store)
        self.tokens = TokenIssuer(settings)

    def make_user(self, role: str = ROLE_CUSTOMER, verified: bool = True, name: str = "Test User") -> tuple[User, str]:
        """Create a user directly in the store and return (user, bearer token)."""
        user = self.credentials.create_user(name, unique_email(role), PASSWORD, role=role, is_verified=verified)
        return user, self.tokens.issue(user)

    def make_product(self, vendor_id: int, **fields) -> Product:
        values = {
            "name": "Desk Lamp",
            "description": "A warm LED desk lamp with a heavy base.",
            "price": 25.0,
            "category": "Lighting",
            "count_in_stock": 10,
        }
        values.update(fields)
        product_id = self.shop_store.create_product(Product(vendor_id=vendor_id, **values))
        return self.shop_store.get_product(product_id)

    @staticmethod
    def bearer(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped harnesses -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _harness(request, follow_redirects: bool) -> Generator[ApiHarness, None, None]:
    settings = make_settings()
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, shop_store = _make_test_stores(suffix)
    mailer = FakeMailer(settings)
    app.router.lifespan_context = _patch_lifespan(settings, user_store, shop_store, mailer)

    with TestClient(app, follow_redirects=follow_redirects, raise_server_exceptions=True) as client:
        yield ApiHarness(client, settings, user_store, shop_store, mailer)

    shop_store.close()
    user_store.close()


@pytest.fixture(scope="module")
def api_harness(request) -> Generator[ApiHarness, None, None]:
    yield from _harness(request, follow_redirects=True)


@pytest.fixture(scope="module")
def web_harness(request) -> Generator[ApiHarness, None, None]:
    """follow_redirects=False: web tests assert on redirect Location headers."""
    yield from _harness(request, follow_redirects=False)


@pytest.fixture
def api(api_harness: ApiHarness) -> ApiHarness:
    """Per-test view of the module harness with a clean cookie jar.

    Token responses set the jwt cookie; clearing it keeps one test's login
    from authenticating the next test's requests.
    """
    api_harness.client.cookies.clear()
    api_harness.mailer.fail = False
    return api_harness


@pytest.fixture
def web(web_harness: ApiHarness) -> ApiHarness:
    web_harness.client.cookies.clear()
    web_harness.mailer.fail = False
    return web_harness
