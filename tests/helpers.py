"""
tests/helpers.py -- Plain helpers shared by fixtures and unit tests.

Kept out of conftest.py so test modules can import them directly.
"""

from __future__ import annotations

import uuid

from core.config import Settings
from core.errors import UpstreamDeliveryFailure
from core.mailer import Mailer

TEST_SECRET = "test-secret-key-for-storefront-0123456789"
PASSWORD = "secret123"


def make_settings(**overrides) -> Settings:
    """Settings for tests: fixed key and no SMTP host."""
    values = {"debug": True, "secret_key": TEST_SECRET, "smtp_host": ""}
    values.update(overrides)
    return Settings(**values)


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@mail.storefront.dev"


def mixed_case_email(prefix: str = "Mixed.Case") -> str:
    """A unique address whose domain is not lowercase; stored and matched as typed."""
    return f"{prefix}-{uuid.uuid4().hex[:10]}@Mail.STOREFRONT.dev"


class FakeMailer(Mailer):
    """Records OTP emails. Set fail=True to simulate an SMTP outage."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.sent: list[dict] = []
        self.fail = False

    def send_otp(self, to, code, name, purpose="registration", temporary_password=None) -> None:
        if self.fail:
            raise UpstreamDeliveryFailure()
        self.sent.append(
            {"to": to, "code": code, "name": name, "purpose": purpose, "temporary_password": temporary_password}
        )

    def last_for(self, email: str) -> dict:
        for message in reversed(self.sent):
            if message["to"] == email:
                return message
        raise AssertionError(f"No OTP email captured for {email}")

    def last_code_for(self, email: str) -> str:
        return self.last_for(email)["code"]
