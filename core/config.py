"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Storefront happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Explicit wiring: the Settings instance is built once at process start and
      handed to each component's constructor (UserStore, TokenIssuer,
      OtpIssuer, SessionLog, Mailer). Components never reach back into the
      environment at call time, so tests can build a Settings(...) with any
      values and pass it in directly.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. otp_ttl_seconds -> OTP_TTL_SECONDS). One canonical name per value;
      there are no legacy aliases.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Debug mode generates a throwaway key.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or shop/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storefront.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except secret_key have defaults, so Settings(debug=True) is
    enough for a test environment without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_name: str = "Storefront"
    debug: bool = False
    database_url: str = "sqlite:///storefront.db"
    cors_origins: list[str] = ["http://localhost:8000"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Service tokens are signed separately when set; empty means reuse secret_key.
    service_secret_key: str = ""
    token_expire_seconds: int = Field(default=30 * 24 * 3600, gt=0)
    service_token_expire: str = "1h"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # One-time passwords
    # ------------------------------------------------------------------

    otp_length: int = Field(default=6, ge=1, le=32)
    otp_alphabet: str = "0123456789"
    otp_ttl_seconds: int = Field(default=300, gt=0)

    # ------------------------------------------------------------------
    # Session record log
    # ------------------------------------------------------------------

    session_retention_days: int = Field(default=30, gt=0)
    session_purge_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Email transport (empty smtp_host = development mode, nothing is sent)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: int = 30
    mail_from: str = "noreply@storefront.local"

    mail_otp_registration_subject: str = "Email Verification - Storefront"
    mail_otp_vendor_subject: str = "Vendor Verification - Storefront"
    mail_otp_default_subject: str = "OTP Verification - Storefront"
    mail_otp_registration_message: str = (
        "Thank you for registering with Storefront. "
        "Please use the following OTP to verify your email address:"
    )
    mail_otp_vendor_message: str = (
        "You have been invited to become a vendor on Storefront. "
        "Please use the following OTP to verify your email address:"
    )
    mail_otp_default_message: str = "Please use the following OTP for verification:"
    mail_otp_display_style: str = (
        "background: #f4f4f4; padding: 10px; font-size: 24px; "
        "letter-spacing: 5px; text-align: center; margin: 20px 0;"
    )
    mail_otp_validity_text: str = "This OTP is valid for 5 minutes."

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters, including a
        separately configured SERVICE_SECRET_KEY.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.service_secret_key and len(self.service_secret_key) < 32:
            raise ValueError("SERVICE_SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_otp_alphabet(self) -> "Settings":
        """A one-character alphabet would make every code identical."""
        if len(set(self.otp_alphabet)) < 2:
            raise ValueError("OTP_ALPHABET must contain at least two distinct characters.")
        return self

    @property
    def effective_service_secret(self) -> str:
        return self.service_secret_key or self.secret_key


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and pass it to the component under test.
    """
    return Settings()
