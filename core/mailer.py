"""
core/mailer.py -- Outbound email (OTP delivery) over SMTP.

Transport:
  smtp_use_tls=True  -> plain SMTP connection upgraded with STARTTLS (port 587)
  smtp_use_tls=False -> implicit TLS via SMTP_SSL (port 465)

Development mode:
  When SMTP_HOST is empty nothing is sent. One log line records the redacted
  recipient and the subject -- never the body, which contains the code.

Failure policy:
  Any SMTP, TLS or socket error is logged (recipient redacted) and re-raised
  as UpstreamDeliveryFailure, which the API renders as 502. The caller decides
  whether the already-written OTP should stand; a resend simply overwrites it.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/ or shop/.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from core.config import Settings
from core.errors import UpstreamDeliveryFailure

logger = logging.getLogger("storefront.mailer")

PURPOSE_REGISTRATION = "registration"
PURPOSE_VENDOR = "vendor"


def redact_email(email: str) -> str:
    """Redact an address for logging: "alice@example.com" -> "al***@example.com"."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """Sends transactional email using the SMTP settings it was built with."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host and self._settings.mail_from)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def send(self, to: str, subject: str, html_body: str) -> None:
        """Deliver one HTML message. Raises UpstreamDeliveryFailure on any transport error."""
        s = self._settings
        if not self.is_configured:
            logger.info("Email not sent (SMTP_HOST unset) to=%s subject=%r", redact_email(to), subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{s.app_name} <{s.mail_from}>"
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if s.smtp_use_tls:
                with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as server:
                    server.starttls(context=context)
                    if s.smtp_user and s.smtp_password:
                        server.login(s.smtp_user, s.smtp_password)
                    server.sendmail(s.mail_from, [to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    s.smtp_host, s.smtp_port, context=context, timeout=s.smtp_timeout_seconds
                ) as server:
                    if s.smtp_user and s.smtp_password:
                        server.login(s.smtp_user, s.smtp_password)
                    server.sendmail(s.mail_from, [to], msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            # OSError covers refused connections, DNS failures and timeouts.
            logger.error(
                "Email delivery failed to=%s host=%s error_type=%s error=%s",
                redact_email(to),
                s.smtp_host,
                type(exc).__name__,
                exc,
            )
            raise UpstreamDeliveryFailure() from exc

        logger.info("Email sent to=%s subject=%r", redact_email(to), subject)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _otp_copy(self, purpose: str) -> tuple[str, str]:
        s = self._settings
        if purpose == PURPOSE_REGISTRATION:
            return s.mail_otp_registration_subject, s.mail_otp_registration_message
        if purpose == PURPOSE_VENDOR:
            return s.mail_otp_vendor_subject, s.mail_otp_vendor_message
        return s.mail_otp_default_subject, s.mail_otp_default_message

    def render_otp(
        self, code: str, name: str, purpose: str, temporary_password: str | None = None
    ) -> tuple[str, str]:
        """Return (subject, html_body) for an OTP email.

        temporary_password is only passed for admin-created vendor accounts,
        whose owner has no other way to learn it.
        """
        s = self._settings
        subject, message = self._otp_copy(purpose)
        password_html = ""
        if temporary_password:
            password_html = (
                f"<p>Your temporary password is <strong>{html.escape(temporary_password)}</strong>. "
                "Please change it after your first login.</p>"
            )
        body = (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h2 style="color: #333;">Hello {html.escape(name)},</h2>'
            f"<p>{html.escape(message)}</p>"
            f'<div style="{html.escape(s.mail_otp_display_style, quote=True)}">'
            f"<strong>{html.escape(code)}</strong></div>"
            f"<p>{html.escape(s.mail_otp_validity_text)}</p>"
            f"{password_html}"
            "<p>If you did not request this code, please ignore this email.</p>"
            f"<p>Regards,<br>{html.escape(s.app_name)} Team</p>"
            "</div>"
        )
        return subject, body

    def send_otp(
        self,
        to: str,
        code: str,
        name: str,
        purpose: str = PURPOSE_REGISTRATION,
        temporary_password: str | None = None,
    ) -> None:
        subject, body = self.render_otp(code, name, purpose, temporary_password)
        self.send(to, subject, body)
