"""
Email service.

Sends verification and password-reset codes through the Brevo transactional
email API. The rest of the backend only sees ``EmailSender.send`` and its
``EmailResult``; delivery failures are reported, never raised.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    success: bool
    error: str | None = None


class EmailSender(ABC):
    enabled = True

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> EmailResult:
        """Send one message. Must return within the configured timeout."""


class DisabledEmailSender(EmailSender):
    """Used when EMAIL_ENABLED is false."""

    enabled = False

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> EmailResult:
        return EmailResult(success=False, error="Email functionality is disabled")


class BrevoEmailSender(EmailSender):
    """Client for the Brevo v3 SMTP API."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        from_address: str,
        from_name: str,
        timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._api_url = api_url
        self._from_address = from_address
        self._from_name = from_name
        self._timeout = timeout

    def _get_headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "api-key": self._api_key,
            "content-type": "application/json",
        }

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> EmailResult:
        payload = {
            "sender": {"name": self._from_name, "email": self._from_address},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html_body,
            "textContent": text_body,
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._api_url,
                    headers=self._get_headers(),
                    json=payload,
                    timeout=self._timeout,
                )
        except httpx.TimeoutException:
            logger.error(f"Brevo API timeout after {self._timeout}s")
            return EmailResult(success=False, error="Email service timed out")
        except httpx.RequestError as e:
            logger.error(f"Brevo API network error: {e}")
            return EmailResult(success=False, error="Email service unreachable")

        if 200 <= response.status_code < 300:
            return EmailResult(success=True)

        message = "Unknown error"
        try:
            message = response.json().get("message", message)
        except ValueError:
            pass
        logger.error(f"Brevo API error: {response.status_code} - {message}")
        return EmailResult(success=False, error=f"Email API error (HTTP {response.status_code})")


def get_email_sender() -> EmailSender:
    """Build the sender for the current configuration."""
    if not settings.EMAIL_ENABLED:
        return DisabledEmailSender()

    if not settings.BREVO_API_KEY:
        logger.warning("EMAIL_ENABLED is set but BREVO_API_KEY is empty; emails will not be sent")
        return DisabledEmailSender()

    return BrevoEmailSender(
        api_key=settings.BREVO_API_KEY,
        api_url=settings.BREVO_API_URL,
        from_address=settings.EMAIL_FROM_ADDRESS,
        from_name=settings.EMAIL_FROM_NAME,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )


def _code_email(title: str, intro: str, code: str, ttl_minutes: int, footer: str) -> str:
    app_name = html.escape(settings.APP_NAME)
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background-color: #ff6b35; color: white; padding: 20px; text-align: center; border-radius: 5px 5px 0 0; }}
        .content {{ background-color: #f6f8fa; padding: 30px; border-radius: 0 0 5px 5px; text-align: center; }}
        .code {{ font-size: 32px; font-weight: bold; letter-spacing: 8px; color: #ff6b35; font-family: "Courier New", monospace; }}
        .footer {{ text-align: center; margin-top: 20px; color: #666; font-size: 12px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>{html.escape(title)}</h1></div>
        <div class="content">
            <p>{html.escape(intro)}</p>
            <p class="code">{html.escape(code)}</p>
            <p>This code will expire in {ttl_minutes} minutes.</p>
            <p>{html.escape(footer)}</p>
        </div>
        <div class="footer">&copy; {app_name}</div>
    </div>
</body>
</html>"""


async def send_verification_code_email(sender: EmailSender, email: str, code: str, ttl_minutes: int) -> EmailResult:
    """Send the 6-digit registration code."""
    app_name = settings.APP_NAME
    subject = f"Verify your {app_name} account"
    html_body = _code_email(
        f"Welcome to {app_name}!",
        "Enter this code on the verification page to complete your registration.",
        code,
        ttl_minutes,
        "If you didn't create this account, you can safely ignore this email.",
    )
    text_body = (
        f"Welcome to {app_name}!\n\n"
        f"Your verification code is: {code}\n\n"
        f"Enter this code on the verification page to complete your registration.\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        f"If you didn't create this account, you can safely ignore this email.\n\n"
        f"Best regards,\n{app_name} Team"
    )
    return await sender.send(email, subject, html_body, text_body)


async def send_password_reset_email(sender: EmailSender, email: str, code: str, ttl_minutes: int) -> EmailResult:
    """Send the 6-digit password reset code."""
    app_name = settings.APP_NAME
    subject = f"Reset your {app_name} password"
    html_body = _code_email(
        "Password reset",
        "Enter this code to choose a new password.",
        code,
        ttl_minutes,
        "If you didn't request a password reset, you can safely ignore this email.",
    )
    text_body = (
        f"Your {app_name} password reset code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        f"If you didn't request a password reset, you can safely ignore this email.\n\n"
        f"Best regards,\n{app_name} Team"
    )
    return await sender.send(email, subject, html_body, text_body)
