from __future__ import annotations

import logging
from typing import Protocol

import httpx

from app.core.config import Settings


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
APP_NAME = "Filamentory"


class EmailDeliveryError(Exception):
    pass


class Notifier(Protocol):
    def send_login_credential(self, email: str, link: str, code: str) -> None: ...

    def send_welcome(self, email: str) -> None: ...


def build_login_email(link: str, code: str) -> tuple[str, str, str]:
    subject = f"Sign in to {APP_NAME}"
    html = f"""
    <div>
      <h2>Hi there!</h2>
      <p>Click the button below to sign in to your {APP_NAME} account:</p>
      <p><a href=\"{link}\">Sign in to {APP_NAME}</a></p>
      <p>Or enter this code manually: <strong>{code}</strong></p>
      <p><strong>Important:</strong> This link expires in 15 minutes and can only be used once.</p>
      <p>Didn't request this? You can safely ignore this email.</p>
    </div>
    """
    text = (
        f"Sign in to {APP_NAME}\n\n"
        f"Click the link below to sign in to your {APP_NAME} account:\n{link}\n\n"
        f"Or enter this code manually: {code}\n\n"
        "This link expires in 15 minutes and can only be used once.\n\n"
        "Didn't request this? You can safely ignore this email."
    )
    return subject, html, text


def build_welcome_email(app_url: str) -> tuple[str, str, str]:
    subject = f"Welcome to {APP_NAME}!"
    html = f"""
    <div>
      <h2>Welcome to {APP_NAME}!</h2>
      <p>You can now start tracking your 3D printer filament inventory.</p>
      <ul>
        <li>Track your filament inventory</li>
        <li>Add notes and tips for your projects</li>
        <li>Keep track of costs and budgets</li>
      </ul>
      <p><a href=\"{app_url}\">Get started</a></p>
    </div>
    """
    text = (
        f"Welcome to {APP_NAME}!\n\n"
        "You can now start tracking your 3D printer filament inventory.\n\n"
        f"Get started: {app_url}"
    )
    return subject, html, text


class EmailNotifier:
    """Sends sign-in and welcome emails through the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: str | None,
        from_email: str | None,
        app_url: str,
        client: httpx.Client | None = None,
        log_credentials: bool = False,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.app_url = app_url
        self._client = client
        self.log_credentials = log_credentials

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            app_url=settings.app_url,
            log_credentials=settings.environment != "production",
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.from_email)

    def send_login_credential(self, email: str, link: str, code: str) -> None:
        if not self.enabled:
            if self.log_credentials:
                logger.warning("Email disabled: magic link for %s is %s (code %s)", email, link, code)
            else:
                logger.warning("Email disabled: magic link for %s was not delivered", email)
            return
        subject, html, text = build_login_email(link, code)
        try:
            self._send(email, subject, html, text)
        except httpx.HTTPError as exc:
            logger.error("Failed to send magic link to %s: %s", email, exc)
            raise EmailDeliveryError("Failed to send magic link email") from exc
        logger.info("Magic link sent to %s", email)

    def send_welcome(self, email: str) -> None:
        if not self.enabled:
            logger.warning("Email disabled: welcome email for %s skipped", email)
            return
        subject, html, text = build_welcome_email(self.app_url)
        self._send(email, subject, html, text)
        logger.info("Welcome email sent to %s", email)

    def _send(self, to_email: str, subject: str, html: str, text: str) -> None:
        payload = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
            "text": text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        if self._client is not None:
            resp = self._client.post(RESEND_API_URL, json=payload, headers=headers)
            resp.raise_for_status()
            return
        with httpx.Client(timeout=10) as client:
            resp = client.post(RESEND_API_URL, json=payload, headers=headers)
            resp.raise_for_status()
