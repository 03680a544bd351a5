"""
Transactional email via the Resend HTTP API.

Usage:
    mailer = Mailer(api_key, sender)
    await mailer.send_build_complete("founder@example.com", "ShiftSwap", "success", url)

Without an API key the mailer logs the message and sends nothing.
"""

import html
import logging
from typing import Optional

import httpx

from backend.errors import UpstreamError

logger = logging.getLogger(__name__)

_SEND_URL = "https://api.resend.com/emails"

# Timeout for email API calls (seconds)
_REQUEST_TIMEOUT = 8.0


def idea_generated_email(title: str, description: str) -> tuple[str, str]:
    subject = f"New idea ready: {title}"
    body = (
        f"<h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(description)}</p>"
        "<p>Open your dashboard to review it and start a build.</p>"
    )
    return subject, body


def build_complete_email(idea_title: str, status: str, url: Optional[str]) -> tuple[str, str]:
    if status == "success":
        subject = f"Your build for {idea_title} succeeded"
        body = f"<p>Your build for <strong>{html.escape(idea_title)}</strong> finished successfully.</p>"
        if url:
            safe_url = html.escape(url, quote=True)
            body += f'<p>It is live at <a href="{safe_url}">{safe_url}</a>.</p>'
    else:
        subject = f"Your build for {idea_title} failed"
        body = (
            f"<p>Your build for <strong>{html.escape(idea_title)}</strong> failed.</p>"
            "<p>Check the build logs in your dashboard and try again.</p>"
        )
    return subject, body


def subscription_update_email(plan_name: str, status: str) -> tuple[str, str]:
    if status == "canceled":
        subject = "Your subscription has been canceled"
        body = (
            "<p>Your subscription has been canceled and your account is now on the "
            f"<strong>{html.escape(plan_name)}</strong> plan.</p>"
        )
    else:
        subject = f"Welcome to the {plan_name} plan"
        body = f"<p>Your <strong>{html.escape(plan_name)}</strong> subscription is now {html.escape(status)}.</p>"
    return subject, body


class Mailer:
    def __init__(self, api_key: Optional[str], sender: str, timeout: float = _REQUEST_TIMEOUT):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        if not api_key:
            logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Send one email.

        Raises:
            UpstreamError: If the provider rejects the message or times out.
        """
        if not self._api_key:
            logger.info("Email to %s skipped (no provider configured): %s", to, subject)
            return

        payload = {"from": self._sender, "to": [to], "subject": subject, "html": html_body}
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(_SEND_URL, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.TimeoutException:
            raise UpstreamError("Email provider timed out")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Email provider error: {e}")

    async def send_idea_generated(self, to: str, title: str, description: str) -> None:
        await self.send(to, *idea_generated_email(title, description))

    async def send_build_complete(self, to: str, idea_title: str, status: str, url: Optional[str]) -> None:
        await self.send(to, *build_complete_email(idea_title, status, url))

    async def send_subscription_update(self, to: str, plan_name: str, status: str) -> None:
        await self.send(to, *subscription_update_email(plan_name, status))
