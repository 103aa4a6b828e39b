"""
core/mailer.py -- Outbound email delivery through the Resend HTTP API.

The auth core only needs one capability from email: send an HTML message to
a list of recipients and report whether it went out. send() never raises;
every failure becomes SendResult(success=False, error=...) so callers can log
it and move on. Signup treats delivery as best-effort and never rolls back on
a failed send.

Module-level requests.Session for connection pooling.
max_redirects is kept low because the endpoint is a single known API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests

logger = logging.getLogger("seedgate.mailer")

RESEND_API = "https://api.resend.com/emails"

_session = requests.Session()
_session.max_redirects = 3


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class EmailSender(Protocol):
    def send(self, recipients: list[str], subject: str, html: str) -> SendResult: ...


class ResendMailer:
    """EmailSender backed by Resend.

    An empty api_key or from_email is reported as a failed send rather than
    an error at construction, so the app still starts without mail
    configured (signups then simply never receive their link).
    """

    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout

    def send(self, recipients: list[str], subject: str, html: str) -> SendResult:
        if not recipients or not subject or html is None:
            return SendResult(success=False, error="Missing fields: recipients, subject, html")
        if not self.api_key or not self.from_email:
            return SendResult(success=False, error="Email service misconfigured (missing RESEND_API_KEY or FROM_EMAIL)")
        try:
            resp = _session.post(
                RESEND_API,
                json={"from": self.from_email, "to": list(recipients), "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return SendResult(success=False, error=str(e))

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not resp.ok:
            message = data.get("message") if isinstance(data, dict) else None
            return SendResult(success=False, error=message or f"Resend returned HTTP {resp.status_code}")
        return SendResult(success=True, message_id=data.get("id") if isinstance(data, dict) else None)


def deliver(sender: EmailSender, recipients: list[str], subject: str, html: str) -> SendResult:
    """Send and log the outcome. Used as a fire-and-forget background task."""
    result = sender.send(recipients, subject, html)
    if result.success:
        logger.info("Email '%s' sent to %d recipient(s)", subject, len(recipients))
    else:
        logger.warning("Email '%s' could not be sent: %s", subject, result.error)
    return result
