"""
Outbound email notifications.

Delivery is fire-and-forget from the caller's point of view: `send` retries a
few times with linear backoff inside an overall deadline and reports failure
as a warning instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
import html as html_lib
import logging
import re
import smtplib
import time
from typing import Callable, Optional

from .config import Settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class NotificationResult:
    delivered: bool
    attempts: int = 0
    message_id: Optional[str] = None
    warning: Optional[str] = None


def build_payment_confirmation_email(
    event_name: str,
    amount: Optional[float] = None,
    reference: Optional[str] = None,
) -> tuple[str, str]:
    """Subject and HTML body confirming a payment was received."""
    name = html_lib.escape(event_name or "your event")
    rows = []
    if amount is not None:
        rows.append(f"<tr><td>Amount</td><td>{amount:.2f}</td></tr>")
    if reference:
        rows.append(f"<tr><td>Reference</td><td>{html_lib.escape(reference)}</td></tr>")
    details = f"<table>{''.join(rows)}</table>" if rows else ""

    subject = f"Payment received for {event_name or 'your event'}"
    body = (
        f"<h2>Payment received</h2>"
        f"<p>We have recorded your payment for <strong>{name}</strong>. "
        f"It will be verified by the organisers shortly.</p>"
        f"{details}"
    )
    return subject, body


class EmailNotifier:
    def __init__(
        self,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str]) -> MIMEMultipart:
        settings = self.settings
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((settings.smtp_from_name, settings.smtp_username))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Reply-To"] = settings.smtp_username
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(text or _TAG_RE.sub("", html), "plain"))
        msg.attach(MIMEText(html, "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart, to: str) -> None:
        settings = self.settings
        timeout = settings.smtp_timeout_seconds
        if settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=timeout)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout)
        with server:
            if settings.smtp_port != 465:
                server.starttls()
            server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.smtp_username, [to], msg.as_string())

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> NotificationResult:
        settings = self.settings
        started = self._clock()
        if not settings.smtp_username or not settings.smtp_password:
            warning = "SMTP_USERNAME and SMTP_PASSWORD are required"
            logger.warning("Email to %s not sent: %s", to, warning)
            return NotificationResult(delivered=False, warning=warning)

        msg = self._build_message(to, subject, html, text)
        last_error: Optional[Exception] = None
        attempt = 0
        for attempt in range(1, settings.smtp_max_attempts + 1):
            try:
                self._deliver(msg, to)
            except smtplib.SMTPAuthenticationError as exc:
                # Bad credentials will not fix themselves on retry.
                last_error = exc
                logger.error("SMTP authentication failed for %s: %s", settings.smtp_username, exc)
                break
            except (smtplib.SMTPException, OSError) as exc:
                last_error = exc
                logger.warning("Email attempt %d/%d to %s failed: %s", attempt, settings.smtp_max_attempts, to, exc)
            else:
                duration = self._clock() - started
                logger.info("Email sent to %s (%s) in %.2fs", to, msg["Message-ID"], duration)
                return NotificationResult(delivered=True, attempts=attempt, message_id=msg["Message-ID"])

            if attempt == settings.smtp_max_attempts:
                break
            wait = settings.smtp_retry_base_delay_seconds * attempt
            if self._clock() - started + wait > settings.smtp_overall_deadline_seconds:
                logger.warning("Email to %s abandoned: overall deadline reached", to)
                break
            logger.info("Retrying email to %s in %.1fs", to, wait)
            self._sleep(wait)

        warning = f"Email delivery to {to} failed: {last_error}"
        logger.error(warning)
        return NotificationResult(delivered=False, attempts=attempt, warning=warning)
