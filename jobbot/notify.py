"""E-mail notifications when automation needs a human (e.g. a checkpoint)."""
from __future__ import annotations

import os
import smtplib
from email.mime.text import MIMEText

from jobbot.log import get_logger
from jobbot.retry import retry

log = get_logger(__name__)


@retry(max_attempts=3, base_delay=3.0, retryable=(smtplib.SMTPException, OSError))
def _smtp_send(
    host: str, port: int, user: str, password: str,
    from_addr: str, to_addr: str, msg: MIMEText,
) -> None:
    with smtplib.SMTP(host, port) as server:
        server.starttls()
        server.login(user, password)
        server.sendmail(from_addr, [to_addr], msg.as_string())


def notify(subject: str, body: str, to_email: str | None = None) -> tuple[bool, str]:
    """Send a plain-text e-mail; unconfigured SMTP is a logged no-op."""
    host = os.environ.get("SMTP_HOST", "").strip()
    port_str = os.environ.get("SMTP_PORT", "587").strip()
    user = os.environ.get("SMTP_USER", "").strip()
    password = os.environ.get("SMTP_PASSWORD", "").strip()
    from_addr = os.environ.get("FROM_EMAIL", user).strip()
    to_addr = (to_email or os.environ.get("TO_EMAIL", "")).strip()

    if not all([host, user, password, to_addr]):
        log.info("Notification not sent (SMTP not configured): %s", subject)
        return False, "SMTP not configured (set SMTP_HOST, SMTP_USER, SMTP_PASSWORD, TO_EMAIL in .env)"

    try:
        port = int(port_str)
    except ValueError:
        port = 587

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr

    try:
        _smtp_send(host, port, user, password, from_addr, to_addr, msg)
        log.info("Notification sent to %s", to_addr)
        return True, "Email sent"
    except Exception as e:
        log.error("Notification failed: %s", e)
        return False, str(e)[:150]
