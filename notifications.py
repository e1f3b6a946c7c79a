"""Admin notification emails (new registrations) over SMTP."""
from __future__ import annotations

import logging
import os
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Dict, Optional

from course_settings import BRAND_NAME, REG_NOTIFY_ENABLED, REG_NOTIFY_TO

log = logging.getLogger(__name__)


@dataclass
class MailSettings:
    host: str = "smtp.gmail.com"
    port: int = 465
    username: str = ""
    password: str = ""
    sender: str = ""
    starttls: bool = False
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "MailSettings":
        port_raw = os.getenv("SMTP_PORT", "465").strip()
        port = int(port_raw) if port_raw.isdigit() else 465
        timeout_raw = os.getenv("SMTP_TIMEOUT", "").strip()
        try:
            timeout = float(timeout_raw) if timeout_raw else None
        except ValueError:
            log.warning("Ignoring invalid SMTP_TIMEOUT %r", timeout_raw)
            timeout = None
        username = os.getenv("SMTP_USERNAME", "").strip()
        starttls_default = "false" if port in (25, 465, 2525) else "true"
        return cls(
            host=os.getenv("SMTP_HOST", "smtp.gmail.com").strip(),
            port=port,
            username=username,
            password=os.getenv("SMTP_PASSWORD", "").strip(),
            sender=os.getenv("SMTP_FROM", "").strip() or username,
            starttls=os.getenv("SMTP_STARTTLS", starttls_default).strip().lower() in {"1", "true", "yes", "on"},
            timeout=timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)


def send_email(settings: MailSettings, subject: str, body: str, to_address: str, reply_to: str | None = None) -> bool:
    """Send a plaintext email; returns False instead of raising when it can't."""
    if not settings.configured or not to_address:
        log.warning("Email to %s skipped: SMTP not configured", to_address or "<nobody>")
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.sender
    message["To"] = to_address
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(body)

    context = ssl.create_default_context()
    try:
        if settings.port == 465:
            smtp = smtplib.SMTP_SSL(settings.host, settings.port, context=context, timeout=settings.timeout)
        else:
            smtp = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
        with smtp:
            if settings.starttls:
                smtp.starttls(context=context)
            smtp.login(settings.username, settings.password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError):
        log.exception("Sending email to %s failed", to_address)
        return False
    log.info("Email sent to %s: %s", to_address, subject)
    return True


def registration_email(student: Dict[str, Any], code: str, cohort_name: Optional[str]) -> tuple[str, str]:
    created_at = student.get("created_at")
    if isinstance(created_at, datetime):
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        created = created_at.strftime("%Y-%m-%d %H:%M UTC")
    else:
        created = str(created_at or "N/A")

    email = student.get("email") or "N/A"
    lines = [
        "A student registered with an invite code.",
        "",
        f"Email: {email}",
        f"Name: {student.get('name') or 'N/A'}",
        f"Cohort: {cohort_name or 'N/A'}",
        f"Code: {code}",
        f"Access level: {student.get('access_level') or 'N/A'}",
        f"Registered: {created}",
        "",
        BRAND_NAME,
    ]
    return f"New student registration: {email}", "\n".join(lines)


def notify_registration(
    student: Dict[str, Any],
    code: str,
    cohort_name: Optional[str],
    settings: Optional[MailSettings] = None,
) -> bool:
    if not REG_NOTIFY_ENABLED or not REG_NOTIFY_TO:
        return False
    subject, body = registration_email(student, code, cohort_name)
    return send_email(settings or MailSettings.from_env(), subject, body, REG_NOTIFY_TO, reply_to=student.get("email"))
