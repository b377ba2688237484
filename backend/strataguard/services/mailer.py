# backend/strataguard/services/mailer.py
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from ..config import settings

log = logging.getLogger(__name__)


class MailTransportError(RuntimeError):
    pass


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str
    to_name: Optional[str] = None
    idempotency_key: Optional[str] = None


def _build_message(mail: OutgoingEmail) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.mail_from
    msg["To"] = f'"{mail.to_name}" <{mail.to}>' if mail.to_name else mail.to
    msg["Subject"] = mail.subject
    if mail.idempotency_key:
        # receivers and relays can drop duplicates on redelivery
        msg["Message-ID"] = f"<{mail.idempotency_key}@strataguard>"
    msg.set_content(mail.body)
    return msg


def _send_smtp(msg: EmailMessage) -> None:
    if not settings.smtp_host:
        raise MailTransportError("smtp_host is not configured")
    try:
        with smtplib.SMTP(settings.smtp_host, int(settings.smtp_port), timeout=int(settings.smtp_timeout_seconds)) as s:
            if settings.smtp_use_tls:
                s.starttls()
            if settings.smtp_user:
                s.login(settings.smtp_user, settings.smtp_password or "")
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise MailTransportError(f"{type(e).__name__}: {e}") from e


def send_email(mail: OutgoingEmail) -> None:
    """Delivers one email through the configured transport. Raises MailTransportError on failure."""
    msg = _build_message(mail)
    transport = (settings.mail_transport or "log").strip().lower()

    if transport == "smtp":
        _send_smtp(msg)
        log.info("email sent", extra={"mail_to": mail.to, "mail_subject": mail.subject})
        return

    # log transport: local/dev/test. Envelope only; bodies carry codes and link tokens.
    log.info("email (log transport)", extra={"mail_to": mail.to, "mail_subject": mail.subject, "mail_chars": len(mail.body)})
