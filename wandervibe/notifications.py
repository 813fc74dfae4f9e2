"""
Notification delivery for plan participants.

Routes receive a Notifier through the get_notifier dependency and call it
after their own work is done. Delivery is best-effort: a failed send is
logged and never raised to the web request.
"""

import os
import ssl
import smtplib
import logging
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Iterable, List

from wandervibe.auth import get_users_by_ids

logger = logging.getLogger("wandervibe.notifications")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_FROM = os.getenv("SMTP_FROM", "")

EMAIL_SUBJECT = "WanderVibe Update"


def send_email(to_addrs: List[str], subject: str, text_body: str) -> bool:
    """
    Best-effort email. Never raises to the web request.
    Returns True when the message was handed to the SMTP server.
    """
    to_addrs = [a.strip() for a in (to_addrs or []) if a and a.strip()]
    if not to_addrs:
        return False
    if not (SMTP_HOST and SMTP_FROM):
        logger.debug(f"SMTP not configured, skipping email to {len(to_addrs)} recipient(s)")
        return False

    msg = EmailMessage()
    msg["From"] = SMTP_FROM
    msg["To"] = ", ".join(to_addrs)
    msg["Subject"] = subject
    msg.set_content(text_body)

    context = ssl.create_default_context()
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=15) as server:
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
            if SMTP_USER:
                server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email send failed: {e}")
        return False

    logger.info(f"Email sent to {len(to_addrs)} recipient(s): {subject}")
    return True


class Notifier(ABC):
    """Interface for telling plan participants that something happened."""

    @abstractmethod
    def notify(self, user_ids: Iterable[str], message: str, channel: str = "email") -> int:
        raise NotImplementedError


class EmailNotifier(Notifier):
    """Emails users who have the email preference turned on."""

    def notify(self, user_ids: Iterable[str], message: str, channel: str = "email") -> int:
        user_ids = [uid for uid in user_ids if uid]
        logger.info(f"Notifying {len(user_ids)} users via {channel}: \"{message}\"")

        if channel != "email":
            # sms/push are not wired up
            logger.warning(f"Notification channel '{channel}' is not supported")
            return 0

        users = get_users_by_ids(user_ids)
        recipients = [u.email for u in users.values() if u.notification_prefs.get("email", True)]
        if send_email(recipients, EMAIL_SUBJECT, message):
            return len(recipients)
        return 0


_default_notifier = EmailNotifier()


def get_notifier() -> Notifier:
    """FastAPI dependency; override in app.dependency_overrides for tests."""
    return _default_notifier
