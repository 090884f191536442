"""
Notification Dispatcher
Sends the notifications a redemption queued, after the redemption has been committed.
Delivery is best effort: failures are logged and never reach the checkout.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Iterable, Protocol, Tuple

from promo_engine import config
from promo_engine.schemas.promo import PendingNotification

logger = logging.getLogger(__name__)


def render_notification(notification: PendingNotification) -> Tuple[str, str]:
    """Plain-text subject and body; branded templates live with the email service."""
    v = notification.variables
    if notification.kind == "referral_reward_ready":
        subject = "Your Referral Reward is Ready"
        body = (
            f"Your referral code {v.get('code')} has been used by a friend.\n"
            "Your reward is ready for your next appointment. "
            "Use the same code when booking to enjoy your discount.\n\n"
            f"Book whenever you're ready: {v.get('bookingLink')}\n"
        )
    else:
        subject = "Commission Earned from Your Referral"
        body = (
            f"Hi {v.get('salonName') or 'Beauty Partner'},\n\n"
            f"{v.get('clientName') or 'A client'} booked {v.get('service') or 'a service'} "
            "using your salon referral code.\n"
            f"You've earned {v.get('commissionAmount')} ({v.get('commissionPercent'):g}% of the service price).\n"
            f"{v.get('usageSummary')}\n\n"
            f"Track all referrals at {v.get('bookingLink')}\n"
        )
    return subject, body


class Mailer(Protocol):
    def send(self, to_email: str, subject: str, body: str) -> None: ...


class LogMailer:
    """Used when EMAIL_ENABLED is off (local development, tests)."""

    def send(self, to_email: str, subject: str, body: str) -> None:
        logger.info(f"Email disabled, not sending '{subject}' to {to_email}")


class SmtpMailer:
    def __init__(self, host: str, port: int, user: str, password: str, from_email: str, timeout: float = 15):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.timeout = timeout

    def send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.set_content(body)

        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)


def build_mailer() -> Mailer:
    if not config.EMAIL_ENABLED:
        return LogMailer()
    return SmtpMailer(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        user=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        from_email=config.FROM_EMAIL,
    )


class NotificationDispatcher:
    def __init__(self, mailer: Mailer):
        self.mailer = mailer

    def dispatch(self, notifications: Iterable[PendingNotification]) -> int:
        """Send each notification independently. Returns how many went out."""
        sent = 0
        for notification in notifications:
            try:
                subject, body = render_notification(notification)
                self.mailer.send(notification.recipient, subject, body)
                sent += 1
                logger.info(f"Sent {notification.kind} notification to {notification.recipient}")
            except Exception as e:
                logger.error(f"Failed to send {notification.kind} notification to {notification.recipient}: {e}")
        return sent
