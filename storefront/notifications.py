"""Outbound email. Delivery itself is somebody else's job; this module only hands messages off."""

import logging
from dataclasses import dataclass

from .schemas import User

log = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    kind: str


class EmailSender:
    """Base sender: writes each message to the log instead of a mail server."""

    def send(self, message: EmailMessage) -> None:
        log.info("Email (%s) to %s: %s", message.kind, message.to, message.subject)

    def send_verification_email(self, user: User, token: str) -> None:
        self.send(EmailMessage(
            to=user.email,
            subject="Verify your email address",
            body=f"Hi {user.first_name}, confirm your address with this token: {token}",
            kind="verification",
        ))

    def send_password_reset_email(self, user: User, token: str) -> None:
        self.send(EmailMessage(
            to=user.email,
            subject="Reset your password",
            body=f"Hi {user.first_name}, use this token to reset your password: {token}",
            kind="password_reset",
        ))

    def send_order_confirmation_email(self, user: User, order_number: str) -> None:
        self.send(EmailMessage(
            to=user.email,
            subject=f"Order {order_number} received",
            body=f"Hi {user.first_name}, we have received your order {order_number}.",
            kind="order_confirmation",
        ))

    def send_order_shipped_email(self, user: User, order_number: str, tracking_number: str | None) -> None:
        tracking = f" Tracking number: {tracking_number}." if tracking_number else ""
        self.send(EmailMessage(
            to=user.email,
            subject=f"Order {order_number} shipped",
            body=f"Hi {user.first_name}, your order {order_number} is on its way.{tracking}",
            kind="order_shipped",
        ))
