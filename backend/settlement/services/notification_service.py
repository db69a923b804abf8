"""
Notification Service — user notifications and settlement emails.

Both are ports: the engine only calls `notify` and `send_email` and never
depends on whether delivery worked. Every call site goes through
run_nonfatal.
"""
from typing import Optional, Protocol

import structlog

from settlement.models import Notification, Order, User
from settlement.store import Store
from settlement.utils.money import format_naira

logger = structlog.get_logger(__name__)


class NotificationSender(Protocol):
    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        order_id: Optional[str] = None,
    ) -> None: ...


class EmailSender(Protocol):
    def send_email(self, to: str, subject: str, body: str) -> None: ...


class DatabaseNotifier:
    """Persists in-app notifications as Notification rows."""

    def __init__(self, store: Store):
        self.store = store

    def notify(self, user_id, title, message, kind, order_id=None) -> None:
        with self.store.atomic():
            self.store.add(Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=kind,
                order_id=order_id,
            ))


class LoggingEmailSender:
    """
    Simulates an email provider by logging each message.
    In production this is swapped for the transactional mail provider.
    """

    def send_email(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise ValueError("Email recipient is empty")
        logger.info("email_sent", to=to, subject=subject)


# ─── Message templates ───────────────────────────────────────────────

def order_confirmation_email(order: Order, user: User) -> tuple[str, str]:
    lines = [
        f"Hello {user.name or 'Valued Customer'},",
        "",
        f"Your payment for order #{order.id} has been confirmed.",
        "",
    ]
    for item in order.items or []:
        lines.append(f"  {item.quantity} x {item.product_name or 'Product'} ({item.unit}) @ {format_naira(item.unit_price)}")
    lines += ["", f"Total: {format_naira(order.final_amount)}", "We will notify you when it ships."]
    return f"Order #{order.id} confirmed", "\n".join(lines)


def order_status_update_email(order: Order, user: User, status: str = "confirmed") -> tuple[str, str]:
    body = (
        f"Hello {user.name or 'Valued Customer'},\n\n"
        f"Order #{order.id} is now {status}.\n"
        f"You will receive another update when its status changes."
    )
    return f"Order #{order.id} status: {status}", body


def admin_payment_email(order: Order, user: Optional[User], amount: float, reference: str) -> tuple[str, str]:
    customer = (user.name if user else None) or "Valued Customer"
    email = (user.email if user else None) or "No email provided"
    body = (
        f"Payment received for order #{order.id}\n"
        f"Customer: {customer} <{email}>\n"
        f"Amount: {format_naira(amount)}\n"
        f"Method: Paystack\n"
        f"Transaction: {reference}"
    )
    return f"Payment received - order #{order.id}", body


def admin_order_email(order: Order, user: Optional[User]) -> tuple[str, str]:
    customer = (user.name if user else None) or "Valued Customer"
    email = (user.email if user else None) or "No email provided"
    lines = [f"New paid order #{order.id}", f"Customer: {customer} <{email}>", "", "Items:"]
    for item in order.items or []:
        lines.append(f"  {item.quantity} {item.unit} {item.product_name or 'Product'} @ {format_naira(item.unit_price)}")
    lines += ["", f"Total: {format_naira(order.final_amount)}"]
    return f"New order #{order.id}", "\n".join(lines)


def admin_wallet_deposit_email(user: User, amount: float, reference: str) -> tuple[str, str]:
    body = (
        f"Wallet deposit completed\n"
        f"Customer: {user.name or 'Valued Customer'} <{user.email or 'No email provided'}>\n"
        f"Amount: {format_naira(amount)}\n"
        f"Transaction: {reference}"
    )
    return "Wallet deposit received", body
