"""
Transactional email for orders.

Sends over SMTP when SMTP_HOST (or SMTP_USER/SMTP_PASS for Gmail) is
configured. Without a transport, messages are written to the log and the
send still counts as a success. Callers treat every result as advisory:
a failed send is logged and never fails the order workflow.
"""
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_SECURE = os.getenv("SMTP_SECURE", "false").lower() == "true"
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "5"))
STORE_NAME = os.getenv("STORE_NAME", "ShopEase")
STORE_OWNER_EMAIL = os.getenv("STORE_OWNER_EMAIL", SMTP_USER)
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000")


@dataclass
class NotificationResult:
    success: bool
    message: str


@dataclass
class SmtpSettings:
    host: str
    port: int = 587
    user: str = ""
    password: str = ""
    secure: bool = False
    timeout: float = 5.0

    @classmethod
    def from_env(cls) -> Optional["SmtpSettings"]:
        host = SMTP_HOST
        if not host and SMTP_USER and SMTP_PASS:
            host = "smtp.gmail.com"
        if not host:
            return None
        return cls(host=host, port=SMTP_PORT, user=SMTP_USER, password=SMTP_PASS, secure=SMTP_SECURE, timeout=SMTP_TIMEOUT)


def _money(amount: Any, currency: str = "INR") -> str:
    try:
        return f"{currency} {float(amount):,.2f}"
    except (TypeError, ValueError):
        return f"{currency} {amount}"


def _item_lines(items: Iterable[Dict[str, Any]], currency: str) -> str:
    lines = []
    for item in items:
        lines.append(
            f"  - {item.get('product_name', 'Item')} x{item.get('quantity', 1)}"
            f"  {_money(item.get('line_total', item.get('final_price', 0)), currency)}"
        )
    return "\n".join(lines) or "  (no items)"


def order_confirmation_body(customer_name: str, order: Dict[str, Any]) -> str:
    pricing = order.get("pricing") or {}
    currency = pricing.get("currency", "INR")
    shipping = order.get("shipping") or {}
    eta = shipping.get("estimated_delivery")
    return (
        f"Hi {customer_name},\n\n"
        f"Thank you for shopping with {STORE_NAME}! Your order {order.get('order_id')} has been placed.\n\n"
        f"Items:\n{_item_lines(order.get('items') or [], currency)}\n\n"
        f"Subtotal: {_money(pricing.get('subtotal', 0), currency)}\n"
        f"Tax:      {_money(pricing.get('tax', 0), currency)}\n"
        f"Shipping: {_money(pricing.get('shipping', 0), currency)}\n"
        f"Discount: {_money(pricing.get('discount', 0), currency)}\n"
        f"Total:    {_money(pricing.get('total_amount', 0), currency)}\n\n"
        f"Payment: {str(order.get('payment_method', 'cod')).upper()}\n"
        + (f"Estimated delivery: {eta:%d %b %Y}\n" if hasattr(eta, "strftime") else "")
        + f"\nTrack your order at {SITE_URL}/dashboard\n"
    )


def owner_notice_body(order: Dict[str, Any]) -> str:
    customer = order.get("customer") or {}
    pricing = order.get("pricing") or {}
    return (
        f"New order {order.get('order_id')} received.\n\n"
        f"Customer: {customer.get('full_name')} <{customer.get('email')}>, {customer.get('phone')}\n"
        f"Ship to: {customer.get('address')}, {customer.get('city')}, {customer.get('state')} "
        f"{customer.get('zip_code')}, {customer.get('country')}\n"
        f"Total: {_money(pricing.get('total_amount', 0), pricing.get('currency', 'INR'))}\n\n"
        f"Manage orders at {SITE_URL}/admin/orders\n"
    )


def status_update_body(customer_name: str, order: Dict[str, Any], new_status: str, description: str) -> str:
    label = new_status.replace("_", " ").title()
    return (
        f"Hi {customer_name},\n\n"
        f"Your order {order.get('order_id')} is now: {label}.\n"
        f"{description}\n\n"
        f"Track your order at {SITE_URL}/dashboard\n"
    )


class Notifier:
    def __init__(self, settings: Optional[SmtpSettings] = None, owner_email: Optional[str] = None, sender: Optional[str] = None):
        self.settings = settings
        self.owner_email = owner_email
        self.sender = sender or (settings.user if settings and settings.user else f"no-reply@{STORE_NAME.lower()}.local")

    @classmethod
    def from_env(cls) -> "Notifier":
        return cls(settings=SmtpSettings.from_env(), owner_email=STORE_OWNER_EMAIL or None)

    def send_order_confirmation(self, customer_email: str, customer_name: str, order: Dict[str, Any]) -> NotificationResult:
        subject = f"Order Confirmed! #{order.get('order_id')} - {STORE_NAME}"
        result = self._send(customer_email, subject, order_confirmation_body(customer_name, order))

        if self.owner_email:
            owner = self._send(self.owner_email, f"New Order Received! #{order.get('order_id')} - {STORE_NAME}", owner_notice_body(order))
            if not owner.success:
                logger.warning("owner_notice_failed", order_id=order.get("order_id"), message=owner.message)
        return result

    def send_status_update(
        self,
        customer_email: str,
        customer_name: str,
        order: Dict[str, Any],
        new_status: str,
        description: str,
    ) -> NotificationResult:
        subject = f"Order Status Updated to {new_status} - {STORE_NAME}"
        return self._send(customer_email, subject, status_update_body(customer_name, order, new_status, description))

    def _send(self, to: str, subject: str, body: str) -> NotificationResult:
        if self.settings is None:
            logger.info("email_logged", to=to, subject=subject, body=body)
            return NotificationResult(True, f"Email logged for {to} (no SMTP transport configured)")

        msg = EmailMessage()
        msg["From"] = f'"{STORE_NAME}" <{self.sender}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email_send_failed", to=to, subject=subject, error=str(exc))
            return NotificationResult(False, f"Failed to send email to {to}: {exc}")

        logger.info("email_sent", to=to, subject=subject)
        return NotificationResult(True, f"Email sent to {to}")

    def _deliver(self, msg: EmailMessage) -> None:
        s = self.settings
        if s.secure:
            server = smtplib.SMTP_SSL(s.host, s.port, timeout=s.timeout)
        else:
            server = smtplib.SMTP(s.host, s.port, timeout=s.timeout)
        with server:
            server.ehlo()
            if not s.secure and server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if s.user and s.password:
                server.login(s.user, s.password)
            server.send_message(msg)
