"""
Order status vocabulary and the status transition service.

Any recognized status may follow any other (the admin decides); what the
service guarantees is that each accepted request writes status, derived
payment status, updated_at and exactly one timeline entry in a single
versioned update, so a stale writer can never overwrite a newer status.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from database import as_utc, now_utc
from errors import InvalidStatus, OrderNotFound, StaleOrder, ValidationError

logger = structlog.get_logger(__name__)

ORDER_STATUSES = [
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "returned",
    "refunded",
]

PAYMENT_STATUSES = ["pending", "processing", "paid", "failed", "refunded", "partially_refunded"]

PAYMENT_METHODS = [
    "credit_card",
    "debit_card",
    "upi",
    "net_banking",
    "cod",
    "bank_transfer",
    "digital_wallet",
]

TRANSITION_MAX_ATTEMPTS = 3


def allowed_statuses(raw: Optional[str] = None) -> List[str]:
    """
    Statuses accepted by the transition service, from ORDER_STATUSES
    (comma separated). Unknown names in the setting are ignored; an empty
    setting means the full vocabulary.
    """
    raw = os.getenv("ORDER_STATUSES", "") if raw is None else raw
    wanted = [s.strip() for s in raw.split(",") if s.strip()]
    unknown = [s for s in wanted if s not in ORDER_STATUSES]
    if unknown:
        logger.warning("unknown_statuses_ignored", statuses=unknown)
    configured = [s for s in ORDER_STATUSES if s in wanted]
    return configured or list(ORDER_STATUSES)


def derive_payment_status(order: Dict[str, Any], new_status: str) -> Optional[str]:
    """Cash on delivery is collected at the door, so a delivered cod order is paid."""
    if new_status == "delivered" and order.get("payment_method", "cod") == "cod":
        return "paid"
    return None


def default_description(status: str) -> str:
    return f"Order status updated to {status}"


def _next_timestamp(order: Dict[str, Any]) -> datetime:
    now = now_utc()
    timeline = order.get("timeline") or []
    if timeline and isinstance(timeline[-1].get("timestamp"), datetime):
        last = as_utc(timeline[-1]["timestamp"])
        if last > now:
            return last
    return now


@dataclass
class TransitionResult:
    order_id: str
    status: str
    payment_status: str
    payment_status_changed: bool
    updated_at: datetime
    version: int
    order: Dict[str, Any]

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "order_id": self.order_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_status_changed": self.payment_status_changed,
            "updated_at": self.updated_at,
            "version": self.version,
        }


def transition_order(
    order_ref: Optional[str],
    status: Optional[str],
    orders,
    notifier,
    description: Optional[str] = None,
    location: Optional[str] = None,
    expected_version: Optional[int] = None,
    statuses: Optional[List[str]] = None,
) -> TransitionResult:
    statuses = statuses if statuses is not None else allowed_statuses()
    if not status or status not in statuses:
        raise InvalidStatus(status, statuses)
    if not order_ref:
        raise ValidationError("Order ID and status are required")

    description = (description or "").strip() or default_description(status)
    location = (location or "").strip() or None

    for attempt in range(1, TRANSITION_MAX_ATTEMPTS + 1):
        current = orders.get(order_ref)
        if current is None:
            raise OrderNotFound(order_ref)

        version = current.get("version", 0)
        if expected_version is not None and expected_version != version:
            raise StaleOrder(current["order_id"], expected_version, version)

        stamp = _next_timestamp(current)
        fields: Dict[str, Any] = {"status": status, "updated_at": stamp}
        payment_status = derive_payment_status(current, status)
        if payment_status is not None:
            fields["payment_status"] = payment_status
        entry = {"status": status, "timestamp": stamp, "description": description, "location": location}

        updated = orders.apply_transition(current["_id"], version, fields, entry)
        if updated is not None:
            break
        logger.info("order_transition_conflict", order_id=current["order_id"], attempt=attempt)
        if expected_version is not None:
            raise StaleOrder(current["order_id"])
    else:
        raise StaleOrder(order_ref)

    changed = updated.get("payment_status") != current.get("payment_status")
    logger.info(
        "order_status_updated",
        order_id=updated["order_id"],
        previous=current.get("status"),
        status=status,
        payment_status=updated.get("payment_status"),
        version=updated.get("version"),
    )

    _notify_status(notifier, updated, status, description)

    return TransitionResult(
        order_id=updated["order_id"],
        status=updated["status"],
        payment_status=updated.get("payment_status", "pending"),
        payment_status_changed=changed,
        updated_at=updated["updated_at"],
        version=updated.get("version", 0),
        order=updated,
    )


def _notify_status(notifier, order: Dict[str, Any], status: str, description: str) -> None:
    customer = order.get("customer") or {}
    email = customer.get("email")
    if not email:
        logger.warning("status_email_skipped", order_id=order.get("order_id"), reason="no customer email")
        return
    try:
        result = notifier.send_status_update(email, customer.get("full_name") or "Customer", order, status, description)
    except Exception:
        logger.exception("status_email_failed", order_id=order.get("order_id"))
        return
    if not result.success:
        logger.warning("status_email_failed", order_id=order.get("order_id"), message=result.message)
