"""
Admin order board: the client side of status updates.

Each row goes through a small state machine:

    committed --change_status--> pending --server ok--> committed
                                         +--failure---> rolled_back (after a full re-fetch)

A status change is applied locally before the server answers, then
overwritten with what the server returned. On failure the board does
not try to undo its guess; it re-fetches the authoritative list.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
import structlog

logger = structlog.get_logger(__name__)

COMMITTED = "committed"
PENDING = "pending"
ROLLED_BACK = "rolled_back"


class OrdersApiError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class OrdersApi:
    """HTTP client for the admin order endpoints."""

    def __init__(self, base_url: str, token: str, session: Optional[requests.Session] = None, timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {token}"}

    def list_orders(self) -> List[Dict[str, Any]]:
        return self._call("GET", "/admin/orders")["orders"]

    def update_status(self, order_id: str, status: str, description: Optional[str] = None, expected_version: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"orderId": order_id, "status": status}
        if description:
            body["description"] = description
        if expected_version is not None:
            body["expectedVersion"] = expected_version
        return self._call("PATCH", "/admin/orders/update-status", json=body)

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self.session.request(method, self.base_url + path, headers=self.headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise OrdersApiError(0, str(exc)) from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400 or data.get("success") is False:
            raise OrdersApiError(resp.status_code, data.get("error") or data.get("detail") or resp.reason)
        return data


@dataclass
class OrderRow:
    order: Dict[str, Any]
    state: str = COMMITTED
    requested_status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ChangeOutcome:
    ok: bool
    row: Optional[OrderRow]
    error: Optional[str] = None


@dataclass
class OrderBoard:
    api: Any
    rows: Dict[str, OrderRow] = field(default_factory=dict)
    sleep: Callable[[float], None] = time.sleep

    def refresh(self) -> None:
        fresh = {o["orderId"]: o for o in self.api.list_orders()}
        rows = {}
        for order_id, order in fresh.items():
            existing = self.rows.get(order_id)
            if existing is not None and existing.state == PENDING:
                # an in-flight change keeps its optimistic value until the server answers
                rows[order_id] = existing
            else:
                rows[order_id] = OrderRow(order=order)
        self.rows = rows

    def orders(self) -> List[Dict[str, Any]]:
        return [row.order for row in self.rows.values()]

    def change_status(self, order_id: str, status: str, description: Optional[str] = None) -> ChangeOutcome:
        row = self.rows.get(order_id)
        if row is None:
            return ChangeOutcome(False, None, f"Unknown order {order_id}")

        row.order = {**row.order, "status": status}
        row.state = PENDING
        row.requested_status = status
        row.error = None

        try:
            result = self.api.update_status(order_id, status, description, row.order.get("version"))
        except OrdersApiError as exc:
            logger.warning("status_change_rejected", order_id=order_id, status=status, error=exc.message)
            return self._roll_back(order_id, exc.message)

        row.order = {
            **row.order,
            "status": result["status"],
            "paymentStatus": result.get("paymentStatus", row.order.get("paymentStatus")),
            "updatedAt": result.get("updatedAt", row.order.get("updatedAt")),
            "version": result.get("version", row.order.get("version")),
        }
        row.state = COMMITTED
        row.requested_status = None
        return ChangeOutcome(True, row)

    def _roll_back(self, order_id: str, message: str) -> ChangeOutcome:
        self.rows[order_id].state = COMMITTED
        try:
            self.refresh()
        except OrdersApiError as exc:
            logger.error("order_refresh_failed", error=exc.message)
        row = self.rows.get(order_id)
        if row is not None:
            row.state = ROLLED_BACK
            row.error = message
        return ChangeOutcome(False, row, message)

    def poll(self, interval: float, stop_after: Optional[int] = None) -> None:
        """Refresh every ``interval`` seconds; forever unless ``stop_after`` is given."""
        count = 0
        while stop_after is None or count < stop_after:
            try:
                self.refresh()
            except OrdersApiError as exc:
                logger.warning("order_poll_failed", error=exc.message)
            count += 1
            if stop_after is None or count < stop_after:
                self.sleep(interval)
