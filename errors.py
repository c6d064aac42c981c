"""Custom exceptions for the storefront order service."""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class ValidationError(StorefrontError):
    """Raised when a request payload is missing or malformed."""

    pass


class InvalidCart(ValidationError):
    def __init__(self, reason: str = "Cart items are required"):
        self.reason = reason
        super().__init__(reason)


class MissingShippingField(ValidationError):
    """Raised when a required shipping field is absent or blank."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required shipping field: {field}")


class InvalidPricing(ValidationError):
    def __init__(self, reason: str = "Invalid total price"):
        self.reason = reason
        super().__init__(reason)


class InvalidStatus(ValidationError):
    """Raised when a status transition targets an unrecognized status."""

    def __init__(self, status: object, allowed: Optional[list] = None):
        self.status = status
        self.allowed = allowed or []
        msg = f"Invalid order status: {status}"
        if allowed:
            msg = f"{msg} (expected one of: {', '.join(allowed)})"
        super().__init__(msg)


class Unauthorized(StorefrontError):
    def __init__(self, msg: str = "Unauthorized - Please sign in to continue"):
        super().__init__(msg)


class NotFound(StorefrontError):
    pass


class UserNotFound(NotFound):
    def __init__(self, ref: Optional[str] = None):
        self.ref = ref
        super().__init__("User not found")


class OrderNotFound(NotFound):
    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        super().__init__(f"Order not found: {order_ref}")


class StaleOrder(StorefrontError):
    """Raised when an order changed between read and write."""

    def __init__(self, order_ref: str, expected: Optional[int] = None, actual: Optional[int] = None):
        self.order_ref = order_ref
        self.expected = expected
        self.actual = actual
        msg = f"Order {order_ref} was modified concurrently, reload and retry"
        if expected is not None and actual is not None:
            msg = f"Order {order_ref} is at version {actual}, not {expected}"
        super().__init__(msg)


class PersistenceFailure(StorefrontError):
    """Raised when the document store is unreachable or rejects a write."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Failed to {operation}. Please try again.")


class DuplicateOrderId(PersistenceFailure):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("create order", f"duplicate order id {order_id}")


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict = {
    ValidationError: 400,
    InvalidCart: 400,
    MissingShippingField: 400,
    InvalidPricing: 400,
    InvalidStatus: 400,
    Unauthorized: 401,
    NotFound: 404,
    UserNotFound: 404,
    OrderNotFound: 404,
    StaleOrder: 409,
    PersistenceFailure: 500,
    DuplicateOrderId: 500,
}


def status_code_for(exc: StorefrontError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500
