"""
Error taxonomy for the order workflow.

Business errors derive from OrderCoreError and are surfaced to callers
unchanged. Storage and connectivity faults are wrapped in InternalError so
that no storage detail leaks past the service layer.
"""
from typing import Any, Optional


class OrderCoreError(Exception):
    """Base class for errors that carry business meaning"""
    code = "BUSINESS_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderCoreError):
    """Malformed or semantically invalid input, raised before any mutation"""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            message = f"{field} {message}"
        super().__init__(message)
        self.field = field


class InsufficientStockError(ValidationError):
    """Not enough stock to cover a request for a product"""
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product ID {product_id}. "
            f"Requested: {requested}, Available: {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ResourceNotFoundError(OrderCoreError):
    code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, field: str, value: Any):
        super().__init__(f"{resource} not found with {field}: {value}")
        self.resource = resource
        self.field = field
        self.value = value


class DuplicateResourceError(OrderCoreError):
    code = "DUPLICATE_RESOURCE"

    def __init__(self, resource: str, field: str, value: Any):
        super().__init__(f"{resource} already exists with {field}: {value}")
        self.resource = resource
        self.field = field
        self.value = value


class InvalidOrderStateError(OrderCoreError):
    """An order status change that the lifecycle does not allow"""
    code = "INVALID_ORDER_STATE"

    def __init__(self, order_id: Optional[int], current: Any, requested: Any, reason: str):
        super().__init__(
            f"Cannot move order {order_id} from {current} to {requested}: {reason}"
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested
        self.reason = reason


class InternalError(Exception):
    """Unexpected fault in the backing store, reported without detail"""
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "The service is temporarily unavailable, please try again later"):
        super().__init__(message)
        self.message = message


class ConcurrencyConflictError(InternalError):
    """Raised when a concurrent transaction conflict is detected"""
    code = "CONCURRENCY_CONFLICT"
