# Overview: Error taxonomy shared by the finance services.


class FinanceError(Exception):
    """Base error; message is a display-ready domain string."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(FinanceError):
    """Referenced product, transaction, branch or line does not exist."""


class InvalidRequestError(FinanceError):
    """Request is malformed or violates a quantity/amount rule."""


class InsufficientStockError(InvalidRequestError):
    """Conditional stock decrement found fewer units than requested."""

    def __init__(self, product_id: int, requested: int, available: int | None = None):
        message = f"Insufficient stock for product {product_id}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(
            message,
            {"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ConflictingStateError(FinanceError):
    """Operation not allowed in the record's current state (e.g. COMPLETED)."""
