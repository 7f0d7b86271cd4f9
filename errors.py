"""
Domain errors

Service functions raise these; main.py turns them into JSON responses of the
form {"detail": message} with the status code carried by each class.
"""

from typing import Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "Server error"):
        super().__init__(message)
        self.message = message


class ValidationFailed(AppError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidIdError(ValidationFailed):
    def __init__(self, value: str):
        super().__init__(f"Invalid id: {value}", field="id")


class EmptyCartError(AppError):
    status_code = 400

    def __init__(self):
        super().__init__("Cannot place an order with an empty cart.")


class InsufficientStockError(AppError):
    status_code = 400

    def __init__(self, product_name: str, available: int):
        super().__init__(f"Insufficient stock for {product_name}. Only {available} left.")
        self.product_name = product_name
        self.available = available


class InvalidDecisionError(AppError):
    status_code = 400

    def __init__(self, decision):
        super().__init__('Invalid review status. Must be "approved" or "rejected".')
        self.decision = decision


class MissingReasonError(AppError):
    status_code = 400

    def __init__(self):
        super().__init__("Rejection reason is required when status is rejected")


class InvalidStatusTransition(AppError):
    status_code = 400

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change order status from {current} to {requested}")


class AuthenticationError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_name: str):
        super().__init__(f"Product not found: {product_name}")
        self.product_name = product_name


class ConflictError(AppError):
    status_code = 409


class DatabaseUnavailable(AppError):
    def __init__(self):
        super().__init__("Database not configured")
