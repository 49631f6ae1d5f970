"""Application error taxonomy.

Every error the services raise on purpose is an ``AppError``. The HTTP layer
turns it into ``{"code": ..., "message": ..., "status": ...}``.
"""


class AppError(Exception):
    code = "INTERNAL_ERROR"
    message = "internal server error"
    status_code = 500

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status": self.status_code}


# Validation

class InvalidUserID(AppError):
    code = "INVALID_INPUT"
    message = "invalid user id format"
    status_code = 400


class InvalidOrderID(AppError):
    code = "INVALID_INPUT"
    message = "invalid order id format"
    status_code = 400


class InvalidAddressReference(AppError):
    code = "INVALID_INPUT"
    message = "invalid address reference"
    status_code = 400


class InvalidQuantity(AppError):
    code = "INVALID_INPUT"
    message = "quantity must be greater than zero"
    status_code = 400


class ReceiptRequired(AppError):
    code = "RECEIPT_REQUIRED"
    message = "receipt number is required to ship an order"
    status_code = 400


# State conflicts

class CartEmpty(AppError):
    code = "CART_EMPTY"
    message = "cart is empty"
    status_code = 400


class CannotCancel(AppError):
    code = "INVALID_STATE"
    message = "order cannot be cancelled"
    status_code = 400


class InvalidStatusTransition(AppError):
    code = "INVALID_STATE"
    message = "invalid status transition"
    status_code = 400


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    message = "order does not belong to user"
    status_code = 403


class Forbidden(AppError):
    code = "FORBIDDEN"
    message = "admin role required"
    status_code = 403


class OrderNotFound(AppError):
    code = "NOT_FOUND"
    message = "order not found"
    status_code = 404


class ProductNotFound(AppError):
    code = "NOT_FOUND"
    message = "product not found"
    status_code = 404


class RateLimited(AppError):
    code = "RATE_LIMITED"
    message = "too many requests"
    status_code = 429


# Infrastructure

class CheckoutFailed(AppError):
    code = "CHECKOUT_FAILED"
    message = "checkout failed"
    status_code = 500


class CartUnavailable(AppError):
    code = "CART_UNAVAILABLE"
    message = "cart is temporarily unavailable"
    status_code = 503
