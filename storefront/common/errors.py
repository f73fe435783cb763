"""
Error taxonomy shared by the order engine, the catalog and the HTTP layer.

Every business failure is a StoreError carrying the HTTP status it maps to and
a message that is safe to show to the shopper. Unexpected failures never reach
the client verbatim: the app logs them and answers with InternalError's text.
"""
import logging
from typing import Optional

from quart import Quart, jsonify
from werkzeug.exceptions import HTTPException

_logger = logging.getLogger(__name__)


class StoreError(Exception):
    status_code = 500
    reason = "error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    def default_message(self) -> str:
        return "Unexpected error"

    def to_dict(self) -> dict:
        return {"status": "error", "message": self.message}


class ValidationError(StoreError):
    status_code = 400
    reason = "validation"

    def default_message(self) -> str:
        return "Invalid request"


class Unauthorized(StoreError):
    status_code = 401
    reason = "unauthorized"

    def default_message(self) -> str:
        return "Access token is required"


class Forbidden(StoreError):
    status_code = 403
    reason = "forbidden"

    def default_message(self) -> str:
        return "Insufficient permissions"


class NotFound(StoreError):
    status_code = 404
    reason = "not_found"

    def default_message(self) -> str:
        return "Resource not found"


class OrderNotFound(NotFound):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFound(NotFound):
    reason = "product_not_found"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class InsufficientStock(StoreError):
    status_code = 409
    reason = "insufficient_stock"

    def __init__(self, product_id: int, name: str, requested: int, available: int):
        self.product_id = product_id
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {name} (product {product_id}): "
            f"requested {requested}, available {available}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["product_id"] = self.product_id
        data["available"] = self.available
        return data


class InvalidTransition(StoreError):
    status_code = 409
    reason = "invalid_transition"

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change order status from {current} to {requested}")


class ProductInUse(StoreError):
    status_code = 409
    reason = "product_in_use"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is referenced by existing orders; archive it instead of deleting"
        )


class InternalError(StoreError):
    status_code = 500
    reason = "internal"

    def default_message(self) -> str:
        return "Internal server error"


def register_error_handlers(app: Quart) -> None:
    @app.errorhandler(StoreError)
    async def handle_store_error(error: StoreError):
        if error.status_code >= 500:
            _logger.error("Store error | reason=%s message=%s", error.reason, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    async def handle_http_error(error: HTTPException):
        return jsonify({"status": "error", "message": error.description}), error.code

    @app.errorhandler(Exception)
    async def handle_unexpected(error: Exception):
        _logger.exception("Unhandled error: %s", error)
        return jsonify(InternalError().to_dict()), InternalError.status_code
