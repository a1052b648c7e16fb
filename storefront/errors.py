"""Checkout failure taxonomy.

Every stage of the checkout workflow that can abort the request raises one of
these. Each carries a machine-readable ``code``, the HTTP status the API
answers with, and optional ``details`` naming the field or product involved.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    code = "CHECKOUT_FAILED"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ----------------------------------------------------------------------
# Validation errors (client-caused, no side effects)
# ----------------------------------------------------------------------
class CheckoutValidationError(CheckoutError):
    code = "VALIDATION_ERROR"
    http_status = 400


class EmptyCart(CheckoutValidationError):
    code = "EMPTY_CART"


class MissingField(CheckoutValidationError):
    code = "MISSING_FIELD"


class IncompleteAddress(CheckoutValidationError):
    code = "INCOMPLETE_ADDRESS"


class InvalidCartLine(CheckoutValidationError):
    code = "INVALID_CART_LINE"


class InvalidQuantity(CheckoutValidationError):
    code = "INVALID_QUANTITY"


class ProductNotFound(CheckoutValidationError):
    code = "PRODUCT_NOT_FOUND"


class VariantNotFound(CheckoutValidationError):
    code = "VARIANT_NOT_FOUND"


class InsufficientStock(CheckoutValidationError):
    code = "INSUFFICIENT_STOCK"


# ----------------------------------------------------------------------
# Payment errors (abort before anything is persisted)
# ----------------------------------------------------------------------
class PaymentError(CheckoutError):
    code = "PAYMENT_ERROR"
    http_status = 400


class PaymentAuthFailed(PaymentError):
    code = "PAYMENT_AUTH_FAILED"
    http_status = 500


class PaymentNotFound(PaymentError):
    code = "PAYMENT_NOT_FOUND"


class PaymentNotCompleted(PaymentError):
    code = "PAYMENT_NOT_COMPLETED"


class PaymentAmountMismatch(PaymentError):
    code = "PAYMENT_AMOUNT_MISMATCH"


class PaymentProviderError(PaymentError):
    code = "PAYMENT_PROVIDER_ERROR"
    http_status = 502


class PaymentVerificationTimeout(PaymentError):
    code = "PAYMENT_VERIFICATION_TIMEOUT"
    http_status = 504


# ----------------------------------------------------------------------
# Persistence errors
# ----------------------------------------------------------------------
class PersistenceError(CheckoutError):
    code = "PERSISTENCE_ERROR"
    http_status = 500


class OrderPersistFailed(PersistenceError):
    code = "ORDER_PERSIST_FAILED"


class OrderNumberConflict(OrderPersistFailed):
    code = "ORDER_NUMBER_CONFLICT"
    http_status = 409


class OrderItemsPersistFailed(PersistenceError):
    code = "ORDER_ITEMS_PERSIST_FAILED"
