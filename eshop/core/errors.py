"""Checkout and order errors.

Every error carries a machine-readable ``code``, the HTTP status it maps to and
an ``extra`` dict with the offending values, so clients can react without
parsing messages.
"""

from typing import Any, Dict, List, Optional


class CheckoutError(Exception):
    """Base exception for all checkout and order errors."""

    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.message = message
        self.extra = extra or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message, **self.extra}


# --- input / validation ---

class ValidationFailed(CheckoutError):
    code = "validation_failed"


class InvalidPhoneNumber(CheckoutError):
    code = "invalid_phone_number"

    def __init__(self, phone: str):
        self.phone = phone
        super().__init__(f"Invalid M-Pesa phone number: {phone}", {"phoneNumber": phone})


# --- business rules ---

class CartEmpty(CheckoutError):
    code = "cart_empty"

    def __init__(self):
        super().__init__("Cart is empty")


class CartContainsInvalidItems(CheckoutError):
    """Raised when one or more lines reference a missing or under-stocked product."""

    code = "cart_contains_invalid_items"

    def __init__(self, items: List[Dict[str, Any]]):
        self.items = items
        super().__init__("Cart contains invalid items", {"invalidItems": items})


class InsufficientStock(CheckoutError):
    """Raised when an atomic stock decrement loses a race."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int):
        self.product_id = product_id
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}",
            {"productId": product_id, "requested": requested},
        )


class ShippingMethodUnavailable(CheckoutError):
    code = "shipping_method_unavailable"

    def __init__(self, method: str, location: str):
        super().__init__(
            f"Shipping method '{method}' is not available for {location}",
            {"shippingMethod": method, "location": location},
        )


class InvalidOrExpiredCoupon(CheckoutError):
    status_code = 404
    code = "invalid_or_expired_coupon"

    def __init__(self, code: str):
        super().__init__("Invalid or expired coupon", {"couponCode": code})


class MinimumAmountNotMet(CheckoutError):
    code = "minimum_amount_not_met"

    def __init__(self, min_amount: float):
        self.min_amount = min_amount
        super().__init__(f"Minimum order of {min_amount:g} required", {"minAmount": min_amount})


class UsageLimitReached(CheckoutError):
    code = "usage_limit_reached"

    def __init__(self, code: str):
        super().__init__("Coupon usage limit reached", {"couponCode": code})


class TotalAmountMismatch(CheckoutError):
    code = "total_amount_mismatch"

    def __init__(self, expected: float, received: float):
        self.expected = expected
        self.received = received
        super().__init__(
            "Total amount mismatch",
            {"expectedTotal": round(expected, 2), "receivedTotal": received},
        )


class UnsupportedPaymentMethod(CheckoutError):
    code = "unsupported_payment_method"

    def __init__(self, method: str):
        super().__init__(f"Unsupported payment method: {method}", {"paymentMethod": method})


class CancellationNotAllowed(CheckoutError):
    code = "cancellation_not_allowed"

    def __init__(self, reason: str):
        super().__init__(reason)


class InvalidStatusTransition(CheckoutError):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move order from {current} to {requested}",
            {"currentStatus": current, "requestedStatus": requested},
        )


# --- external dependencies ---

class PaymentProcessingFailed(CheckoutError):
    status_code = 502
    code = "payment_processing_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Payment processing failed", {"reason": reason})


class InvalidCallbackSignature(CheckoutError):
    status_code = 403
    code = "invalid_callback_signature"

    def __init__(self):
        super().__init__("Invalid signature")


# --- not found / access ---

class ProductNotFound(CheckoutError):
    status_code = 404
    code = "product_not_found"

    def __init__(self, product_id: int):
        super().__init__(f"Product not found: {product_id}", {"productId": product_id})


class ConfigNotFound(CheckoutError):
    """No pricing config exists for a location; checkout must not proceed."""

    status_code = 404
    code = "config_not_found"

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"No pricing config found for location: {location}", {"location": location})


class OrderNotFound(CheckoutError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, order_id: Any):
        super().__init__("Order not found", {"orderId": order_id})


class NotOrderOwner(CheckoutError):
    status_code = 403
    code = "not_order_owner"

    def __init__(self):
        super().__init__("Not authorized to access this order")


class CartLineNotFound(CheckoutError):
    status_code = 404
    code = "cart_line_not_found"

    def __init__(self, product_id: int, variant: Optional[str] = None):
        super().__init__("Item not in cart", {"productId": product_id, "variant": variant})


class CouponExists(CheckoutError):
    status_code = 409
    code = "coupon_exists"

    def __init__(self, code: str):
        super().__init__("Coupon code already exists", {"couponCode": code})
