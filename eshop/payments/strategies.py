"""Payment strategies for checkout.

A strategy is either an ``ImmediatePayment`` (the order is final as soon as it is
stored) or a ``PushPayment`` (the gateway must acknowledge a push request before
the order may be stored, and the result arrives later via callback). Checkout
branches on ``settles_immediately`` and nothing else.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from eshop.core.errors import PaymentProcessingFailed, UnsupportedPaymentMethod, ValidationFailed
from eshop.payments.mpesa import MpesaClient, MpesaError, normalize_phone

logger = logging.getLogger(__name__)

CASH_ON_DELIVERY = "cash_on_delivery"
CARD = "card"
MPESA = "mpesa"
PAYMENT_METHODS = (CASH_ON_DELIVERY, CARD, MPESA)


@dataclass(frozen=True)
class OrderDraft:
    order_number: str
    amount: float
    phone_number: Optional[str] = None
    description: str = "Online purchase"


@dataclass(frozen=True)
class PaymentOutcome:
    payment_status: str = "pending"
    transaction_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    gateway_response: Dict[str, Any] = field(default_factory=dict)


class PaymentStrategy:
    method: str
    settles_immediately: bool = True
    requires_phone: bool = False

    def prepare_phone(self, phone: Optional[str]) -> Optional[str]:
        return None

    def initiate(self, draft: OrderDraft) -> PaymentOutcome:
        raise NotImplementedError


class ImmediatePayment(PaymentStrategy):
    """Cash on delivery and card-on-delivery: nothing to call, payment stays pending."""

    def __init__(self, method: str):
        self.method = method

    def initiate(self, draft: OrderDraft) -> PaymentOutcome:
        return PaymentOutcome(payment_status="pending")


class PushPayment(PaymentStrategy):
    method = MPESA
    settles_immediately = False
    requires_phone = True

    def __init__(self, gateway: MpesaClient):
        self.gateway = gateway

    def prepare_phone(self, phone: Optional[str]) -> str:
        if not phone:
            raise ValidationFailed("phoneNumber is required for M-Pesa payments", {"field": "phoneNumber"})
        return normalize_phone(phone)

    def initiate(self, draft: OrderDraft) -> PaymentOutcome:
        try:
            resp = self.gateway.stk_push(draft.phone_number, draft.amount, draft.order_number, draft.description)
        except MpesaError as e:
            logger.warning("M-Pesa initiation failed for %s: %s", draft.order_number, e)
            raise PaymentProcessingFailed(str(e)) from e
        merchant_id = resp.get("MerchantRequestID")
        if not merchant_id:
            reason = resp.get("errorMessage") or resp.get("ResponseDescription") or "No MerchantRequestID returned"
            logger.warning("M-Pesa did not acknowledge %s: %s", draft.order_number, reason)
            raise PaymentProcessingFailed(reason)
        return PaymentOutcome(
            payment_status="pending",
            merchant_request_id=merchant_id,
            checkout_request_id=resp.get("CheckoutRequestID"),
            gateway_response=resp,
        )


def get_strategy(method: str, gateway: Optional[MpesaClient] = None) -> PaymentStrategy:
    if method in (CASH_ON_DELIVERY, CARD):
        return ImmediatePayment(method)
    if method == MPESA:
        return PushPayment(gateway or MpesaClient.from_settings())
    raise UnsupportedPaymentMethod(method)
