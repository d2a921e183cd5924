"""The checkout pipeline behind ``POST /orders``.

verify lines -> price (coupon, shipping, tax) -> reconcile client total ->
initiate payment -> store order and take stock -> clear cart, publish, email.

Every check that can reject the order runs before the payment gateway is
called, and nothing is written until the gateway (if any) has acknowledged.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from eshop.checkout.coupons import CouponValidator
from eshop.checkout.pricing import PricingRules
from eshop.checkout.totals import calculate_totals, reconcile
from eshop.checkout.verifier import CartVerifier
from eshop.core.errors import CheckoutError
from eshop.db.models import Order
from eshop.orders.materializer import OrderMaterializer, generate_order_number, get_or_create_customer
from eshop.payments.mpesa import MpesaClient
from eshop.payments.strategies import OrderDraft, get_strategy

logger = logging.getLogger(__name__)


@dataclass
class CheckoutRequest:
    user_email: str
    items: List[Dict[str, Any]]
    shipping_address: Dict[str, Any]
    payment_method: str
    shipping_method: str
    total_amount: float
    billing_address: Optional[Dict[str, Any]] = None
    location: Optional[str] = None
    coupon_code: Optional[str] = None
    phone_number: Optional[str] = None
    customer_name: str = ""

    @property
    def resolved_location(self) -> str:
        return self.location or self.shipping_address.get("state") or ""


@dataclass
class CheckoutResult:
    order: Order
    gateway_response: Dict[str, Any]


def place_order(db: Session, req: CheckoutRequest, gateway: Optional[MpesaClient] = None) -> CheckoutResult:
    try:
        return _place_order(db, req, gateway)
    except CheckoutError as e:
        logger.info("Checkout rejected for %s: %s (%s)", req.user_email, e.code, e.message)
        raise


def _place_order(db: Session, req: CheckoutRequest, gateway: Optional[MpesaClient]) -> CheckoutResult:
    strategy = get_strategy(req.payment_method, gateway)
    phone = strategy.prepare_phone(req.phone_number)

    lines = CartVerifier(db).verify_lines(req.items)
    config = PricingRules(db).get_config(req.resolved_location)

    coupon = None
    discount = 0.0
    if req.coupon_code:
        subtotal = sum(l.line_total for l in lines)
        coupon = CouponValidator(db).validate(req.coupon_code, subtotal)
        discount = coupon.discount_amount

    totals = calculate_totals(lines, config, req.shipping_method, discount=discount)
    reconcile(totals, req.total_amount)

    order_number = generate_order_number()
    outcome = strategy.initiate(OrderDraft(
        order_number=order_number,
        amount=totals.total,
        phone_number=phone,
        description=f"Order {order_number}",
    ))

    customer = get_or_create_customer(db, req.user_email, req.customer_name)
    materializer = OrderMaterializer(db)
    try:
        order = materializer.persist(
            order_number=order_number,
            customer=customer,
            lines=lines,
            totals=totals,
            strategy=strategy,
            outcome=outcome,
            shipping_address=req.shipping_address,
            billing_address=req.billing_address,
            shipping_method=req.shipping_method,
            location=req.resolved_location,
            coupon=coupon,
            phone_number=phone,
        )
    except CheckoutError as e:
        if not strategy.settles_immediately:
            logger.error(
                "Order %s rolled back after M-Pesa acknowledged it (MerchantRequestID=%s): %s",
                order_number, outcome.merchant_request_id, e.code,
            )
        raise
    materializer.after_commit(order, customer)
    return CheckoutResult(order=order, gateway_response=outcome.gateway_response)
