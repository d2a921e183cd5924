import logging
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from eshop.checkout.coupons import AppliedCoupon, CouponValidator
from eshop.checkout.totals import OrderTotals
from eshop.checkout.verifier import VerifiedLine
from eshop.core.config import settings
from eshop.core.errors import CheckoutError, InsufficientStock
from eshop.db.models import Customer, Order, OrderItem, OrderStatusEvent, Product, utcnow
from eshop.kafka.producer import emit, order_event
from eshop.notifications import mailer
from eshop.payments.strategies import PaymentOutcome, PaymentStrategy
from eshop.store import cart_store

logger = logging.getLogger(__name__)

_ORDER_SUFFIX_CHARS = string.ascii_uppercase + string.digits

LOYALTY_TIERS = ((5000, "platinum"), (2000, "gold"), (1000, "silver"))

DELIVERY_DAYS = {"standard": 5, "express": 2, "overnight": 1}


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """ORD-<epoch-millis>-<9 random uppercase chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_CHARS) for _ in range(9))
    return f"ORD-{now_ms}-{suffix}"


def loyalty_tier(total_spent: float) -> str:
    for threshold, tier in LOYALTY_TIERS:
        if total_spent >= threshold:
            return tier
    return "bronze"


def estimate_delivery(method: str, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=DELIVERY_DAYS.get(method, 7))


def get_or_create_customer(db: Session, email: str, name: str = "") -> Customer:
    customer = db.execute(select(Customer).where(Customer.email == email)).scalar_one_or_none()
    if customer is None:
        customer = Customer(email=email, name=name, order_count=0, total_spent=0.0, loyalty="bronze")
        db.add(customer)
        db.flush()
    return customer


def record_spend(customer: Customer, amount: float):
    customer.order_count = (customer.order_count or 0) + 1
    customer.total_spent = round((customer.total_spent or 0) + amount, 2)
    customer.loyalty = loyalty_tier(customer.total_spent)


def decrement_stock(db: Session, product_id: int, quantity: int):
    """Single conditional UPDATE; concurrent checkouts cannot drive stock negative."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientStock(product_id, quantity)


def restore_stock(db: Session, order: Order):
    for it in order.items:
        db.execute(
            update(Product)
            .where(Product.id == it.product_id)
            .values(stock=Product.stock + it.quantity)
            .execution_options(synchronize_session=False)
        )


def append_status(order: Order, status: str, note: str = ""):
    order.status = status
    order.status_history.append(OrderStatusEvent(status=status, note=note or f"Status changed to {status}"))


class OrderMaterializer:
    def __init__(self, db: Session):
        self.db = db

    def persist(
        self,
        *,
        order_number: str,
        customer: Customer,
        lines: Sequence[VerifiedLine],
        totals: OrderTotals,
        strategy: PaymentStrategy,
        outcome: PaymentOutcome,
        shipping_address: dict,
        billing_address: Optional[dict],
        shipping_method: str,
        location: str,
        coupon: Optional[AppliedCoupon] = None,
        phone_number: Optional[str] = None,
    ) -> Order:
        """Store the order, take the stock and count the coupon in one transaction."""
        order = Order(
            order_number=order_number,
            customer_id=customer.id,
            user_email=customer.email,
            status="pending",
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            location=location,
            payment_method=strategy.method,
            payment_status=outcome.payment_status,
            transaction_id=outcome.transaction_id,
            phone_number=phone_number,
            merchant_request_id=outcome.merchant_request_id,
            checkout_request_id=outcome.checkout_request_id,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            tax_rate=totals.tax_rate,
            shipping=totals.shipping,
            total=round(totals.total, 2),
            currency=settings.DEFAULT_CURRENCY,
            coupon_code=coupon.code if coupon else None,
            shipping_method=shipping_method,
            estimated_delivery=estimate_delivery(shipping_method),
        )
        order.items = [
            OrderItem(
                product_id=l.product_id,
                title=l.title,
                image=l.image,
                unit_price=l.unit_price,
                quantity=l.quantity,
                variant=l.variant,
                sku=l.sku,
            )
            for l in lines
        ]
        order.status_history.append(OrderStatusEvent(status="pending", note="Order placed"))
        try:
            self.db.add(order)
            self.db.flush()
            for l in lines:
                decrement_stock(self.db, l.product_id, l.quantity)
            if coupon:
                CouponValidator(self.db).redeem(coupon.coupon)
            if strategy.settles_immediately:
                record_spend(customer, order.total)
            self.db.commit()
        except CheckoutError:
            self.db.rollback()
            raise
        self.db.refresh(order)
        logger.info("Order %s stored (%s, total=%.2f)", order.order_number, order.payment_method, order.total)
        return order

    def after_commit(self, order: Order, customer: Customer):
        """Side effects that must never undo a stored order."""
        try:
            cart_store.clear_cart(customer.email)
        except Exception:
            logger.exception("Failed to clear cart for %s after order %s", customer.email, order.order_number)
        emit(
            settings.TOPIC_ORDER_EVENTS,
            key=str(order.id),
            value=order_event(
                "order.created",
                order,
                items=[{"product_id": it.product_id, "qty": it.quantity, "unit_price": it.unit_price}
                       for it in order.items],
            ),
        )
        mailer.send_order_confirmation(order, customer.name)
