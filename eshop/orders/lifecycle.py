"""Order state after checkout: user cancellation, admin status changes and
M-Pesa payment reconciliation."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from eshop.checkout.coupons import CouponValidator
from eshop.core.config import settings
from eshop.core.errors import CancellationNotAllowed, InvalidStatusTransition, ValidationFailed
from eshop.db.models import Customer, Order, utcnow
from eshop.kafka.producer import emit, order_event
from eshop.notifications import mailer
from eshop.orders.materializer import append_status, record_spend, restore_stock

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded")

TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": {"refunded"},
    "cancelled": set(),
    "refunded": set(),
}


def _cancel(db: Session, order: Order, note: str, now: Optional[datetime] = None):
    order.cancelled_at = now or utcnow()
    append_status(order, "cancelled", note)
    restore_stock(db, order)
    CouponValidator(db).release(order.coupon_code)


def cancel_order(db: Session, order: Order, now: Optional[datetime] = None) -> Order:
    now = now or utcnow()
    if order.status in ("shipped", "delivered"):
        raise CancellationNotAllowed("Cannot cancel order that has been shipped or delivered")
    if order.status in ("cancelled", "refunded"):
        raise CancellationNotAllowed(f"Order is already {order.status}")
    window = timedelta(minutes=settings.CANCEL_WINDOW_MINUTES)
    if now - order.created_at > window:
        raise CancellationNotAllowed(
            f"Orders can only be cancelled within {settings.CANCEL_WINDOW_MINUTES} minutes of placing them"
        )
    _cancel(db, order, "Order cancelled by customer", now)
    db.commit()
    db.refresh(order)
    logger.info("Order %s cancelled by customer", order.order_number)
    emit(settings.TOPIC_ORDER_EVENTS, key=str(order.id), value=order_event("order.cancelled", order))
    mailer.send_status_update(order)
    return order


def update_status(db: Session, order: Order, status: str, tracking_number: Optional[str] = None,
                  note: Optional[str] = None) -> Order:
    if status not in ORDER_STATUSES:
        raise ValidationFailed(f"Invalid order status: {status}", {"status": status})
    if status not in TRANSITIONS[order.status]:
        raise InvalidStatusTransition(order.status, status)
    if tracking_number:
        order.tracking_number = tracking_number
    if status == "cancelled":
        _cancel(db, order, note or "Order cancelled by admin")
    else:
        append_status(order, status, note or f"Order {status}")
        if status == "delivered":
            order.delivered_at = utcnow()
    db.commit()
    db.refresh(order)
    logger.info("Order %s moved to %s", order.order_number, status)
    emit(settings.TOPIC_ORDER_EVENTS, key=str(order.id), value=order_event("order.status_changed", order))
    mailer.send_status_update(order)
    return order


def _callback_metadata(result: Dict[str, Any]) -> Dict[str, Any]:
    items = (result.get("CallbackMetadata") or {}).get("Item") or []
    return {it.get("Name"): it.get("Value") for it in items if isinstance(it, dict)}


def reconcile_payment(db: Session, callback: Dict[str, Any]) -> Optional[Order]:
    """Apply an STK callback to its order. Returns None when no order matches.

    Callbacks for orders whose payment already left ``pending`` are ignored so
    Safaricom retries are harmless.
    """
    try:
        result = callback["Body"]["stkCallback"]
        merchant_id = result["MerchantRequestID"]
        checkout_id = result["CheckoutRequestID"]
        result_code = int(result["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationFailed("Malformed STK callback") from e

    order = db.execute(
        select(Order).where(
            Order.merchant_request_id == merchant_id,
            Order.checkout_request_id == checkout_id,
        )
    ).scalar_one_or_none()
    if order is None:
        logger.error("No order for STK callback %s/%s", merchant_id, checkout_id)
        return None
    if order.payment_status != "pending":
        logger.info("Ignoring repeated callback for %s (payment %s)", order.order_number, order.payment_status)
        return order

    if result_code == 0 and order.status in ("cancelled", "refunded"):
        meta = _callback_metadata(result)
        order.payment_status = "refund_due"
        order.paid_at = utcnow()
        order.mpesa_receipt_number = meta.get("MpesaReceiptNumber")
        order.transaction_id = order.mpesa_receipt_number
        db.commit()
        db.refresh(order)
        logger.error("Order %s was %s before M-Pesa payment %s arrived; refund required",
                     order.order_number, order.status, order.mpesa_receipt_number)
        emit(settings.TOPIC_PAYMENT_EVENTS, key=str(order.id),
             value=order_event("payment.refund_required", order, receipt=order.mpesa_receipt_number))
    elif result_code == 0:
        meta = _callback_metadata(result)
        order.payment_status = "paid"
        order.paid_at = utcnow()
        order.mpesa_receipt_number = meta.get("MpesaReceiptNumber")
        order.transaction_id = order.mpesa_receipt_number
        if order.status == "pending":
            append_status(order, "processing", "Payment received via M-Pesa")
        customer = db.get(Customer, order.customer_id)
        if customer is not None:
            record_spend(customer, order.total)
        db.commit()
        db.refresh(order)
        logger.info("Order %s paid (receipt %s)", order.order_number, order.mpesa_receipt_number)
        emit(settings.TOPIC_PAYMENT_EVENTS, key=str(order.id),
             value=order_event("payment.succeeded", order, receipt=order.mpesa_receipt_number))
        mailer.send_payment_received(order)
    else:
        order.payment_status = "failed"
        order.failure_reason = str(result.get("ResultDesc") or f"ResultCode {result_code}")[:255]
        if order.status not in ("cancelled", "refunded"):
            _cancel(db, order, f"Payment failed: {order.failure_reason}")
        db.commit()
        db.refresh(order)
        logger.info("Order %s payment failed: %s", order.order_number, order.failure_reason)
        emit(settings.TOPIC_PAYMENT_EVENTS, key=str(order.id),
             value=order_event("payment.failed", order, reason=order.failure_reason))
        mailer.send_payment_failed(order)
    return order
