import logging
import smtplib
from email.mime.text import MIMEText
from eshop.core.config import settings

logger = logging.getLogger(__name__)

def send_email(to: str, subject: str, body: str):
    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as s:
        s.sendmail(settings.FROM_EMAIL, [to], msg.as_string())

def notify(to: str, subject: str, body: str) -> bool:
    """Send without letting delivery failures reach the caller."""
    if not to:
        return False
    try:
        send_email(to, subject, body)
        return True
    except Exception:
        logger.exception("Failed to send '%s' email to %s", subject, to)
        return False

def _money(order, amount: float) -> str:
    return f"{order.currency} {amount:,.2f}"

def send_order_confirmation(order, name: str = ""):
    lines = [f"Dear {name or order.user_email},", ""]
    lines.append(f"Thank you for your order! Your order #{order.order_number} has been received.")
    lines.append("")
    for it in order.items:
        lines.append(f"- {it.title} x{it.quantity} ({_money(order, it.unit_price)} each)")
    lines.append("")
    if order.discount:
        lines.append(f"Discount: -{_money(order, order.discount)}")
    lines.append(f"Shipping: {_money(order, order.shipping)}")
    lines.append(f"Tax: {_money(order, order.tax)}")
    lines.append(f"Order Total: {_money(order, order.total)}")
    if order.payment_method == "mpesa":
        lines += ["", f"Complete the M-Pesa prompt sent to {order.phone_number} to pay for this order."]
    lines += ["", "We'll send you another email when your order ships."]
    return notify(order.user_email, f"Order Confirmation - {order.order_number}", "\n".join(lines))

def send_status_update(order):
    body = f"Your order #{order.order_number} status has been updated to: {order.status.upper()}"
    if order.tracking_number:
        body += f"\nTracking Number: {order.tracking_number}"
    return notify(order.user_email, f"Order Update - {order.order_number}", body)

def send_payment_received(order):
    body = (f"Payment of {_money(order, order.total)} for order #{order.order_number} was received."
            f"\nM-Pesa receipt: {order.mpesa_receipt_number or 'N/A'}")
    return notify(order.user_email, f"Payment Received - {order.order_number}", body)

def send_payment_failed(order):
    body = (f"Payment for order #{order.order_number} did not go through "
            f"({order.failure_reason or 'no reason given'}). The order has been cancelled.")
    return notify(order.user_email, f"Payment Failed - {order.order_number}", body)
