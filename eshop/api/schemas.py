from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from eshop.db.models import Coupon, Order, PricingConfig


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- cart ---

class CartItemAdd(CamelModel):
    product_id: int
    quantity: int = Field(ge=1)
    variant: Optional[str] = None

class CartItemUpdate(CamelModel):
    quantity: int = Field(ge=0)

class CartLineRead(CamelModel):
    product_id: int
    quantity: int
    variant: Optional[str] = None

class CartRead(CamelModel):
    items: List[CartLineRead] = []


# --- checkout ---

class LocationRequest(CamelModel):
    location: str = Field(min_length=1)

class TaxRequest(CamelModel):
    location: str = Field(min_length=1)
    subtotal: float = Field(ge=0)

class CouponRequest(CamelModel):
    code: str = Field(min_length=1)
    cart_total: float = Field(ge=0)

class ShippingFeeIn(CamelModel):
    method: str
    fee: float = Field(ge=0)

class PaymentFeeIn(CamelModel):
    method: str
    fee: float = Field(ge=0)

class TaxTierIn(CamelModel):
    min: float = Field(ge=0)
    max: Optional[float] = None
    rate: float

class FeesAndRatesIn(CamelModel):
    location: str = Field(min_length=1)
    shipping_fees: List[ShippingFeeIn] = []
    tax_tiers: List[TaxTierIn] = []
    payment_fees: List[PaymentFeeIn] = []

class CouponCreate(CamelModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = ""
    description: str = ""
    discount_type: str = Field(pattern="^(percentage|fixed)$")
    discount_value: float = Field(gt=0)
    min_amount: float = Field(default=0, ge=0)
    max_discount: Optional[float] = Field(default=None, gt=0)
    active: bool = True
    start_date: datetime
    end_date: datetime
    max_uses: Optional[int] = Field(default=None, ge=1)


# --- orders ---

class Address(CamelModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    phone: str = ""
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = Field(min_length=1)

class OrderItemIn(CamelModel):
    product: int
    quantity: int = Field(ge=1)
    variant: Optional[str] = None

class AppliedCouponIn(CamelModel):
    code: str = Field(min_length=1)

class CreateOrder(CamelModel):
    items: List[OrderItemIn] = Field(min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: str
    shipping_method: str
    total_amount: float = Field(ge=0)
    location: Optional[str] = None
    applied_coupon: Optional[AppliedCouponIn] = None
    phone_number: Optional[str] = None

class StatusUpdate(CamelModel):
    status: str
    tracking_number: Optional[str] = None
    note: Optional[str] = None

class StkPushRequest(CamelModel):
    phone: str
    amount: float = Field(gt=0)
    reference: str = "EShop"
    description: str = "Online purchase"


# --- serializers ---

def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None

def serialize_config(cfg: PricingConfig) -> dict:
    return {
        "location": cfg.location,
        "shippingFees": [{"method": f.method, "fee": f.fee} for f in cfg.shipping_fees],
        "taxTiers": [{"min": t.min_amount, "max": t.max_amount, "rate": t.rate} for t in cfg.tax_tiers],
        "paymentFees": [{"method": f.method, "fee": f.fee} for f in cfg.payment_fees],
    }

def serialize_coupon(c: Coupon, full: bool = False) -> dict:
    out = {
        "code": c.code,
        "name": c.name,
        "type": c.discount_type,
        "value": c.discount_value,
        "description": c.description,
    }
    if full:
        out.update({
            "minAmount": c.min_amount,
            "maxDiscount": c.max_discount,
            "active": c.active,
            "startDate": _iso(c.start_date),
            "endDate": _iso(c.end_date),
            "maxUses": c.max_uses,
            "usedCount": c.used_count,
        })
    return out

def serialize_item(it) -> dict:
    return {
        "product": it.product_id,
        "title": it.title,
        "image": it.image,
        "price": it.unit_price,
        "quantity": it.quantity,
        "variant": it.variant,
        "sku": it.sku,
    }

def serialize_order(o: Order) -> dict:
    return {
        "id": o.id,
        "orderNumber": o.order_number,
        "user": o.user_email,
        "status": o.status,
        "items": [serialize_item(it) for it in o.items],
        "shippingAddress": o.shipping_address,
        "billingAddress": o.billing_address,
        "paymentInfo": {
            "method": o.payment_method,
            "status": o.payment_status,
            "transactionId": o.transaction_id,
            "phoneNumber": o.phone_number,
            "merchantRequestId": o.merchant_request_id,
            "checkoutRequestId": o.checkout_request_id,
            "mpesaReceiptNumber": o.mpesa_receipt_number,
            "failureReason": o.failure_reason,
            "paidAt": _iso(o.paid_at),
        },
        "pricing": {
            "subtotal": o.subtotal,
            "discount": o.discount,
            "tax": o.tax,
            "taxRate": o.tax_rate,
            "shipping": o.shipping,
            "total": o.total,
            "currency": o.currency,
            "couponCode": o.coupon_code,
        },
        "shippingInfo": {
            "method": o.shipping_method,
            "cost": o.shipping,
            "estimatedDelivery": _iso(o.estimated_delivery),
            "trackingNumber": o.tracking_number,
        },
        "statusHistory": [
            {"status": ev.status, "timestamp": _iso(ev.created_at), "note": ev.note}
            for ev in o.status_history
        ],
        "createdAt": _iso(o.created_at),
        "deliveredAt": _iso(o.delivered_at),
        "cancelledAt": _iso(o.cancelled_at),
    }
