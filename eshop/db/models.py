from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, Float, DateTime, ForeignKey, JSON
from datetime import datetime, timezone
from typing import Optional
from eshop.db.session import Base

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)

class Product(Base):
    __tablename__ = 'products'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(240), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    sale_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    image_url: Mapped[str] = mapped_column(String(1024), default='')
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def effective_price(self) -> float:
        return self.sale_price if self.sale_price else self.price

class Customer(Base):
    __tablename__ = 'customers'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default='')
    order_count: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[float] = mapped_column(Float, default=0.0)
    loyalty: Mapped[str] = mapped_column(String(16), default='bronze')

# --- pricing rules, one config per location ---

class PricingConfig(Base):
    __tablename__ = 'pricing_configs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    location: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    shipping_fees = relationship('ShippingFee', back_populates='config', cascade='all, delete-orphan', order_by='ShippingFee.id')
    tax_tiers = relationship('TaxTier', back_populates='config', cascade='all, delete-orphan', order_by='TaxTier.min_amount')
    payment_fees = relationship('PaymentFee', back_populates='config', cascade='all, delete-orphan', order_by='PaymentFee.id')

class ShippingFee(Base):
    __tablename__ = 'shipping_fees'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    config_id: Mapped[int] = mapped_column(ForeignKey('pricing_configs.id', ondelete='CASCADE'))
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    fee: Mapped[float] = mapped_column(Float, nullable=False)
    config = relationship('PricingConfig', back_populates='shipping_fees')

class TaxTier(Base):
    __tablename__ = 'tax_tiers'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    config_id: Mapped[int] = mapped_column(ForeignKey('pricing_configs.id', ondelete='CASCADE'))
    min_amount: Mapped[float] = mapped_column(Float, nullable=False)
    max_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # None = open-ended
    rate: Mapped[float] = mapped_column(Float, nullable=False)
    config = relationship('PricingConfig', back_populates='tax_tiers')

class PaymentFee(Base):
    __tablename__ = 'payment_fees'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    config_id: Mapped[int] = mapped_column(ForeignKey('pricing_configs.id', ondelete='CASCADE'))
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    fee: Mapped[float] = mapped_column(Float, nullable=False)
    config = relationship('PricingConfig', back_populates='payment_fees')

class Coupon(Base):
    __tablename__ = 'coupons'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), default='')
    description: Mapped[str] = mapped_column(Text, default='')
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)  # percentage | fixed
    discount_value: Mapped[float] = mapped_column(Float, nullable=False)
    min_amount: Mapped[float] = mapped_column(Float, default=0.0)
    max_discount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)

# --- orders ---

class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), index=True)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(32), default='pending', index=True)

    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    billing_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    location: Mapped[str] = mapped_column(String(120), default='')

    # paymentInfo
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), default='pending', index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    # pricing, frozen at checkout
    subtotal: Mapped[float] = mapped_column(Float, nullable=False)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    tax: Mapped[float] = mapped_column(Float, default=0.0)
    tax_rate: Mapped[float] = mapped_column(Float, default=0.0)
    shipping: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default='KES')
    coupon_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # shippingInfo
    shipping_method: Mapped[str] = mapped_column(String(64), nullable=False)
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    status_history = relationship('OrderStatusEvent', back_populates='order', cascade='all, delete-orphan', order_by='OrderStatusEvent.id')

class OrderItem(Base):
    __tablename__ = 'order_items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    product_id: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(240))
    image: Mapped[str] = mapped_column(String(1024), default='')
    unit_price: Mapped[float] = mapped_column(Float)
    quantity: Mapped[int] = mapped_column(Integer)
    variant: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sku: Mapped[str] = mapped_column(String(64), default='')
    order = relationship('Order', back_populates='items')

class OrderStatusEvent(Base):
    __tablename__ = 'order_status_events'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'), index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    note: Mapped[str] = mapped_column(String(255), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    order = relationship('Order', back_populates='status_history')
