import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from eshop.core.errors import InvalidOrExpiredCoupon, MinimumAmountNotMet, UsageLimitReached
from eshop.db.models import Coupon, utcnow

logger = logging.getLogger(__name__)

PERCENTAGE = "percentage"
FIXED = "fixed"


@dataclass(frozen=True)
class AppliedCoupon:
    coupon: Coupon
    discount_amount: float

    @property
    def code(self) -> str:
        return self.coupon.code


def compute_discount(coupon: Coupon, subtotal: float) -> float:
    if coupon.discount_type == PERCENTAGE:
        amount = subtotal * coupon.discount_value / 100
        if coupon.max_discount is not None:
            amount = min(amount, coupon.max_discount)
    else:
        # a fixed coupon never pushes the subtotal below zero
        amount = min(coupon.discount_value, subtotal)
    return round(amount, 2)


class CouponValidator:
    def __init__(self, db: Session):
        self.db = db

    def validate(self, code: str, cart_subtotal: float, now: Optional[datetime] = None) -> AppliedCoupon:
        now = now or utcnow()
        code = (code or "").strip()
        coupon = self.db.execute(
            select(Coupon).where(
                Coupon.code == code,
                Coupon.active.is_(True),
                Coupon.start_date <= now,
                Coupon.end_date >= now,
            )
        ).scalar_one_or_none()
        if coupon is None:
            raise InvalidOrExpiredCoupon(code)
        if coupon.min_amount and cart_subtotal < coupon.min_amount:
            raise MinimumAmountNotMet(coupon.min_amount)
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise UsageLimitReached(code)
        return AppliedCoupon(coupon=coupon, discount_amount=compute_discount(coupon, cart_subtotal))

    def redeem(self, coupon: Coupon):
        """Count one use. Runs inside the order transaction; the caller commits."""
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise UsageLimitReached(coupon.code)

    def release(self, code: Optional[str]):
        if not code:
            return
        self.db.execute(
            update(Coupon)
            .where(Coupon.code == code, Coupon.used_count > 0)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        logger.info("Released one use of coupon %s", code)
