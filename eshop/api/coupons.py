from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from eshop.api.deps import get_db
from eshop.api.schemas import CouponCreate, serialize_coupon
from eshop.core.auth import require_admin
from eshop.core.errors import CouponExists, ValidationFailed
from eshop.db.models import Coupon, naive_utc

router = APIRouter()

@router.post("", status_code=201)
def create_coupon(payload: CouponCreate, _=Depends(require_admin), db: Session = Depends(get_db)):
    if payload.discount_type == "percentage" and payload.discount_value > 100:
        raise ValidationFailed("Percentage discount cannot exceed 100")
    if db.execute(select(Coupon).where(Coupon.code == payload.code)).scalar_one_or_none():
        raise CouponExists(payload.code)
    fields = payload.model_dump()
    fields["start_date"] = naive_utc(fields["start_date"])
    fields["end_date"] = naive_utc(fields["end_date"])
    if fields["end_date"] <= fields["start_date"]:
        raise ValidationFailed("endDate must be after startDate")
    obj = Coupon(**fields, used_count=0)
    db.add(obj); db.commit(); db.refresh(obj)
    return serialize_coupon(obj, full=True)

@router.get("")
def list_coupons(_=Depends(require_admin), db: Session = Depends(get_db)):
    return [serialize_coupon(c, full=True) for c in db.execute(select(Coupon).order_by(Coupon.code)).scalars()]
