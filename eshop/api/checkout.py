from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eshop.api.deps import get_db
from eshop.api.schemas import (
    CouponRequest,
    FeesAndRatesIn,
    LocationRequest,
    TaxRequest,
    serialize_config,
    serialize_coupon,
)
from eshop.checkout.coupons import CouponValidator
from eshop.checkout.pricing import PricingRules, compute_tax
from eshop.checkout.verifier import CartVerifier
from eshop.core.auth import get_current_identity, require_admin
from eshop.payments.strategies import PAYMENT_METHODS

router = APIRouter()

@router.get("/verify-cart")
def verify_cart(identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    lines = CartVerifier(db).verify(identity.get("sub"))
    return {"verifiedItems": [l.as_dict() for l in lines]}

@router.post("/shipping-options")
def shipping_options(payload: LocationRequest, identity: dict = Depends(get_current_identity),
                     db: Session = Depends(get_db)):
    cfg = PricingRules(db).get_config(payload.location)
    return {"shippingFees": serialize_config(cfg)["shippingFees"]}

@router.post("/calculate-tax")
def calculate_tax(payload: TaxRequest, identity: dict = Depends(get_current_identity),
                  db: Session = Depends(get_db)):
    cfg = PricingRules(db).get_config(payload.location)
    tax, rate = compute_tax(cfg, payload.subtotal)
    return {"tax": tax, "taxRate": rate}

@router.post("/validate-coupon")
def validate_coupon(payload: CouponRequest, identity: dict = Depends(get_current_identity),
                    db: Session = Depends(get_db)):
    applied = CouponValidator(db).validate(payload.code, payload.cart_total)
    return {
        "valid": True,
        "discountAmount": applied.discount_amount,
        "coupon": serialize_coupon(applied.coupon),
    }

@router.get("/payment-config")
def payment_config(identity: dict = Depends(get_current_identity)):
    return {"acceptedMethods": list(PAYMENT_METHODS)}

@router.post("/payment-options")
def payment_options(payload: LocationRequest, identity: dict = Depends(get_current_identity),
                    db: Session = Depends(get_db)):
    cfg = PricingRules(db).get_config(payload.location)
    return {"acceptedMethods": list(PAYMENT_METHODS), "paymentFees": serialize_config(cfg)["paymentFees"]}

# --- admin: fees and rates ---

@router.post("/fees-and-rates")
def upsert_fees(payload: FeesAndRatesIn, _=Depends(require_admin), db: Session = Depends(get_db)):
    cfg = PricingRules(db).upsert(
        payload.location,
        shipping_fees=[f.model_dump() for f in payload.shipping_fees],
        tax_tiers=[t.model_dump() for t in payload.tax_tiers],
        payment_fees=[f.model_dump() for f in payload.payment_fees],
    )
    return {"success": True, "data": serialize_config(cfg)}

@router.get("/fees-and-rates")
def list_fees(_=Depends(require_admin), db: Session = Depends(get_db)):
    return {"success": True, "data": [serialize_config(c) for c in PricingRules(db).list_configs()]}

@router.get("/fees-and-rates/{location}")
def get_fees(location: str, _=Depends(require_admin), db: Session = Depends(get_db)):
    return {"success": True, "data": serialize_config(PricingRules(db).get_config(location))}
