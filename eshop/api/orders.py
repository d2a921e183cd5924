import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from eshop.api.deps import get_db, get_gateway
from eshop.api.schemas import CreateOrder, StatusUpdate, serialize_item, serialize_order
from eshop.core.auth import get_current_identity, is_admin, require_admin
from eshop.core.errors import NotOrderOwner, OrderNotFound
from eshop.db.models import Order, naive_utc
from eshop.orders import lifecycle
from eshop.orders.service import CheckoutRequest, place_order
from eshop.payments.mpesa import MpesaClient

router = APIRouter()

def _load_order(db: Session, order_id: int, identity: dict) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise OrderNotFound(order_id)
    if order.user_email != identity.get("sub") and not is_admin(identity):
        raise NotOrderOwner()
    return order

@router.post("", status_code=201)
def create_order(payload: CreateOrder, identity: dict = Depends(get_current_identity),
                 db: Session = Depends(get_db), gateway: MpesaClient = Depends(get_gateway)):
    req = CheckoutRequest(
        user_email=identity.get("sub"),
        customer_name=identity.get("name", ""),
        items=[{"product_id": it.product, "quantity": it.quantity, "variant": it.variant} for it in payload.items],
        shipping_address=payload.shipping_address.model_dump(mode="json", by_alias=True),
        billing_address=(payload.billing_address.model_dump(mode="json", by_alias=True)
                         if payload.billing_address else None),
        payment_method=payload.payment_method,
        shipping_method=payload.shipping_method,
        total_amount=payload.total_amount,
        location=payload.location,
        coupon_code=payload.applied_coupon.code if payload.applied_coupon else None,
        phone_number=payload.phone_number,
    )
    result = place_order(db, req, gateway)
    return {"success": True, "order": serialize_order(result.order), "payment": result.gateway_response}

def _created_between(start_date: Optional[datetime], end_date: Optional[datetime]) -> list:
    conds = []
    if start_date:
        conds.append(Order.created_at >= naive_utc(start_date))
    if end_date:
        conds.append(Order.created_at <= naive_utc(end_date))
    return conds

@router.get("")
def list_orders(status: Optional[str] = None,
                payment_status: Optional[str] = Query(None, alias="paymentStatus"),
                user: Optional[str] = Query(None, alias="userId"),
                start_date: Optional[datetime] = Query(None, alias="startDate"),
                end_date: Optional[datetime] = Query(None, alias="endDate"),
                page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    stmt = select(Order)
    # admins see every customer's orders; userId is the customer's email
    if not is_admin(identity):
        stmt = stmt.where(Order.user_email == identity.get("sub"))
    elif user:
        stmt = stmt.where(Order.user_email == user)
    if status and status != "all":
        stmt = stmt.where(Order.status == status)
    if payment_status:
        stmt = stmt.where(Order.payment_status == payment_status)
    stmt = stmt.where(*_created_between(start_date, end_date))
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return {
        "success": True,
        "orders": [serialize_order(o) for o in rows],
        "pagination": {"page": page, "pages": math.ceil(total / limit), "total": total, "limit": limit},
    }

@router.get("/stats/overview")
def order_stats(start_date: Optional[datetime] = Query(None, alias="startDate"),
                end_date: Optional[datetime] = Query(None, alias="endDate"),
                _=Depends(require_admin), db: Session = Depends(get_db)):
    conds = _created_between(start_date, end_date)
    count, revenue = db.execute(
        select(func.count(Order.id), func.coalesce(func.sum(Order.total), 0.0)).where(*conds)
    ).one()
    by_status = dict(db.execute(
        select(Order.status, func.count(Order.id)).where(*conds).group_by(Order.status)
    ).all())
    stats = {
        "totalOrders": count,
        "totalRevenue": round(revenue, 2),
        "averageOrderValue": round(revenue / count, 2) if count else 0,
    }
    for s in ("pending", "processing", "shipped", "delivered", "cancelled"):
        stats[f"{s}Orders"] = by_status.get(s, 0)
    return {"success": True, "stats": stats}

@router.get("/{order_id}")
def get_order(order_id: int, identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    return {"success": True, "order": serialize_order(_load_order(db, order_id, identity))}

@router.put("/{order_id}/cancel")
def cancel_order(order_id: int, identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    order = lifecycle.cancel_order(db, _load_order(db, order_id, identity))
    return {"success": True, "order": serialize_order(order)}

@router.post("/{order_id}/reorder")
def reorder(order_id: int, identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    order = _load_order(db, order_id, identity)
    return {"success": True, "items": [serialize_item(it) for it in order.items]}

@router.post("/{order_id}")
@router.put("/{order_id}/status")
def update_order_status(order_id: int, payload: StatusUpdate, _=Depends(require_admin),
                        db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    if not order:
        raise OrderNotFound(order_id)
    order = lifecycle.update_status(db, order, payload.status, payload.tracking_number, payload.note)
    return {"success": True, "order": serialize_order(order)}
