import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from eshop.api.deps import get_db, get_gateway
from eshop.api.schemas import StkPushRequest
from eshop.core.auth import require_admin
from eshop.core.config import settings
from eshop.core.errors import InvalidCallbackSignature, PaymentProcessingFailed
from eshop.orders.lifecycle import reconcile_payment
from eshop.payments.mpesa import MpesaClient, MpesaError, normalize_phone, validate_callback

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/callback")
def stk_callback(body: dict, x_callback_signature: Optional[str] = Header(default=None),
                 db: Session = Depends(get_db)):
    if settings.MPESA_VALIDATE_CALLBACKS and not validate_callback(body, x_callback_signature):
        logger.warning("Rejected STK callback with bad signature")
        raise InvalidCallbackSignature()
    order = reconcile_payment(db, body)
    if order is None:
        return JSONResponse({"success": False, "message": "Order not found"}, status_code=404)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}

@router.post("/stk-push")
def stk_push(payload: StkPushRequest, _=Depends(require_admin), gateway: MpesaClient = Depends(get_gateway)):
    phone = normalize_phone(payload.phone)
    try:
        resp = gateway.stk_push(phone, payload.amount, payload.reference, payload.description)
    except MpesaError as e:
        raise PaymentProcessingFailed(str(e)) from e
    return {"success": True, "data": resp}
