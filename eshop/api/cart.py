
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from eshop.api.deps import get_db
from eshop.api.schemas import CartItemAdd, CartItemUpdate, CartRead
from eshop.core.auth import get_current_identity
from eshop.core.errors import CartLineNotFound, ProductNotFound
from eshop.db.models import Product
from eshop.store import cart_store

router = APIRouter()

def _cart(email: str) -> dict:
    return {"items": cart_store.get_lines(email)}

@router.get("", response_model=CartRead)
def get_my_cart(identity: dict = Depends(get_current_identity)):
    return _cart(identity.get("sub"))

@router.post("/items", response_model=CartRead, status_code=201)
def add_item(payload: CartItemAdd, identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    email = identity.get("sub")
    product = db.get(Product, payload.product_id)
    if not product or not product.active:
        raise ProductNotFound(payload.product_id)
    existing = cart_store.get_line(email, payload.product_id, payload.variant)
    qty = payload.quantity + (existing["quantity"] if existing else 0)
    cart_store.put_line(email, payload.product_id, qty, payload.variant)
    return _cart(email)

@router.patch("/items/{product_id}", response_model=CartRead)
def update_item(product_id: int, payload: CartItemUpdate, variant: Optional[str] = None,
                identity: dict = Depends(get_current_identity)):
    email = identity.get("sub")
    if payload.quantity == 0:
        cart_store.delete_line(email, product_id, variant)
        return _cart(email)
    if not cart_store.get_line(email, product_id, variant):
        raise CartLineNotFound(product_id, variant)
    cart_store.put_line(email, product_id, payload.quantity, variant)
    return _cart(email)

@router.delete("/items/{product_id}", response_model=CartRead)
def remove_item(product_id: int, variant: Optional[str] = None, identity: dict = Depends(get_current_identity)):
    email = identity.get("sub")
    cart_store.delete_line(email, product_id, variant)
    return _cart(email)

@router.post("/clear", response_model=CartRead)
def clear(identity: dict = Depends(get_current_identity)):
    email = identity.get("sub")
    cart_store.clear_cart(email)
    return _cart(email)
