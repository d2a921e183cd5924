from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from eshop.core.errors import CartContainsInvalidItems, CartEmpty
from eshop.db.models import Product
from eshop.store import cart_store


@dataclass(frozen=True)
class VerifiedLine:
    """A cart line checked against the live product, priced at the current effective price."""

    product_id: int
    title: str
    image: str
    sku: str
    unit_price: float
    quantity: int
    variant: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity

    def as_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "title": self.title,
            "image": self.image,
            "sku": self.sku,
            "price": self.unit_price,
            "quantity": self.quantity,
            "variant": self.variant,
        }


class CartVerifier:
    def __init__(self, db: Session):
        self.db = db

    def verify(self, user: str) -> List[VerifiedLine]:
        lines = cart_store.get_lines(user)
        if not lines:
            raise CartEmpty()
        return self.verify_lines(lines)

    def verify_lines(self, lines: Sequence[Dict[str, Any]]) -> List[VerifiedLine]:
        """All-or-nothing: one bad line fails the whole set with every bad line listed."""
        if not lines:
            raise CartEmpty()
        ids = {int(l["product_id"]) for l in lines}
        products = {
            p.id: p for p in self.db.execute(select(Product).where(Product.id.in_(ids))).scalars()
        }
        # the same product can appear once per variant; stock covers them together
        wanted = Counter()
        for l in lines:
            wanted[int(l["product_id"])] += int(l["quantity"])

        verified, invalid = [], []
        for l in lines:
            pid, qty = int(l["product_id"]), int(l["quantity"])
            product = products.get(pid)
            if product is None or not product.active:
                invalid.append({"productId": pid, "quantity": qty, "error": "Product not found"})
                continue
            if product.stock < wanted[pid]:
                invalid.append({
                    "productId": pid,
                    "title": product.title,
                    "quantity": qty,
                    "available": product.stock,
                    "error": "Insufficient stock",
                })
                continue
            verified.append(VerifiedLine(
                product_id=pid,
                title=product.title,
                image=product.image_url or "",
                sku=product.sku,
                unit_price=product.effective_price,
                quantity=qty,
                variant=l.get("variant"),
            ))
        if invalid:
            raise CartContainsInvalidItems(invalid)
        return verified
