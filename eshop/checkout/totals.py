import logging
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

from eshop.checkout.pricing import compute_tax, shipping_fee
from eshop.checkout.verifier import VerifiedLine
from eshop.core.config import settings
from eshop.core.errors import TotalAmountMismatch
from eshop.db.models import PricingConfig

logger = logging.getLogger(__name__)

FREE_SHIPPING = "Free Shipping"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    discount: float
    discounted_subtotal: float
    shipping: float
    tax: float
    tax_rate: float
    total: float

    def as_dict(self) -> dict:
        return asdict(self)


def calculate_totals(
    lines: Sequence[VerifiedLine],
    config: PricingConfig,
    shipping_method: str,
    discount: float = 0.0,
    free_shipping_threshold: Optional[float] = None,
) -> OrderTotals:
    if free_shipping_threshold is None:
        free_shipping_threshold = settings.FREE_SHIPPING_THRESHOLD

    subtotal = round(sum(l.line_total for l in lines), 2)
    discounted = round(subtotal - discount, 2)

    if shipping_method == FREE_SHIPPING and discounted >= free_shipping_threshold:
        shipping = 0.0
    else:
        shipping = shipping_fee(config, shipping_method)

    tax, rate = compute_tax(config, discounted)
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        discounted_subtotal=discounted,
        shipping=shipping,
        tax=tax,
        tax_rate=rate,
        total=discounted + shipping + tax,
    )


def reconcile(totals: OrderTotals, client_total: float, tolerance: Optional[float] = None):
    """Reject the order when the client's total drifts from ours by more than the tolerance."""
    if tolerance is None:
        tolerance = settings.TOTAL_TOLERANCE
    if abs(totals.total - client_total) > tolerance:
        logger.warning(
            "Order total mismatch: computed=%.2f client=%.2f subtotal=%.2f discount=%.2f "
            "shipping=%.2f tax=%.2f",
            totals.total, client_total, totals.subtotal, totals.discount, totals.shipping, totals.tax,
        )
        raise TotalAmountMismatch(totals.total, client_total)
