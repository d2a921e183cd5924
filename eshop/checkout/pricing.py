"""Pricing rules: per-location shipping fees, tax tiers and payment surcharges.

``PricingRules`` is a thin repository over the ``pricing_configs`` tables. It is
built per request from a session and handed to whatever needs a lookup, so there
is no module-level config cache.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from eshop.core.errors import ConfigNotFound, ShippingMethodUnavailable, ValidationFailed
from eshop.db.models import PaymentFee, PricingConfig, ShippingFee, TaxTier

logger = logging.getLogger(__name__)


def find_tax_tier(tiers: Iterable[TaxTier], amount: float) -> Optional[TaxTier]:
    """First tier with ``min <= amount <= max`` (``max`` of None is open-ended)."""
    for tier in sorted(tiers, key=lambda t: t.min_amount):
        if amount >= tier.min_amount and (tier.max_amount is None or amount <= tier.max_amount):
            return tier
    return None


def compute_tax(config: PricingConfig, amount: float) -> Tuple[float, float]:
    """Return ``(tax, rate)``. No matching tier means a rate of 0, not an error."""
    tier = find_tax_tier(config.tax_tiers, amount)
    if tier is None:
        logger.warning("No tax tier covers %.2f for %s; applying 0 tax", amount, config.location)
        return 0.0, 0.0
    return round(amount * tier.rate, 2), tier.rate


def shipping_fee(config: PricingConfig, method: str) -> float:
    for row in config.shipping_fees:
        if row.method == method:
            return row.fee
    raise ShippingMethodUnavailable(method, config.location)


def validate_tax_tiers(tiers: Sequence[dict]):
    """Tiers must cover [0, inf) with shared boundaries; only the last may be open-ended."""
    if not tiers:
        return
    ordered = sorted(tiers, key=lambda t: t["min"])
    if ordered[0]["min"] != 0:
        raise ValidationFailed("First tax tier must start at 0", {"taxTiers": list(tiers)})
    for i, tier in enumerate(ordered):
        if not 0 <= tier["rate"] <= 1:
            raise ValidationFailed(f"Tax rate must be between 0 and 1, got {tier['rate']}")
        last = i == len(ordered) - 1
        if tier.get("max") is None:
            if not last:
                raise ValidationFailed("Only the last tax tier may be open-ended")
            continue
        if tier["max"] <= tier["min"]:
            raise ValidationFailed(f"Tax tier max must exceed min ({tier['min']}..{tier['max']})")
        if last:
            raise ValidationFailed("Last tax tier must be open-ended")
        if ordered[i + 1]["min"] != tier["max"]:
            raise ValidationFailed(
                f"Tax tiers must be contiguous: tier ending at {tier['max']} "
                f"is followed by one starting at {ordered[i + 1]['min']}"
            )


class PricingRules:
    def __init__(self, db: Session):
        self.db = db

    def find(self, location: str) -> Optional[PricingConfig]:
        return self.db.execute(
            select(PricingConfig).where(PricingConfig.location == location)
        ).scalar_one_or_none()

    def get_config(self, location: str) -> PricingConfig:
        config = self.find(location)
        if config is None:
            raise ConfigNotFound(location)
        return config

    def list_configs(self) -> List[PricingConfig]:
        return list(self.db.execute(select(PricingConfig).order_by(PricingConfig.location)).scalars())

    def upsert(self, location: str, shipping_fees: Sequence[dict], tax_tiers: Sequence[dict],
               payment_fees: Sequence[dict]) -> PricingConfig:
        validate_tax_tiers(tax_tiers)
        config = self.find(location)
        if config is None:
            config = PricingConfig(location=location)
            self.db.add(config)
        config.shipping_fees = [ShippingFee(method=f["method"], fee=f["fee"]) for f in shipping_fees]
        config.tax_tiers = [
            TaxTier(min_amount=t["min"], max_amount=t.get("max"), rate=t["rate"]) for t in tax_tiers
        ]
        config.payment_fees = [PaymentFee(method=f["method"], fee=f["fee"]) for f in payment_fees]
        self.db.commit()
        self.db.refresh(config)
        logger.info("Pricing config for %s saved", location)
        return config
