# Overview: Service-layer operations for pricing; subtotal, discount, tax and total for a candidate order.

"""
Pricing & Discount Resolver

Pure computation: reads Discount and TaxConfig, writes nothing.

    subtotal = SUM(unit_price * quantity)
    discount = PERCENTAGE: subtotal * bps / 10000 (half-up), capped at max_discount
               FIXED_AMOUNT: min(value, subtotal)
    tax      = (subtotal - discount) * rate_bps / 10000 (half-up)
    total    = subtotal - discount + tax

Discount checks run in order: exists and active, inside its date window,
minimum purchase met. The first failing check is reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from ..errors import DiscountNotApplicableError, InvariantViolationError, NoActiveTaxConfigError
from ..models import Discount
from ..time_utils import normalize_datetime, utcnow
from ..validation import percent_of, require_cents, require_positive_int
from .catalog_service import (
    DISCOUNT_FIXED_AMOUNT,
    DISCOUNT_PERCENTAGE,
    get_active_tax_config,
    get_discount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceLine:
    product_id: int
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class PricingResult:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    tax_rate_bps: int
    discount_id: int | None
    lines: tuple[PriceLine, ...]

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "discount_id": self.discount_id,
        }


# =============================================================================
# DISCOUNT VARIANTS
# =============================================================================

def _percentage_discount(discount: Discount, subtotal_cents: int) -> int:
    amount = percent_of(subtotal_cents, discount.value)
    if discount.max_discount_cents is not None:
        amount = min(amount, discount.max_discount_cents)
    return amount


def _fixed_discount(discount: Discount, subtotal_cents: int) -> int:
    return min(discount.value, subtotal_cents)


DISCOUNT_CALCULATORS = {
    DISCOUNT_PERCENTAGE: _percentage_discount,
    DISCOUNT_FIXED_AMOUNT: _fixed_discount,
}


def compute_discount_cents(discount: Discount, subtotal_cents: int) -> int:
    calculator = DISCOUNT_CALCULATORS.get(discount.discount_type)
    if calculator is None:
        raise DiscountNotApplicableError(
            f"Unsupported discount type {discount.discount_type}",
            {"discount_id": discount.id, "discount_type": discount.discount_type},
        )
    return min(calculator(discount, subtotal_cents), subtotal_cents)


def check_discount_eligibility(discount: Discount | None, subtotal_cents: int, now: datetime, ref=None) -> Discount:
    if discount is None or not discount.is_active:
        raise DiscountNotApplicableError("Invalid or inactive discount code", {"discount": ref})

    details = {"discount_id": discount.id, "code": discount.code}
    if discount.start_date is not None and now < discount.start_date:
        raise DiscountNotApplicableError("Discount code is not active yet", details)
    if discount.end_date is not None and now > discount.end_date:
        raise DiscountNotApplicableError("Discount code has expired", details)
    if discount.min_purchase_cents is not None and subtotal_cents < discount.min_purchase_cents:
        raise DiscountNotApplicableError(
            f"Minimum purchase for this discount is {discount.min_purchase_cents}",
            {**details, "min_purchase_cents": discount.min_purchase_cents, "subtotal_cents": subtotal_cents},
        )
    return discount


def compute_tax(taxable_cents: int, rate_bps: int) -> int:
    return percent_of(taxable_cents, rate_bps)


# =============================================================================
# RESOLVER
# =============================================================================

def _coerce_line(line) -> PriceLine:
    if isinstance(line, PriceLine):
        data = {"product_id": line.product_id, "quantity": line.quantity, "unit_price_cents": line.unit_price_cents}
    elif isinstance(line, Mapping):
        data = line
    else:
        raise TypeError(f"unsupported price line: {line!r}")
    return PriceLine(
        product_id=data["product_id"],
        quantity=require_positive_int(data["quantity"], "quantity"),
        unit_price_cents=require_cents(data["unit_price_cents"], "unit_price_cents"),
    )


def resolve_pricing(
    lines: Iterable,
    discount_ref=None,
    *,
    now: datetime | None = None,
) -> PricingResult:
    """
    Compute order totals.

    Args:
        lines: PriceLine objects or mappings with product_id, quantity, unit_price_cents
        discount_ref: discount id, discount code, or None
        now: evaluation time for the discount window (defaults to utcnow)

    Raises:
        DiscountNotApplicableError: discount missing, inactive, out of window or below minimum
        NoActiveTaxConfigError: no active tax configuration
        InvariantViolationError: the computed total is negative
    """
    now = normalize_datetime(now) or utcnow()
    price_lines = tuple(_coerce_line(line) for line in lines)

    subtotal = sum(line.line_total_cents for line in price_lines)

    discount = None
    discount_cents = 0
    if discount_ref is not None:
        discount = check_discount_eligibility(get_discount(discount_ref), subtotal, now, ref=discount_ref)
        discount_cents = compute_discount_cents(discount, subtotal)

    tax_config = get_active_tax_config()
    if tax_config is None:
        raise NoActiveTaxConfigError()

    tax_cents = compute_tax(subtotal - discount_cents, tax_config.rate_bps)
    total = subtotal - discount_cents + tax_cents
    if total < 0:
        raise InvariantViolationError(
            "Computed order total is negative",
            {"subtotal_cents": subtotal, "discount_cents": discount_cents, "tax_cents": tax_cents},
        )

    return PricingResult(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        tax_cents=tax_cents,
        total_cents=total,
        tax_rate_bps=tax_config.rate_bps,
        discount_id=discount.id if discount else None,
        lines=price_lines,
    )


def validate_discount(code, cart_total_cents: int, *, now: datetime | None = None) -> dict:
    """Check a discount code against a cart total and preview the amount."""
    cart_total_cents = require_cents(cart_total_cents, "cart_total_cents")
    now = normalize_datetime(now) or utcnow()
    discount = check_discount_eligibility(get_discount(code), cart_total_cents, now, ref=code)
    return {
        "valid": True,
        "discount_id": discount.id,
        "code": discount.code,
        "discount_type": discount.discount_type,
        "value": discount.value,
        "discount_cents": compute_discount_cents(discount, cart_total_cents),
    }


def calculate_tax(amount_cents: int) -> dict:
    """Preview tax on an amount; zero when no tax configuration is active."""
    amount_cents = require_cents(amount_cents, "amount_cents")
    config = get_active_tax_config()
    if config is None:
        return {"tax_cents": 0, "rate_bps": 0, "name": None}
    return {
        "tax_cents": compute_tax(amount_cents, config.rate_bps),
        "rate_bps": config.rate_bps,
        "name": config.name,
    }
