# Overview: Service-layer operations for catalog reference data consumed by the order core.

from __future__ import annotations

from sqlalchemy import update

from ..errors import ProductNotFoundError, ValidationError
from ..extensions import db
from ..models import Discount, Product, SerialItem, TaxConfig
from ..validation import require_cents, require_datetime, require_int, require_serial_numbers


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED_AMOUNT = "FIXED_AMOUNT"

VALID_DISCOUNT_TYPES = [DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT]


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    stock_quantity: int = 0,
    cost_price_cents: int | None = None,
    low_stock_threshold: int = 5,
    warranty_months: int = 0,
    is_active: bool = True,
    is_serialized: bool = False,
    serial_numbers=None,
) -> Product:
    """
    Create a catalog product.

    The starting stock becomes opening_quantity, the base of the stock ledger.
    A serialized product starts with one AVAILABLE unit per serial number and
    its stock is that count; stock_quantity must not be passed for it.
    """
    price_cents = require_cents(price_cents, "price_cents")
    if cost_price_cents is not None:
        cost_price_cents = require_cents(cost_price_cents, "cost_price_cents")
    stock_quantity = require_int(stock_quantity, "stock_quantity")
    if stock_quantity < 0:
        raise ValidationError("stock_quantity cannot be negative")

    serials = []
    if is_serialized:
        if stock_quantity:
            raise ValidationError(
                "Serialized stock is counted from serial_numbers", {"stock_quantity": stock_quantity}
            )
        if serial_numbers:
            serials = require_serial_numbers(serial_numbers)
            _reject_known_serials(serials)
        stock_quantity = len(serials)
    elif serial_numbers:
        raise ValidationError("serial_numbers require a serialized product", {"sku": sku})

    product = Product(
        sku=sku,
        name=name,
        price_cents=price_cents,
        cost_price_cents=cost_price_cents,
        stock_quantity=stock_quantity,
        opening_quantity=stock_quantity,
        low_stock_threshold=require_int(low_stock_threshold, "low_stock_threshold"),
        warranty_months=require_int(warranty_months, "warranty_months"),
        is_active=is_active,
        is_serialized=is_serialized,
    )
    db.session.add(product)
    for serial_number in serials:
        db.session.add(SerialItem(product=product, serial_number=serial_number))
    db.session.commit()
    return product


def _reject_known_serials(serials: list[str]) -> None:
    known = [
        row.serial_number
        for row in db.session.query(SerialItem.serial_number).filter(SerialItem.serial_number.in_(serials)).all()
    ]
    if known:
        raise ValidationError("Serial numbers already registered", {"serial_numbers": sorted(known)})


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


# =============================================================================
# TAX
# =============================================================================

def get_active_tax_config() -> TaxConfig | None:
    return (
        db.session.query(TaxConfig)
        .filter_by(is_active=True)
        .order_by(TaxConfig.id.desc())
        .first()
    )


def set_tax_config(name: str, rate_bps: int, is_active: bool = True) -> TaxConfig:
    """Create a tax configuration; activating it deactivates every other one."""
    rate_bps = require_int(rate_bps, "rate_bps")
    if not 0 <= rate_bps <= 10000:
        raise ValidationError("rate_bps must be between 0 and 10000", {"rate_bps": rate_bps})

    if is_active:
        db.session.execute(
            update(TaxConfig)
            .where(TaxConfig.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )

    config = TaxConfig(name=name, rate_bps=rate_bps, is_active=is_active)
    db.session.add(config)
    db.session.commit()
    return config


# =============================================================================
# DISCOUNTS
# =============================================================================

def create_discount(
    *,
    code: str,
    name: str,
    discount_type: str,
    value: int,
    min_purchase_cents: int | None = None,
    max_discount_cents: int | None = None,
    start_date=None,
    end_date=None,
    is_active: bool = True,
    description: str | None = None,
) -> Discount:
    """
    Create a discount.

    value is basis points for PERCENTAGE (1000 = 10%) and cents for FIXED_AMOUNT.
    Codes are stored upper-cased and must be unique.
    """
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(
            f"Invalid discount type: {discount_type}. Must be one of {VALID_DISCOUNT_TYPES}"
        )
    value = require_int(value, "value")
    if value < 0:
        raise ValidationError("value cannot be negative")
    if discount_type == DISCOUNT_PERCENTAGE and value > 10000:
        raise ValidationError("percentage value cannot exceed 10000 bps")

    code = code.strip().upper()
    if db.session.query(Discount.id).filter_by(code=code).first():
        raise ValidationError("Discount code already exists", {"code": code})

    discount = Discount(
        code=code,
        name=name,
        description=description,
        discount_type=discount_type,
        value=value,
        min_purchase_cents=require_cents(min_purchase_cents, "min_purchase_cents") if min_purchase_cents is not None else None,
        max_discount_cents=require_cents(max_discount_cents, "max_discount_cents") if max_discount_cents is not None else None,
        start_date=require_datetime(start_date, "start_date"),
        end_date=require_datetime(end_date, "end_date"),
        is_active=is_active,
    )
    db.session.add(discount)
    db.session.commit()
    return discount


def get_discount(code_or_id) -> Discount | None:
    """Look up a discount by integer id or (case-insensitive) code."""
    if code_or_id is None:
        return None
    if isinstance(code_or_id, int) and not isinstance(code_or_id, bool):
        return db.session.get(Discount, code_or_id)
    if isinstance(code_or_id, str):
        code = code_or_id.strip().upper()
        if not code:
            return None
        return db.session.query(Discount).filter_by(code=code).first()
    raise ValidationError("discount must be an id or a code", {"discount": repr(code_or_id)})
