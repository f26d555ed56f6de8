from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog reference data consumed by the order core.

    The catalog owns every column except stock_quantity, which is mutated
    only by the inventory guard (services/inventory_service.py).

    LEDGER INVARIANT:
        stock_quantity == opening_quantity + SUM(signed stock_movements.quantity)

    opening_quantity is the count the catalog created the product with; all
    later changes are recorded as StockMovement rows.

    No version_id_col here: stock is changed with conditional UPDATE statements
    (WHERE stock_quantity >= :qty), never by read-modify-write on the ORM object.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    opening_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    # Sale-time warranty (0 = none); OrderItem.warranty_expiry is derived from it
    warranty_months = db.Column(db.Integer, nullable=False, default=0)

    # Sold unit by unit; stock follows the AVAILABLE SerialItem rows
    is_serialized = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock_quantity": self.stock_quantity,
            "opening_quantity": self.opening_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "warranty_months": self.warranty_months,
            "is_serialized": self.is_serialized,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TaxConfig(db.Model):
    """Flat tax rate. At most one row is active at a time."""
    __tablename__ = "tax_configs"
    __table_args__ = (
        db.CheckConstraint("rate_bps >= 0 AND rate_bps <= 10000", name="ck_tax_configs_rate_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (e.g., 825 = 8.25%)
    is_active = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rate_bps": self.rate_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Discount(db.Model):
    """
    Order-level discount, applied read-only by the pricing resolver.

    TYPES:
    - PERCENTAGE: value in basis points of the subtotal, capped by max_discount_cents
    - FIXED_AMOUNT: value in cents, never more than the subtotal
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_discounts_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED_AMOUNT
    value = db.Column(db.Integer, nullable=False, default=0)  # bps for PERCENTAGE, cents for FIXED_AMOUNT

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "value": self.value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "is_active": self.is_active,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "created_at": to_utc_z(self.created_at),
        }
