from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import InvariantViolationError
from pos_core.time_utils import to_utc_z


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_RETURN = "RETURN"

MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN)

# Sign applied to the (always positive) stored quantity
MOVEMENT_SIGNS = {
    MOVEMENT_IN: 1,
    MOVEMENT_OUT: -1,
    MOVEMENT_ADJUSTMENT: 1,
    MOVEMENT_RETURN: 1,
}


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    Exactly one row is written, in the same transaction, for every change to
    Product.stock_quantity. Rows are never updated or deleted; a correction is
    a new compensating row.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)  # IN, OUT, ADJUSTMENT, RETURN
    quantity = db.Column(db.Integer, nullable=False)

    # Stock level right after this movement was applied
    resulting_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    # What caused the movement (order, order_cancellation, return, manual)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        return MOVEMENT_SIGNS[self.movement_type] * self.quantity

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} {self.movement_type} {self.signed_quantity:+d} product={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "resulting_quantity": self.resulting_quantity,
            "reason": self.reason,
            "user_id": self.user_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise InvariantViolationError(
        "Stock movements are append-only",
        {"stock_movement_id": target.id},
    )


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise InvariantViolationError(
        "Stock movements are append-only",
        {"stock_movement_id": target.id},
    )


SERIAL_STATUS_AVAILABLE = "AVAILABLE"
SERIAL_STATUS_SOLD = "SOLD"


class SerialItem(db.Model):
    """
    One physical unit of a serialized product.

    For a serialized product the AVAILABLE units are its stock: every unit
    received books one IN movement, every sale flips one unit to SOLD next to
    its OUT movement, and a cancellation or return flips it back. The sale
    line holding a SOLD unit is the OrderItem with this serial_item_id.
    """
    __tablename__ = "serial_items"
    __table_args__ = (
        db.UniqueConstraint("serial_number", name="uq_serial_items_serial_number"),
        db.Index("ix_serial_items_product_status", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    serial_number = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SERIAL_STATUS_AVAILABLE)  # AVAILABLE, SOLD

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product", backref=db.backref("serial_items", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<SerialItem id={self.id} {self.serial_number!r} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "serial_number": self.serial_number,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
