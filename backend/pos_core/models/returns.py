from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_COMPLETED = "COMPLETED"
RETURN_STATUS_REJECTED = "REJECTED"


class Return(db.Model):
    """
    Return against a paid order.

    LIFECYCLE:
    1. PENDING: requested, awaiting a decision
    2. APPROVED: accepted, stock not yet restored
    3. COMPLETED: stock restored, refund due (terminal)
    4. REJECTED: declined, no stock movement (terminal)

    Refund is flat: SUM(unit price snapshot * returned quantity).
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_number"),
        db.Index("ix_returns_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Human-readable number (e.g., "RET-20261018-0193")
    return_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)
    reason = db.Column(db.Text, nullable=False)

    total_refund_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    completed_by_user_id = db.Column(db.Integer, nullable=True)
    rejected_by_user_id = db.Column(db.Integer, nullable=True)

    rejection_reason = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True, order_by="Return.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "return_number": self.return_number,
            "status": self.status,
            "reason": self.reason,
            "total_refund_cents": self.total_refund_cents,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejection_reason": self.rejection_reason,
        }


class ReturnItem(db.Model):
    """Returned quantity of one original order line."""
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)

    condition = db.Column(db.String(64), nullable=True)

    # RETURN movement written when the return completed
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_doc = db.relationship("Return", backref=db.backref("items", lazy=True, order_by="ReturnItem.id"))
    order_item = db.relationship("OrderItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "refund_cents": self.refund_cents,
            "condition": self.condition,
            "stock_movement_id": self.stock_movement_id,
            "created_at": to_utc_z(self.created_at),
        }
