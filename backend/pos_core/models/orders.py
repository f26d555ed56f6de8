from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..errors import InvariantViolationError
from pos_core.time_utils import to_utc_z


ORDER_STATUS_DRAFT = "DRAFT"
ORDER_STATUS_PENDING_PAYMENT = "PENDING_PAYMENT"
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_RETURN_REQUESTED = "RETURN_REQUESTED"
ORDER_STATUS_RETURNED = "RETURNED"
ORDER_STATUS_RETURN_REJECTED = "RETURN_REJECTED"
ORDER_STATUS_CANCELLED = "CANCELLED"

PAYMENT_STATUS_COMPLETED = "COMPLETED"
PAYMENT_STATUS_FAILED = "FAILED"


class Order(db.Model):
    """
    Order aggregate root.

    Totals are computed by the pricing resolver at creation and never accepted
    from callers:
        total_cents = subtotal_cents - discount_cents + tax_cents
        subtotal_cents = SUM(order_items.line_total_cents)

    customer_id / agent_id are opaque identity ids owned elsewhere (no FK).
    version_id guards status transitions against lost updates.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint(
            "subtotal_cents >= 0 AND tax_cents >= 0 AND discount_cents >= 0 AND total_cents >= 0",
            name="ck_orders_amounts_non_negative",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "ORD-20261018-4821")
    order_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(24), nullable=False, default=ORDER_STATUS_DRAFT, index=True)

    # Money (all cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Rate applied at finalization (later TaxConfig changes do not reprice)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True, index=True)
    coupon_code = db.Column(db.String(32), nullable=True)

    # Weak references: relation by id + lookup, never ownership
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    agent_id = db.Column(db.Integer, nullable=True, index=True)

    shipping_address = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    discount = db.relationship("Discount")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "discount_id": self.discount_id,
            "coupon_code": self.coupon_code,
            "customer_id": self.customer_id,
            "agent_id": self.agent_id,
            "shipping_address": self.shipping_address,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """Order line. Prices are snapshots taken at sale time."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=False)

    serial_number = db.Column(db.String(128), nullable=True)
    serial_item_id = db.Column(db.Integer, db.ForeignKey("serial_items.id"), nullable=True)
    warranty_expiry = db.Column(db.DateTime(timezone=True), nullable=True)

    # The OUT movement that reserved this line's stock
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("items", lazy=True, order_by="OrderItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "line_total_cents": self.line_total_cents,
            "serial_number": self.serial_number,
            "serial_item_id": self.serial_item_id,
            "warranty_expiry": to_utc_z(self.warranty_expiry),
            "stock_movement_id": self.stock_movement_id,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Single payment for an order (1:1, unique order_id).

    amount_cents always equals the order total. Only status moves after
    creation: a FAILED row (processor decline) may later become COMPLETED
    when the cashier retries.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_payments_order"),
        db.CheckConstraint("amount_cents >= 0 AND change_cents >= 0", name="ck_payments_amounts_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    method = db.Column(db.String(32), nullable=False, index=True)  # CASH, CARD, MOBILE_MONEY
    amount_cents = db.Column(db.Integer, nullable=False)

    # Cash only
    amount_tendered_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_COMPLETED, index=True)  # COMPLETED, FAILED
    reference_number = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_cents": self.change_cents,
            "status": self.status,
            "reference_number": self.reference_number,
            "failure_reason": self.failure_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }


class Receipt(db.Model):
    """
    Receipt snapshot (1:1 with a paid order).

    content is JSON written once at issue time; reprints only bump
    reprint_count and last_printed_at.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_receipts_order"),
        db.UniqueConstraint("receipt_number", name="uq_receipts_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    receipt_number = db.Column(db.String(64), nullable=False)
    content = db.Column(db.Text, nullable=False)
    reprint_count = db.Column(db.Integer, nullable=False, default=0)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("receipt", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "receipt_number": self.receipt_number,
            "content": self.content,
            "reprint_count": self.reprint_count,
            "issued_at": to_utc_z(self.issued_at),
            "last_printed_at": to_utc_z(self.last_printed_at),
        }


@event.listens_for(Receipt, "before_update")
def _reject_content_change(mapper, connection, target):
    if inspect(target).attrs.content.history.has_changes():
        raise InvariantViolationError(
            "Receipt content is immutable",
            {"receipt_id": target.id},
        )
