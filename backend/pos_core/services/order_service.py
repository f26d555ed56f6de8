# Overview: Service-layer operations for orders; creation transaction, status machine and cancellation.

"""
Order Orchestrator

LIFECYCLE:
    DRAFT -> PENDING_PAYMENT -> PAID
    DRAFT | PENDING_PAYMENT -> CANCELLED
    PAID -> RETURN_REQUESTED -> RETURNED | RETURN_REJECTED | PAID
    PAID -> RETURNED (return completed on the spot covering every unit)

Every status change goes through transition_order(), which consults
ORDER_TRANSITIONS. An unlisted edge is a bug, not a user error.

create_order is one transaction: price the cart, insert the order, reserve
every line (sorted by product id), insert the items, commit. Any failure
rolls all of it back, stock included.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvariantViolationError,
    OrderCreationFailedError,
    OrderNotCancellableError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.inventory import MOVEMENT_ADJUSTMENT
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_RETURN_REJECTED,
    ORDER_STATUS_RETURN_REQUESTED,
    ORDER_STATUS_RETURNED,
)
from ..time_utils import add_months, utcnow
from ..validation import require_positive_int
from .audit_service import emit_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_order_number
from .inventory_service import claim_serial_item, release_serial_item, reserve_stock, restore_stock
from .pricing_service import resolve_pricing

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS = {
    ORDER_STATUS_DRAFT: {ORDER_STATUS_PENDING_PAYMENT, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PENDING_PAYMENT: {ORDER_STATUS_PAID, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PAID: {ORDER_STATUS_RETURN_REQUESTED, ORDER_STATUS_RETURNED},
    ORDER_STATUS_RETURN_REQUESTED: {ORDER_STATUS_RETURNED, ORDER_STATUS_RETURN_REJECTED, ORDER_STATUS_PAID},
    ORDER_STATUS_RETURNED: set(),
    ORDER_STATUS_RETURN_REJECTED: set(),
    ORDER_STATUS_CANCELLED: set(),
}

CANCELLABLE_STATUSES = (ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING_PAYMENT)


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_TRANSITIONS.get(current, set())


def transition_order(order: Order, new_status: str, *, user_id: int | None = None, reason: str | None = None) -> Order:
    """Move an order along an allowed edge and queue the audit fact."""
    old_status = order.status
    if not can_transition(old_status, new_status):
        logger.error("Illegal order transition %s -> %s for order %s", old_status, new_status, order.id)
        raise InvariantViolationError(
            f"Illegal order transition {old_status} -> {new_status}",
            {"order_id": order.id, "from_status": old_status, "to_status": new_status},
        )
    order.status = new_status
    emit_audit(
        "order.status_changed",
        "order",
        order.id,
        user_id=user_id,
        old_value={"status": old_status},
        new_value={"status": new_status},
        reason=reason,
    )
    return order


# =============================================================================
# CREATION
# =============================================================================

def _normalize_items(items) -> list[dict]:
    """
    Validate cart lines and merge duplicates.

    Lines naming a serial unit or serial number stay separate; the rest merge
    per product.
    """
    if not items:
        raise ValidationError("Order must contain at least one item")

    lines: list[dict] = []
    merged: dict[int, dict] = {}
    for raw in items:
        product_id = require_positive_int(raw.get("product_id"), "product_id")
        quantity = require_positive_int(raw.get("quantity"), "quantity")
        serial_number = raw.get("serial_number") or None
        serial_item_id = raw.get("serial_item_id")
        if serial_item_id is not None:
            serial_item_id = require_positive_int(serial_item_id, "serial_item_id")

        separate = serial_number is not None or serial_item_id is not None
        if not separate and product_id in merged:
            merged[product_id]["quantity"] += quantity
            continue

        line = {
            "product_id": product_id,
            "quantity": quantity,
            "serial_number": serial_number,
            "serial_item_id": serial_item_id,
        }
        lines.append(line)
        if not separate:
            merged[product_id] = line
    return lines


def _check_serial_lines(lines: list[dict], products: dict[int, Product]) -> None:
    """A serialized product sells one named unit per line; others take no unit."""
    for line in lines:
        product = products[line["product_id"]]
        if product.is_serialized:
            if line["serial_item_id"] is None:
                raise ValidationError(
                    f"Serial unit required for {product.name}",
                    {"product_id": product.id},
                )
            if line["quantity"] != 1:
                raise ValidationError(
                    f"Serialized product {product.name} is sold one unit per line",
                    {"product_id": product.id, "quantity": line["quantity"]},
                )
        elif line["serial_item_id"] is not None:
            raise ValidationError(
                f"Product {product.name} is not serialized",
                {"product_id": product.id, "serial_item_id": line["serial_item_id"]},
            )


def _load_products(product_ids) -> dict[int, Product]:
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(set(product_ids))).all()
    }
    for product_id in product_ids:
        product = products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is not active", {"product_id": product_id})
    return products


def _insert_order(order_fields: dict, now) -> Order:
    """
    Insert the order row under a freshly generated order number.

    A number collision rolls back only its SAVEPOINT and tries a new number.
    """
    attempts = current_app.config.get("ORDER_NUMBER_ATTEMPTS", 3)
    for attempt in range(attempts):
        number = next_order_number(now)
        if db.session.query(Order.id).filter_by(order_number=number).first() is not None:
            logger.warning("Order number %s already taken (attempt %d/%d)", number, attempt + 1, attempts)
            continue

        order = Order(order_number=number, **order_fields)
        try:
            with db.session.begin_nested():
                db.session.add(order)
        except IntegrityError:
            logger.warning("Order number %s collided on insert (attempt %d/%d)", number, attempt + 1, attempts)
            continue
        return order

    raise OrderCreationFailedError(details={"reason": "order_number_collision", "attempts": attempts})


def create_order(
    items,
    *,
    customer_id: int | None = None,
    agent_id: int | None = None,
    discount=None,
    coupon_code: str | None = None,
    shipping_address: str | None = None,
    user_id: int | None = None,
) -> Order:
    """
    Create an order from cart lines and reserve its stock.

    Args:
        items: [{"product_id": int, "quantity": int, "serial_item_id": int?, "serial_number": str?}, ...]
            serialized products need serial_item_id and quantity 1; the unit is marked SOLD
        customer_id / agent_id: opaque identity ids (not validated)
        discount: discount id or code, optional
        coupon_code: free-text code stored with the order
        shipping_address: optional delivery address
        user_id: acting user, recorded on stock movements and audit facts

    Returns:
        Order in PENDING_PAYMENT with items, totals and reserved stock

    Raises:
        ValidationError: empty cart, bad quantity, unknown or inactive product, bad serial line
        InsufficientStockError: any line exceeds available stock
        SerialItemNotAvailableError: named unit unknown, of another product, or sold
        DiscountNotApplicableError / NoActiveTaxConfigError: pricing failed
        OrderCreationFailedError: store contention or number collisions persisted
    """
    lines = _normalize_items(items)

    def _op():
        begin_write()
        now = utcnow()

        products = _load_products([line["product_id"] for line in lines])
        _check_serial_lines(lines, products)
        pricing = resolve_pricing(
            [
                {
                    "product_id": line["product_id"],
                    "quantity": line["quantity"],
                    "unit_price_cents": products[line["product_id"]].price_cents,
                }
                for line in lines
            ],
            discount,
            now=now,
        )

        order = _insert_order(
            {
                "status": ORDER_STATUS_PENDING_PAYMENT,
                "subtotal_cents": pricing.subtotal_cents,
                "discount_cents": pricing.discount_cents,
                "tax_cents": pricing.tax_cents,
                "total_cents": pricing.total_cents,
                "tax_rate_bps": pricing.tax_rate_bps,
                "discount_id": pricing.discount_id,
                "coupon_code": coupon_code,
                "customer_id": customer_id,
                "agent_id": agent_id,
                "shipping_address": shipping_address,
                "created_at": now,
            },
            now,
        )

        # Reserve in product id order so concurrent orders lock rows consistently
        movements = {}
        for index in sorted(range(len(lines)), key=lambda i: (lines[i]["product_id"], i)):
            line = lines[index]
            movements[index] = reserve_stock(
                line["product_id"],
                line["quantity"],
                reason=f"Sale {order.order_number}",
                user_id=user_id,
                reference_type="order",
                reference_id=order.id,
                commit=False,
            )

        order_items = []
        for index, (line, priced) in enumerate(zip(lines, pricing.lines)):
            product = products[line["product_id"]]
            order_items.append(OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=priced.quantity,
                price_cents=priced.unit_price_cents,
                cost_price_cents=product.cost_price_cents,
                line_total_cents=priced.line_total_cents,
                serial_number=line["serial_number"],
                serial_item_id=line["serial_item_id"],
                warranty_expiry=add_months(now, product.warranty_months) if product.warranty_months else None,
                stock_movement_id=movements[index].id,
                created_at=now,
            ))
        db.session.add_all(order_items)
        db.session.flush()

        for item in order_items:
            if item.serial_item_id is not None:
                unit = claim_serial_item(item.serial_item_id, item.product_id, products[item.product_id].name)
                item.serial_number = unit.serial_number

        emit_audit(
            "order.created",
            "order",
            order.id,
            user_id=user_id,
            new_value={
                "order_number": order.order_number,
                "status": order.status,
                "total_cents": order.total_cents,
                "item_count": len(lines),
            },
        )
        db.session.commit()
        return order

    order = run_with_retry(_op, failure=OrderCreationFailedError)
    logger.info("Order %s created: total %s cents", order.order_number, order.total_cents)
    return order


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(order_id: int, user_id: int | None = None, reason: str | None = None) -> Order:
    """
    Cancel an unpaid order and put its stock back.

    Each line is restored with an ADJUSTMENT movement referencing the
    cancellation, in the same transaction as the status change.
    """
    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise OrderNotCancellableError(order_id, order.status)

        for item in sorted(order.items, key=lambda i: (i.product_id, i.id)):
            restore_stock(
                item.product_id,
                item.quantity,
                reason=f"Order {order.order_number} cancelled",
                user_id=user_id,
                movement_type=MOVEMENT_ADJUSTMENT,
                reference_type="order_cancellation",
                reference_id=order.id,
                commit=False,
            )
            if item.serial_item_id is not None:
                release_serial_item(item.serial_item_id)

        transition_order(order, ORDER_STATUS_CANCELLED, user_id=user_id, reason=reason)
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = user_id
        order.cancel_reason = reason
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s cancelled", order.order_number)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise OrderNotFoundError(order_number)
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    agent_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    query = db.session.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if agent_id is not None:
        query = query.filter(Order.agent_id == agent_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()


def get_order_summary(order_id: int) -> dict:
    order = get_order(order_id)
    return {
        "order": order.to_dict(),
        "items": [item.to_dict() for item in order.items],
        "payment": order.payment.to_dict() if order.payment else None,
        "receipt": order.receipt.to_dict() if order.receipt else None,
        "returns": [ret.to_dict() for ret in order.returns],
    }


def verify_order_totals(order: Order) -> dict:
    """
    Recompute the order equations:
        subtotal == SUM(line totals)
        total == subtotal - discount + tax
    """
    items_subtotal = sum(item.line_total_cents for item in order.items)
    line_totals_ok = all(item.line_total_cents == item.price_cents * item.quantity for item in order.items)
    expected_total = order.subtotal_cents - order.discount_cents + order.tax_cents
    return {
        "order_id": order.id,
        "items_subtotal_cents": items_subtotal,
        "subtotal_cents": order.subtotal_cents,
        "expected_total_cents": expected_total,
        "total_cents": order.total_cents,
        "consistent": (
            line_totals_ok
            and items_subtotal == order.subtotal_cents
            and expected_total == order.total_cents
            and order.total_cents >= 0
        ),
    }
