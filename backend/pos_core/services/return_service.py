# Overview: Service-layer operations for returns; validation against the sale, stock restoration and refunds.

"""
Return/Refund Processor

RETURN LIFECYCLE:
    PENDING -> APPROVED -> COMPLETED
    PENDING | APPROVED -> REJECTED
    PENDING -> COMPLETED

COMPLETED and REJECTED are terminal, so a return restores stock at most once.

Quantities:
    returned + requested <= purchased, per order item, where "returned"
    counts PENDING, APPROVED and COMPLETED returns.

Refund is flat: SUM(price snapshot * returned quantity). Order-level
discount and tax are not prorated.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import (
    InvalidReturnQuantityError,
    OrderNotFoundError,
    OrderNotReturnableError,
    ReturnNotFoundError,
    ReturnStateError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Return, ReturnItem
from ..models.inventory import MOVEMENT_RETURN
from ..models.orders import (
    ORDER_STATUS_PAID,
    ORDER_STATUS_RETURN_REJECTED,
    ORDER_STATUS_RETURN_REQUESTED,
    ORDER_STATUS_RETURNED,
)
from ..models.returns import (
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
)
from ..time_utils import utcnow
from ..validation import require_int, require_positive_int
from .audit_service import emit_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import allocate_number, next_return_number
from .inventory_service import release_serial_item, restore_stock
from .order_service import transition_order

logger = logging.getLogger(__name__)


# Returns whose quantities count against what is still returnable
OPEN_OR_COMPLETED_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED, RETURN_STATUS_COMPLETED)


def returned_quantities(order_id: int, statuses=OPEN_OR_COMPLETED_STATUSES) -> dict[int, int]:
    """order_item_id -> quantity already claimed by returns in the given statuses."""
    rows = (
        db.session.query(ReturnItem.order_item_id, func.sum(ReturnItem.quantity))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(Return.order_id == order_id, Return.status.in_(statuses))
        .group_by(ReturnItem.order_item_id)
        .all()
    )
    return {order_item_id: int(total or 0) for order_item_id, total in rows}


def _validate_lines(order: Order, items) -> list[tuple]:
    if not items:
        raise ValidationError("Return must contain at least one item")

    order_items = {item.id: item for item in order.items}
    already = returned_quantities(order.id)
    requested: dict[int, int] = {}
    lines = []

    for raw in items:
        order_item_id = require_positive_int(raw.get("order_item_id"), "order_item_id")
        quantity = require_int(raw.get("quantity"), "quantity")

        item = order_items.get(order_item_id)
        if item is None:
            raise ValidationError(
                f"Order item {order_item_id} does not belong to order {order.id}",
                {"order_id": order.id, "order_item_id": order_item_id},
            )
        if quantity <= 0:
            raise InvalidReturnQuantityError(
                "Return quantity must be positive",
                {"order_item_id": order_item_id, "quantity": quantity},
            )

        claimed = already.get(order_item_id, 0) + requested.get(order_item_id, 0)
        if claimed + quantity > item.quantity:
            raise InvalidReturnQuantityError(
                f"Cannot return {quantity} of order item {order_item_id}: "
                f"purchased {item.quantity}, already returned {claimed}",
                {
                    "order_item_id": order_item_id,
                    "requested_quantity": quantity,
                    "purchased_quantity": item.quantity,
                    "already_returned": claimed,
                },
            )
        requested[order_item_id] = requested.get(order_item_id, 0) + quantity
        lines.append((item, quantity, raw.get("condition")))

    return lines


def _is_fully_returned(order: Order) -> bool:
    completed = returned_quantities(order.id, statuses=(RETURN_STATUS_COMPLETED,))
    return all(completed.get(item.id, 0) >= item.quantity for item in order.items)


def _complete_locked(ret: Return, order: Order, user_id: int | None) -> Return:
    """Restore stock for every line and settle the order status. Caller owns the transaction."""
    for return_item in sorted(ret.items, key=lambda ri: (ri.product_id, ri.id)):
        movement = restore_stock(
            return_item.product_id,
            return_item.quantity,
            reason=f"Return {ret.return_number}",
            user_id=user_id,
            movement_type=MOVEMENT_RETURN,
            reference_type="return",
            reference_id=ret.id,
            commit=False,
        )
        return_item.stock_movement_id = movement.id
        if return_item.order_item.serial_item_id is not None:
            release_serial_item(return_item.order_item.serial_item_id)

    old_status = ret.status
    ret.status = RETURN_STATUS_COMPLETED
    ret.completed_at = utcnow()
    ret.completed_by_user_id = user_id
    db.session.flush()

    new_order_status = ORDER_STATUS_RETURNED if _is_fully_returned(order) else ORDER_STATUS_PAID
    if order.status != new_order_status:
        transition_order(order, new_order_status, user_id=user_id, reason=ret.reason)

    emit_audit(
        "return.completed",
        "return",
        ret.id,
        user_id=user_id,
        old_value={"status": old_status},
        new_value={
            "status": ret.status,
            "order_id": order.id,
            "total_refund_cents": ret.total_refund_cents,
        },
    )
    return ret


def create_return(
    order_id: int,
    items,
    reason: str,
    *,
    user_id: int | None = None,
    approve: bool = True,
) -> Return:
    """
    Return items from a paid order.

    Args:
        order_id: Original order (must be PAID)
        items: [{"order_item_id": int, "quantity": int, "condition": str?}, ...]
        reason: Why the customer is returning
        user_id: Staff member processing the return
        approve: Complete immediately (restore stock now) when True;
                 otherwise leave the return PENDING for a manager decision

    Raises:
        OrderNotReturnableError: order is not PAID
        InvalidReturnQuantityError: non-positive quantity or more than remains returnable
        ValidationError: empty request, missing reason, foreign order item
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Return reason is required")

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status != ORDER_STATUS_PAID:
            raise OrderNotReturnableError(order_id, order.status)

        lines = _validate_lines(order, items)
        now = utcnow()

        ret = Return(
            order_id=order.id,
            return_number=allocate_number(next_return_number, Return.return_number, now),
            status=RETURN_STATUS_PENDING,
            reason=reason,
            total_refund_cents=sum(item.price_cents * quantity for item, quantity, _ in lines),
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(ret)
        db.session.flush()

        for item, quantity, condition in lines:
            ret.items.append(ReturnItem(
                order_item_id=item.id,
                product_id=item.product_id,
                quantity=quantity,
                unit_price_cents=item.price_cents,
                refund_cents=item.price_cents * quantity,
                condition=condition,
                created_at=now,
            ))
        db.session.flush()

        emit_audit(
            "return.created",
            "return",
            ret.id,
            user_id=user_id,
            new_value={
                "order_id": order.id,
                "return_number": ret.return_number,
                "total_refund_cents": ret.total_refund_cents,
            },
            reason=reason,
        )

        if approve:
            _complete_locked(ret, order, user_id)
        else:
            transition_order(order, ORDER_STATUS_RETURN_REQUESTED, user_id=user_id, reason=reason)

        db.session.commit()
        return ret

    ret = run_with_retry(_op)
    logger.info(
        "Return %s for order %s: %s, refund %s cents",
        ret.return_number, order_id, ret.status, ret.total_refund_cents,
    )
    return ret


def _load_locked(return_id: int) -> tuple[Return, Order]:
    ret = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if ret is None:
        raise ReturnNotFoundError(return_id)
    order = lock_for_update(db.session.query(Order).filter_by(id=ret.order_id)).first()
    return ret, order


def approve_return(return_id: int, user_id: int | None = None) -> Return:
    """PENDING -> APPROVED. Stock moves only when the return completes."""
    def _op():
        begin_write()
        ret, _order = _load_locked(return_id)
        if ret.status != RETURN_STATUS_PENDING:
            raise ReturnStateError(
                f"Cannot approve return in {ret.status} status",
                {"return_id": ret.id, "status": ret.status},
            )
        ret.status = RETURN_STATUS_APPROVED
        ret.approved_at = utcnow()
        ret.approved_by_user_id = user_id
        emit_audit(
            "return.approved",
            "return",
            ret.id,
            user_id=user_id,
            old_value={"status": RETURN_STATUS_PENDING},
            new_value={"status": RETURN_STATUS_APPROVED},
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


def complete_return(return_id: int, user_id: int | None = None) -> Return:
    """PENDING | APPROVED -> COMPLETED; restores stock for every line."""
    def _op():
        begin_write()
        ret, order = _load_locked(return_id)
        if ret.status not in (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED):
            raise ReturnStateError(
                f"Cannot complete return in {ret.status} status",
                {"return_id": ret.id, "status": ret.status},
            )
        _complete_locked(ret, order, user_id)
        db.session.commit()
        return ret

    ret = run_with_retry(_op)
    logger.info("Return %s completed", ret.return_number)
    return ret


def reject_return(return_id: int, user_id: int | None = None, reason: str | None = None) -> Return:
    """PENDING | APPROVED -> REJECTED. No stock movement."""
    def _op():
        begin_write()
        ret, order = _load_locked(return_id)
        if ret.status not in (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED):
            raise ReturnStateError(
                f"Cannot reject return in {ret.status} status",
                {"return_id": ret.id, "status": ret.status},
            )
        old_status = ret.status
        ret.status = RETURN_STATUS_REJECTED
        ret.rejected_at = utcnow()
        ret.rejected_by_user_id = user_id
        ret.rejection_reason = reason

        if order.status == ORDER_STATUS_RETURN_REQUESTED:
            transition_order(order, ORDER_STATUS_RETURN_REJECTED, user_id=user_id, reason=reason)

        emit_audit(
            "return.rejected",
            "return",
            ret.id,
            user_id=user_id,
            old_value={"status": old_status},
            new_value={"status": RETURN_STATUS_REJECTED},
            reason=reason,
        )
        db.session.commit()
        return ret

    ret = run_with_retry(_op)
    logger.info("Return %s rejected", ret.return_number)
    return ret


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    ret = db.session.get(Return, return_id)
    if ret is None:
        raise ReturnNotFoundError(return_id)
    return ret


def list_returns(
    *,
    order_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Return]:
    query = db.session.query(Return)
    if order_id is not None:
        query = query.filter(Return.order_id == order_id)
    if status:
        query = query.filter(Return.status == status)
    return query.order_by(Return.created_at.desc(), Return.id.desc()).offset(offset).limit(limit).all()
