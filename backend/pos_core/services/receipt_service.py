# Overview: Service-layer operations for receipts; one immutable snapshot per paid order plus reprints.

from __future__ import annotations

import json
import logging

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    OrderNotFoundError,
    OrderNotPaidError,
    ReceiptAlreadyExistsError,
    ReceiptNotFoundError,
    TransientStoreError,
)
from ..extensions import db
from ..models import Order, Receipt
from ..models.orders import ORDER_STATUS_PAID
from ..time_utils import to_utc_z, utcnow
from .audit_service import emit_audit
from .concurrency import begin_write, run_with_retry
from .document_service import allocate_number, next_receipt_number

logger = logging.getLogger(__name__)


WALK_IN_CUSTOMER = "Walk-in Customer"


def build_receipt_content(order: Order, receipt_number: str, issued_at) -> dict:
    """Snapshot everything a printed receipt shows; later catalog edits never reach it."""
    payment = order.payment
    return {
        "business": {
            "name": current_app.config.get("RECEIPT_BUSINESS_NAME"),
            "footer": current_app.config.get("RECEIPT_FOOTER"),
        },
        "receipt_number": receipt_number,
        "order_number": order.order_number,
        "issued_at": to_utc_z(issued_at),
        "customer": {"id": order.customer_id, "label": WALK_IN_CUSTOMER if order.customer_id is None else None},
        "agent_id": order.agent_id,
        "items": [
            {
                "product_id": item.product_id,
                "name": item.product.name,
                "sku": item.product.sku,
                "quantity": item.quantity,
                "unit_price_cents": item.price_cents,
                "line_total_cents": item.line_total_cents,
                "serial_number": item.serial_number,
                "warranty_expiry": to_utc_z(item.warranty_expiry),
            }
            for item in order.items
        ],
        "totals": {
            "subtotal_cents": order.subtotal_cents,
            "discount_cents": order.discount_cents,
            "tax_cents": order.tax_cents,
            "tax_rate_bps": order.tax_rate_bps,
            "total_cents": order.total_cents,
        },
        "payment": {
            "method": payment.method,
            "amount_cents": payment.amount_cents,
            "amount_tendered_cents": payment.amount_tendered_cents,
            "change_cents": payment.change_cents,
            "reference_number": payment.reference_number,
        } if payment is not None else None,
    }


def issue_receipt(order_id: int) -> Receipt:
    """
    Issue the one receipt for a paid order.

    Raises:
        OrderNotFoundError: no such order
        OrderNotPaidError: order status is not PAID
        ReceiptAlreadyExistsError: a receipt was already issued (use reprint)
    """
    def _op():
        begin_write()
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status != ORDER_STATUS_PAID:
            raise OrderNotPaidError(order_id, order.status)
        if db.session.query(Receipt.id).filter_by(order_id=order_id).first() is not None:
            raise ReceiptAlreadyExistsError(order_id)

        now = utcnow()
        receipt_number = allocate_number(next_receipt_number, Receipt.receipt_number, now)
        receipt = Receipt(
            order_id=order.id,
            receipt_number=receipt_number,
            content=json.dumps(build_receipt_content(order, receipt_number, now), sort_keys=True),
            reprint_count=0,
            issued_at=now,
            last_printed_at=now,
        )
        db.session.add(receipt)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            # Lost a race on order_id, or a receipt number collision
            if db.session.query(Receipt.id).filter_by(order_id=order_id).first() is not None:
                raise ReceiptAlreadyExistsError(order_id)
            raise TransientStoreError(details={"reason": "receipt_number_collision"})

        emit_audit(
            "receipt.issued",
            "receipt",
            receipt.id,
            new_value={"order_id": order.id, "receipt_number": receipt_number},
        )
        db.session.commit()
        return receipt

    receipt = run_with_retry(_op)
    logger.info("Receipt %s issued for order %s", receipt.receipt_number, order_id)
    return receipt


def reprint_receipt(order_id: int) -> Receipt:
    """Count a reprint; the stored content is returned unchanged."""
    def _op():
        now = utcnow()
        result = db.session.execute(
            update(Receipt)
            .where(Receipt.order_id == order_id)
            .values(reprint_count=Receipt.reprint_count + 1, last_printed_at=now)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise ReceiptNotFoundError(order_id)

        receipt = db.session.query(Receipt).filter_by(order_id=order_id).one()
        emit_audit(
            "receipt.reprinted",
            "receipt",
            receipt.id,
            new_value={"order_id": order_id, "reprint_count": receipt.reprint_count},
        )
        db.session.commit()
        return receipt

    return run_with_retry(_op)


def get_receipt_for_order(order_id: int) -> Receipt:
    receipt = db.session.query(Receipt).filter_by(order_id=order_id).first()
    if receipt is None:
        raise ReceiptNotFoundError(order_id)
    return receipt


def receipt_content(receipt: Receipt) -> dict:
    return json.loads(receipt.content)
