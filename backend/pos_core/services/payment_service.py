# Overview: Service-layer operations for payment; one payment per order, cash change and processor declines.

"""
Payment Recorder

DESIGN PRINCIPLES:
- One payment per order (unique order_id); the amount always equals the order total.
- Cash: change = tendered - amount, tendered must cover the amount.
- Non-cash: tendered is the amount itself; no change.
- A processor decline is recorded as a FAILED payment row and committed so the
  attempt is auditable. The order stays PENDING_PAYMENT and a retry reuses
  the same row.
- Success moves the payment to COMPLETED and the order to PAID in one
  transaction.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..errors import (
    AmountMismatchError,
    InsufficientTenderError,
    InvariantViolationError,
    OrderNotFoundError,
    OrderNotPayableError,
    PaymentDeclinedError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, Payment
from ..models.orders import (
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING_PAYMENT,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
)
from ..time_utils import utcnow
from ..validation import require_cents
from .audit_service import emit_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
from .order_service import transition_order

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_CARD = "CARD"
PAYMENT_METHOD_MOBILE_MONEY = "MOBILE_MONEY"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_MOBILE_MONEY,
]


# =============================================================================
# PROCESSOR HOOKS
# =============================================================================

class PaymentProcessorError(Exception):
    """Raised by a payment processor to decline a charge."""

    def __init__(self, message: str, reference_number: str | None = None):
        super().__init__(message)
        self.reference_number = reference_number


_payment_processors: dict[str, Callable] = {}


def register_payment_processor(method: str, processor: Callable) -> None:
    """
    Route a non-cash method through an external processor.

    processor(order, amount_cents) returns an optional reference number, or
    raises PaymentProcessorError to decline. Methods without a processor are
    treated as captured at the terminal.
    """
    if method not in VALID_PAYMENT_METHODS or method == PAYMENT_METHOD_CASH:
        raise ValidationError(f"Cannot register a processor for {method}", {"method": method})
    _payment_processors[method] = processor


def clear_payment_processors() -> None:
    _payment_processors.clear()


# =============================================================================
# RECORDING
# =============================================================================

def _validate_tender(method: str, amount_cents: int, amount_tendered_cents: int | None) -> tuple[int | None, int]:
    """Returns (amount_tendered_cents, change_cents)."""
    if method == PAYMENT_METHOD_CASH:
        tendered = amount_cents if amount_tendered_cents is None else require_cents(
            amount_tendered_cents, "amount_tendered_cents"
        )
        if tendered < amount_cents:
            raise InsufficientTenderError(tendered, amount_cents)
        return tendered, tendered - amount_cents

    if amount_tendered_cents is not None and amount_tendered_cents != amount_cents:
        raise ValidationError(
            "Amount tendered must equal the amount for non-cash payments",
            {"method": method, "amount_cents": amount_cents, "amount_tendered_cents": amount_tendered_cents},
        )
    return None, 0


def record_payment(
    order_id: int,
    amount_cents: int,
    method: str,
    amount_tendered_cents: int | None = None,
    *,
    user_id: int | None = None,
    reference_number: str | None = None,
) -> Payment:
    """
    Record the single payment for an order and mark it PAID.

    Args:
        order_id: Order being paid
        amount_cents: Must equal the order total exactly
        method: CASH, CARD or MOBILE_MONEY
        amount_tendered_cents: Cash handed over (cash only; defaults to exact)
        user_id: Cashier recording the payment
        reference_number: Card auth code, mobile money reference, etc.

    Raises:
        OrderNotFoundError / ValidationError: unknown order, bad method or amount
        OrderNotPayableError: order is not PENDING_PAYMENT (includes already paid)
        AmountMismatchError: amount differs from the order total
        InsufficientTenderError: cash tendered is below the amount
        PaymentDeclinedError: the processor declined; a FAILED row was recorded
    """
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}",
            {"method": method},
        )
    amount_cents = require_cents(amount_cents, "amount_cents")
    amount_tendered_cents, change_cents = _validate_tender(method, amount_cents, amount_tendered_cents)

    # Processor outcome is kept across retries so a charge is never attempted twice
    authorization: dict = {}

    def _authorize(order: Order) -> tuple[bool, str | None, str | None]:
        if "result" not in authorization:
            processor = _payment_processors.get(method)
            if method == PAYMENT_METHOD_CASH or processor is None:
                authorization["result"] = (True, reference_number, None)
            else:
                try:
                    ref = processor(order, amount_cents)
                    authorization["result"] = (True, ref or reference_number, None)
                except PaymentProcessorError as exc:
                    authorization["result"] = (False, exc.reference_number or reference_number, str(exc))
        return authorization["result"]

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status != ORDER_STATUS_PENDING_PAYMENT:
            raise OrderNotPayableError(order_id, order.status)
        if amount_cents != order.total_cents:
            raise AmountMismatchError(amount_cents, order.total_cents)

        payment = db.session.query(Payment).filter_by(order_id=order.id).first()
        if payment is not None and payment.status == PAYMENT_STATUS_COMPLETED:
            raise InvariantViolationError(
                "Order awaiting payment already has a completed payment",
                {"order_id": order.id, "payment_id": payment.id},
            )
        approved, ref, failure_reason = _authorize(order)
        if payment is None:
            payment = Payment(order_id=order.id, amount_cents=amount_cents, created_by_user_id=user_id)
        payment.method = method
        payment.amount_tendered_cents = amount_tendered_cents
        payment.change_cents = change_cents
        payment.reference_number = ref
        db.session.add(payment)

        if not approved:
            payment.status = PAYMENT_STATUS_FAILED
            payment.failure_reason = failure_reason
            db.session.flush()
            emit_audit(
                "payment.failed",
                "payment",
                payment.id,
                user_id=user_id,
                new_value={"order_id": order.id, "method": method, "amount_cents": amount_cents},
                reason=failure_reason,
            )
            db.session.commit()
            return payment, False

        now = utcnow()
        payment.status = PAYMENT_STATUS_COMPLETED
        payment.failure_reason = None
        payment.completed_at = now

        transition_order(order, ORDER_STATUS_PAID, user_id=user_id)
        order.paid_at = now
        db.session.flush()

        emit_audit(
            "payment.completed",
            "payment",
            payment.id,
            user_id=user_id,
            new_value={
                "order_id": order.id,
                "method": method,
                "amount_cents": amount_cents,
                "amount_tendered_cents": amount_tendered_cents,
                "change_cents": change_cents,
            },
        )
        emit_audit(
            "order.paid",
            "order",
            order.id,
            user_id=user_id,
            new_value={"payment_id": payment.id, "total_cents": order.total_cents},
        )
        db.session.commit()
        return payment, True

    payment, approved = run_with_retry(_op)
    if not approved:
        logger.info("Payment declined for order %s: %s", order_id, payment.failure_reason)
        raise PaymentDeclinedError(
            f"Payment declined: {payment.failure_reason}",
            {"order_id": order_id, "payment_id": payment.id, "method": method},
        )

    logger.info("Order %s paid by %s: %s cents", order_id, method, amount_cents)
    return payment


def get_payment_for_order(order_id: int) -> Payment | None:
    return db.session.query(Payment).filter_by(order_id=order_id).first()
