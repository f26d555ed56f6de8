# Overview: Service-layer operations for audit; queues audit facts and low-stock notices and delivers them after commit.

"""
Audit & notification emission.

The order core does not own audit storage or alerting. Services queue facts
on the current DB session while they work; the facts are handed to the
registered sinks/listeners only once the transaction commits, and are
dropped if it rolls back. A fact therefore never describes work that did not
happen.

The default audit sink writes one structured line per fact to the
"pos_core.audit" logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db
from ..time_utils import utcnow, to_utc_z

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("pos_core.audit")

_PENDING_AUDIT_KEY = "pos_core.pending_audit"
_PENDING_LOW_STOCK_KEY = "pos_core.pending_low_stock"


@dataclass(frozen=True)
class AuditFact:
    action: str
    entity_type: str
    entity_id: int | None
    user_id: int | None = None
    old_value: Any = None
    new_value: Any = None
    reason: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = to_utc_z(self.occurred_at)
        return data


@dataclass(frozen=True)
class LowStockNotice:
    product_id: int
    stock_quantity: int
    low_stock_threshold: int


def log_audit_fact(fact: AuditFact) -> None:
    audit_logger.info(
        "%s %s=%s user=%s old=%r new=%r reason=%r",
        fact.action,
        fact.entity_type,
        fact.entity_id,
        fact.user_id,
        fact.old_value,
        fact.new_value,
        fact.reason,
    )


_audit_sinks: list[Callable[[AuditFact], None]] = [log_audit_fact]
_low_stock_listeners: list[Callable[[LowStockNotice], None]] = []


def register_audit_sink(sink: Callable[[AuditFact], None]) -> None:
    _audit_sinks.append(sink)


def clear_audit_sinks() -> None:
    """Drop custom sinks, keeping the logging sink."""
    _audit_sinks[:] = [log_audit_fact]


def register_low_stock_listener(listener: Callable[[LowStockNotice], None]) -> None:
    _low_stock_listeners.append(listener)


def clear_low_stock_listeners() -> None:
    _low_stock_listeners.clear()


def _queue(key: str, item) -> None:
    session = db.session()
    if not session.in_transaction():
        # Bind the queue to a transaction so a rollback can discard it
        session.connection()
    session.info.setdefault(key, []).append(item)


def emit_audit(
    action: str,
    entity_type: str,
    entity_id: int | None,
    *,
    user_id: int | None = None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
) -> AuditFact:
    """Queue an audit fact on the current transaction."""
    fact = AuditFact(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
    )
    _queue(_PENDING_AUDIT_KEY, fact)
    return fact


def notify_low_stock(product_id: int, stock_quantity: int, low_stock_threshold: int) -> None:
    """Queue a low-stock notice on the current transaction."""
    notice = LowStockNotice(
        product_id=product_id,
        stock_quantity=stock_quantity,
        low_stock_threshold=low_stock_threshold,
    )
    _queue(_PENDING_LOW_STOCK_KEY, notice)


@event.listens_for(Session, "after_commit")
def _deliver_after_commit(session):
    facts = session.info.pop(_PENDING_AUDIT_KEY, [])
    notices = session.info.pop(_PENDING_LOW_STOCK_KEY, [])

    # Committed work stays committed; sink failures are only logged.
    for fact in facts:
        for sink in list(_audit_sinks):
            try:
                sink(fact)
            except Exception:
                logger.exception("Audit sink %r failed for %s", sink, fact.action)

    for notice in notices:
        logger.warning(
            "Low stock: product %s at %s (threshold %s)",
            notice.product_id,
            notice.stock_quantity,
            notice.low_stock_threshold,
        )
        for listener in list(_low_stock_listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Low-stock listener %r failed for product %s", listener, notice.product_id)


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session, previous_transaction):
    # Fires for every Session.rollback(), with or without a DB connection.
    # A SAVEPOINT rollback leaves the outer transaction and its queue intact.
    if session.in_transaction():
        return
    session.info.pop(_PENDING_AUDIT_KEY, None)
    session.info.pop(_PENDING_LOW_STOCK_KEY, None)
