# Overview: Service-layer operations for document numbers; human-facing order, receipt and return numbers.

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import TransientStoreError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


ORDER_PREFIX = "ORD"
RECEIPT_PREFIX = "RCP"
RETURN_PREFIX = "RET"


def _advance(document_type: str, business_date: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.business_date == business_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    if not db.session.execute(stmt).rowcount:
        return None
    current = db.session.execute(
        select(DocumentSequence.next_number).where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.business_date == business_date,
        )
    ).scalar_one()
    return current - 1


def next_sequence_number(document_type: str, business_date: str) -> int:
    """
    Atomically allocate the next number for a document type and day.

    Runs inside the caller's transaction: the UPDATE row lock serializes
    concurrent allocators, and a rollback returns the number. The first
    number of a day creates the row under a SAVEPOINT; losing that race
    falls back to the UPDATE.
    """
    number = _advance(document_type, business_date)
    if number is not None:
        return number

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(
                document_type=document_type,
                business_date=business_date,
                next_number=2,
            ))
        return 1
    except IntegrityError:
        number = _advance(document_type, business_date)
        if number is None:
            raise
        return number


def _document_number(prefix: str, now: datetime | None = None, pad: int = 4) -> str:
    """PREFIX-YYYYMMDD-NNNN from the day's sequence; widens past the pad instead of running out."""
    now = now or utcnow()
    business_date = f"{now:%Y%m%d}"
    number = next_sequence_number(prefix, business_date)
    return f"{prefix}-{business_date}-{number:0{pad}d}"


def next_order_number(now: datetime | None = None) -> str:
    return _document_number(ORDER_PREFIX, now)


def next_receipt_number(now: datetime | None = None) -> str:
    return _document_number(RECEIPT_PREFIX, now, pad=6)


def next_return_number(now: datetime | None = None) -> str:
    return _document_number(RETURN_PREFIX, now, pad=6)


def allocate_number(generator, column, now: datetime | None = None) -> str:
    """Draw numbers from generator until one is unused in column."""
    attempts = current_app.config.get("ORDER_NUMBER_ATTEMPTS", 3)
    for attempt in range(attempts):
        number = generator(now)
        if db.session.query(column).filter(column == number).first() is None:
            return number
        logger.warning("Document number %s already taken (attempt %d/%d)", number, attempt + 1, attempts)
    raise TransientStoreError(details={"reason": "document_number_collision", "attempts": attempts})
