from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-day document sequences (orders, receipts, returns).

    One row per (document_type, business_date); next_number is advanced with
    a conditional UPDATE inside the caller's transaction, so a rolled-back
    order gives its number back.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "business_date", name="uq_doc_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False)
    business_date = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "business_date": self.business_date,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
