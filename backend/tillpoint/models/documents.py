from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

class DocumentSequence(db.Model):
    """
    Atomic document number sequences.

    scope is the sequence key, e.g. "SALE:260214" for the sales of one day.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "scope", name="uq_doc_sequences_type_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    scope = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "scope": self.scope,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
