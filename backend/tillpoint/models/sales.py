from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

class Sale(db.Model):
    """
    Committed POS sale.

    Written in one transaction together with its lines, tenders, stock
    movements and the owning session's counters. Lines and totals are
    snapshots and never change after creation; only the status moves
    (COMPLETED -> CANCELLED).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_session_created", "session_id", "created_at"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "POS-260214-0007")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("cashiers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, CANCELLED

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # CASH, CARD, TRANSFER, MIXED
    payment_method = db.Column(db.String(16), nullable=False, index=True)
    amount_tendered_cents = db.Column(db.Integer, nullable=False)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    # Optional customer contact
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Cancel audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_cashier_id = db.Column(db.Integer, db.ForeignKey("cashiers.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    session = db.relationship("CashSession", backref=db.backref("sales", lazy=True))
    lines = db.relationship("SaleLine", backref="sale", lazy=True, order_by="SaleLine.position")
    tenders = db.relationship("Tender", backref="sale", lazy=True, order_by="Tender.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "session_id": self.session_id,
            "register_id": self.register_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_due_cents": self.change_due_cents,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_cashier_id": self.cancelled_by_cashier_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["tenders"] = [tender.to_dict() for tender in self.tenders]
        return data


class SaleLine(db.Model):
    """Snapshot of one cart line at commit time."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(16), nullable=False)  # PRODUCT, TEMPLATE
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Template lines: [{"zone_id", "zone_type", "name", "price_cents"}, ...]
    zones = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "kind": self.kind,
            "variant_id": self.variant_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "zones": self.zones or [],
        }


class Tender(db.Model):
    """
    One payment instrument applied to a sale.

    METHODS:
    - CASH: physical currency; the only tender that carries change
    - CARD: card terminal; reference holds auth code / last digits
    - TRANSFER: bank transfer; reference holds the transfer id

    A MIXED sale stores one CASH and one non-cash row.
    """
    __tablename__ = "tenders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Opaque metadata (card auth code, last digits, transfer id)
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "change_cents": self.change_cents,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
