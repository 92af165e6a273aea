from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

class CashRegister(db.Model):
    """
    Physical or logical till.

    Registers are persistent (deactivated, never deleted) and host many
    sessions over time, but at most one OPEN session at any moment.
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "CAJA-01", "FRONT")
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)  # Display name
    location = db.Column(db.String(128), nullable=True)  # Physical location in store

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CashRegister id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "location": self.location,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashSession(db.Model):
    """
    One cashier's occupancy of a register.

    LIFECYCLE:
    - OPEN: accepting sales; counters move with every committed or cancelled sale
    - CLOSED: drawer counted, variance recorded; immutable history

    The partial unique index makes "one OPEN session per register" hold even
    if two opens race past the service-level check.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_open_register",
            "register_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        db.Index("ix_cash_sessions_cashier_status", "cashier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("cashiers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_count = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set when closing
    closing_float_cents = db.Column(db.Integer, nullable=True)
    expected_float_cents = db.Column(db.Integer, nullable=True)  # opening + total sales
    variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    register = db.relationship("CashRegister", backref=db.backref("sessions", lazy=True))
    cashier = db.relationship("Cashier", backref=db.backref("cash_sessions", lazy=True))

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "sales_count": self.sales_count,
            "total_sales_cents": self.total_sales_cents,
            "closing_float_cents": self.closing_float_cents,
            "expected_float_cents": self.expected_float_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
        }
