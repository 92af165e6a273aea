from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

class InventoryMovement(db.Model):
    """
    Append-only stock ledger.

    One row per stock change made by the POS: a negative delta for every
    unit a sale consumed, a positive delta when a cancellation restores it.
    Written in the same transaction as the stock UPDATE it records, so a
    sale never exists without its movements (and vice versa).

    Exactly one of variant_id / consumable_id is set.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint(
            "(variant_id IS NULL) <> (consumable_id IS NULL)",
            name="ck_inventory_movements_single_target",
        ),
        db.Index("ix_inventory_movements_sale", "sale_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    consumable_id = db.Column(db.Integer, db.ForeignKey("consumables.id"), nullable=True, index=True)

    # SALE, SALE_CANCEL
    type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "consumable_id": self.consumable_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "sale_id": self.sale_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
