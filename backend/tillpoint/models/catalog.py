from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z

class Product(db.Model):
    """
    Catalog item.

    Fixed products are sold per variant and consume the variant's own stock.
    Templates (is_template=True) are blanks customized at sale time with
    priced zones; their variants consume raw materials through recipes.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_template = db.Column(db.Boolean, nullable=False, default=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} template={self.is_template}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_template": self.is_template,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    """
    Sellable stock-keeping unit (one color/size combination).

    stock is the authoritative on-hand count. It is only ever decremented
    with a conditional UPDATE (stock >= qty) inside a sale transaction.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    @property
    def display_name(self) -> str:
        parts = [self.product.name]
        attrs = [a for a in (self.color, self.size) if a]
        if attrs:
            parts.append(" / ".join(attrs))
        return " - ".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "color": self.color,
            "size": self.size,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "is_active": self.is_active,
        }


class ZoneType(db.Model):
    """Customization category (e.g. DTF, embroidery). One selection per category per line."""
    __tablename__ = "zone_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "slug": self.slug, "name": self.name}


class TemplateZone(db.Model):
    """
    Priced customization area on a template.

    is_required: the zone's category must always carry a selection.
    is_blocked: zone exists but cannot currently be sold.
    """
    __tablename__ = "template_zones"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    zone_type_id = db.Column(db.Integer, db.ForeignKey("zone_types.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("zones", lazy=True, order_by="TemplateZone.sort_order"))
    zone_type = db.relationship("ZoneType")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "zone_type": self.zone_type.slug,
            "zone_type_name": self.zone_type.name,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_required": self.is_required,
            "is_blocked": self.is_blocked,
        }


class Consumable(db.Model):
    """Raw material (blank garment, film sheet, thread) consumed by template sales."""
    __tablename__ = "consumables"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_consumables_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="unit")
    stock = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "stock": self.stock,
        }


class TemplateRecipe(db.Model):
    """How much of a consumable one unit of a template variant uses."""
    __tablename__ = "template_recipes"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "consumable_id", name="uq_template_recipes_variant_consumable"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    consumable_id = db.Column(db.Integer, db.ForeignKey("consumables.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    variant = db.relationship("ProductVariant", backref=db.backref("recipe", lazy=True))
    consumable = db.relationship("Consumable")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "consumable_id": self.consumable_id,
            "quantity": self.quantity,
        }
