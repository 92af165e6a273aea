# Overview: Catalog lookup; resolves scanned or typed identifiers to sellable units.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, ProductVariant
from ..cart import PRODUCT, TEMPLATE, SellableUnit, ZoneOption
from .recipe_service import available_units


class CatalogError(Exception):
    """Raised for catalog lookup errors."""
    pass


def _active_variants():
    return (
        db.session.query(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(ProductVariant.is_active.is_(True), Product.is_active.is_(True))
    )


def zone_options(product: Product) -> tuple[ZoneOption, ...]:
    return tuple(
        ZoneOption(
            zone_id=z.id,
            zone_type=z.zone_type.slug,
            name=z.name,
            price_cents=z.price_cents,
            is_required=z.is_required,
            is_blocked=z.is_blocked,
        )
        for z in product.zones
    )


def to_unit(variant: ProductVariant) -> SellableUnit:
    """
    Build the cart-facing view of a variant.

    Fixed products report the variant's own stock. Templates report how
    many units their raw materials allow (None without a recipe).
    """
    product = variant.product
    if product.is_template:
        return SellableUnit(
            kind=TEMPLATE,
            variant_id=variant.id,
            description=variant.display_name,
            price_cents=variant.price_cents,
            stock=available_units(variant.id),
            sku=variant.sku,
            barcode=variant.barcode,
            zones=zone_options(product),
        )
    return SellableUnit(
        kind=PRODUCT,
        variant_id=variant.id,
        description=variant.display_name,
        price_cents=variant.price_cents,
        stock=variant.stock,
        sku=variant.sku,
        barcode=variant.barcode,
    )


def get_unit(variant_id: int) -> SellableUnit:
    variant = _active_variants().filter(ProductVariant.id == variant_id).first()
    if variant is None:
        raise CatalogError(f"Variant {variant_id} not found or inactive")
    return to_unit(variant)


def search(query: str, limit: int = 20) -> list[SellableUnit]:
    """Active variants whose product name, SKU or barcode contains query."""
    q = (query or "").strip()
    if not q:
        return []
    pattern = f"%{q.lower()}%"
    variants = (
        _active_variants()
        .filter(
            or_(
                func.lower(Product.name).like(pattern),
                func.lower(ProductVariant.sku).like(pattern),
                ProductVariant.barcode.like(f"%{q}%"),
            )
        )
        .order_by(Product.name, ProductVariant.id)
        .limit(limit)
        .all()
    )
    return [to_unit(v) for v in variants]


def resolve(code_or_query: str) -> SellableUnit | None:
    """
    Resolve a confirmed scan or a typed entry.

    Order: exact barcode, exact SKU (case-insensitive), then a name/partial
    search that matches exactly one active variant. Anything ambiguous or
    unknown resolves to None.
    """
    value = (code_or_query or "").strip()
    if not value:
        return None

    variant = _active_variants().filter(ProductVariant.barcode == value).first()
    if variant is None:
        variant = _active_variants().filter(func.lower(ProductVariant.sku) == value.lower()).first()
    if variant is not None:
        return to_unit(variant)

    matches = search(value, limit=2)
    if len(matches) == 1:
        return matches[0]
    return None
