"""
Sale Commit Engine

Turns a cart into a persisted sale in a single all-or-nothing transaction.

COMMIT PIPELINE:
1. Tender pre-check (tender_service.reconcile): UnderPaymentError before
   any database work
2. Inside one write-serialized transaction:
   a. lock the OPEN session
   b. revalidate every line against the live catalog (availability,
      zone rules, prices; a changed price is a ConflictError) and re-read
      live stock (variants for product lines, recipe consumables for
      template lines); InsufficientStockError if anything is short
   c. create Sale, SaleLines and Tenders
   d. conditional decrement per stock unit (stock >= qty) plus an
      InventoryMovement row; a lost race is a ConflictError
   e. add the sale to the session counters
3. Commit, clear the caller's cart, return the Sale

Any failure rolls back every write. There are no automatic retries: a
failed commit is reported to the operator, who adjusts and resubmits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import (
    CashSession,
    Consumable,
    InventoryMovement,
    Product,
    ProductVariant,
    Sale,
    SaleLine,
    Tender,
)
from ..cart import Cart, CartLine, ProductLine, TemplateLine, line_total, select_zones
from ..validation import ConflictError, InsufficientStockError, ValidationError
from tillpoint.time_utils import utcnow
from . import cash_session_service, recipe_service, tender_service
from .catalog_service import zone_options
from .concurrency import atomic, lock_for_update
from .document_service import next_order_number
from .tender_service import Reconciliation, TenderInput


SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"

LINE_PRODUCT = "PRODUCT"
LINE_TEMPLATE = "TEMPLATE"

MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_CANCEL = "SALE_CANCEL"


@dataclass(frozen=True)
class CustomerInfo:
    customer_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "CustomerInfo":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("customer must be an object")
        customer_id = data.get("customer_id")
        if customer_id is not None and (isinstance(customer_id, bool) or not isinstance(customer_id, int)):
            raise ValidationError("customer_id must be an integer")

        def _text(key: str) -> Optional[str]:
            value = data.get(key)
            if value is None:
                return None
            return str(value).strip() or None

        return cls(customer_id=customer_id, name=_text("name"), email=_text("email"), phone=_text("phone"))


# =============================================================================
# REVALIDATION
# =============================================================================

def _load_variant(variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None or not variant.is_active or not variant.product.is_active:
        raise ValidationError(f"Variant {variant_id} is not available for sale", details={"variant_id": variant_id})
    return variant


def _check_price(line: CartLine, cart_price: int, live_price: int) -> None:
    if cart_price != live_price:
        raise ConflictError(
            f"Price changed for '{line.description}'; refresh the cart",
            details={
                "line_id": line.line_id,
                "variant_id": line.variant_id,
                "cart_price_cents": cart_price,
                "current_price_cents": live_price,
            },
        )


def _revalidate_line(line: CartLine) -> None:
    """Catalog-side checks the cart cannot make on its own, prices included."""
    if isinstance(line, ProductLine):
        variant = _load_variant(line.variant_id)
        if variant.product.is_template:
            raise ValidationError(f"Variant {line.variant_id} is a template and needs zone selections")
        _check_price(line, line.unit_price_cents, variant.price_cents)
    elif isinstance(line, TemplateLine):
        variant = _load_variant(line.variant_id)
        product: Product = variant.product
        if not product.is_template:
            raise ValidationError(f"Variant {line.variant_id} is not a customizable template")
        live_zones = select_zones(zone_options(product), [z.zone_id for z in line.zones])
        _check_price(line, line.base_price_cents, variant.price_cents)
        cart_zone_prices = {z.zone_id: z.price_cents for z in line.zones}
        for zone in live_zones:
            _check_price(line, cart_zone_prices[zone.zone_id], zone.price_cents)
        if not recipe_service.consumables_for(line.variant_id):
            raise ValidationError(
                f"Template variant {line.variant_id} has no recipe; stock cannot be resolved",
                details={"variant_id": line.variant_id},
            )
    else:
        raise TypeError(f"Unknown cart line type: {type(line).__name__}")


def _stock_needs(lines: Iterable[CartLine]) -> tuple[dict[int, int], dict[int, int]]:
    """Aggregate quantities per variant (product lines) and per consumable (template lines)."""
    variant_needs: dict[int, int] = {}
    template_pairs: list[tuple[int, int]] = []
    for line in lines:
        if isinstance(line, ProductLine):
            variant_needs[line.variant_id] = variant_needs.get(line.variant_id, 0) + line.quantity
        elif isinstance(line, TemplateLine):
            template_pairs.append((line.variant_id, line.quantity))
        else:
            raise TypeError(f"Unknown cart line type: {type(line).__name__}")
    return variant_needs, recipe_service.requirements_for(template_pairs)


def _validate_on_hand(variant_needs: dict[int, int], consumable_needs: dict[int, int]) -> None:
    """Compare against live stock read under lock. Never trusts the cart's snapshots."""
    insufficient = []

    if variant_needs:
        variants = lock_for_update(
            db.session.query(ProductVariant).filter(ProductVariant.id.in_(variant_needs))
        ).all()
        for variant in sorted(variants, key=lambda v: v.id):
            qty = variant_needs[variant.id]
            if variant.stock < qty:
                insufficient.append({
                    "variant_id": variant.id,
                    "description": variant.display_name,
                    "requested_quantity": qty,
                    "on_hand": variant.stock,
                })

    if consumable_needs:
        consumables = lock_for_update(
            db.session.query(Consumable).filter(Consumable.id.in_(consumable_needs))
        ).all()
        for consumable in sorted(consumables, key=lambda c: c.id):
            qty = consumable_needs[consumable.id]
            if consumable.stock < qty:
                insufficient.append({
                    "consumable_id": consumable.id,
                    "description": consumable.name,
                    "requested_quantity": qty,
                    "on_hand": consumable.stock,
                })

    if insufficient:
        raise InsufficientStockError("Insufficient stock to complete sale", details={"items": insufficient})


# =============================================================================
# STOCK MOVEMENTS
# =============================================================================

def _decrement(model, unit_id: int, qty: int, *, sale: Sale) -> None:
    """Conditional decrement: only succeeds while stock still covers qty."""
    result = db.session.execute(
        update(model)
        .where(model.id == unit_id, model.stock >= qty)
        .values(stock=model.stock - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            "Stock changed while committing; try again",
            details={"unit": model.__tablename__, "id": unit_id, "requested_quantity": qty},
        )
    db.session.add(InventoryMovement(
        variant_id=unit_id if model is ProductVariant else None,
        consumable_id=unit_id if model is Consumable else None,
        type=MOVEMENT_SALE,
        quantity_delta=-qty,
        sale_id=sale.id,
        note=f"Sale {sale.order_number}",
        occurred_at=sale.created_at,
    ))


def _restore(movement: InventoryMovement, *, sale: Sale, occurred_at: datetime) -> None:
    qty = -movement.quantity_delta
    model = ProductVariant if movement.variant_id is not None else Consumable
    unit_id = movement.variant_id if movement.variant_id is not None else movement.consumable_id
    db.session.execute(
        update(model)
        .where(model.id == unit_id)
        .values(stock=model.stock + qty)
        .execution_options(synchronize_session=False)
    )
    db.session.add(InventoryMovement(
        variant_id=movement.variant_id,
        consumable_id=movement.consumable_id,
        type=MOVEMENT_SALE_CANCEL,
        quantity_delta=qty,
        sale_id=sale.id,
        note=f"Cancel sale {sale.order_number}",
        occurred_at=occurred_at,
    ))


# =============================================================================
# COMMIT
# =============================================================================

def _snapshot_line(sale: Sale, position: int, line: CartLine) -> SaleLine:
    if isinstance(line, ProductLine):
        kind, zones = LINE_PRODUCT, None
    elif isinstance(line, TemplateLine):
        kind, zones = LINE_TEMPLATE, [z.to_dict() for z in line.zones]
    else:
        raise TypeError(f"Unknown cart line type: {type(line).__name__}")
    return SaleLine(
        sale_id=sale.id,
        position=position,
        kind=kind,
        variant_id=line.variant_id,
        description=line.description,
        quantity=line.quantity,
        unit_price_cents=line.price_cents,
        discount_cents=line.discount_cents,
        line_total_cents=line_total(line),
        zones=zones,
    )


def commit_sale(
    cart: Cart,
    session_id: int,
    payment_method: str,
    tenders: Iterable[TenderInput],
    customer: CustomerInfo | None = None,
    notes: str | None = None,
    *,
    cashier_id: int | None = None,
) -> Sale:
    """
    Commit the cart as a sale against an OPEN session.

    Args:
        cart: Cart to sell; cleared on success, untouched on failure
        session_id: Owning cash session
        payment_method: CASH, CARD, TRANSFER or MIXED
        tenders: Proposed payment instruments
        customer: Optional customer reference/contact
        notes: Optional free text
        cashier_id: When given, must own the session

    Raises:
        ValidationError, UnderPaymentError, InsufficientStockError, ConflictError
    """
    if cart.is_empty:
        raise ValidationError("Cannot commit an empty cart")

    totals = cart.totals()
    recon: Reconciliation = tender_service.reconcile(totals["total_cents"], payment_method, tenders)
    customer = customer or CustomerInfo()
    lines = list(cart.lines)

    try:
        with atomic():
            session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
            if not session:
                raise ValidationError("Session not found")
            if session.status != cash_session_service.SESSION_OPEN:
                raise ConflictError("Session is not open", details={"session_id": session_id})
            if cashier_id is not None and session.cashier_id != cashier_id:
                raise ConflictError("Session belongs to another cashier")

            for line in lines:
                _revalidate_line(line)

            variant_needs, consumable_needs = _stock_needs(lines)
            _validate_on_hand(variant_needs, consumable_needs)

            now = utcnow()
            sale = Sale(
                order_number=next_order_number(current_app.config.get("POS_ORDER_PREFIX", "POS"), on=now.date()),
                session_id=session.id,
                register_id=session.register_id,
                cashier_id=session.cashier_id,
                status=SALE_COMPLETED,
                subtotal_cents=totals["subtotal_cents"],
                discount_cents=totals["discount_cents"],
                tax_cents=totals["tax_cents"],
                total_cents=totals["total_cents"],
                payment_method=recon.payment_method,
                amount_tendered_cents=recon.amount_tendered_cents,
                change_due_cents=recon.change_cents,
                customer_id=customer.customer_id,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                notes=notes,
                created_at=now,
            )
            db.session.add(sale)
            db.session.flush()

            for position, line in enumerate(lines, start=1):
                db.session.add(_snapshot_line(sale, position, line))

            for t in recon.tenders:
                db.session.add(Tender(
                    sale_id=sale.id,
                    method=t.method,
                    amount_cents=t.amount_cents,
                    change_cents=t.change_cents,
                    reference=t.reference,
                    created_at=now,
                ))

            for variant_id in sorted(variant_needs):
                _decrement(ProductVariant, variant_id, variant_needs[variant_id], sale=sale)
            for consumable_id in sorted(consumable_needs):
                _decrement(Consumable, consumable_id, consumable_needs[consumable_id], sale=sale)

            cash_session_service.record_sale(session.id, sale.total_cents)
    except (InsufficientStockError, ConflictError) as exc:
        current_app.logger.warning("Sale commit rejected on session %s: %s %s", session_id, exc.message, exc.details)
        raise

    current_app.logger.info(
        "Sale %s committed on session %s: total=%s method=%s change=%s",
        sale.order_number, session_id, sale.total_cents, sale.payment_method, sale.change_due_cents,
    )
    cart.clear()
    return sale


# =============================================================================
# CANCEL
# =============================================================================

def cancel_sale(sale_id: int, cashier_id: int, reason: str) -> Sale:
    """
    Cancel a committed sale and put its stock back.

    Restores exactly what the sale's movements took (not the current
    recipe) and removes the sale from its session counters. Sales whose
    session is already CLOSED cannot be cancelled.
    """
    if not reason or not reason.strip():
        raise ValidationError("A cancel reason is required")

    with atomic():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise ValidationError("Sale not found")
        if sale.status == SALE_CANCELLED:
            raise ConflictError("Sale already cancelled")
        if sale.cashier_id != cashier_id:
            raise ConflictError("Only the selling cashier can cancel this sale")

        cash_session_service.reverse_sale(sale.session_id, sale.total_cents)

        now = utcnow()
        movements = (
            db.session.query(InventoryMovement)
            .filter_by(sale_id=sale.id, type=MOVEMENT_SALE)
            .order_by(InventoryMovement.id)
            .all()
        )
        for movement in movements:
            _restore(movement, sale=sale, occurred_at=now)

        sale.status = SALE_CANCELLED
        sale.cancelled_at = now
        sale.cancelled_by_cashier_id = cashier_id
        sale.cancel_reason = reason.strip()

    current_app.logger.info("Sale %s cancelled by cashier %s: %s", sale.order_number, cashier_id, reason)
    return sale


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def get_sale_by_number(order_number: str) -> Sale | None:
    return db.session.query(Sale).filter_by(order_number=order_number).first()


def get_sales_history(
    *,
    cashier_id: int | None = None,
    register_id: int | None = None,
    session_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    query = db.session.query(Sale)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    if register_id is not None:
        query = query.filter(Sale.register_id == register_id)
    if session_id is not None:
        query = query.filter(Sale.session_id == session_id)
    if status:
        query = query.filter(Sale.status == status.upper())
    if date_from is not None:
        query = query.filter(Sale.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Sale.created_at <= date_to)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
