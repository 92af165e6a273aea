"""
In-memory POS cart.

The cart is a plain value owned by the caller (UI, API request, test) and
passed explicitly into the commit engine; nothing here touches the
database. Line kinds form a closed union (ProductLine | TemplateLine) and
every consumer dispatches on the concrete class, raising TypeError for
anything else.

Money is integer minor units. Violations never raise: operations return
a falsy CartResult and leave the cart exactly as it was.

Stock figures carried on lines are snapshots from the last lookup. They
drive UX only (capping a quantity, disabling a "+" button); the commit
engine re-reads live stock before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Iterable, Optional, Union

from .validation import ValidationError, coerce_amount, coerce_int


PRODUCT = "product"
TEMPLATE = "template"


# =============================================================================
# CATALOG INPUT (what a lookup hands to the cart)
# =============================================================================

@dataclass(frozen=True)
class ZoneOption:
    zone_id: int
    zone_type: str
    name: str
    price_cents: int
    is_required: bool = False
    is_blocked: bool = False

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "zone_type": self.zone_type,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_required": self.is_required,
            "is_blocked": self.is_blocked,
        }


@dataclass(frozen=True)
class SellableUnit:
    """Priceable unit resolved by the catalog (a fixed variant or a template variant)."""
    kind: str
    variant_id: int
    description: str
    price_cents: int
    stock: Optional[int]
    sku: Optional[str] = None
    barcode: Optional[str] = None
    zones: tuple[ZoneOption, ...] = ()

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "variant_id": self.variant_id,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "sku": self.sku,
            "barcode": self.barcode,
            "zones": [z.to_dict() for z in self.zones],
        }


@dataclass(frozen=True)
class ZoneSelection:
    zone_id: int
    zone_type: str
    name: str
    price_cents: int

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "zone_type": self.zone_type,
            "name": self.name,
            "price_cents": self.price_cents,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ZoneSelection":
        return cls(
            zone_id=coerce_int("zone_id", data.get("zone_id")),
            zone_type=str(data.get("zone_type") or ""),
            name=str(data.get("name") or ""),
            price_cents=coerce_amount("price_cents", data.get("price_cents")),
        )


def select_zones(options: Iterable[ZoneOption], selected_zone_ids: Iterable[int]) -> tuple[ZoneSelection, ...]:
    """
    Validate a zone selection against a template's zones.

    Rules:
    - every selected id must be a zone of this template and not blocked
    - at most one zone per category (zone_type)
    - every category holding a required zone must have a selection

    Returns selections in the template's zone order.
    Raises ValidationError.
    """
    options = list(options)
    by_id = {z.zone_id: z for z in options}

    chosen_ids: list[int] = []
    for raw in selected_zone_ids:
        zone_id = coerce_int("zone_id", raw)
        if zone_id in chosen_ids:
            continue
        zone = by_id.get(zone_id)
        if zone is None:
            raise ValidationError(f"Zone {zone_id} does not belong to this template")
        if zone.is_blocked:
            raise ValidationError(f"Zone '{zone.name}' is not available")
        chosen_ids.append(zone_id)

    per_type: dict[str, int] = {}
    for zone_id in chosen_ids:
        zone_type = by_id[zone_id].zone_type
        if zone_type in per_type:
            raise ValidationError(
                f"Only one zone per category may be selected ({zone_type})",
                details={"zone_type": zone_type},
            )
        per_type[zone_type] = zone_id

    missing = sorted({z.zone_type for z in options if z.is_required and not z.is_blocked} - set(per_type))
    if missing:
        raise ValidationError(
            "Required zone selection missing",
            details={"zone_types": missing},
        )

    return tuple(
        ZoneSelection(z.zone_id, z.zone_type, z.name, z.price_cents)
        for z in options
        if z.zone_id in per_type.values()
    )


# =============================================================================
# LINES
# =============================================================================

@dataclass
class ProductLine:
    kind: ClassVar[str] = PRODUCT

    line_id: str
    variant_id: int
    description: str
    unit_price_cents: int
    quantity: int
    stock_snapshot: int
    discount_cents: int = 0

    @property
    def price_cents(self) -> int:
        return self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "line_id": self.line_id,
            "variant_id": self.variant_id,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "stock": self.stock_snapshot,
            "discount_cents": self.discount_cents,
            "line_total_cents": line_total(self),
        }


@dataclass
class TemplateLine:
    kind: ClassVar[str] = TEMPLATE

    line_id: str
    variant_id: int
    description: str
    base_price_cents: int
    zones: tuple[ZoneSelection, ...]
    quantity: int
    discount_cents: int = 0

    @property
    def zone_ids(self) -> tuple[int, ...]:
        return tuple(z.zone_id for z in self.zones)

    @property
    def price_cents(self) -> int:
        return self.base_price_cents + sum(z.price_cents for z in self.zones)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "line_id": self.line_id,
            "variant_id": self.variant_id,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "zones": [z.to_dict() for z in self.zones],
            "unit_price_cents": self.price_cents,
            "quantity": self.quantity,
            "discount_cents": self.discount_cents,
            "line_total_cents": line_total(self),
        }


CartLine = Union[ProductLine, TemplateLine]


def line_gross(line: CartLine) -> int:
    """Unit price times quantity, before the line discount."""
    if isinstance(line, (ProductLine, TemplateLine)):
        return line.price_cents * line.quantity
    raise TypeError(f"Unknown cart line type: {type(line).__name__}")


def line_total(line: CartLine) -> int:
    return line_gross(line) - line.discount_cents


def line_from_dict(data: dict) -> CartLine:
    line = _line_from_dict(data)
    line.discount_cents = coerce_int("discount_cents", data.get("discount_cents", 0), minimum=0)
    if line.discount_cents > line_gross(line):
        raise ValidationError(
            f"Line discount exceeds line amount ({line.line_id})",
            details={"line_id": line.line_id},
        )
    return line


def _line_from_dict(data: dict) -> CartLine:
    kind = data.get("kind")
    quantity = coerce_int("quantity", data.get("quantity"), minimum=1)
    if kind == PRODUCT:
        return ProductLine(
            line_id=str(data["line_id"]),
            variant_id=coerce_int("variant_id", data.get("variant_id")),
            description=str(data.get("description") or ""),
            unit_price_cents=coerce_amount("unit_price_cents", data.get("unit_price_cents")),
            quantity=quantity,
            stock_snapshot=coerce_int("stock", data.get("stock", 0)),
        )
    if kind == TEMPLATE:
        return TemplateLine(
            line_id=str(data["line_id"]),
            variant_id=coerce_int("variant_id", data.get("variant_id")),
            description=str(data.get("description") or ""),
            base_price_cents=coerce_amount("base_price_cents", data.get("base_price_cents")),
            zones=tuple(ZoneSelection.from_dict(z) for z in data.get("zones") or []),
            quantity=quantity,
        )
    raise ValidationError(f"Unknown cart line kind: {kind!r}")


# =============================================================================
# CART
# =============================================================================

@dataclass(frozen=True)
class CartResult:
    ok: bool
    error: Optional[str] = None
    line_id: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.ok


def _rejected(error: str, **details) -> CartResult:
    return CartResult(ok=False, error=error, details=details)


def _quantity(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class Cart:
    """Lines (each with an optional discount), a cart-level discount, and derived totals."""

    def __init__(self, tax_rate_bps: int = 0):
        if tax_rate_bps < 0:
            raise ValueError("tax_rate_bps must be >= 0")
        self.tax_rate_bps = tax_rate_bps
        self.lines: list[CartLine] = []
        self.discount_cents = 0
        self._next_line_no = 1

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def _new_line_id(self) -> str:
        line_id = f"L{self._next_line_no}"
        self._next_line_no += 1
        return line_id

    def find(self, line_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None

    # ------------------------------------------------------------------ totals

    @property
    def subtotal_cents(self) -> int:
        return sum(line_total(line) for line in self.lines)

    @property
    def taxable_base_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents

    @property
    def tax_cents(self) -> int:
        base = self.taxable_base_cents
        # half-up rounding to the minor unit
        return (base * self.tax_rate_bps + 5_000) // 10_000

    @property
    def total_cents(self) -> int:
        return self.taxable_base_cents + self.tax_cents

    def totals(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "taxable_base_cents": self.taxable_base_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
        }

    # --------------------------------------------------------------- mutations

    def add_product_line(self, unit: SellableUnit, quantity: int = 1) -> CartResult:
        """Append or merge into the line for the same variant, within the stock snapshot."""
        if unit.kind != PRODUCT:
            return _rejected("Unit is not a fixed product")
        qty = _quantity(quantity)
        if qty is None or qty < 1:
            return _rejected("Quantity must be at least 1")

        stock = unit.stock if unit.stock is not None else 0
        existing = next(
            (l for l in self.lines if isinstance(l, ProductLine) and l.variant_id == unit.variant_id),
            None,
        )
        requested = qty + (existing.quantity if existing else 0)
        if requested > stock:
            return _rejected("Insufficient stock", available=stock, requested=requested)

        if existing:
            existing.quantity = requested
            existing.stock_snapshot = stock
            return CartResult(ok=True, line_id=existing.line_id)

        line = ProductLine(
            line_id=self._new_line_id(),
            variant_id=unit.variant_id,
            description=unit.description,
            unit_price_cents=unit.price_cents,
            quantity=qty,
            stock_snapshot=stock,
        )
        self.lines.append(line)
        return CartResult(ok=True, line_id=line.line_id)

    def add_template_line(
        self,
        unit: SellableUnit,
        selected_zone_ids: Iterable[int],
        quantity: int = 1,
    ) -> CartResult:
        """
        Price a template from base + selected zones.

        Merges into the line with the same variant and the same zone
        combination; any other combination is a new line.
        """
        if unit.kind != TEMPLATE:
            return _rejected("Unit is not a customizable template")
        qty = _quantity(quantity)
        if qty is None or qty < 1:
            return _rejected("Quantity must be at least 1")
        try:
            zones = select_zones(unit.zones, selected_zone_ids)
        except ValidationError as exc:
            return _rejected(exc.message, **exc.details)

        zone_ids = tuple(z.zone_id for z in zones)
        existing = next(
            (
                l for l in self.lines
                if isinstance(l, TemplateLine) and l.variant_id == unit.variant_id and l.zone_ids == zone_ids
            ),
            None,
        )
        if existing:
            existing.quantity += qty
            return CartResult(ok=True, line_id=existing.line_id)

        line = TemplateLine(
            line_id=self._new_line_id(),
            variant_id=unit.variant_id,
            description=unit.description,
            base_price_cents=unit.price_cents,
            zones=zones,
            quantity=qty,
        )
        self.lines.append(line)
        return CartResult(ok=True, line_id=line.line_id)

    def update_quantity(self, line_id: str, quantity: int) -> CartResult:
        """No-op below 1; product lines are clamped to their stock snapshot."""
        line = self.find(line_id)
        if line is None:
            return _rejected("Line not found", line_id=line_id)
        qty = _quantity(quantity)
        if qty is None or qty < 1:
            return _rejected("Quantity must be at least 1", line_id=line_id)

        if isinstance(line, ProductLine):
            line.quantity = min(qty, max(line.stock_snapshot, 1))
        elif isinstance(line, TemplateLine):
            line.quantity = qty
        else:
            raise TypeError(f"Unknown cart line type: {type(line).__name__}")

        line.discount_cents = min(line.discount_cents, line_gross(line))
        self._cap_discount()
        return CartResult(ok=True, line_id=line.line_id)

    def remove_line(self, line_id: str) -> CartResult:
        line = self.find(line_id)
        if line is None:
            return _rejected("Line not found", line_id=line_id)
        self.lines.remove(line)
        self._cap_discount()
        return CartResult(ok=True, line_id=line_id)

    def set_discount(self, amount_cents: int) -> CartResult:
        amount = _quantity(amount_cents)
        if amount is None:
            return _rejected("Discount must be an integer amount")
        if amount < 0:
            return _rejected("Discount cannot be negative")
        if amount > self.subtotal_cents:
            return _rejected("Discount cannot exceed subtotal", subtotal_cents=self.subtotal_cents)
        self.discount_cents = amount
        return CartResult(ok=True)

    def set_line_discount(self, line_id: str, amount_cents: int) -> CartResult:
        """Discount one line, between 0 and its unit price times quantity."""
        line = self.find(line_id)
        if line is None:
            return _rejected("Line not found", line_id=line_id)
        amount = _quantity(amount_cents)
        if amount is None:
            return _rejected("Discount must be an integer amount", line_id=line_id)
        if amount < 0:
            return _rejected("Discount cannot be negative", line_id=line_id)
        gross = line_gross(line)
        if amount > gross:
            return _rejected("Discount cannot exceed line amount", line_id=line_id, line_amount_cents=gross)
        line.discount_cents = amount
        self._cap_discount()
        return CartResult(ok=True, line_id=line_id)

    def clear(self) -> None:
        self.lines = []
        self.discount_cents = 0

    def _cap_discount(self) -> None:
        if self.discount_cents > self.subtotal_cents:
            self.discount_cents = self.subtotal_cents

    # ----------------------------------------------------------- serialization

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "next_line_no": self._next_line_no,
            **self.totals(),
        }

    @classmethod
    def from_dict(cls, data: dict | None, *, tax_rate_bps: int) -> "Cart":
        """
        Rebuild a cart sent back by a client.

        The tax rate always comes from server configuration, never the payload.
        Raises ValidationError for malformed lines or discounts.
        """
        cart = cls(tax_rate_bps=tax_rate_bps)
        if not data:
            return cart
        if not isinstance(data, dict):
            raise ValidationError("cart must be an object")

        seen: set[str] = set()
        for raw in data.get("lines") or []:
            if not isinstance(raw, dict) or "line_id" not in raw:
                raise ValidationError("Each cart line needs a line_id")
            line = line_from_dict(raw)
            if line.line_id in seen:
                raise ValidationError(f"Duplicate line_id {line.line_id}")
            seen.add(line.line_id)
            cart.lines.append(line)

        next_no = data.get("next_line_no")
        if isinstance(next_no, int) and not isinstance(next_no, bool) and next_no > 0:
            cart._next_line_no = next_no
        else:
            cart._next_line_no = len(cart.lines) + 1
        while f"L{cart._next_line_no}" in seen:
            cart._next_line_no += 1

        discount = coerce_int("discount_cents", data.get("discount_cents", 0), minimum=0)
        if discount > cart.subtotal_cents:
            raise ValidationError("Discount cannot exceed subtotal")
        cart.discount_cents = discount
        return cart
