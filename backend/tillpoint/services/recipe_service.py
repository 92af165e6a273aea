# Overview: Stock/recipe resolver; maps template variants to the raw materials they consume.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import TemplateRecipe, Consumable


@dataclass(frozen=True)
class ConsumableRequirement:
    consumable_id: int
    quantity_per_unit: int


def consumables_for(variant_id: int) -> list[ConsumableRequirement]:
    """Recipe of one template variant, ordered by consumable id."""
    rows = (
        db.session.query(TemplateRecipe)
        .filter_by(variant_id=variant_id)
        .order_by(TemplateRecipe.consumable_id)
        .all()
    )
    return [ConsumableRequirement(r.consumable_id, r.quantity) for r in rows]


def requirements_for(lines: list[tuple[int, int]]) -> dict[int, int]:
    """
    Aggregate consumable needs for (variant_id, quantity) pairs.

    Returns {consumable_id: total_quantity}. Variants without a recipe
    contribute nothing; callers decide whether that is acceptable.
    """
    totals: dict[int, int] = {}
    for variant_id, quantity in lines:
        for req in consumables_for(variant_id):
            totals[req.consumable_id] = totals.get(req.consumable_id, 0) + req.quantity_per_unit * quantity
    return totals


def available_units(variant_id: int) -> int | None:
    """
    How many units of a template variant current raw-material stock allows.

    None when the variant has no recipe.
    """
    rows = (
        db.session.query(TemplateRecipe.quantity, Consumable.stock)
        .join(Consumable, Consumable.id == TemplateRecipe.consumable_id)
        .filter(TemplateRecipe.variant_id == variant_id)
        .all()
    )
    if not rows:
        return None
    return min(stock // qty if qty > 0 else stock for qty, stock in rows)
