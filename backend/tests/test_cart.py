"""
Cart model tests.

Pure in-memory tests: units are built by hand, no database involved.
"""

import pytest

from tillpoint.cart import (
    PRODUCT,
    TEMPLATE,
    Cart,
    ProductLine,
    SellableUnit,
    TemplateLine,
    ZoneOption,
    line_total,
    select_zones,
)
from tillpoint.validation import ValidationError


SHIRT = SellableUnit(kind=PRODUCT, variant_id=1, description="Basic Tee - Black / M", price_cents=20000, stock=2)
CAP = SellableUnit(kind=PRODUCT, variant_id=2, description="Cap", price_cents=5000, stock=10)

ZONES = (
    ZoneOption(zone_id=11, zone_type="dtf", name="Front", price_cents=8000, is_required=True),
    ZoneOption(zone_id=12, zone_type="dtf", name="Back", price_cents=6000),
    ZoneOption(zone_id=13, zone_type="embroidery", name="Left sleeve", price_cents=4000),
    ZoneOption(zone_id=14, zone_type="embroidery", name="Pocket", price_cents=3000, is_blocked=True),
)
CUSTOM = SellableUnit(kind=TEMPLATE, variant_id=3, description="Custom Tee", price_cents=30000, stock=5, zones=ZONES)


def _snapshot(cart):
    return cart.to_dict()


class TestProductLines:

    def test_add_new_line(self):
        cart = Cart(tax_rate_bps=1900)
        result = cart.add_product_line(SHIRT, 1)
        assert result
        assert result.line_id == "L1"
        assert cart.subtotal_cents == 20000

    def test_adding_same_variant_merges(self):
        cart = Cart()
        cart.add_product_line(SHIRT, 1)
        result = cart.add_product_line(SHIRT, 1)
        assert result.line_id == "L1"
        assert len(cart) == 1
        assert cart.lines[0].quantity == 2

    def test_add_over_stock_snapshot_is_rejected_without_change(self):
        cart = Cart()
        cart.add_product_line(SHIRT, 2)
        before = _snapshot(cart)

        result = cart.add_product_line(SHIRT, 1)

        assert not result
        assert result.error == "Insufficient stock"
        assert result.details == {"available": 2, "requested": 3}
        assert _snapshot(cart) == before

    def test_out_of_stock_unit_cannot_be_added(self):
        cart = Cart()
        sold_out = SellableUnit(kind=PRODUCT, variant_id=9, description="Gone", price_cents=100, stock=0)
        assert not cart.add_product_line(sold_out)
        assert cart.is_empty

    @pytest.mark.parametrize("qty", [0, -1, True, 1.5, "2"])
    def test_bad_quantity_rejected(self, qty):
        cart = Cart()
        assert not cart.add_product_line(CAP, qty)
        assert cart.is_empty

    def test_template_unit_is_not_a_product(self):
        cart = Cart()
        assert not cart.add_product_line(CUSTOM)


class TestTemplateLines:

    def test_price_is_base_plus_zones(self):
        cart = Cart()
        result = cart.add_template_line(CUSTOM, [11, 13])
        assert result
        line = cart.lines[0]
        assert isinstance(line, TemplateLine)
        assert line.price_cents == 30000 + 8000 + 4000
        assert [z.name for z in line.zones] == ["Front", "Left sleeve"]

    def test_identical_zone_combination_merges(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11, 13])
        result = cart.add_template_line(CUSTOM, [13, 11], 2)
        assert result.line_id == "L1"
        assert len(cart) == 1
        assert cart.lines[0].quantity == 3
        assert cart.subtotal_cents == 3 * 42000

    def test_different_zone_combination_is_a_new_line(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11])
        result = cart.add_template_line(CUSTOM, [11, 13])
        assert result.line_id == "L2"
        assert [l.zone_ids for l in cart.lines] == [(11,), (11, 13)]

    def test_template_and_product_lines_never_merge(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11])
        cart.add_product_line(CAP)
        cart.add_template_line(CUSTOM, [11])
        assert [(l.kind, l.quantity) for l in cart.lines] == [(TEMPLATE, 2), (PRODUCT, 1)]

    def test_two_zones_of_one_category_rejected(self):
        cart = Cart()
        result = cart.add_template_line(CUSTOM, [11, 12])
        assert not result
        assert result.details == {"zone_type": "dtf"}
        assert cart.is_empty

    def test_missing_required_category_rejected(self):
        cart = Cart()
        result = cart.add_template_line(CUSTOM, [13])
        assert not result
        assert result.details == {"zone_types": ["dtf"]}

    def test_other_zone_of_required_category_satisfies_it(self):
        cart = Cart()
        assert cart.add_template_line(CUSTOM, [12])

    def test_blocked_zone_rejected(self):
        cart = Cart()
        assert not cart.add_template_line(CUSTOM, [11, 14])

    def test_foreign_zone_rejected(self):
        with pytest.raises(ValidationError):
            select_zones(ZONES, [99])


class TestQuantityAndRemoval:

    def test_update_quantity_below_one_is_noop(self):
        cart = Cart()
        cart.add_product_line(CAP, 3)
        before = _snapshot(cart)
        assert not cart.update_quantity("L1", 0)
        assert _snapshot(cart) == before

    def test_update_to_current_quantity_keeps_totals(self):
        cart = Cart(tax_rate_bps=1900)
        cart.add_product_line(SHIRT, 2)
        cart.add_template_line(CUSTOM, [11, 13], 3)
        cart.set_discount(5000)
        before = cart.totals()

        for line in list(cart.lines):
            assert cart.update_quantity(line.line_id, line.quantity)

        assert cart.totals() == before

    def test_update_quantity_clamps_to_snapshot(self):
        cart = Cart()
        cart.add_product_line(SHIRT, 1)
        assert cart.update_quantity("L1", 7)
        assert cart.lines[0].quantity == 2

    def test_template_quantity_is_not_clamped(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11])
        cart.update_quantity("L1", 40)
        assert cart.lines[0].quantity == 40

    def test_unknown_line(self):
        cart = Cart()
        assert not cart.update_quantity("L9", 2)
        assert not cart.remove_line("L9")

    def test_remove_line(self):
        cart = Cart()
        cart.add_product_line(CAP, 1)
        cart.add_product_line(SHIRT, 1)
        assert cart.remove_line("L1")
        assert [l.line_id for l in cart.lines] == ["L2"]

    def test_removing_lines_caps_discount(self):
        cart = Cart()
        cart.add_product_line(CAP, 1)
        cart.add_product_line(SHIRT, 1)
        cart.set_discount(20000)
        cart.remove_line("L2")
        assert cart.discount_cents == 5000


class TestLineDiscount:

    def test_reduces_line_total_and_subtotal(self):
        cart = Cart(tax_rate_bps=1900)
        cart.add_product_line(SHIRT, 2)
        result = cart.set_line_discount("L1", 2000)
        assert result
        assert cart.lines[0].to_dict()["line_total_cents"] == 38000
        assert cart.subtotal_cents == 38000
        assert cart.tax_cents == 7220

    def test_can_discount_the_whole_line(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11])
        assert cart.set_line_discount("L1", 38000)
        assert cart.subtotal_cents == 0

    @pytest.mark.parametrize("amount", [-1, 40001, 1.5, "100", None])
    def test_out_of_range_rejected_without_change(self, amount):
        cart = Cart()
        cart.add_product_line(SHIRT, 2)
        cart.set_line_discount("L1", 500)
        before = _snapshot(cart)
        assert not cart.set_line_discount("L1", amount)
        assert _snapshot(cart) == before

    def test_unknown_line(self):
        cart = Cart()
        result = cart.set_line_discount("L7", 100)
        assert not result
        assert result.details == {"line_id": "L7"}

    def test_lowering_quantity_caps_line_discount(self):
        cart = Cart()
        cart.add_template_line(CUSTOM, [11], 3)
        cart.set_line_discount("L1", 100000)
        cart.update_quantity("L1", 2)
        assert cart.lines[0].discount_cents == 76000
        assert cart.subtotal_cents == 0

    def test_line_discount_caps_cart_discount(self):
        cart = Cart()
        cart.add_product_line(CAP, 1)
        cart.set_discount(5000)
        cart.set_line_discount("L1", 1000)
        assert cart.discount_cents == 4000

    def test_merge_keeps_line_discount(self):
        cart = Cart()
        cart.add_product_line(CAP, 1)
        cart.set_line_discount("L1", 500)
        cart.add_product_line(CAP, 1)
        assert cart.lines[0].discount_cents == 500
        assert cart.subtotal_cents == 9500


class TestTotals:

    def test_discount_and_tax(self):
        cart = Cart(tax_rate_bps=1900)
        cart.add_product_line(SHIRT, 2)
        assert cart.set_discount(5000)
        assert cart.totals() == {
            "subtotal_cents": 40000,
            "discount_cents": 5000,
            "taxable_base_cents": 35000,
            "tax_cents": 6650,
            "total_cents": 41650,
            "tax_rate_bps": 1900,
        }

    def test_tax_rounds_half_up(self):
        cart = Cart(tax_rate_bps=1900)
        odd = SellableUnit(kind=PRODUCT, variant_id=5, description="Sticker", price_cents=50, stock=10)
        cart.add_product_line(odd, 1)
        # 50 * 0.19 = 9.5
        assert cart.tax_cents == 10

    @pytest.mark.parametrize("amount", [-1, 40001])
    def test_discount_out_of_range_rejected(self, amount):
        cart = Cart()
        cart.add_product_line(SHIRT, 2)
        assert not cart.set_discount(amount)
        assert cart.discount_cents == 0

    def test_empty_cart_totals_are_zero(self):
        cart = Cart(tax_rate_bps=1900)
        assert cart.total_cents == 0
        assert cart.is_empty

    def test_clear(self):
        cart = Cart()
        cart.add_product_line(SHIRT, 1)
        cart.set_discount(100)
        cart.clear()
        assert cart.is_empty
        assert cart.discount_cents == 0

    def test_line_total_rejects_unknown_line_type(self):
        with pytest.raises(TypeError):
            line_total(object())


class TestSerialization:

    def test_from_dict_rebuilds_lines_and_discount(self):
        cart = Cart(tax_rate_bps=1900)
        cart.add_product_line(SHIRT, 2)
        cart.add_template_line(CUSTOM, [11])
        cart.set_discount(1000)

        rebuilt = Cart.from_dict(cart.to_dict(), tax_rate_bps=1900)

        assert rebuilt.totals() == cart.totals()
        assert isinstance(rebuilt.lines[0], ProductLine)
        assert isinstance(rebuilt.lines[1], TemplateLine)
        assert rebuilt.add_product_line(CAP).line_id == "L3"

    def test_tax_rate_comes_from_caller_not_payload(self):
        data = Cart(tax_rate_bps=0).to_dict()
        assert Cart.from_dict(data, tax_rate_bps=1900).tax_rate_bps == 1900

    def test_unknown_line_kind_rejected(self):
        with pytest.raises(ValidationError):
            Cart.from_dict({"lines": [{"line_id": "L1", "kind": "gift", "quantity": 1}]}, tax_rate_bps=0)

    def test_line_discount_survives_round_trip(self):
        cart = Cart(tax_rate_bps=1900)
        cart.add_product_line(SHIRT, 2)
        cart.set_line_discount("L1", 1500)
        rebuilt = Cart.from_dict(cart.to_dict(), tax_rate_bps=1900)
        assert rebuilt.lines[0].discount_cents == 1500
        assert rebuilt.totals() == cart.totals()

    def test_line_discount_over_line_amount_rejected(self):
        line = {"line_id": "L1", "kind": "product", "variant_id": 1, "unit_price_cents": 100,
                "quantity": 2, "stock": 5, "discount_cents": 201}
        with pytest.raises(ValidationError):
            Cart.from_dict({"lines": [line]}, tax_rate_bps=0)

    def test_duplicate_line_ids_rejected(self):
        line = {"line_id": "L1", "kind": "product", "variant_id": 1, "unit_price_cents": 100, "quantity": 1, "stock": 5}
        with pytest.raises(ValidationError):
            Cart.from_dict({"lines": [line, dict(line)]}, tax_rate_bps=0)
