"""
Sale commit engine tests.

Verifies:
- Happy path: sale, lines, tenders, stock movements and session counters
  are written together; order numbers follow POS-YYMMDD-NNNN
- Failed commits (under-payment, stale stock, closed session, bad zones)
  leave the database and the cart untouched
- Template sales consume recipe materials
- Cancellation restores stock and reverses counters
"""

import re

import pytest

from conftest import unit_for, zone_ids
from tillpoint.cart import Cart
from tillpoint.models import Consumable, InventoryMovement, ProductVariant, Sale, TemplateRecipe
from tillpoint.services import cash_session_service, sales_service
from tillpoint.services.sales_service import CustomerInfo
from tillpoint.services.tender_service import TenderInput
from tillpoint.validation import (
    ConflictError,
    InsufficientStockError,
    UnderPaymentError,
    ValidationError,
)


def _cash(amount):
    return [TenderInput("CASH", amount)]


def _shirt_cart(shirt, qty=2, discount=5000):
    cart = Cart(tax_rate_bps=1900)
    assert cart.add_product_line(unit_for(shirt), qty)
    if discount:
        assert cart.set_discount(discount)
    return cart


class TestCommitSale:

    def test_end_to_end_cash_sale(self, db_session, open_session, shirt):
        cart = _shirt_cart(shirt)
        assert cart.total_cents == 41650

        sale = sales_service.commit_sale(cart, open_session.id, "CASH", _cash(50000))

        assert sale.status == "COMPLETED"
        assert re.fullmatch(r"POS-\d{6}-0001", sale.order_number)
        assert sale.subtotal_cents == 40000
        assert sale.discount_cents == 5000
        assert sale.tax_cents == 6650
        assert sale.total_cents == 41650
        assert sale.amount_tendered_cents == 50000
        assert sale.change_due_cents == 8350
        assert sale.cashier_id == open_session.cashier_id
        assert sale.register_id == open_session.register_id

        assert [(l.kind, l.quantity, l.unit_price_cents, l.line_total_cents) for l in sale.lines] == [
            ("PRODUCT", 2, 20000, 40000),
        ]
        assert [(t.method, t.amount_cents, t.change_cents) for t in sale.tenders] == [("CASH", 50000, 8350)]

        session = cash_session_service.get_session(open_session.id)
        assert session.sales_count == 1
        assert session.total_sales_cents == 41650

        assert db_session.get(ProductVariant, shirt.id).stock == 0
        movements = db_session.query(InventoryMovement).filter_by(sale_id=sale.id).all()
        assert [(m.variant_id, m.type, m.quantity_delta) for m in movements] == [(shirt.id, "SALE", -2)]

        assert cart.is_empty

    def test_stale_cart_fails_and_changes_nothing(self, db_session, open_session, shirt):
        stale_unit = unit_for(shirt)
        sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))

        cart = Cart(tax_rate_bps=1900)
        assert cart.add_product_line(stale_unit, 1)
        before = cart.to_dict()

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(30000))

        item = exc.value.details["items"][0]
        assert item["variant_id"] == shirt.id
        assert item["requested_quantity"] == 1
        assert item["on_hand"] == 0

        assert cart.to_dict() == before
        session = cash_session_service.get_session(open_session.id)
        assert session.sales_count == 1
        assert session.total_sales_cents == 41650
        assert db_session.query(Sale).count() == 1

        closed = cash_session_service.close_session(open_session.id, 91650)
        assert closed.expected_float_cents == 91650
        assert closed.variance_cents == 0

    def test_under_payment_writes_nothing(self, db_session, open_session, shirt):
        cart = _shirt_cart(shirt)
        with pytest.raises(UnderPaymentError):
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(40000))
        assert db_session.query(Sale).count() == 0
        assert db_session.get(ProductVariant, shirt.id).stock == 2
        assert not cart.is_empty

    def test_empty_cart_rejected(self, db_session, open_session):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(Cart(tax_rate_bps=1900), open_session.id, "CASH", _cash(0))

    def test_closed_session_rejected(self, db_session, open_session, shirt):
        cash_session_service.close_session(open_session.id, 50000)
        with pytest.raises(ConflictError):
            sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))
        assert db_session.get(ProductVariant, shirt.id).stock == 2

    def test_other_cashiers_session_rejected(self, db_session, open_session, other_cashier, shirt):
        with pytest.raises(ConflictError):
            sales_service.commit_sale(
                _shirt_cart(shirt), open_session.id, "CASH", _cash(50000), cashier_id=other_cashier.id
            )

    def test_card_sale_with_customer(self, db_session, open_session, shirt):
        cart = _shirt_cart(shirt, qty=1, discount=0)
        sale = sales_service.commit_sale(
            cart,
            open_session.id,
            "CARD",
            [TenderInput("CARD", reference="AUTH-991")],
            customer=CustomerInfo(name="Marta", email="marta@example.com"),
            notes="gift wrap",
        )
        assert sale.total_cents == 23800
        assert sale.change_due_cents == 0
        assert sale.tenders[0].reference == "AUTH-991"
        assert sale.customer_name == "Marta"
        assert sale.notes == "gift wrap"

    def test_mixed_sale(self, db_session, open_session, shirt):
        cart = _shirt_cart(shirt, qty=1, discount=0)
        sale = sales_service.commit_sale(
            cart, open_session.id, "MIXED", [TenderInput("CASH", 10000), TenderInput("TRANSFER", 15000)]
        )
        assert sale.change_due_cents == 1200
        assert sorted(t.method for t in sale.tenders) == ["CASH", "TRANSFER"]

    def test_order_numbers_increase(self, db_session, open_session, shirt):
        first = sales_service.commit_sale(_shirt_cart(shirt, qty=1, discount=0), open_session.id, "CASH", _cash(23800))
        second = sales_service.commit_sale(_shirt_cart(shirt, qty=1, discount=0), open_session.id, "CASH", _cash(23800))
        assert first.order_number.endswith("-0001")
        assert second.order_number.endswith("-0002")


class TestTemplateSales:

    def test_consumes_recipe_materials(self, db_session, open_session, custom_tee):
        cart = Cart(tax_rate_bps=0)
        assert cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front", "Left sleeve"), 2)

        sale = sales_service.commit_sale(cart, open_session.id, "CASH", _cash(84000))

        line = sale.lines[0]
        assert line.kind == "TEMPLATE"
        assert line.unit_price_cents == 42000
        assert [z["name"] for z in line.zones] == ["Front", "Left sleeve"]

        blank = db_session.query(Consumable).filter_by(code="BLANK-WHT-L").one()
        film = db_session.query(Consumable).filter_by(code="DTF-FILM").one()
        assert blank.stock == 3
        assert film.stock == 6
        assert db_session.get(ProductVariant, custom_tee.id).stock == 0

    def test_material_shortage(self, db_session, open_session, custom_tee):
        cart = Cart(tax_rate_bps=0)
        cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front"), 6)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(500000))

        assert {i["description"] for i in exc.value.details["items"]} == {"Blank tee white L", "DTF film sheet"}
        assert db_session.query(InventoryMovement).count() == 0

    def test_zone_blocked_after_adding_is_rejected(self, db_session, open_session, custom_tee):
        cart = Cart(tax_rate_bps=0)
        cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front", "Left sleeve"))

        sleeve = next(z for z in custom_tee.product.zones if z.name == "Left sleeve")
        sleeve.is_blocked = True
        db_session.commit()

        with pytest.raises(ValidationError):
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(42000))
        assert db_session.query(Sale).count() == 0

    def test_template_without_recipe_rejected(self, db_session, open_session, custom_tee):
        cart = Cart(tax_rate_bps=0)
        cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front"))
        db_session.query(TemplateRecipe).delete()
        db_session.commit()

        with pytest.raises(ValidationError):
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(38000))

    def test_zone_price_change_after_adding_is_rejected(self, db_session, open_session, custom_tee):
        cart = Cart(tax_rate_bps=0)
        cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front"))

        front = next(z for z in custom_tee.product.zones if z.name == "Front")
        front.price_cents = 9000
        db_session.commit()

        with pytest.raises(ConflictError) as exc:
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(50000))
        assert exc.value.details["cart_price_cents"] == 8000
        assert exc.value.details["current_price_cents"] == 9000
        assert db_session.query(Sale).count() == 0


class TestPriceAndLineDiscount:

    def test_price_change_after_adding_is_rejected(self, db_session, open_session, shirt):
        cart = _shirt_cart(shirt, qty=1, discount=0)
        shirt.price_cents = 25000
        db_session.commit()

        with pytest.raises(ConflictError) as exc:
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(50000))

        assert exc.value.details["variant_id"] == shirt.id
        assert exc.value.details["current_price_cents"] == 25000
        assert db_session.get(ProductVariant, shirt.id).stock == 2
        assert len(cart) == 1

    def test_tampered_cart_price_is_rejected(self, db_session, open_session, shirt):
        data = _shirt_cart(shirt, qty=1, discount=0).to_dict()
        data["lines"][0]["unit_price_cents"] = 1
        cart = Cart.from_dict(data, tax_rate_bps=0)

        with pytest.raises(ConflictError):
            sales_service.commit_sale(cart, open_session.id, "CASH", _cash(50000))

    def test_line_discount_is_snapshotted(self, db_session, open_session, shirt):
        cart = Cart(tax_rate_bps=1900)
        assert cart.add_product_line(unit_for(shirt), 2)
        assert cart.set_line_discount("L1", 2000)
        assert cart.total_cents == 45220

        sale = sales_service.commit_sale(cart, open_session.id, "CASH", _cash(50000))

        line = sale.lines[0]
        assert line.unit_price_cents == 20000
        assert line.discount_cents == 2000
        assert line.line_total_cents == 38000
        assert sale.subtotal_cents == 38000
        assert sale.discount_cents == 0
        assert sale.total_cents == 45220
        assert line.to_dict()["discount_cents"] == 2000


class TestCancelSale:

    def test_cancel_restores_stock_and_counters(self, db_session, open_session, shirt, custom_tee):
        cart = Cart(tax_rate_bps=0)
        cart.add_product_line(unit_for(shirt), 1)
        cart.add_template_line(unit_for(custom_tee), zone_ids(custom_tee, "Front"))
        sale = sales_service.commit_sale(cart, open_session.id, "CASH", _cash(58000))

        cancelled = sales_service.cancel_sale(sale.id, open_session.cashier_id, "customer changed mind")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancel_reason == "customer changed mind"
        assert cancelled.cancelled_at is not None
        assert db_session.get(ProductVariant, shirt.id).stock == 2
        assert db_session.query(Consumable).filter_by(code="BLANK-WHT-L").one().stock == 5
        assert db_session.query(Consumable).filter_by(code="DTF-FILM").one().stock == 10

        session = cash_session_service.get_session(open_session.id)
        assert session.sales_count == 0
        assert session.total_sales_cents == 0

        restores = db_session.query(InventoryMovement).filter_by(sale_id=sale.id, type="SALE_CANCEL").all()
        assert sorted(m.quantity_delta for m in restores) == [1, 1, 2]

    def test_cancel_twice_rejected(self, db_session, open_session, shirt):
        sale = sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))
        sales_service.cancel_sale(sale.id, open_session.cashier_id, "oops")
        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, open_session.cashier_id, "oops again")

    def test_cancel_by_other_cashier_rejected(self, db_session, open_session, other_cashier, shirt):
        sale = sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))
        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, other_cashier.id, "not mine")

    def test_cancel_after_close_rejected(self, db_session, open_session, shirt):
        sale = sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))
        cash_session_service.close_session(open_session.id, 91650)
        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, open_session.cashier_id, "late")
        assert db_session.get(ProductVariant, shirt.id).stock == 0
        assert db_session.get(Sale, sale.id).status == "COMPLETED"

    def test_reason_required(self, db_session, open_session, shirt):
        sale = sales_service.commit_sale(_shirt_cart(shirt), open_session.id, "CASH", _cash(50000))
        with pytest.raises(ValidationError):
            sales_service.cancel_sale(sale.id, open_session.cashier_id, "  ")


class TestHistory:

    def test_filters(self, db_session, open_session, shirt):
        kept = sales_service.commit_sale(_shirt_cart(shirt, qty=1, discount=0), open_session.id, "CASH", _cash(23800))
        dropped = sales_service.commit_sale(_shirt_cart(shirt, qty=1, discount=0), open_session.id, "CASH", _cash(23800))
        sales_service.cancel_sale(dropped.id, open_session.cashier_id, "test")

        assert [s.id for s in sales_service.get_sales_history()] == [dropped.id, kept.id]
        assert [s.id for s in sales_service.get_sales_history(status="completed")] == [kept.id]
        assert len(sales_service.get_sales_history(cashier_id=open_session.cashier_id)) == 2
        assert sales_service.get_sales_history(register_id=9999) == []
        assert sales_service.get_sale_by_number(kept.order_number).id == kept.id

    def test_session_report_breakdown(self, db_session, open_session, shirt):
        sales_service.commit_sale(_shirt_cart(shirt, qty=1, discount=0), open_session.id, "CASH", _cash(23800))
        sales_service.commit_sale(
            _shirt_cart(shirt, qty=1, discount=0), open_session.id, "CARD", [TenderInput("CARD")]
        )

        report = cash_session_service.get_session_report(open_session.id)

        assert report["summary"]["sales_count"] == 2
        assert report["summary"]["total_cents"] == 47600
        assert report["summary"]["payment_methods"] == {
            "CASH": {"count": 1, "total_cents": 23800},
            "CARD": {"count": 1, "total_cents": 23800},
        }
