# Overview: Flask API routes for the POS screen; scan, lookup, cart and sale endpoints.

# backend/tillpoint/routes/pos.py
"""
POS API Routes

The server holds no cart state. Clients send the cart value they got back
from the previous call; every cart endpoint rebuilds it (with the
configured tax rate), applies one operation and returns the new value.

Cart operations that break a rule (stock snapshot exceeded, bad zone
selection, discount over subtotal) are no-ops: they answer 200 with
"ok": false, the reason, and the cart unchanged.

Sale commit and cancel go through the sale commit engine and map its
errors: 400 validation, 402 under-payment, 409 conflict / insufficient stock.
"""

from flask import Blueprint, current_app, jsonify, request

from ..cart import Cart, CartResult
from ..decorators import json_body, pos_errors
from ..services import catalog_service, sales_service, scan_service
from ..services.sales_service import CustomerInfo
from ..services.tender_service import tenders_from_payload
from ..validation import ValidationError, coerce_int
from tillpoint.time_utils import parse_iso_datetime


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _cart_from(data: dict) -> Cart:
    return Cart.from_dict(data.get("cart"), tax_rate_bps=current_app.config["POS_TAX_RATE_BPS"])


def _cart_response(cart: Cart, result: CartResult):
    body = {"ok": result.ok, "cart": cart.to_dict()}
    if result.line_id:
        body["line_id"] = result.line_id
    if not result.ok:
        body["error"] = result.error
        body["details"] = result.details
    return jsonify(body), 200


def _date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


# =============================================================================
# SCAN & LOOKUP
# =============================================================================

@pos_bp.post("/scan")
@pos_errors("process scan")
def scan_route():
    """
    Feed one decoded read through the confirmation filter.

    Request body:
    {
        "state": {"last_code": "7701234", "count": 1, "confirmed": null},  (from the previous call)
        "code": "7701234"
    }

    Response: new state, the confirmed code (or null) and, once confirmed,
    the resolved sellable unit (or null when nothing matches).
    """
    data = json_body()
    state = scan_service.ScanState.from_dict(data.get("state"))
    state, confirmed = scan_service.feed(state, data.get("code"))

    body = {"state": state.to_dict(), "confirmed": confirmed, "unit": None}
    if confirmed:
        unit = catalog_service.resolve(confirmed)
        body["unit"] = unit.to_dict() if unit else None
        if unit is None:
            current_app.logger.info("Confirmed scan %s matched no active item", confirmed)
    return jsonify(body), 200


@pos_bp.get("/lookup")
@pos_errors("lookup item")
def lookup_route():
    """Resolve ?q= (barcode, SKU, or an unambiguous name)."""
    unit = catalog_service.resolve(request.args.get("q", ""))
    if unit is None:
        return jsonify({"error": "No matching item"}), 404
    return jsonify({"unit": unit.to_dict()}), 200


@pos_bp.get("/search")
@pos_errors("search catalog")
def search_route():
    limit = min(request.args.get("limit", default=20, type=int), 100)
    units = catalog_service.search(request.args.get("q", ""), limit=limit)
    return jsonify({"units": [u.to_dict() for u in units]}), 200


# =============================================================================
# CART
# =============================================================================

@pos_bp.post("/cart/products")
@pos_errors("add product to cart")
def add_product_route():
    """
    Request body: {"cart": {...}, "variant_id": 12, "quantity": 1}
    """
    data = json_body()
    cart = _cart_from(data)
    unit = catalog_service.get_unit(coerce_int("variant_id", data.get("variant_id")))
    result = cart.add_product_line(unit, data.get("quantity", 1))
    return _cart_response(cart, result)


@pos_bp.post("/cart/templates")
@pos_errors("add template to cart")
def add_template_route():
    """
    Request body: {"cart": {...}, "variant_id": 40, "zone_ids": [3, 7], "quantity": 1}
    """
    data = json_body()
    cart = _cart_from(data)
    unit = catalog_service.get_unit(coerce_int("variant_id", data.get("variant_id")))
    zone_ids = data.get("zone_ids") or []
    if not isinstance(zone_ids, list):
        raise ValidationError("zone_ids must be a list")
    result = cart.add_template_line(unit, zone_ids, data.get("quantity", 1))
    return _cart_response(cart, result)


@pos_bp.post("/cart/lines/<line_id>/quantity")
@pos_errors("update cart quantity")
def update_quantity_route(line_id: str):
    data = json_body()
    cart = _cart_from(data)
    return _cart_response(cart, cart.update_quantity(line_id, data.get("quantity")))


@pos_bp.post("/cart/lines/<line_id>/remove")
@pos_errors("remove cart line")
def remove_line_route(line_id: str):
    cart = _cart_from(json_body())
    return _cart_response(cart, cart.remove_line(line_id))


@pos_bp.post("/cart/lines/<line_id>/discount")
@pos_errors("set line discount")
def line_discount_route(line_id: str):
    """
    Request body: {"cart": {...}, "discount_cents": 1500}
    """
    data = json_body()
    cart = _cart_from(data)
    return _cart_response(cart, cart.set_line_discount(line_id, data.get("discount_cents")))


@pos_bp.post("/cart/discount")
@pos_errors("set cart discount")
def discount_route():
    data = json_body()
    cart = _cart_from(data)
    return _cart_response(cart, cart.set_discount(data.get("discount_cents")))


@pos_bp.post("/cart/totals")
@pos_errors("compute cart totals")
def totals_route():
    cart = _cart_from(json_body())
    return jsonify({"cart": cart.to_dict()}), 200


# =============================================================================
# SALES
# =============================================================================

@pos_bp.post("/sales")
@pos_errors("commit sale")
def commit_sale_route():
    """
    Commit a cart as a sale.

    Request body:
    {
        "session_id": 1,
        "cashier_id": 3,
        "cart": {...},
        "payment_method": "CASH" | "CARD" | "TRANSFER" | "MIXED",
        "tenders": [{"method": "CASH", "amount_cents": 50000}],
        "customer": {"name": "...", "email": "...", "phone": "..."},  (optional)
        "notes": "..."  (optional)
    }

    On failure the client keeps its cart; nothing was written.
    """
    data = json_body()
    cart = _cart_from(data)
    cashier_id = data.get("cashier_id")
    sale = sales_service.commit_sale(
        cart,
        session_id=coerce_int("session_id", data.get("session_id")),
        payment_method=data.get("payment_method") or "",
        tenders=tenders_from_payload(data.get("tenders")),
        customer=CustomerInfo.from_dict(data.get("customer")),
        notes=data.get("notes"),
        cashier_id=coerce_int("cashier_id", cashier_id) if cashier_id is not None else None,
    )
    return jsonify({"sale": sale.to_dict(), "cart": cart.to_dict()}), 201


@pos_bp.get("/sales")
@pos_errors("list sales")
def list_sales_route():
    """
    Query params: cashier_id, register_id, session_id, status, from, to, limit
    """
    sales = sales_service.get_sales_history(
        cashier_id=request.args.get("cashier_id", type=int),
        register_id=request.args.get("register_id", type=int),
        session_id=request.args.get("session_id", type=int),
        status=request.args.get("status"),
        date_from=_date_arg("from"),
        date_to=_date_arg("to"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200


@pos_bp.get("/sales/<int:sale_id>")
@pos_errors("get sale")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict()}), 200


@pos_bp.post("/sales/<int:sale_id>/cancel")
@pos_errors("cancel sale")
def cancel_sale_route(sale_id: int):
    """
    Request body: {"cashier_id": 3, "reason": "Customer changed mind"}
    """
    data = json_body()
    sale = sales_service.cancel_sale(
        sale_id,
        cashier_id=coerce_int("cashier_id", data.get("cashier_id")),
        reason=str(data.get("reason") or ""),
    )
    return jsonify({"sale": sale.to_dict()}), 200
