# Overview: Flask API routes for registers and cash sessions; parses input and returns JSON responses.

# backend/tillpoint/routes/registers.py
"""
Register & Cash Session API Routes

DESIGN:
- Register CRUD (deactivate instead of delete)
- Session lifecycle: open -> close (immutable once closed)
- One OPEN session per register, one OPEN session per cashier
- The acting cashier is passed explicitly as cashier_id
"""

from flask import Blueprint, jsonify, request

from ..decorators import json_body, pos_errors
from ..models import Cashier, CashRegister
from ..extensions import db
from ..services import cash_session_service
from ..validation import ValidationError, coerce_int
from tillpoint.time_utils import parse_iso_datetime


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash-registers")


def _date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


def _with_current_session(register) -> dict:
    d = register.to_dict()
    current = cash_session_service.get_open_session(register.id)
    d["current_session"] = current.to_dict() if current else None
    return d


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

@registers_bp.post("/")
@registers_bp.post("")
@pos_errors("create register")
def create_register_route():
    """
    Create a new register.

    Request body:
    {
        "code": "CAJA-01",
        "name": "Front Counter",
        "location": "Main Floor"  (optional)
    }
    """
    data = json_body()
    register = cash_session_service.create_register(
        code=data.get("code"),
        name=data.get("name"),
        location=data.get("location"),
    )
    return jsonify({"register": register.to_dict()}), 201


@registers_bp.get("/")
@registers_bp.get("")
@pos_errors("list registers")
def list_registers_route():
    """List registers with their current session. ?all=1 includes inactive ones."""
    show_all = request.args.get("all", "").lower() in ("1", "true", "yes")
    registers = cash_session_service.get_registers(active_only=not show_all)
    return jsonify({"registers": [_with_current_session(r) for r in registers]}), 200


@registers_bp.get("/<int:register_id>")
@pos_errors("get register")
def get_register_route(register_id: int):
    register = db.session.get(CashRegister, register_id)
    if not register:
        return jsonify({"error": "Register not found"}), 404
    return jsonify(_with_current_session(register)), 200


@registers_bp.patch("/<int:register_id>")
@pos_errors("update register")
def update_register_route(register_id: int):
    register = cash_session_service.update_register(register_id, json_body())
    return jsonify({"register": register.to_dict()}), 200


@registers_bp.delete("/<int:register_id>")
@pos_errors("deactivate register")
def deactivate_register_route(register_id: int):
    """Soft delete. 409 while the register has an OPEN session."""
    register = cash_session_service.deactivate_register(register_id)
    return jsonify({"register": register.to_dict()}), 200


# =============================================================================
# CASHIERS
# =============================================================================

@registers_bp.post("/cashiers")
@pos_errors("create cashier")
def create_cashier_route():
    data = json_body()
    cashier = cash_session_service.create_cashier(name=data.get("name") or "", email=data.get("email"))
    return jsonify({"cashier": cashier.to_dict()}), 201


@registers_bp.get("/cashiers")
@pos_errors("list cashiers")
def list_cashiers_route():
    cashiers = db.session.query(Cashier).order_by(Cashier.name).all()
    return jsonify({"cashiers": [c.to_dict() for c in cashiers]}), 200


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

@registers_bp.post("/<int:register_id>/sessions/open")
@pos_errors("open session")
def open_session_route(register_id: int):
    """
    Open a cash session on a register.

    Request body:
    {
        "cashier_id": 3,
        "opening_float_cents": 50000,
        "notes": "..."  (optional)
    }

    Returns 409 if the register is occupied or the cashier already has an
    OPEN session elsewhere.
    """
    data = json_body()
    session = cash_session_service.open_session(
        register_id=register_id,
        cashier_id=coerce_int("cashier_id", data.get("cashier_id")),
        opening_float_cents=data.get("opening_float_cents"),
        notes=data.get("notes"),
    )
    return jsonify({"session": session.to_dict()}), 201


@registers_bp.get("/<int:register_id>/sessions/current")
@pos_errors("get register session")
def register_current_session_route(register_id: int):
    session = cash_session_service.get_open_session(register_id)
    return jsonify({"session": session.to_dict() if session else None}), 200


@registers_bp.get("/sessions/current")
@pos_errors("get current session")
def current_session_route():
    """The OPEN session held by ?cashier_id=, or null."""
    cashier_id = coerce_int("cashier_id", request.args.get("cashier_id"))
    session = cash_session_service.get_current_session(cashier_id)
    return jsonify({"session": session.to_dict() if session else None}), 200


@registers_bp.post("/sessions/<int:session_id>/close")
@pos_errors("close session")
def close_session_route(session_id: int):
    """
    Close a session.

    Request body:
    {
        "counted_float_cents": 92000,
        "cashier_id": 3,  (optional, must own the session)
        "notes": "..."    (optional)
    }

    Response includes expected_float_cents and variance_cents.
    """
    data = json_body()
    cashier_id = data.get("cashier_id")
    session = cash_session_service.close_session(
        session_id=session_id,
        counted_float_cents=data.get("counted_float_cents"),
        notes=data.get("notes"),
        cashier_id=coerce_int("cashier_id", cashier_id) if cashier_id is not None else None,
    )
    return jsonify({"session": session.to_dict()}), 200


@registers_bp.get("/sessions/<int:session_id>")
@pos_errors("get session")
def get_session_route(session_id: int):
    session = cash_session_service.get_session(session_id)
    if not session:
        return jsonify({"error": "Session not found"}), 404
    return jsonify({"session": session.to_dict()}), 200


@registers_bp.get("/sessions/<int:session_id>/report")
@pos_errors("build session report")
def session_report_route(session_id: int):
    return jsonify(cash_session_service.get_session_report(session_id)), 200


@registers_bp.get("/sessions")
@pos_errors("list sessions")
def list_sessions_route():
    """
    Query params: register_id, cashier_id, status, from, to, limit
    """
    sessions = cash_session_service.list_sessions(
        register_id=request.args.get("register_id", type=int),
        cashier_id=request.args.get("cashier_id", type=int),
        status=request.args.get("status"),
        date_from=_date_arg("from"),
        date_to=_date_arg("to"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200
