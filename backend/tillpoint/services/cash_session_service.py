"""
Register and Cash Session Service

Tracks tills and the cashier sessions that occupy them.

STATE MACHINE (per cashier/register pairing):
- NONE -> OPEN: open_session(), only if the register has no OPEN session
  anywhere and the cashier holds no other OPEN session
- OPEN -> OPEN: record_sale() / reverse_sale(), only inside a sale or
  cancel transaction
- OPEN -> CLOSED: close_session(), with a counted closing float
- CLOSED is terminal; a new shift means a new session

DESIGN PRINCIPLES:
- Occupancy check-and-set runs in one write-serialized transaction and is
  backed by a partial unique index on (register_id) WHERE status = 'OPEN'
- Closed sessions are immutable history
- variance = counted - (opening float + running sales total)
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister, CashSession, Cashier, Sale
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    coerce_amount,
    validate_payload,
)
from tillpoint.time_utils import utcnow
from .concurrency import atomic, lock_for_update


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"

REGISTER_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "location", "is_active"},
    required_on_create={"code", "name"},
)


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

def create_register(code: str, name: str, location: str | None = None) -> CashRegister:
    """
    Create a new till.

    Args:
        code: Unique identifier (e.g., "CAJA-01")
        name: Display name
        location: Physical location
    """
    patch = validate_payload(
        model=CashRegister,
        payload={"code": code, "name": name, "location": location},
        policy=REGISTER_POLICY,
        partial=False,
    )

    existing = db.session.query(CashRegister).filter_by(code=patch["code"]).first()
    if existing:
        raise ConflictError(f"Register '{patch['code']}' already exists")

    register = CashRegister(is_active=True, **patch)
    db.session.add(register)
    db.session.commit()

    return register


def update_register(register_id: int, payload: dict) -> CashRegister:
    """Patch code/name/location/is_active. Deactivation goes through deactivate_register()."""
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise ValidationError("Register not found")

    patch = validate_payload(model=CashRegister, payload=payload, policy=REGISTER_POLICY, partial=True)

    if patch.get("is_active") is False and register.is_active:
        return deactivate_register(register_id)

    if "code" in patch and patch["code"] != register.code:
        clash = db.session.query(CashRegister).filter_by(code=patch["code"]).first()
        if clash:
            raise ConflictError(f"Register '{patch['code']}' already exists")

    for key, value in patch.items():
        setattr(register, key, value)
    db.session.commit()

    return register


def deactivate_register(register_id: int) -> CashRegister:
    """
    Deactivate a register (soft delete).

    Registers are never deleted so historical sessions keep their reference.
    """
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise ValidationError("Register not found")

    if get_open_session(register_id):
        raise ConflictError("Cannot deactivate register with open session. Close it first.")

    register.is_active = False
    db.session.commit()

    return register


def get_registers(active_only: bool = False) -> list[CashRegister]:
    query = db.session.query(CashRegister)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(CashRegister.name).all()


def create_cashier(name: str, email: str | None = None) -> Cashier:
    if not name or not name.strip():
        raise ValidationError("name is required")
    cashier = Cashier(name=name.strip(), email=email, is_active=True)
    db.session.add(cashier)
    db.session.commit()
    return cashier


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(
    register_id: int,
    cashier_id: int,
    opening_float_cents: int,
    notes: str | None = None,
) -> CashSession:
    """
    Open a cash session on a register.

    Raises:
        ValidationError: bad float, unknown/inactive register or cashier
        ConflictError: register already occupied, or cashier already has an OPEN session
    """
    opening_float_cents = coerce_amount("opening_float_cents", opening_float_cents)

    with atomic():
        register = db.session.get(CashRegister, register_id)
        if not register:
            raise ValidationError("Register not found")
        if not register.is_active:
            raise ValidationError("Cannot open a session on an inactive register")

        cashier = db.session.get(Cashier, cashier_id)
        if not cashier or not cashier.is_active:
            raise ValidationError("Cashier not found or inactive")

        occupied = lock_for_update(
            db.session.query(CashSession).filter_by(register_id=register_id, status=SESSION_OPEN)
        ).first()
        if occupied:
            raise ConflictError(
                f"Register already has an open session (session {occupied.id})",
                details={"session_id": occupied.id, "cashier_id": occupied.cashier_id},
            )

        busy = db.session.query(CashSession).filter_by(cashier_id=cashier_id, status=SESSION_OPEN).first()
        if busy:
            raise ConflictError(
                f"Cashier already has an open session (session {busy.id})",
                details={"session_id": busy.id, "register_id": busy.register_id},
            )

        session = CashSession(
            register_id=register_id,
            cashier_id=cashier_id,
            status=SESSION_OPEN,
            opening_float_cents=opening_float_cents,
            sales_count=0,
            total_sales_cents=0,
            opened_at=utcnow(),
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # the partial unique index lost us the race
            raise ConflictError("Register already has an open session")

    current_app.logger.info(
        "Cash session %s opened on register %s by cashier %s (float=%s)",
        session.id, register_id, cashier_id, opening_float_cents,
    )
    return session


def close_session(
    session_id: int,
    counted_float_cents: int | None,
    notes: str | None = None,
    *,
    cashier_id: int | None = None,
) -> CashSession:
    """
    Close a session and record the drawer variance.

    expected = opening float + running sales total
    variance = counted - expected

    Args:
        session_id: Session to close
        counted_float_cents: Cash actually counted in the drawer
        notes: Optional closing notes (appended to opening notes)
        cashier_id: When given, must be the session owner
    """
    if counted_float_cents is None:
        raise ValidationError("counted_float_cents is required to close a session")
    counted = coerce_amount("counted_float_cents", counted_float_cents)

    with atomic():
        session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
        if not session:
            raise ValidationError("Session not found")
        if session.status != SESSION_OPEN:
            raise ConflictError("Session already closed")
        if cashier_id is not None and session.cashier_id != cashier_id:
            raise ConflictError("Only the session owner can close this session")

        expected = session.opening_float_cents + session.total_sales_cents
        variance = counted - expected

        session.status = SESSION_CLOSED
        session.closed_at = utcnow()
        session.closing_float_cents = counted
        session.expected_float_cents = expected
        session.variance_cents = variance
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes

    log = current_app.logger.warning if variance else current_app.logger.info
    log(
        "Cash session %s closed: expected=%s counted=%s variance=%s",
        session.id, expected, counted, variance,
    )
    return session


def record_sale(session_id: int, total_cents: int) -> None:
    """
    Add one committed sale to the session counters.

    Only valid inside the sale commit transaction. The conditional UPDATE
    refuses sessions that are no longer OPEN.
    """
    result = db.session.execute(
        update(CashSession)
        .where(CashSession.id == session_id, CashSession.status == SESSION_OPEN)
        .values(
            sales_count=CashSession.sales_count + 1,
            total_sales_cents=CashSession.total_sales_cents + total_cents,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Session is not open", details={"session_id": session_id})


def reverse_sale(session_id: int, total_cents: int) -> None:
    """Undo record_sale() for a cancelled sale. Same transactional rules."""
    result = db.session.execute(
        update(CashSession)
        .where(
            CashSession.id == session_id,
            CashSession.status == SESSION_OPEN,
            CashSession.sales_count > 0,
        )
        .values(
            sales_count=CashSession.sales_count - 1,
            total_sales_cents=CashSession.total_sales_cents - total_cents,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Session is not open", details={"session_id": session_id})


# =============================================================================
# QUERIES
# =============================================================================

def get_session(session_id: int) -> CashSession | None:
    return db.session.get(CashSession, session_id)


def get_open_session(register_id: int) -> CashSession | None:
    """Get the currently open session for a register, if any."""
    return db.session.query(CashSession).filter_by(
        register_id=register_id,
        status=SESSION_OPEN,
    ).first()


def get_current_session(cashier_id: int) -> CashSession | None:
    """Get the cashier's open session, if any."""
    return db.session.query(CashSession).filter_by(
        cashier_id=cashier_id,
        status=SESSION_OPEN,
    ).first()


def list_sessions(
    *,
    register_id: int | None = None,
    cashier_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
) -> list[CashSession]:
    query = db.session.query(CashSession)
    if register_id is not None:
        query = query.filter(CashSession.register_id == register_id)
    if cashier_id is not None:
        query = query.filter(CashSession.cashier_id == cashier_id)
    if status:
        query = query.filter(CashSession.status == status.upper())
    if date_from is not None:
        query = query.filter(CashSession.opened_at >= date_from)
    if date_to is not None:
        query = query.filter(CashSession.opened_at <= date_to)
    return query.order_by(CashSession.opened_at.desc(), CashSession.id.desc()).limit(limit).all()


def get_session_report(session_id: int) -> dict:
    """
    Session summary for the close-out screen.

    Returns:
        - session details
        - completed sales (newest first)
        - count/total, breakdown per payment method
        - duration in minutes (closed sessions only)
    """
    session = get_session(session_id)
    if not session:
        raise ValidationError("Session not found")

    sales = (
        db.session.query(Sale)
        .filter_by(session_id=session_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    completed = [s for s in sales if s.status == "COMPLETED"]

    by_method: dict[str, dict] = {}
    for sale in completed:
        bucket = by_method.setdefault(sale.payment_method, {"count": 0, "total_cents": 0})
        bucket["count"] += 1
        bucket["total_cents"] += sale.total_cents

    duration = None
    if session.closed_at and session.opened_at:
        duration = round((session.closed_at - session.opened_at).total_seconds() / 60)

    return {
        "session": session.to_dict(),
        "sales": [s.to_dict(include_lines=False) for s in sales],
        "summary": {
            "sales_count": len(completed),
            "total_cents": sum(s.total_cents for s in completed),
            "cancelled_count": len(sales) - len(completed),
            "payment_methods": by_method,
            "duration_minutes": duration,
        },
    }
