# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from tillpoint.time_utils import business_date


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str, scope: str):
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.scope == scope,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt)


def _current(document_type: str, scope: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, scope=scope)
        .scalar()
    )


def allocate_number(*, document_type: str, scope: str) -> int:
    """
    Atomically allocate the next number for (document_type, scope).

    Must run inside the caller's transaction so a rolled-back document
    also gives its number back. The first-row insert runs in a SAVEPOINT
    so losing the creation race does not poison the outer transaction.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not scope:
        raise DocumentSequenceError("scope is required")

    result = _bump(document_type, scope)
    if result.rowcount:
        return _current(document_type, scope) - 1

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, scope=scope, next_number=2))
        return 1
    except IntegrityError:
        result = _bump(document_type, scope)
        if not result.rowcount:
            raise
        return _current(document_type, scope) - 1


def next_order_number(prefix: str, *, on: date | None = None, pad: int = 4) -> str:
    """Daily POS order number, e.g. POS-260214-0007."""
    day = on or business_date()
    stamp = day.strftime("%y%m%d")
    number = allocate_number(document_type="SALE", scope=stamp)
    return f"{prefix}-{stamp}-{number:0{pad}d}"
