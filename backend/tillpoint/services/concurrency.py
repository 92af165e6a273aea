# Overview: Transaction helpers shared by the POS write paths.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import text

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Locked rows are re-read even when already present in the identity map.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Serialize writers on SQLite by taking the RESERVED lock up front.

    Without it two connections can both read the same stock / occupancy
    before either writes. Other dialects rely on lock_for_update().
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if dbapi_conn.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def atomic():
    """
    All-or-nothing unit of work.

    Commits when the block finishes, rolls back and re-raises on any error.
    No retries: a failed attempt is terminal and surfaced to the caller.
    """
    begin_write()
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise
