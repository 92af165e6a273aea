# Overview: Tender reconciliation; checks that proposed payments cover a total and computes change.

"""
Tender Reconciliation

Pure pre-check run before the commit engine touches the database. It never
persists anything; the commit engine stores the normalized tenders it
returns.

RULES:
- CASH: single cash tender, amount >= total, change = amount - total
- CARD / TRANSFER: single tender, amount fixed to the total, no change;
  the reference (auth code, last digits) is opaque and not validated
- MIXED: exactly one CASH plus one CARD or TRANSFER component;
  cash + non_cash >= total; change = max(0, cash + non_cash - total),
  always paid out in cash
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..validation import UnderPaymentError, ValidationError, coerce_amount


# =============================================================================
# METHODS (CONSTANTS)
# =============================================================================

TENDER_CASH = "CASH"
TENDER_CARD = "CARD"
TENDER_TRANSFER = "TRANSFER"
PAYMENT_MIXED = "MIXED"

TENDER_METHODS = [TENDER_CASH, TENDER_CARD, TENDER_TRANSFER]
NON_CASH_METHODS = [TENDER_CARD, TENDER_TRANSFER]
PAYMENT_METHODS = TENDER_METHODS + [PAYMENT_MIXED]


@dataclass(frozen=True)
class TenderInput:
    """One proposed payment instrument. amount None means "exactly the total" for non-cash."""
    method: str
    amount_cents: Optional[int] = None
    reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TenderInput":
        if not isinstance(data, dict):
            raise ValidationError("Each tender must be an object")
        method = str(data.get("method") or "").upper()
        amount = data.get("amount_cents")
        reference = data.get("reference")
        if reference is not None:
            reference = str(reference).strip() or None
        return cls(
            method=method,
            amount_cents=coerce_amount("amount_cents", amount) if amount is not None else None,
            reference=reference,
        )


@dataclass(frozen=True)
class ReconciledTender:
    method: str
    amount_cents: int
    change_cents: int = 0
    reference: Optional[str] = None


@dataclass(frozen=True)
class Reconciliation:
    payment_method: str
    total_cents: int
    tenders: tuple[ReconciledTender, ...]
    amount_tendered_cents: int
    change_cents: int


def _under_payment(total: int, tendered: int) -> UnderPaymentError:
    return UnderPaymentError(
        "Payment does not cover the sale total",
        details={
            "total_cents": total,
            "tendered_cents": tendered,
            "shortfall_cents": total - tendered,
        },
    )


def _single(payment_method: str, tenders: list[TenderInput]) -> TenderInput:
    if len(tenders) != 1:
        raise ValidationError(f"{payment_method} payment takes exactly one tender")
    tender = tenders[0]
    if tender.method != payment_method:
        raise ValidationError(f"Tender method {tender.method!r} does not match payment method {payment_method}")
    return tender


def reconcile(total_cents: int, payment_method: str, tenders: Iterable[TenderInput]) -> Reconciliation:
    """
    Validate tenders against a total.

    Raises:
        ValidationError: unknown method, wrong tender shape, negative amounts
        UnderPaymentError: tenders sum to less than the total
    """
    if total_cents < 0:
        raise ValidationError("Sale total cannot be negative")

    method = (payment_method or "").upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {PAYMENT_METHODS}")

    tenders = list(tenders)
    for t in tenders:
        if t.method not in TENDER_METHODS:
            raise ValidationError(f"Invalid tender method: {t.method}. Must be one of {TENDER_METHODS}")
        if t.amount_cents is not None and t.amount_cents < 0:
            raise ValidationError("Tender amount cannot be negative")

    if method == TENDER_CASH:
        tender = _single(method, tenders)
        if tender.amount_cents is None:
            raise ValidationError("Cash tender requires the amount received")
        if tender.amount_cents < total_cents:
            raise _under_payment(total_cents, tender.amount_cents)
        change = tender.amount_cents - total_cents
        return Reconciliation(
            payment_method=method,
            total_cents=total_cents,
            tenders=(ReconciledTender(TENDER_CASH, tender.amount_cents, change, tender.reference),),
            amount_tendered_cents=tender.amount_cents,
            change_cents=change,
        )

    if method in NON_CASH_METHODS:
        tender = _single(method, tenders)
        return Reconciliation(
            payment_method=method,
            total_cents=total_cents,
            tenders=(ReconciledTender(method, total_cents, 0, tender.reference),),
            amount_tendered_cents=total_cents,
            change_cents=0,
        )

    # MIXED
    if len(tenders) != 2:
        raise ValidationError("MIXED payment takes one cash and one non-cash tender")
    cash = [t for t in tenders if t.method == TENDER_CASH]
    non_cash = [t for t in tenders if t.method in NON_CASH_METHODS]
    if len(cash) != 1 or len(non_cash) != 1:
        raise ValidationError("MIXED payment takes one cash and one non-cash tender")
    cash_t, other_t = cash[0], non_cash[0]
    if cash_t.amount_cents is None or other_t.amount_cents is None:
        raise ValidationError("MIXED payment requires both component amounts")

    tendered = cash_t.amount_cents + other_t.amount_cents
    if tendered < total_cents:
        raise _under_payment(total_cents, tendered)
    change = max(0, tendered - total_cents)

    parts = []
    if cash_t.amount_cents > 0 or other_t.amount_cents == 0:
        parts.append(ReconciledTender(TENDER_CASH, cash_t.amount_cents, change, cash_t.reference))
    if other_t.amount_cents > 0:
        parts.append(ReconciledTender(other_t.method, other_t.amount_cents, 0, other_t.reference))
    if parts[0].method != TENDER_CASH and change:
        # change is still handed out in cash even with no cash received
        parts.insert(0, ReconciledTender(TENDER_CASH, 0, change, None))

    return Reconciliation(
        payment_method=method,
        total_cents=total_cents,
        tenders=tuple(parts),
        amount_tendered_cents=tendered,
        change_cents=change,
    )


def tenders_from_payload(items) -> list[TenderInput]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("tenders must be a list")
    return [TenderInput.from_dict(item) for item in items]
