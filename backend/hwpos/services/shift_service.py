# Overview: Service-layer operations for cashier shifts; per-method totals and close-out variance.

"""
Shift Reconciliation Service

WHY: Each cashier works inside a shift. Sales post their payment legs into
per-method buckets so the close-out can compare the cash that should be in
the drawer with the cash actually counted.

DESIGN PRINCIPLES:
- One ACTIVE shift per cashier (lookup-before-insert under lock, backed by
  a partial unique index)
- ACTIVE -> CLOSED, nothing else; a closed shift is immutable
- Totals only grow while ACTIVE; writes are row-locked and versioned
- Totals are a cache over committed sale legs (recompute_shift_totals)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ShiftStateError, ValidationError
from ..extensions import db
from ..models import Sale, Shift
from hwpos.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import keyed_lock, lock_for_update, run_with_retry, shift_key
from .payment_methods import (
    BUCKET_AR,
    BUCKET_CARD,
    BUCKET_CASH,
    BUCKET_CHECK,
    BUCKET_MOBILE,
    bucket_for,
)


# =============================================================================
# STATUS AND CLASSIFICATION (CONSTANTS)
# =============================================================================

SHIFT_ACTIVE = "ACTIVE"
SHIFT_CLOSED = "CLOSED"

CASH_BALANCED = "BALANCED"
CASH_WARNING = "WARNING"
CASH_REQUIRES_ACKNOWLEDGMENT = "REQUIRES_ACKNOWLEDGMENT"

_BUCKET_COLUMNS = {
    BUCKET_CASH: "total_cash_cents",
    BUCKET_CARD: "total_card_cents",
    BUCKET_MOBILE: "total_mobile_cents",
    BUCKET_CHECK: "total_check_cents",
    BUCKET_AR: "total_ar_cents",
}


@dataclass
class ShiftSummary:
    shift: Shift
    expected_cash_cents: int
    counted_cash_cents: int
    cash_difference_cents: int
    classification: str

    def to_dict(self) -> dict:
        return {
            "shift": self.shift.to_dict(),
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "classification": self.classification,
        }


def _cashier_key(cashier_id: int) -> str:
    return f"cashier:{cashier_id}"


def _require_cents(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer amount in cents", details={name: value})
    return value


def _lock_shift(shift_id: int) -> Shift:
    shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")
    return shift


def bucket_amounts(legs, change_due_cents: int = 0) -> dict[str, int]:
    """
    Sum legs into shift buckets.

    Cash is net of change given, i.e. what actually stays in the drawer.
    Accepts anything with method_code and amount_cents (input legs or
    persisted SalePaymentLeg rows).
    """
    amounts = {bucket: 0 for bucket in _BUCKET_COLUMNS}
    for leg in legs:
        amounts[bucket_for(leg.method_code)] += leg.amount_cents
    amounts[BUCKET_CASH] -= change_due_cents
    return amounts


def expected_cash_cents(shift: Shift) -> int:
    return shift.starting_cash_cents + shift.total_cash_cents - shift.total_cash_refunds_cents


def classify_cash_difference(diff_cents: int, warning_cents: int | None = None) -> str:
    """
    Variance band for the close-out screen. Informational only.

    |diff| < 1 centavo -> BALANCED, <= warning band -> WARNING,
    above -> REQUIRES_ACKNOWLEDGMENT.
    """
    if warning_cents is None:
        warning_cents = current_app.config.get("CASH_VARIANCE_WARNING_CENTS", 500)
    magnitude = abs(diff_cents)
    if magnitude < 1:
        return CASH_BALANCED
    if magnitude <= warning_cents:
        return CASH_WARNING
    return CASH_REQUIRES_ACKNOWLEDGMENT


# =============================================================================
# LIFECYCLE
# =============================================================================

def start_shift(
    cashier_id: int,
    starting_cash_cents: int,
    *,
    cashier_name: str | None = None,
) -> Shift:
    """
    Open a shift for a cashier.

    Raises:
        ShiftStateError: Cashier already has an ACTIVE shift
        ValidationError: Negative or non-integer starting cash
    """
    if not cashier_id:
        raise ValidationError("cashier_id is required")
    _require_cents("starting_cash_cents", starting_cash_cents)

    with keyed_lock(_cashier_key(cashier_id)):
        existing = get_active_shift(cashier_id)
        if existing:
            raise ShiftStateError(
                "Cashier already has an active shift",
                details={"shift_id": existing.id},
            )

        shift = Shift(
            cashier_id=cashier_id,
            cashier_name=cashier_name,
            status=SHIFT_ACTIVE,
            started_at=utcnow(),
            starting_cash_cents=starting_cash_cents,
        )
        db.session.add(shift)
        try:
            db.session.flush()
        except IntegrityError:
            # Another process opened one between our lookup and insert
            db.session.rollback()
            raise ShiftStateError("Cashier already has an active shift")

        append_audit_event(
            event_type="shift.started",
            event_category="shift",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=cashier_id,
            shift_id=shift.id,
            occurred_at=shift.started_at,
            payload={"starting_cash_cents": starting_cash_cents},
        )
        db.session.commit()

    current_app.logger.info("Shift %s started for cashier %s", shift.id, cashier_id)
    return shift


def record_sale(
    shift_id: int,
    legs,
    *,
    total_cents: int,
    change_due_cents: int = 0,
    commit: bool = False,
) -> Shift:
    """
    Add one sale's legs to the shift buckets.

    transaction_count goes up by one per sale, not per leg. Settlement calls
    this inside its own transaction (commit=False).
    """
    amounts = bucket_amounts(legs, change_due_cents)

    def _op():
        with keyed_lock(shift_key(shift_id)):
            shift = _lock_shift(shift_id)
            if not shift.is_active:
                raise ShiftStateError(f"Shift {shift_id} is closed")
            for bucket, cents in amounts.items():
                column = _BUCKET_COLUMNS[bucket]
                setattr(shift, column, getattr(shift, column) + cents)
            shift.total_sales_cents += total_cents
            shift.transaction_count += 1
            if commit:
                db.session.commit()
            return shift

    if commit:
        return run_with_retry(_op)
    return _op()


def record_cash_refund(shift_id: int, amount_cents: int, *, commit: bool = False) -> Shift:
    """Cash handed back on a void or refund; lowers expected cash at close."""
    _require_cents("amount_cents", amount_cents)

    def _op():
        with keyed_lock(shift_key(shift_id)):
            shift = _lock_shift(shift_id)
            if not shift.is_active:
                raise ShiftStateError(f"Shift {shift_id} is closed")
            shift.total_cash_refunds_cents += amount_cents
            if commit:
                db.session.commit()
            return shift

    if commit:
        return run_with_retry(_op)
    return _op()


def close_shift(
    shift_id: int,
    counted_cash_cents: int,
    *,
    notes: str | None = None,
    closed_by: int | None = None,
) -> ShiftSummary:
    """
    Close a shift and fix its cash variance.

    expected_cash = starting_cash + cash taken (net of change) - cash refunds
    cash_difference = counted - expected (negative means short)

    IMMUTABLE: Once closed, the shift cannot be reopened or modified.

    Raises:
        ShiftStateError: Shift already closed
    """
    _require_cents("counted_cash_cents", counted_cash_cents)

    def _op():
        with keyed_lock(shift_key(shift_id)):
            shift = _lock_shift(shift_id)
            if not shift.is_active:
                raise ShiftStateError(f"Shift {shift_id} already closed")

            expected = expected_cash_cents(shift)
            difference = counted_cash_cents - expected

            shift.status = SHIFT_CLOSED
            shift.ended_at = utcnow()
            shift.expected_cash_cents = expected
            shift.ending_cash_cents = counted_cash_cents
            shift.cash_difference_cents = difference
            shift.closed_by_user_id = closed_by or shift.cashier_id
            shift.notes = notes

            classification = classify_cash_difference(difference)
            append_audit_event(
                event_type="shift.closed",
                event_category="shift",
                entity_type="shift",
                entity_id=shift.id,
                actor_user_id=shift.closed_by_user_id,
                shift_id=shift.id,
                occurred_at=shift.ended_at,
                note=notes,
                payload={
                    "expected_cash_cents": expected,
                    "counted_cash_cents": counted_cash_cents,
                    "cash_difference_cents": difference,
                    "classification": classification,
                },
            )
            db.session.commit()
            return ShiftSummary(
                shift=shift,
                expected_cash_cents=expected,
                counted_cash_cents=counted_cash_cents,
                cash_difference_cents=difference,
                classification=classification,
            )

    summary = run_with_retry(_op)
    current_app.logger.info(
        "Shift %s closed: expected=%s counted=%s difference=%s (%s)",
        shift_id, summary.expected_cash_cents, counted_cash_cents,
        summary.cash_difference_cents, summary.classification,
    )
    return summary


def end_shift(shift_id: int, counted_cash_cents: int, **kwargs) -> ShiftSummary:
    return close_shift(shift_id, counted_cash_cents, **kwargs)


# =============================================================================
# READS AND REPLAY
# =============================================================================

def get_shift(shift_id: int) -> Shift | None:
    return db.session.get(Shift, shift_id)


def get_active_shift(cashier_id: int) -> Shift | None:
    """The cashier's ACTIVE shift, if any."""
    return db.session.query(Shift).filter_by(cashier_id=cashier_id, status=SHIFT_ACTIVE).first()


def get_shift_history(cashier_id: int, page: int = 1, limit: int = 20) -> tuple[list[Shift], int]:
    """Most recent first. Returns (shifts, total_count)."""
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    q = db.session.query(Shift).filter_by(cashier_id=cashier_id)
    total = q.count()
    shifts = (
        q.order_by(Shift.started_at.desc(), Shift.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return shifts, total


def replay_shift_totals(shift: Shift) -> dict[str, int]:
    """Re-derive shift totals from committed sales and their legs."""
    totals = {column: 0 for column in _BUCKET_COLUMNS.values()}
    totals["total_sales_cents"] = 0
    totals["total_cash_refunds_cents"] = 0
    totals["transaction_count"] = 0

    sales = db.session.query(Sale).filter_by(shift_id=shift.id).order_by(Sale.id).all()
    for sale in sales:
        amounts = bucket_amounts(sale.legs, sale.change_due_cents)
        for bucket, cents in amounts.items():
            totals[_BUCKET_COLUMNS[bucket]] += cents
        totals["total_sales_cents"] += sale.total_cents
        totals["transaction_count"] += 1
        if sale.status == "VOIDED":
            totals["total_cash_refunds_cents"] += amounts[BUCKET_CASH]

    # Whole-sale refunds pay out of the drawer that was open at refund time
    refunded = db.session.query(Sale).filter_by(refund_shift_id=shift.id, status="REFUNDED").all()
    for sale in refunded:
        totals["total_cash_refunds_cents"] += bucket_amounts(sale.legs, sale.change_due_cents)[BUCKET_CASH]
    return totals


def recompute_shift_totals(shift_id: int) -> dict:
    """
    Compare stored shift totals with a replay of the shift's sales.

    Read-only; mismatches are reported, not written.
    """
    shift = get_shift(shift_id)
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")

    replayed = replay_shift_totals(shift)
    mismatches = {
        column: {"stored": getattr(shift, column), "replayed": value}
        for column, value in replayed.items()
        if getattr(shift, column) != value
    }
    if mismatches:
        current_app.logger.error("Shift %s totals do not replay: %s", shift_id, mismatches)
    return {
        "shift_id": shift.id,
        "ok": not mismatches,
        "replayed": replayed,
        "mismatches": mismatches,
    }
