# Overview: Service-layer operations for sale settlement; the transactional core of checkout.

"""
Settlement Engine

WHY: Turns a priced cart and a payment split into a committed sale. The
sale, its AR charge and the shift totals either all exist or none do.

FLOW:
1. Totals (pure)                       - tax_service.compute_totals
2. Split validation (pure, read-only)  - payment_split_service.validate_split
3. Sale number                         - caller's idempotency key or next in sequence
4. One DB transaction, under customer then shift lock:
   Sale + lines + legs -> AR CHARGE -> shift totals -> audit event -> commit
5. After commit: inventory decrements (non-fatal, queued on failure)

Steps 1-3 have no side effects. Anything failing in step 4 rolls the whole
transaction back; a credit limit race surfaces here and aborts the sale.

IDEMPOTENCY:
A caller-supplied sale_number that already exists raises DuplicateSaleError
and nothing is posted. A collision on a generated number is retried.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateSaleError,
    NotFoundError,
    SettlementValidationError,
    ShiftStateError,
    ValidationError,
)
from ..extensions import db
from ..models import ARTransaction, Sale, SaleLine, SalePaymentLeg, Shift
from hwpos.time_utils import utcnow
from . import ar_ledger_service, shift_service
from .audit_service import append_audit_event
from .collaborators import OP_DECREMENT, OP_RESTOCK, request_inventory
from .concurrency import customer_key, keyed_lock, lock_for_update, run_with_retry, shift_key
from .customer_service import require_customer
from .document_service import next_sale_number
from .payment_methods import BUCKET_CASH
from .payment_split_service import PaymentLeg, SplitValidation, ar_amount_cents, validate_split
from .tax_service import CartLine, SaleTotals, TAX_MODE_VAT, compute_totals


# =============================================================================
# SALE STATUS (CONSTANTS)
# =============================================================================

SALE_COMPLETED = "COMPLETED"
SALE_VOIDED = "VOIDED"
SALE_REFUNDED = "REFUNDED"


class _SaleNumberCollision(Exception):
    """A generated sale number was taken between allocation and insert."""


# =============================================================================
# INPUT COERCION
# =============================================================================

def coerce_lines(lines) -> list[CartLine]:
    """Accept CartLine objects or plain dicts (API payloads)."""
    result = []
    for line in lines or []:
        if isinstance(line, CartLine):
            result.append(line)
            continue
        result.append(CartLine(
            product_id=line.get("product_id"),
            unit_price_cents=line.get("unit_price_cents"),
            quantity=line.get("quantity"),
            discount_percent=line.get("discount_percent") or 0,
        ))
    return result


def coerce_legs(legs) -> list[PaymentLeg]:
    """Accept PaymentLeg objects or plain dicts (API payloads)."""
    result = []
    for leg in legs or []:
        if isinstance(leg, PaymentLeg):
            result.append(leg)
            continue
        if not isinstance(leg, dict):
            raise SettlementValidationError("each payment leg must be an object", code="INVALID_LEG")
        result.append(PaymentLeg(
            method_code=leg.get("method_code") or leg.get("method") or "",
            amount_cents=leg.get("amount_cents"),
            reference_number=leg.get("reference_number"),
            notes=leg.get("notes"),
        ))
    return result


def _compute(lines: list[CartLine], tax_mode: str) -> SaleTotals:
    return compute_totals(
        lines,
        tax_mode,
        vat_rate_bps=current_app.config["VAT_RATE_BPS"],
        ewt_rate_bps=current_app.config["EWT_RATE_BPS"],
    )


def _over_limit_allowed(allow_over_limit: bool) -> bool:
    return bool(allow_over_limit or current_app.config.get("AR_ALLOW_OVER_LIMIT", False))


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle(
    lines,
    legs,
    *,
    cashier_id: int,
    shift_id: int,
    customer_id: int | None = None,
    tax_mode: str = TAX_MODE_VAT,
    sale_number: str | None = None,
    allow_over_limit: bool = False,
    notes: str | None = None,
) -> Sale:
    """
    Settle a cart against a payment split.

    Args:
        lines: CartLine objects (or dicts with the same keys)
        legs: PaymentLeg objects (or dicts with the same keys)
        cashier_id: Cashier ringing the sale
        shift_id: Cashier's ACTIVE shift
        customer_id: Required when any leg is AR
        tax_mode: VAT, NON_VAT or EWT
        sale_number: Idempotency key; generated when omitted
        allow_over_limit: Caller-authorized over-limit AR charge

    Returns:
        Committed Sale (change_due_cents set)

    Raises:
        CartValidationError: Malformed cart
        SettlementValidationError: Split rejected (code/reason from validator)
        ShiftStateError / NotFoundError: Shift or customer problems
        LedgerValidationError: Credit limit lost to a concurrent charge
        DuplicateSaleError: sale_number already used
        ConcurrencyConflict: Retries exhausted
    """
    cart = coerce_lines(lines)
    split = [leg.normalized() for leg in coerce_legs(legs)]

    # 1. Totals
    totals = _compute(cart, tax_mode)

    # 2. Preconditions and split (read-only)
    if not split:
        raise SettlementValidationError("at least one payment leg is required", code="NO_PAYMENT")
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")
    if not shift.is_active:
        raise ShiftStateError(f"Shift {shift_id} is closed")
    if shift.cashier_id != cashier_id:
        raise SettlementValidationError(
            f"Shift {shift_id} does not belong to cashier {cashier_id}",
            code="SHIFT_CASHIER_MISMATCH",
        )

    customer = require_customer(customer_id) if customer_id else None
    over_ok = _over_limit_allowed(allow_over_limit)
    validation = validate_split(totals.net_due_cents, split, customer, allow_over_limit=over_ok)
    if not validation.ok:
        raise SettlementValidationError(validation.reason, code=validation.code, details=validation.to_dict())

    ar_total = ar_amount_cents(split)

    # 3. Idempotency key
    supplied_number = None
    if sale_number is not None:
        supplied_number = str(sale_number).strip() or None
    if supplied_number and get_sale_by_number(supplied_number):
        raise DuplicateSaleError(f"Sale number {supplied_number} already exists")

    lock_keys = [shift_key(shift_id)]
    if customer_id and ar_total:
        lock_keys.append(customer_key(customer_id))

    def _op() -> Sale:
        with keyed_lock(*lock_keys):
            try:
                return _persist(
                    totals=totals,
                    split=split,
                    validation=validation,
                    ar_total=ar_total,
                    sale_number=supplied_number or next_sale_number(),
                    cashier_id=cashier_id,
                    shift_id=shift_id,
                    customer_id=customer_id,
                    allow_over_limit=over_ok,
                    notes=notes,
                )
            except IntegrityError as exc:
                db.session.rollback()
                if supplied_number:
                    raise DuplicateSaleError(f"Sale number {supplied_number} already exists") from exc
                raise _SaleNumberCollision() from exc
            except Exception:
                db.session.rollback()
                raise

    sale = _settle_with_number_retry(_op)
    current_app.logger.info(
        "Sale %s settled: total=%s due=%s change=%s ar=%s shift=%s",
        sale.sale_number, sale.total_cents, sale.amount_due_cents,
        sale.change_due_cents, ar_total, shift_id,
    )

    # 5. Inventory (after commit, non-fatal)
    for line in sale.lines:
        request_inventory(
            OP_DECREMENT,
            line.product_id,
            line.quantity,
            f"sale:{sale.sale_number}",
            sale_id=sale.id,
        )

    return sale


def _settle_with_number_retry(op) -> Sale:
    attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)
    for attempt in range(attempts):
        try:
            return run_with_retry(op)
        except _SaleNumberCollision:
            current_app.logger.warning("Sale number collision (attempt %s/%s)", attempt + 1, attempts)
            if attempt >= attempts - 1:
                raise DuplicateSaleError("Could not allocate a unique sale number")
            time.sleep(backoff_base * (2 ** attempt))


def _persist(
    *,
    totals: SaleTotals,
    split: list[PaymentLeg],
    validation: SplitValidation,
    ar_total: int,
    sale_number: str,
    cashier_id: int,
    shift_id: int,
    customer_id: int | None,
    allow_over_limit: bool,
    notes: str | None,
) -> Sale:
    """Step 4. Caller holds the locks and handles rollback."""
    sale = Sale(
        sale_number=sale_number,
        status=SALE_COMPLETED,
        tax_mode=totals.tax_mode,
        subtotal_cents=totals.subtotal_cents,
        tax_cents=totals.tax_cents,
        withholding_cents=totals.withholding_cents,
        discount_cents=totals.discount_cents,
        total_cents=totals.total_cents,
        amount_due_cents=totals.net_due_cents,
        amount_tendered_cents=sum(leg.amount_cents for leg in split),
        change_due_cents=validation.change_due_cents,
        customer_account_id=customer_id,
        cashier_id=cashier_id,
        shift_id=shift_id,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(sale)
    db.session.flush()

    for number, lt in enumerate(totals.lines, start=1):
        db.session.add(SaleLine(
            sale_id=sale.id,
            line_number=number,
            product_id=lt.product_id,
            quantity=lt.quantity,
            unit_price_cents=lt.unit_price_cents,
            discount_bps=lt.discount_bps,
            discount_cents=lt.discount_cents,
            line_total_cents=lt.line_total_cents,
        ))
    for number, leg in enumerate(split, start=1):
        db.session.add(SalePaymentLeg(
            sale_id=sale.id,
            leg_number=number,
            method_code=leg.method_code,
            amount_cents=leg.amount_cents,
            reference_number=leg.reference_number,
            notes=leg.notes,
        ))

    # Charge before the sale is committed; a limit race aborts everything
    if ar_total:
        ar_ledger_service.post_transaction(
            customer_id,
            ar_ledger_service.TX_CHARGE,
            ar_total,
            sale_id=sale.id,
            reference_number=sale_number,
            user_id=cashier_id,
            allow_over_limit=allow_over_limit,
            commit=False,
        )

    shift_service.record_sale(
        shift_id,
        split,
        total_cents=totals.total_cents,
        change_due_cents=validation.change_due_cents,
        commit=False,
    )

    append_audit_event(
        event_type="sale.settled",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_user_id=cashier_id,
        sale_id=sale.id,
        shift_id=shift_id,
        customer_account_id=customer_id,
        occurred_at=sale.created_at,
        payload={
            "sale_number": sale_number,
            "total_cents": totals.total_cents,
            "amount_due_cents": totals.net_due_cents,
            "change_due_cents": validation.change_due_cents,
            "legs": [leg.to_dict() for leg in split],
        },
    )

    db.session.commit()
    return sale


# =============================================================================
# VOID
# =============================================================================

def void_sale(sale_id: int, *, user_id: int, reason: str) -> Sale:
    """
    Void a completed sale while its shift is still open.

    Nothing is deleted or edited: the AR charge gets a REVERSAL, cash taken
    goes into the shift's cash refunds, the sale flips to VOIDED, and the
    stock comes back through the inventory service after commit.
    """
    if not (reason or "").strip():
        raise ValidationError("reason is required to void a sale")

    sale = get_sale(sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")

    lock_keys = [shift_key(sale.shift_id)]
    if sale.customer_account_id:
        lock_keys.append(customer_key(sale.customer_account_id))

    def _op() -> Sale:
        with keyed_lock(*lock_keys):
            try:
                locked = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
                if locked.status != SALE_COMPLETED:
                    raise SettlementValidationError(
                        f"Only COMPLETED sales can be voided (status: {locked.status})",
                        code="INVALID_SALE_STATUS",
                    )
                if not locked.shift.is_active:
                    raise ShiftStateError(f"Shift {locked.shift_id} is closed; sale cannot be voided")

                charge = (
                    db.session.query(ARTransaction)
                    .filter_by(sale_id=locked.id, transaction_type=ar_ledger_service.TX_CHARGE)
                    .first()
                )
                if charge:
                    ar_ledger_service.reverse_transaction(
                        charge.id,
                        reason=f"void {locked.sale_number}: {reason.strip()}",
                        user_id=user_id,
                        allow_sale_charge=True,
                        commit=False,
                    )

                cash_refund = shift_service.bucket_amounts(locked.legs, locked.change_due_cents)[BUCKET_CASH]
                if cash_refund > 0:
                    shift_service.record_cash_refund(locked.shift_id, cash_refund, commit=False)

                locked.status = SALE_VOIDED
                locked.voided_by_user_id = user_id
                locked.voided_at = utcnow()
                locked.void_reason = reason.strip()

                append_audit_event(
                    event_type="sale.voided",
                    event_category="sales",
                    entity_type="sale",
                    entity_id=locked.id,
                    actor_user_id=user_id,
                    sale_id=locked.id,
                    shift_id=locked.shift_id,
                    customer_account_id=locked.customer_account_id,
                    occurred_at=locked.voided_at,
                    note=locked.void_reason,
                    payload={"cash_refund_cents": cash_refund, "ar_reversed": bool(charge)},
                )
                db.session.commit()
                return locked
            except Exception:
                db.session.rollback()
                raise

    voided = run_with_retry(_op)
    current_app.logger.info("Sale %s voided by user %s", voided.sale_number, user_id)

    for line in voided.lines:
        request_inventory(
            OP_RESTOCK,
            line.product_id,
            line.quantity,
            f"void:{voided.sale_number}",
            sale_id=voided.id,
        )
    return voided


# =============================================================================
# REFUND
# =============================================================================

def _refund_shift(user_id: int, shift_id: int | None) -> Shift:
    if shift_id is None:
        shift = shift_service.get_active_shift(user_id)
        if not shift:
            raise ShiftStateError(f"User {user_id} needs an active shift to pay out a cash refund")
        return shift
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")
    if not shift.is_active:
        raise ShiftStateError(f"Shift {shift_id} is closed")
    if shift.cashier_id != user_id:
        raise SettlementValidationError(
            f"Shift {shift_id} does not belong to cashier {user_id}",
            code="SHIFT_CASHIER_MISMATCH",
        )
    return shift


def refund_sale(sale_id: int, *, user_id: int, reason: str, shift_id: int | None = None) -> Sale:
    """
    Refund a whole completed sale, including after its shift has closed.

    WHY: A void corrects a mistake at the counter; a refund is a return
    that can come days later. The compensating records are the same (AR
    REVERSAL, restock after commit) but the cash leaves whichever drawer
    is open now: shift_id, or the refunding user's ACTIVE shift. A refund
    with no cash leg needs no shift.

    Non-cash legs go back through their instrument outside the drawer.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required to refund a sale")

    sale = get_sale(sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")

    cash_refund = shift_service.bucket_amounts(sale.legs, sale.change_due_cents)[BUCKET_CASH]
    refund_shift = _refund_shift(user_id, shift_id) if cash_refund > 0 else None

    lock_keys = []
    if refund_shift:
        lock_keys.append(shift_key(refund_shift.id))
    if sale.customer_account_id:
        lock_keys.append(customer_key(sale.customer_account_id))

    def _op() -> Sale:
        with keyed_lock(*lock_keys):
            try:
                locked = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
                if locked.status != SALE_COMPLETED:
                    raise SettlementValidationError(
                        f"Only COMPLETED sales can be refunded (status: {locked.status})",
                        code="INVALID_SALE_STATUS",
                    )

                charge = (
                    db.session.query(ARTransaction)
                    .filter_by(sale_id=locked.id, transaction_type=ar_ledger_service.TX_CHARGE)
                    .first()
                )
                if charge:
                    ar_ledger_service.reverse_transaction(
                        charge.id,
                        reason=f"refund {locked.sale_number}: {reason.strip()}",
                        user_id=user_id,
                        allow_sale_charge=True,
                        commit=False,
                    )

                if refund_shift:
                    shift_service.record_cash_refund(refund_shift.id, cash_refund, commit=False)

                locked.status = SALE_REFUNDED
                locked.refunded_by_user_id = user_id
                locked.refunded_at = utcnow()
                locked.refund_reason = reason.strip()
                locked.refund_shift_id = refund_shift.id if refund_shift else None

                append_audit_event(
                    event_type="sale.refunded",
                    event_category="sales",
                    entity_type="sale",
                    entity_id=locked.id,
                    actor_user_id=user_id,
                    sale_id=locked.id,
                    shift_id=locked.refund_shift_id,
                    customer_account_id=locked.customer_account_id,
                    occurred_at=locked.refunded_at,
                    note=locked.refund_reason,
                    payload={
                        "cash_refund_cents": cash_refund,
                        "ar_reversed": bool(charge),
                        "original_shift_id": locked.shift_id,
                    },
                )
                db.session.commit()
                return locked
            except Exception:
                db.session.rollback()
                raise

    refunded = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s refunded by user %s: cash=%s shift=%s",
        refunded.sale_number, user_id, cash_refund, refunded.refund_shift_id,
    )

    for line in refunded.lines:
        request_inventory(
            OP_RESTOCK,
            line.product_id,
            line.quantity,
            f"refund:{refunded.sale_number}",
            sale_id=refunded.id,
        )
    return refunded


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def get_sale_by_number(sale_number: str) -> Sale | None:
    return db.session.query(Sale).filter_by(sale_number=sale_number).first()


def list_sales(
    *,
    shift_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Sale]:
    """Most recent first."""
    q = db.session.query(Sale)
    if shift_id is not None:
        q = q.filter(Sale.shift_id == shift_id)
    if customer_id is not None:
        q = q.filter(Sale.customer_account_id == customer_id)
    if status:
        q = q.filter(Sale.status == status.upper())
    return q.order_by(Sale.id.desc()).limit(min(max(limit, 1), 500)).all()


def quote(
    lines,
    legs=None,
    tax_mode: str = TAX_MODE_VAT,
    customer_id: int | None = None,
    *,
    allow_over_limit: bool = False,
) -> dict:
    """
    Totals and split check for the payment dialog. Writes nothing.

    Validation is omitted when no legs are given yet.
    """
    totals = _compute(coerce_lines(lines), tax_mode)
    split = coerce_legs(legs)
    validation = None
    if split:
        customer = require_customer(customer_id) if customer_id else None
        validation = validate_split(
            totals.net_due_cents,
            split,
            customer,
            allow_over_limit=_over_limit_allowed(allow_over_limit),
        )
    return {
        "totals": totals.to_dict(),
        "validation": validation.to_dict() if validation else None,
    }
