# Overview: Read-only integrity checks across AR balances, sale/charge pairs and shift totals.

"""
Integrity Reconciliation

WHY: Cached balances and shift totals are projections over append-only
logs, and a sale with an AR leg must have exactly one matching charge.
These checks replay the logs and report every disagreement.

DETECT, NEVER FIX: Nothing here writes. Repairs are explicit operations
(ar_ledger_service.recompute_balance(repair=True)) run by a person.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import ARTransaction, CustomerAccount, Sale, SalePaymentLeg, Shift
from .ar_ledger_service import TX_CHARGE, TX_REVERSAL, replay
from .payment_methods import METHOD_AR
from .shift_service import recompute_shift_totals


def check_customer_balances() -> list[dict]:
    """Replay every customer's ledger; return the ones that do not match."""
    failures = []
    for customer in db.session.query(CustomerAccount).order_by(CustomerAccount.id).all():
        entries = (
            db.session.query(ARTransaction)
            .filter_by(customer_account_id=customer.id)
            .order_by(ARTransaction.sequence)
            .all()
        )
        check = replay(customer, entries)
        if not check.ok:
            failures.append(check.to_dict())
    return failures


def find_sale_charge_mismatches() -> list[dict]:
    """
    Sales and AR charges that do not pair up.

    KINDS:
    - AR_SALE_WITHOUT_CHARGE: sale has AR legs but no CHARGE
    - CHARGE_WITHOUT_SALE: CHARGE whose sale is missing
    - CHARGE_AMOUNT_MISMATCH: CHARGE amount differs from the sale's AR legs
    - DUPLICATE_CHARGE: more than one CHARGE for a sale
    - VOIDED_SALE_CHARGE_OPEN: voided sale whose charge was never reversed
    - REFUNDED_SALE_CHARGE_OPEN: same, for a refunded sale
    - CHARGE_REVERSED_SALE_ACTIVE: charge reversed but the sale still completed
    """
    issues = []

    ar_by_sale = dict(
        db.session.query(SalePaymentLeg.sale_id, func.sum(SalePaymentLeg.amount_cents))
        .filter(SalePaymentLeg.method_code == METHOD_AR)
        .group_by(SalePaymentLeg.sale_id)
        .all()
    )

    charges_by_sale: dict[int | None, list[ARTransaction]] = {}
    for charge in db.session.query(ARTransaction).filter_by(transaction_type=TX_CHARGE).all():
        charges_by_sale.setdefault(charge.sale_id, []).append(charge)

    reversed_ids = {
        tx.reverses_transaction_id
        for tx in db.session.query(ARTransaction).filter_by(transaction_type=TX_REVERSAL).all()
    }

    for sale_id, ar_cents in ar_by_sale.items():
        if not charges_by_sale.get(sale_id):
            issues.append({"kind": "AR_SALE_WITHOUT_CHARGE", "sale_id": sale_id, "ar_cents": ar_cents})

    for sale_id, charges in charges_by_sale.items():
        sale = db.session.get(Sale, sale_id) if sale_id else None
        if sale is None:
            for charge in charges:
                issues.append({"kind": "CHARGE_WITHOUT_SALE", "transaction_id": charge.id, "sale_id": sale_id})
            continue
        if len(charges) > 1:
            issues.append({
                "kind": "DUPLICATE_CHARGE",
                "sale_id": sale_id,
                "transaction_ids": [c.id for c in charges],
            })
        charge = charges[0]
        expected = ar_by_sale.get(sale_id, 0)
        if charge.amount_cents != expected:
            issues.append({
                "kind": "CHARGE_AMOUNT_MISMATCH",
                "sale_id": sale_id,
                "transaction_id": charge.id,
                "charge_cents": charge.amount_cents,
                "ar_legs_cents": expected,
            })
        is_reversed = charge.id in reversed_ids
        if sale.status in ("VOIDED", "REFUNDED") and not is_reversed:
            issues.append({
                "kind": f"{sale.status}_SALE_CHARGE_OPEN",
                "sale_id": sale_id,
                "transaction_id": charge.id,
            })
        if sale.status == "COMPLETED" and is_reversed:
            issues.append({"kind": "CHARGE_REVERSED_SALE_ACTIVE", "sale_id": sale_id, "transaction_id": charge.id})

    return issues


def check_shift_totals(*, active_only: bool = False) -> list[dict]:
    """Shifts whose stored totals do not replay from their sales."""
    q = db.session.query(Shift.id)
    if active_only:
        q = q.filter(Shift.status == "ACTIVE")
    failures = []
    for (shift_id,) in q.order_by(Shift.id).all():
        result = recompute_shift_totals(shift_id)
        if not result["ok"]:
            failures.append(result)
    return failures


def run_integrity_check() -> dict:
    """All checks in one report. ok is True only when every list is empty."""
    report = {
        "customer_balances": check_customer_balances(),
        "sale_charges": find_sale_charge_mismatches(),
        "shift_totals": check_shift_totals(),
    }
    problems = sum(len(v) for v in report.values())
    report["ok"] = problems == 0
    if problems:
        current_app.logger.error("Integrity check found %s problem(s)", problems)
    else:
        current_app.logger.info("Integrity check clean")
    return report
