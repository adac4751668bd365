# Overview: Service-layer operations for the AR ledger; append-only log with a cached running balance.

"""
Accounts Receivable Ledger

WHY: Customers buying on account carry a running balance. The balance on
CustomerAccount is a cache; the ar_transactions log is the truth and must
always replay to the same number.

DESIGN PRINCIPLES:
- Append-only: CHARGE, PAYMENT and REVERSAL rows, never updated or deleted
- One writer per customer: in-process key lock + row lock + version check
- Row append and cache update are one atomic unit
- A cache that disagrees with the log is corruption: surfaced, never
  silently overwritten (repair is an explicit replay with repair=True)

OVERPAYMENT POLICY (AR_OVERPAYMENT_POLICY):
- CLAMP (default): apply up to the outstanding balance; the excess is
  recorded as unapplied_cents and returned to the customer outside the
  ledger. Payments against a zero or negative balance are rejected.
- CREDIT: apply the whole payment; the balance may go negative (store
  credit usable on later AR sales).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import LedgerIntegrityError, LedgerValidationError, NotFoundError
from ..extensions import db
from ..models import ARTransaction, CustomerAccount
from .audit_service import append_audit_event
from .concurrency import customer_key, keyed_lock, lock_for_update, run_with_retry
from .payment_methods import METHOD_AR, clean_reference, get_method, normalize_method_code


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TX_CHARGE = "CHARGE"
TX_PAYMENT = "PAYMENT"
TX_REVERSAL = "REVERSAL"

VALID_TRANSACTION_TYPES = [TX_CHARGE, TX_PAYMENT, TX_REVERSAL]

POLICY_CLAMP = "CLAMP"
POLICY_CREDIT = "CREDIT"


@dataclass
class BalanceCheck:
    customer_id: int
    opening_balance_cents: int
    cached_balance_cents: int
    replayed_balance_cents: int
    entry_count: int
    chain_breaks: list[int] = field(default_factory=list)  # sequences whose balance_after is off
    sequence_gaps: list[int] = field(default_factory=list)  # missing sequence numbers
    repaired: bool = False

    @property
    def ok(self) -> bool:
        return (
            self.cached_balance_cents == self.replayed_balance_cents
            and not self.chain_breaks
            and not self.sequence_gaps
        )

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "opening_balance_cents": self.opening_balance_cents,
            "cached_balance_cents": self.cached_balance_cents,
            "replayed_balance_cents": self.replayed_balance_cents,
            "entry_count": self.entry_count,
            "chain_breaks": self.chain_breaks,
            "sequence_gaps": self.sequence_gaps,
            "ok": self.ok,
            "repaired": self.repaired,
        }


# =============================================================================
# DELTAS AND LOOKUPS
# =============================================================================

def transaction_delta(tx: ARTransaction, by_id: dict[int, ARTransaction] | None = None) -> int:
    """
    Signed balance effect of one entry.

    CHARGE +amount, PAYMENT -amount, REVERSAL the negated effect of the
    entry it reverses.
    """
    if tx.transaction_type == TX_CHARGE:
        return tx.amount_cents
    if tx.transaction_type == TX_PAYMENT:
        return -tx.amount_cents
    if tx.transaction_type == TX_REVERSAL:
        original = None
        if by_id is not None:
            original = by_id.get(tx.reverses_transaction_id)
        if original is None:
            original = db.session.get(ARTransaction, tx.reverses_transaction_id)
        if original is None:
            raise LedgerIntegrityError(
                f"Reversal {tx.id} points at missing transaction {tx.reverses_transaction_id}"
            )
        return -transaction_delta(original, by_id)
    raise LedgerIntegrityError(f"Unknown AR transaction type: {tx.transaction_type}")


def _latest_entry(customer_id: int) -> ARTransaction | None:
    return (
        db.session.query(ARTransaction)
        .filter_by(customer_account_id=customer_id)
        .order_by(ARTransaction.sequence.desc())
        .first()
    )


def _lock_customer(customer_id: int) -> CustomerAccount:
    customer = lock_for_update(
        db.session.query(CustomerAccount).filter_by(id=customer_id)
    ).first()
    if not customer:
        raise NotFoundError(f"Customer account {customer_id} not found")
    return customer


def _verify_cache(customer: CustomerAccount, latest: ARTransaction | None) -> None:
    expected = latest.balance_after_cents if latest else customer.opening_balance_cents
    if customer.current_balance_cents != expected:
        current_app.logger.error(
            "AR cache mismatch for customer %s: cached=%s log=%s",
            customer.id, customer.current_balance_cents, expected,
        )
        raise LedgerIntegrityError(
            f"Cached balance for customer {customer.id} does not match its ledger",
            details={
                "customer_id": customer.id,
                "cached_balance_cents": customer.current_balance_cents,
                "ledger_balance_cents": expected,
            },
        )


def _append_locked(
    customer: CustomerAccount,
    *,
    transaction_type: str,
    amount_cents: int,
    delta_cents: int,
    sale_id: int | None = None,
    reverses_transaction_id: int | None = None,
    unapplied_cents: int = 0,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> ARTransaction:
    """Append one row and move the cache. Caller holds the customer lock."""
    latest = _latest_entry(customer.id)
    _verify_cache(customer, latest)

    balance_after = customer.current_balance_cents + delta_cents
    tx = ARTransaction(
        customer_account_id=customer.id,
        sequence=(latest.sequence + 1) if latest else 1,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=balance_after,
        sale_id=sale_id,
        reverses_transaction_id=reverses_transaction_id,
        unapplied_cents=unapplied_cents,
        payment_method=payment_method,
        reference_number=reference_number,
        notes=notes,
        processed_by_user_id=user_id,
    )
    db.session.add(tx)
    customer.current_balance_cents = balance_after
    db.session.flush()

    append_audit_event(
        event_type=f"ar.{transaction_type.lower()}",
        event_category="ar",
        entity_type="ar_transaction",
        entity_id=tx.id,
        actor_user_id=user_id,
        sale_id=sale_id,
        customer_account_id=customer.id,
        payload={
            "sequence": tx.sequence,
            "amount_cents": amount_cents,
            "delta_cents": delta_cents,
            "balance_after_cents": balance_after,
            "unapplied_cents": unapplied_cents,
        },
    )
    return tx


def _overpayment_policy() -> str:
    policy = (current_app.config.get("AR_OVERPAYMENT_POLICY") or POLICY_CLAMP).upper()
    if policy not in (POLICY_CLAMP, POLICY_CREDIT):
        raise LedgerValidationError(f"Unknown AR overpayment policy: {policy}")
    return policy


# =============================================================================
# POSTING
# =============================================================================

def post_transaction(
    customer_id: int,
    transaction_type: str,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    allow_over_limit: bool = False,
    commit: bool = True,
) -> ARTransaction:
    """
    Post a CHARGE or PAYMENT to a customer's ledger.

    WHY: The single write path for balance changes. Reads the balance under
    the customer lock, appends the row and moves the cache together.

    Args:
        customer_id: Customer account
        transaction_type: CHARGE or PAYMENT (reversals go through
            reverse_transaction)
        amount_cents: Positive amount
        sale_id: Required for CHARGE
        allow_over_limit: Caller-authorized over-limit charge
        commit: False when the caller owns the transaction (settlement)

    Raises:
        LedgerValidationError: Bad amount/type, credit limit, inactive
            customer, or nothing to apply a payment to under CLAMP
        LedgerIntegrityError: Cached balance disagrees with the log
        ConcurrencyConflict: Retries exhausted (commit=True only)
    """
    transaction_type = (transaction_type or "").upper()
    if transaction_type not in (TX_CHARGE, TX_PAYMENT):
        raise LedgerValidationError(f"Invalid AR transaction type: {transaction_type}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise LedgerValidationError(f"invalid amount: {amount_cents}")
    if transaction_type == TX_CHARGE and not sale_id:
        raise LedgerValidationError("AR charge requires sale_id")

    def _op():
        with keyed_lock(customer_key(customer_id)):
            customer = _lock_customer(customer_id)

            if transaction_type == TX_CHARGE:
                if not customer.is_active:
                    raise LedgerValidationError("customer account inactive", code="CUSTOMER_INACTIVE")
                over_ok = allow_over_limit or current_app.config.get("AR_ALLOW_OVER_LIMIT", False)
                if not over_ok and customer.current_balance_cents + amount_cents > customer.credit_limit_cents:
                    raise LedgerValidationError(
                        "credit limit exceeded",
                        code="CREDIT_LIMIT_EXCEEDED",
                        details={
                            "credit_limit_cents": customer.credit_limit_cents,
                            "current_balance_cents": customer.current_balance_cents,
                            "charge_cents": amount_cents,
                        },
                    )
                tx = _append_locked(
                    customer,
                    transaction_type=TX_CHARGE,
                    amount_cents=amount_cents,
                    delta_cents=amount_cents,
                    sale_id=sale_id,
                    payment_method=METHOD_AR,
                    reference_number=reference_number,
                    notes=notes,
                    user_id=user_id,
                )
            else:
                applied = amount_cents
                if _overpayment_policy() == POLICY_CLAMP:
                    outstanding = max(customer.current_balance_cents, 0)
                    if outstanding == 0:
                        raise LedgerValidationError(
                            "customer has no outstanding balance",
                            code="NO_OUTSTANDING_BALANCE",
                        )
                    applied = min(amount_cents, outstanding)
                tx = _append_locked(
                    customer,
                    transaction_type=TX_PAYMENT,
                    amount_cents=applied,
                    delta_cents=-applied,
                    unapplied_cents=amount_cents - applied,
                    payment_method=payment_method,
                    reference_number=reference_number,
                    notes=notes,
                    user_id=user_id,
                )

            if commit:
                db.session.commit()
            return tx

    if commit:
        return run_with_retry(_op)
    return _op()


def record_payment(
    customer_id: int,
    amount_cents: int,
    notes: str | None = None,
    *,
    payment_method: str | None = None,
    reference_number: str | None = None,
    user_id: int | None = None,
) -> ARTransaction:
    """
    Record a customer paying down their account.

    payment_method defaults to CASH and follows the same reference rules as
    a sale leg; AR cannot pay AR.
    """
    method_code = normalize_method_code(payment_method or "CASH")
    method = get_method(method_code)
    if method is None:
        raise LedgerValidationError(f"unknown payment method: {method_code}")
    if method.code == METHOD_AR:
        raise LedgerValidationError("AR cannot be used to pay an AR balance")
    reference_number = clean_reference(reference_number)
    if method.requires_reference and not reference_number:
        raise LedgerValidationError(f"missing reference: {method.code}", code="MISSING_REFERENCE")

    tx = post_transaction(
        customer_id,
        TX_PAYMENT,
        amount_cents,
        payment_method=method.code,
        reference_number=reference_number,
        notes=notes,
        user_id=user_id,
    )
    current_app.logger.info(
        "AR payment %s posted for customer %s: applied=%s unapplied=%s balance=%s",
        tx.id, customer_id, tx.amount_cents, tx.unapplied_cents, tx.balance_after_cents,
    )
    return tx


def reverse_transaction(
    transaction_id: int,
    *,
    reason: str,
    user_id: int | None = None,
    allow_sale_charge: bool = False,
    commit: bool = True,
) -> ARTransaction:
    """
    Post a compensating REVERSAL for one earlier entry.

    Each entry can be reversed once and reversals themselves cannot be
    reversed. A charge that belongs to a sale is reversed by voiding the
    sale (allow_sale_charge=True is reserved for that path).
    """
    if not (reason or "").strip():
        raise LedgerValidationError("reason is required for a reversal")

    def _op():
        original = db.session.get(ARTransaction, transaction_id)
        if not original:
            raise NotFoundError(f"AR transaction {transaction_id} not found")

        with keyed_lock(customer_key(original.customer_account_id)):
            customer = _lock_customer(original.customer_account_id)

            if original.transaction_type == TX_REVERSAL:
                raise LedgerValidationError("A reversal cannot be reversed")
            if original.sale_id and original.transaction_type == TX_CHARGE and not allow_sale_charge:
                raise LedgerValidationError(
                    f"Charge {original.id} belongs to sale {original.sale_id}; void the sale instead"
                )
            already = db.session.query(ARTransaction).filter_by(reverses_transaction_id=original.id).first()
            if already:
                raise LedgerValidationError(f"AR transaction {original.id} already reversed by {already.id}")

            tx = _append_locked(
                customer,
                transaction_type=TX_REVERSAL,
                amount_cents=original.amount_cents,
                delta_cents=-transaction_delta(original),
                sale_id=original.sale_id,
                reverses_transaction_id=original.id,
                payment_method=original.payment_method,
                notes=reason.strip(),
                user_id=user_id,
            )
            if commit:
                db.session.commit()
            return tx

    if commit:
        return run_with_retry(_op)
    return _op()


# =============================================================================
# READS AND REPLAY
# =============================================================================

def get_history(customer_id: int) -> list[ARTransaction]:
    """All entries for a customer in posting order."""
    if not db.session.get(CustomerAccount, customer_id):
        raise NotFoundError(f"Customer account {customer_id} not found")
    return (
        db.session.query(ARTransaction)
        .filter_by(customer_account_id=customer_id)
        .order_by(ARTransaction.sequence.asc())
        .all()
    )


def get_customer_ledger(customer_id: int) -> list[ARTransaction]:
    return get_history(customer_id)


def replay(customer: CustomerAccount, entries: list[ARTransaction]) -> BalanceCheck:
    """Re-derive the balance from the log without writing anything."""
    by_id = {tx.id: tx for tx in entries}
    running = customer.opening_balance_cents
    chain_breaks = []
    gaps = []
    expected_seq = 1
    for tx in entries:
        while expected_seq < tx.sequence:
            gaps.append(expected_seq)
            expected_seq += 1
        expected_seq = tx.sequence + 1
        running += transaction_delta(tx, by_id)
        if tx.balance_after_cents != running:
            chain_breaks.append(tx.sequence)
    return BalanceCheck(
        customer_id=customer.id,
        opening_balance_cents=customer.opening_balance_cents,
        cached_balance_cents=customer.current_balance_cents,
        replayed_balance_cents=running,
        entry_count=len(entries),
        chain_breaks=chain_breaks,
        sequence_gaps=gaps,
    )


def recompute_balance(customer_id: int, *, repair: bool = False, user_id: int | None = None) -> BalanceCheck:
    """
    Replay the customer's log and compare with the cached balance.

    WHY: The canonical integrity check. A clean replay returns the check
    unchanged. A mismatch is logged and recorded as an integrity.mismatch
    audit event, then:
    - repair=False (default): raises LedgerIntegrityError
    - repair=True: overwrites the cache with the replayed balance and
      records ar.balance_repaired (manual reconciliation only)

    Repair fixes a drifted cache only. Chain breaks or sequence gaps mean
    the log itself is wrong; those always raise, repair or not.
    """
    with keyed_lock(customer_key(customer_id)):
        customer = _lock_customer(customer_id)
        check = replay(customer, get_history(customer_id))
        if check.ok:
            return check

        current_app.logger.error("AR ledger integrity mismatch: %s", check.to_dict())
        append_audit_event(
            event_type="integrity.mismatch",
            event_category="integrity",
            entity_type="customer_account",
            entity_id=customer.id,
            actor_user_id=user_id,
            customer_account_id=customer.id,
            payload=check.to_dict(),
        )

        if not repair:
            db.session.commit()
            raise LedgerIntegrityError(
                f"AR ledger for customer {customer_id} does not replay to its cached balance",
                details=check.to_dict(),
            )

        # Only the cache can be rebuilt; a broken log needs manual reconciliation
        if check.chain_breaks or check.sequence_gaps:
            db.session.commit()
            raise LedgerIntegrityError(
                f"AR ledger for customer {customer_id} is broken (chain breaks or sequence gaps); "
                "the log needs manual reconciliation before the cache can be repaired",
                code="LEDGER_LOG_BROKEN",
                details=check.to_dict(),
            )

        previous = customer.current_balance_cents
        customer.current_balance_cents = check.replayed_balance_cents
        append_audit_event(
            event_type="ar.balance_repaired",
            event_category="ar",
            entity_type="customer_account",
            entity_id=customer.id,
            actor_user_id=user_id,
            customer_account_id=customer.id,
            payload={"previous_cents": previous, "repaired_cents": check.replayed_balance_cents},
        )
        db.session.commit()
        check.repaired = True
        current_app.logger.warning(
            "AR balance for customer %s repaired from %s to %s",
            customer_id, previous, check.replayed_balance_cents,
        )
        return check
