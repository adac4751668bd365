# Overview: Pure payment split validator; returns typed results for business-rule outcomes.

"""
Payment Split Validator

WHY: A sale may be paid with several instruments at once (cash + card,
card + store credit, ...). Before anything is written the split must cover
the amount due, carry references where the instrument needs one, and stay
inside the customer's credit limit.

RULES:
- Only CASH may exceed its share; the excess is change
- Non-cash legs together may not exceed the amount due
- Every method except CASH and AR needs a reference number
- AR needs an active customer with room under the credit limit

Business-rule failures come back as SplitValidation(ok=False, ...).
Exceptions are reserved for programmer errors (empty legs).
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .payment_methods import METHOD_AR, METHOD_CASH, clean_reference, get_method, normalize_method_code


# =============================================================================
# FAILURE CODES (CONSTANTS)
# =============================================================================

CODE_UNKNOWN_METHOD = "UNKNOWN_METHOD"
CODE_INVALID_AMOUNT = "INVALID_AMOUNT"
CODE_MISSING_REFERENCE = "MISSING_REFERENCE"
CODE_CUSTOMER_REQUIRED = "CUSTOMER_REQUIRED"
CODE_CUSTOMER_INACTIVE = "CUSTOMER_INACTIVE"
CODE_CREDIT_LIMIT_EXCEEDED = "CREDIT_LIMIT_EXCEEDED"
CODE_NON_CASH_OVERPAYMENT = "NON_CASH_OVERPAYMENT"
CODE_INSUFFICIENT_PAYMENT = "INSUFFICIENT_PAYMENT"


@dataclass(frozen=True)
class PaymentLeg:
    method_code: str
    amount_cents: int
    reference_number: str | None = None
    notes: str | None = None

    def normalized(self) -> "PaymentLeg":
        return replace(
            self,
            method_code=normalize_method_code(self.method_code),
            reference_number=clean_reference(self.reference_number),
        )

    def to_dict(self) -> dict:
        return {
            "method_code": self.method_code,
            "amount_cents": self.amount_cents,
            "reference_number": self.reference_number,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class SplitValidation:
    ok: bool
    change_due_cents: int = 0
    code: str | None = None
    reason: str | None = None
    offending_leg: int | None = None  # 0-based index into legs

    def to_dict(self) -> dict:
        data = {"ok": self.ok, "change_due_cents": self.change_due_cents}
        if not self.ok:
            data.update({"code": self.code, "reason": self.reason, "offending_leg": self.offending_leg})
        return data


def _fail(code: str, reason: str, offending_leg: int | None = None) -> SplitValidation:
    return SplitValidation(ok=False, code=code, reason=reason, offending_leg=offending_leg)


def _is_amount(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def ar_amount_cents(legs: list[PaymentLeg]) -> int:
    """Sum of AR legs (what goes on the customer's account)."""
    return sum(
        leg.amount_cents for leg in legs
        if normalize_method_code(leg.method_code) == METHOD_AR
    )


def validate_split(
    total_due_cents: int,
    legs: list[PaymentLeg],
    customer=None,
    *,
    allow_over_limit: bool = False,
) -> SplitValidation:
    """
    Validate a payment split against the amount due.

    Checks run in a fixed order and the first failure wins:
    per-leg shape, AR eligibility, non-cash overpayment, coverage.

    Args:
        total_due_cents: Amount the customer owes (net of withholding under EWT)
        legs: Payment legs as entered
        customer: CustomerAccount-like object (credit_limit_cents,
            current_balance_cents, is_active); required when any leg is AR
        allow_over_limit: Caller-authorized over-limit AR charge

    Raises:
        ValueError: legs is empty
    """
    if not legs:
        raise ValueError("at least one payment leg is required")

    normalized = [leg.normalized() for leg in legs]

    for i, leg in enumerate(normalized):
        method = get_method(leg.method_code)
        if method is None:
            return _fail(CODE_UNKNOWN_METHOD, f"unknown payment method: {leg.method_code}", i)
        if not _is_amount(leg.amount_cents) or leg.amount_cents <= 0:
            return _fail(CODE_INVALID_AMOUNT, f"invalid amount: {leg.amount_cents}", i)
        if method.requires_reference and not leg.reference_number:
            return _fail(CODE_MISSING_REFERENCE, f"missing reference: {leg.method_code}", i)

    ar_indexes = [i for i, leg in enumerate(normalized) if leg.method_code == METHOD_AR]
    if ar_indexes:
        first_ar = ar_indexes[0]
        if customer is None:
            return _fail(CODE_CUSTOMER_REQUIRED, "customer required for AR", first_ar)
        if not customer.is_active:
            return _fail(CODE_CUSTOMER_INACTIVE, "customer account inactive", first_ar)
        ar_total = sum(normalized[i].amount_cents for i in ar_indexes)
        if not allow_over_limit and customer.current_balance_cents + ar_total > customer.credit_limit_cents:
            return _fail(CODE_CREDIT_LIMIT_EXCEEDED, "credit limit exceeded", ar_indexes[-1])

    non_cash_running = 0
    for i, leg in enumerate(normalized):
        if leg.method_code == METHOD_CASH:
            continue
        non_cash_running += leg.amount_cents
        if non_cash_running > total_due_cents:
            return _fail(CODE_NON_CASH_OVERPAYMENT, f"non-cash overpayment: {leg.method_code}", i)

    tendered = sum(leg.amount_cents for leg in normalized)
    if tendered < total_due_cents:
        return _fail(CODE_INSUFFICIENT_PAYMENT, "insufficient payment")

    return SplitValidation(ok=True, change_due_cents=tendered - total_due_cents)
