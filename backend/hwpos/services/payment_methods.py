# Overview: Closed registry of payment method codes and their shift buckets.

"""
Payment Methods

WHY: Every place that asks "does this leg need a reference?" or "which
shift bucket does this leg count toward?" reads from this one table, so a
new method is added in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass


# =============================================================================
# METHOD CODES (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_AR = "AR"
METHOD_CREDIT_CARD = "CREDIT_CARD"
METHOD_DEBIT_CARD = "DEBIT_CARD"
METHOD_GCASH = "GCASH"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_QR_PH = "QR_PH"
METHOD_CHECK = "CHECK"


# =============================================================================
# SHIFT BUCKETS (CONSTANTS)
# =============================================================================

BUCKET_CASH = "cash"
BUCKET_CARD = "card"
BUCKET_MOBILE = "mobile"
BUCKET_CHECK = "check"
BUCKET_AR = "ar"

SHIFT_BUCKETS = [BUCKET_CASH, BUCKET_CARD, BUCKET_MOBILE, BUCKET_CHECK, BUCKET_AR]


@dataclass(frozen=True)
class PaymentMethod:
    code: str
    label: str
    bucket: str
    requires_reference: bool


PAYMENT_METHODS: dict[str, PaymentMethod] = {
    m.code: m
    for m in (
        PaymentMethod(METHOD_CASH, "Cash", BUCKET_CASH, False),
        PaymentMethod(METHOD_AR, "Store Credit (AR)", BUCKET_AR, False),
        PaymentMethod(METHOD_CREDIT_CARD, "Credit Card", BUCKET_CARD, True),
        PaymentMethod(METHOD_DEBIT_CARD, "Debit Card", BUCKET_CARD, True),
        PaymentMethod(METHOD_GCASH, "GCash", BUCKET_MOBILE, True),
        PaymentMethod(METHOD_BANK_TRANSFER, "Bank Transfer", BUCKET_MOBILE, True),
        PaymentMethod(METHOD_QR_PH, "QR Ph", BUCKET_MOBILE, True),
        PaymentMethod(METHOD_CHECK, "Check", BUCKET_CHECK, True),
    )
}

# Input spellings accepted from older clients
METHOD_ALIASES = {
    "CARD": METHOD_CREDIT_CARD,
    "QR": METHOD_QR_PH,
}


def normalize_method_code(code) -> str:
    """Uppercase, trim and resolve aliases. Unknown codes pass through unchanged."""
    normalized = "" if code is None else str(code).strip().upper()
    return METHOD_ALIASES.get(normalized, normalized)


def clean_reference(value) -> str | None:
    """Trimmed reference number; numeric references from JSON become strings."""
    if value is None or isinstance(value, bool):
        return None
    return str(value).strip() or None


def get_method(code: str | None) -> PaymentMethod | None:
    return PAYMENT_METHODS.get(normalize_method_code(code))


def is_known_method(code: str | None) -> bool:
    return get_method(code) is not None


def requires_reference(code: str) -> bool:
    method = get_method(code)
    return bool(method and method.requires_reference)


def bucket_for(code: str) -> str:
    method = get_method(code)
    if method is None:
        raise ValueError(f"unknown payment method: {code}")
    return method.bucket


def list_methods() -> list[dict]:
    return [
        {
            "code": m.code,
            "label": m.label,
            "bucket": m.bucket,
            "requires_reference": m.requires_reference,
        }
        for m in PAYMENT_METHODS.values()
    ]
