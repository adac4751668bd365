# Overview: Error taxonomy shared by services, routes and the CLI.

"""
Settlement error taxonomy.

- ValidationError: bad input or a business rule said no. Raised before any
  write; the API answers 4xx with the reason.
- ConcurrencyConflict: lock contention or a stale version survived every
  retry. The API answers 503 and nothing was committed.
- LedgerIntegrityError: cached balance and log disagree, a sale number was
  reused, or a sale and its charge do not match. Logged, never repaired
  implicitly.
- CollaboratorError: inventory or catalog call failed. Non-fatal once the
  financial state is committed.
- AuthorizationError: an override (over-limit AR) was requested by someone
  who may not approve it. The API answers 403.
"""

from __future__ import annotations


class HwposError(Exception):
    """Base for all domain errors."""

    code = "ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(HwposError):
    """400-level input or business-rule problem."""
    code = "VALIDATION_ERROR"
    http_status = 400


class CartValidationError(ValidationError):
    code = "INVALID_CART"


class SettlementValidationError(ValidationError):
    """Payment split or settlement precondition rejected."""
    code = "INVALID_SETTLEMENT"


class LedgerValidationError(ValidationError):
    code = "INVALID_LEDGER_ENTRY"


class ShiftStateError(ValidationError):
    code = "INVALID_SHIFT_STATE"


class NotFoundError(ValidationError):
    code = "NOT_FOUND"
    http_status = 404


class AuthorizationError(HwposError):
    """The acting user may not authorize this override."""
    code = "NOT_AUTHORIZED"
    http_status = 403


class ConcurrencyConflict(HwposError):
    code = "CONCURRENCY_CONFLICT"
    http_status = 503


class LedgerIntegrityError(HwposError):
    code = "INTEGRITY_ERROR"
    http_status = 500


class DuplicateSaleError(LedgerIntegrityError):
    """A sale number was presented a second time."""
    code = "DUPLICATE_SALE"
    http_status = 409


class CollaboratorError(HwposError):
    code = "COLLABORATOR_ERROR"
    http_status = 502
