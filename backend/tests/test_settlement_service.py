"""
Settlement engine tests.

Verifies:
- Sale, lines, legs, AR charge and shift totals commit together or not at all
- Sale numbering and the idempotency key
- Rejections write nothing
- Inventory is called after commit and queued when it fails
- Voids post compensating records only
- Refunds pay cash out of the shift open at refund time
"""

import pytest

from hwpos.errors import (
    CartValidationError,
    DuplicateSaleError,
    LedgerValidationError,
    NotFoundError,
    SettlementValidationError,
    ShiftStateError,
    ValidationError,
)
from hwpos.extensions import COLLABORATORS_KEY, db
from hwpos.models import (
    ARTransaction,
    AuditEvent,
    CustomerAccount,
    PendingInventoryRequest,
    Sale,
    SaleLine,
    SalePaymentLeg,
    Shift,
)
from hwpos.services import settlement_service, shift_service
from hwpos.services.collaborators import list_pending_requests, retry_pending_requests
from hwpos.services.payment_split_service import SplitValidation
from hwpos.services.tax_service import CartLine

from conftest import ar, card, cash


def _counts():
    return {
        "sales": db.session.query(Sale).count(),
        "lines": db.session.query(SaleLine).count(),
        "legs": db.session.query(SalePaymentLeg).count(),
        "ar": db.session.query(ARTransaction).count(),
    }


def _shift(shift_id):
    db.session.expire_all()
    return db.session.get(Shift, shift_id)


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestSettle:
    def test_vat_sale_is_persisted(self, shift, ring_sale):
        sale = ring_sale(56000, [cash(120000)], quantity=2)

        assert sale.id is not None
        assert sale.status == "COMPLETED"
        assert sale.tax_mode == "VAT"
        assert sale.total_cents == 112000
        assert sale.subtotal_cents == 100000
        assert sale.tax_cents == 12000
        assert sale.amount_due_cents == 112000
        assert sale.amount_tendered_cents == 120000
        assert sale.change_due_cents == 8000
        assert sale.cashier_id == shift.cashier_id
        assert sale.shift_id == shift.id

        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 2
        assert sale.lines[0].line_total_cents == 112000
        assert [leg.method_code for leg in sale.legs] == ["CASH"]

    def test_sale_numbers_are_sequential(self, ring_sale):
        first = ring_sale(1000, [cash(1000)])
        second = ring_sale(1000, [cash(1000)])

        assert first.sale_number == "S-MAIN-000001"
        assert second.sale_number == "S-MAIN-000002"

    def test_split_payment_with_change(self, shift, ring_sale):
        sale = ring_sale(50000, [card(30000), cash(25000)])

        assert sale.change_due_cents == 5000
        assert [(leg.leg_number, leg.method_code, leg.amount_cents) for leg in sale.legs] == [
            (1, "CREDIT_CARD", 30000),
            (2, "CASH", 25000),
        ]
        assert sale.legs[0].reference_number == "AUTH-123456"

    def test_ar_sale_posts_charge_in_the_same_transaction(self, shift, ring_sale, make_customer):
        customer = make_customer(credit_limit_cents=100000)
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        charge = db.session.query(ARTransaction).filter_by(sale_id=sale.id).one()
        assert charge.transaction_type == "CHARGE"
        assert charge.amount_cents == 20000
        assert charge.reference_number == sale.sale_number
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 20000
        assert _shift(shift.id).total_ar_cents == 20000

    def test_ewt_sale_collects_net_due(self, shift):
        sale = settlement_service.settle(
            [CartLine(1, 112000, 1)],
            [cash(111000)],
            cashier_id=shift.cashier_id,
            shift_id=shift.id,
            tax_mode="EWT",
        )

        assert sale.withholding_cents == 1000
        assert sale.amount_due_cents == 111000
        assert sale.change_due_cents == 0
        assert _shift(shift.id).total_sales_cents == 112000

    def test_dict_input(self, shift):
        sale = settlement_service.settle(
            [{"product_id": 2, "unit_price_cents": 1500, "quantity": 4, "discount_percent": "10"}],
            [{"method_code": "cash", "amount_cents": 6000}],
            cashier_id=shift.cashier_id,
            shift_id=shift.id,
        )

        assert sale.discount_cents == 600
        assert sale.total_cents == 5400
        assert sale.change_due_cents == 600
        assert sale.lines[0].discount_bps == 1000

    def test_numeric_reference_from_json(self, shift):
        sale = settlement_service.settle(
            [{"product_id": 1, "unit_price_cents": 50000, "quantity": 1}],
            [{"method_code": "GCASH", "amount_cents": 50000, "reference_number": 987654}],
            cashier_id=shift.cashier_id,
            shift_id=shift.id,
        )

        assert sale.legs[0].reference_number == "987654"

    def test_non_string_method_code_is_rejected(self, shift):
        with pytest.raises(SettlementValidationError) as exc_info:
            settlement_service.settle(
                [CartLine(1, 1000, 1)],
                [{"method_code": 7, "amount_cents": 1000}],
                cashier_id=shift.cashier_id,
                shift_id=shift.id,
            )
        assert exc_info.value.code == "UNKNOWN_METHOD"
        assert _counts()["sales"] == 0

    def test_settled_audit_event(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        event = db.session.query(AuditEvent).filter_by(event_type="sale.settled", sale_id=sale.id).one()
        assert sale.sale_number in event.payload

    def test_over_limit_with_authorization(self, ring_sale, make_customer):
        customer = make_customer(credit_limit_cents=10000)
        ring_sale(15000, [ar(15000)], customer_id=customer.id, allow_over_limit=True)

        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 15000


# =============================================================================
# REJECTIONS
# =============================================================================


class TestRejections:
    def test_split_rejection_writes_nothing(self, shift, ring_sale):
        with pytest.raises(SettlementValidationError) as exc_info:
            ring_sale(50000, [{"method_code": "CREDIT_CARD", "amount_cents": 50000}])

        assert exc_info.value.code == "MISSING_REFERENCE"
        assert str(exc_info.value) == "missing reference: CREDIT_CARD"
        assert _counts() == {"sales": 0, "lines": 0, "legs": 0, "ar": 0}
        assert _shift(shift.id).transaction_count == 0

    def test_credit_limit(self, ring_sale, make_customer):
        customer = make_customer(credit_limit_cents=100000, opening_balance_cents=90000)
        with pytest.raises(SettlementValidationError, match="credit limit exceeded"):
            ring_sale(20000, [ar(20000)], customer_id=customer.id)
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 90000

    def test_ar_without_customer(self, ring_sale):
        with pytest.raises(SettlementValidationError) as exc_info:
            ring_sale(20000, [ar(20000)])
        assert exc_info.value.code == "CUSTOMER_REQUIRED"

    def test_unknown_customer(self, ring_sale):
        with pytest.raises(NotFoundError):
            ring_sale(20000, [ar(20000)], customer_id=777)

    def test_no_legs(self, ring_sale):
        with pytest.raises(SettlementValidationError) as exc_info:
            ring_sale(1000, [])
        assert exc_info.value.code == "NO_PAYMENT"

    def test_bad_cart(self, ring_sale):
        with pytest.raises(CartValidationError):
            ring_sale(1000, [cash(1000)], quantity=0)
        assert _counts()["sales"] == 0

    def test_unknown_shift(self, db_session):
        with pytest.raises(NotFoundError):
            settlement_service.settle([CartLine(1, 1000, 1)], [cash(1000)], cashier_id=1, shift_id=404)

    def test_closed_shift(self, shift, ring_sale):
        shift_service.close_shift(shift.id, 10000)
        with pytest.raises(ShiftStateError):
            ring_sale(1000, [cash(1000)])

    def test_other_cashiers_shift(self, shift):
        with pytest.raises(SettlementValidationError) as exc_info:
            settlement_service.settle([CartLine(1, 1000, 1)], [cash(1000)], cashier_id=99, shift_id=shift.id)
        assert exc_info.value.code == "SHIFT_CASHIER_MISMATCH"

    def test_limit_lost_inside_the_transaction_rolls_everything_back(
        self, monkeypatch, shift, ring_sale, make_customer
    ):
        customer = make_customer(credit_limit_cents=10000)
        # Pre-check passes as if a concurrent charge had not landed yet
        monkeypatch.setattr(
            settlement_service, "validate_split", lambda *a, **kw: SplitValidation(ok=True, change_due_cents=0)
        )

        with pytest.raises(LedgerValidationError) as exc_info:
            ring_sale(20000, [ar(20000)], customer_id=customer.id)

        assert exc_info.value.code == "CREDIT_LIMIT_EXCEEDED"
        assert _counts() == {"sales": 0, "lines": 0, "legs": 0, "ar": 0}
        s = _shift(shift.id)
        assert s.transaction_count == 0
        assert s.total_sales_cents == 0
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 0

        monkeypatch.undo()
        # The rolled-back sale gave its number back
        assert ring_sale(1000, [cash(1000)]).sale_number == "S-MAIN-000001"


# =============================================================================
# IDEMPOTENCY
# =============================================================================


class TestIdempotency:
    def test_replayed_sale_number_posts_nothing(self, shift, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id, sale_number="POS1-000123")

        with pytest.raises(DuplicateSaleError) as exc_info:
            ring_sale(20000, [ar(20000)], customer_id=customer.id, sale_number="POS1-000123")

        assert exc_info.value.http_status == 409
        assert db.session.query(Sale).filter_by(sale_number="POS1-000123").count() == 1
        assert db.session.query(ARTransaction).filter_by(customer_account_id=customer.id).count() == 1
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 20000
        assert _shift(shift.id).transaction_count == 1

    def test_supplied_number_is_used_as_is(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)], sale_number="  EXT-42 ")
        assert sale.sale_number == "EXT-42"
        assert settlement_service.get_sale_by_number("EXT-42").id == sale.id


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventory:
    def test_decrement_after_commit(self, shift, inventory):
        settlement_service.settle(
            [CartLine(1, 56000, 2), CartLine(2, 1500, 10)],
            [cash(127000)],
            cashier_id=shift.cashier_id,
            shift_id=shift.id,
        )

        assert inventory.moves == [
            ("DECREMENT", 1, 2, "sale:S-MAIN-000001"),
            ("DECREMENT", 2, 10, "sale:S-MAIN-000001"),
        ]

    def test_rejected_sale_moves_no_stock(self, inventory, ring_sale):
        with pytest.raises(SettlementValidationError):
            ring_sale(1000, [cash(500)])
        assert inventory.moves == []

    def test_inventory_failure_is_not_fatal(self, app, inventory, failing_inventory, ring_sale):
        sale = ring_sale(1000, [cash(3000)], quantity=3)

        assert db.session.get(Sale, sale.id).status == "COMPLETED"
        pending = list_pending_requests()
        assert len(pending) == 1
        assert pending[0].operation == "DECREMENT"
        assert pending[0].quantity == 3
        assert pending[0].reason_tag == f"sale:{sale.sale_number}"
        assert pending[0].sale_id == sale.id
        assert "unavailable" in pending[0].last_error

        # Still down: stays queued
        assert retry_pending_requests() == {"attempted": 1, "succeeded": 0, "failed": 1}
        assert db.session.get(PendingInventoryRequest, pending[0].id).attempts == 2

        app.extensions[COLLABORATORS_KEY]["inventory"] = inventory
        assert retry_pending_requests() == {"attempted": 1, "succeeded": 1, "failed": 0}
        assert list_pending_requests() == []
        assert inventory.moves == [("DECREMENT", 1, 3, f"sale:{sale.sale_number}")]


# =============================================================================
# VOIDS
# =============================================================================


class TestVoid:
    def test_void_cash_sale(self, shift, ring_sale, inventory):
        sale = ring_sale(5000, [cash(20000)], quantity=3)
        inventory.moves.clear()

        voided = settlement_service.void_sale(sale.id, user_id=2, reason="wrong item")

        assert voided.status == "VOIDED"
        assert voided.voided_by_user_id == 2
        assert voided.void_reason == "wrong item"
        assert voided.voided_at is not None

        s = _shift(shift.id)
        assert s.total_cash_cents == 15000
        assert s.total_cash_refunds_cents == 15000
        assert shift_service.expected_cash_cents(s) == 10000
        assert inventory.moves == [("RESTOCK", 1, 3, f"void:{sale.sale_number}")]
        assert shift_service.recompute_shift_totals(shift.id)["ok"] is True

    def test_void_ar_sale_reverses_the_charge(self, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        settlement_service.void_sale(sale.id, user_id=2, reason="customer cancelled")

        entries = (
            db.session.query(ARTransaction)
            .filter_by(customer_account_id=customer.id)
            .order_by(ARTransaction.sequence)
            .all()
        )
        assert [tx.transaction_type for tx in entries] == ["CHARGE", "REVERSAL"]
        assert entries[1].reverses_transaction_id == entries[0].id
        assert entries[1].balance_after_cents == 0
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 0

    def test_void_twice(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        settlement_service.void_sale(sale.id, user_id=2, reason="oops")

        with pytest.raises(SettlementValidationError) as exc_info:
            settlement_service.void_sale(sale.id, user_id=2, reason="oops again")
        assert exc_info.value.code == "INVALID_SALE_STATUS"

    def test_void_after_close(self, shift, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        shift_service.close_shift(shift.id, 11000)

        with pytest.raises(ShiftStateError):
            settlement_service.void_sale(sale.id, user_id=2, reason="too late")
        assert db.session.get(Sale, sale.id).status == "COMPLETED"

    def test_void_needs_reason(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        with pytest.raises(ValidationError):
            settlement_service.void_sale(sale.id, user_id=2, reason=" ")

    def test_void_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            settlement_service.void_sale(31337, user_id=2, reason="ghost")


# =============================================================================
# REFUNDS
# =============================================================================


class TestRefund:
    def test_refund_after_close_pays_from_current_shift(self, shift, ring_sale, inventory):
        sale = ring_sale(5000, [cash(20000)], quantity=3)
        shift_service.close_shift(shift.id, 25000)
        today = shift_service.start_shift(1, 20000)
        inventory.moves.clear()

        refunded = settlement_service.refund_sale(sale.id, user_id=1, reason="returned unopened")

        assert refunded.status == "REFUNDED"
        assert refunded.refunded_by_user_id == 1
        assert refunded.refund_reason == "returned unopened"
        assert refunded.refund_shift_id == today.id
        assert refunded.refunded_at is not None

        current = _shift(today.id)
        assert current.total_cash_refunds_cents == 15000
        assert shift_service.expected_cash_cents(current) == 5000
        assert _shift(shift.id).total_cash_refunds_cents == 0

        assert inventory.moves == [("RESTOCK", 1, 3, f"refund:{sale.sale_number}")]
        assert db.session.query(AuditEvent).filter_by(event_type="sale.refunded").count() == 1
        assert shift_service.recompute_shift_totals(shift.id)["ok"] is True
        assert shift_service.recompute_shift_totals(today.id)["ok"] is True

    def test_refund_ar_sale_needs_no_shift(self, shift, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)
        shift_service.close_shift(shift.id, 10000)

        refunded = settlement_service.refund_sale(sale.id, user_id=5, reason="defective")

        assert refunded.refund_shift_id is None
        entries = (
            db.session.query(ARTransaction)
            .filter_by(customer_account_id=customer.id)
            .order_by(ARTransaction.sequence)
            .all()
        )
        assert [tx.transaction_type for tx in entries] == ["CHARGE", "REVERSAL"]
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 0

    def test_cash_refund_needs_an_active_shift(self, shift, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        shift_service.close_shift(shift.id, 11000)

        with pytest.raises(ShiftStateError):
            settlement_service.refund_sale(sale.id, user_id=1, reason="returned")
        assert db.session.get(Sale, sale.id).status == "COMPLETED"

    def test_refund_on_someone_elses_shift(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        other = shift_service.start_shift(2, 0)

        with pytest.raises(SettlementValidationError) as exc_info:
            settlement_service.refund_sale(sale.id, user_id=1, reason="returned", shift_id=other.id)
        assert exc_info.value.code == "SHIFT_CASHIER_MISMATCH"

    def test_voided_or_refunded_sale_cannot_be_refunded(self, ring_sale):
        voided = ring_sale(1000, [cash(1000)])
        settlement_service.void_sale(voided.id, user_id=1, reason="oops")
        refunded = ring_sale(1000, [cash(1000)])
        settlement_service.refund_sale(refunded.id, user_id=1, reason="returned")

        for sale in (voided, refunded):
            with pytest.raises(SettlementValidationError) as exc_info:
                settlement_service.refund_sale(sale.id, user_id=1, reason="again")
            assert exc_info.value.code == "INVALID_SALE_STATUS"

    def test_refund_needs_reason(self, ring_sale):
        sale = ring_sale(1000, [cash(1000)])
        with pytest.raises(ValidationError):
            settlement_service.refund_sale(sale.id, user_id=1, reason="")


# =============================================================================
# QUOTE AND READS
# =============================================================================


class TestQuoteAndReads:
    def test_quote_without_legs(self, db_session):
        result = settlement_service.quote([CartLine(1, 112000, 1)])

        assert result["totals"]["subtotal_cents"] == 100000
        assert result["totals"]["tax_cents"] == 12000
        assert result["validation"] is None

    def test_quote_with_legs_writes_nothing(self, db_session):
        result = settlement_service.quote([CartLine(1, 50000, 1)], [cash(60000)])

        assert result["validation"] == {"ok": True, "change_due_cents": 10000}
        assert _counts()["sales"] == 0

    def test_quote_reports_rejection(self, db_session):
        result = settlement_service.quote([CartLine(1, 50000, 1)], [card(60000)])

        assert result["validation"]["ok"] is False
        assert result["validation"]["reason"] == "non-cash overpayment: CREDIT_CARD"

    def test_list_sales_filters(self, shift, ring_sale, make_customer):
        customer = make_customer()
        first = ring_sale(1000, [cash(1000)])
        second = ring_sale(2000, [ar(2000)], customer_id=customer.id)
        settlement_service.void_sale(first.id, user_id=2, reason="dup")

        assert [s.id for s in settlement_service.list_sales(shift_id=shift.id)] == [second.id, first.id]
        assert [s.id for s in settlement_service.list_sales(customer_id=customer.id)] == [second.id]
        assert [s.id for s in settlement_service.list_sales(status="voided")] == [first.id]
