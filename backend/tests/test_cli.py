"""
CLI command tests.

Verifies:
- customers create/list
- ledger check exits 1 on a mismatch, recompute --repair fixes the cache
- inventory retry-pending drains the queue
"""

from hwpos.extensions import COLLABORATORS_KEY, db
from hwpos.models import CustomerAccount
from hwpos.services import api, customer_service

from conftest import ar, cash


def _invoke(app, *args, **kwargs):
    return app.test_cli_runner().invoke(args=list(args), **kwargs)


class TestCustomerCommands:
    def test_create_and_list(self, app):
        result = _invoke(app, "customers", "create", "--code", "c-0100", "--name", "Bayanihan Builders",
                         "--limit-cents", "500000")
        assert result.exit_code == 0
        assert "Created customer C-0100" in result.output

        result = _invoke(app, "customers", "list")
        assert result.exit_code == 0
        assert "Bayanihan Builders" in result.output
        assert "5,000.00" in result.output

    def test_duplicate_code(self, app, make_customer):
        make_customer(customer_code="DUP")
        result = _invoke(app, "customers", "create", "--code", "dup", "--name", "Again")
        assert result.exit_code == 1
        assert "already exists" in result.output


class TestLedgerCommands:
    def test_check_clean(self, app, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id)

        result = _invoke(app, "ledger", "check")

        assert result.exit_code == 0
        assert "PASS customer_balances: 0 problem(s)" in result.output

    def test_check_and_repair(self, app, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id)
        account = db.session.get(CustomerAccount, customer.id)
        account.current_balance_cents = 5
        db.session.commit()

        result = _invoke(app, "ledger", "check")
        assert result.exit_code == 1
        assert "FAIL customer_balances: 1 problem(s)" in result.output

        result = _invoke(app, "ledger", "recompute", "--customer-id", str(customer.id))
        assert result.exit_code == 1

        result = _invoke(app, "ledger", "recompute", "--customer-id", str(customer.id), "--repair", input="y\n")
        assert result.exit_code == 0
        assert "Balance repaired" in result.output

        db.session.expire_all()
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 20000
        assert _invoke(app, "ledger", "check").exit_code == 0


class TestOtherCommands:
    def test_shifts_list(self, app, shift):
        result = _invoke(app, "shifts", "list", "--status", "ACTIVE")
        assert result.exit_code == 0
        assert "ACTIVE" in result.output

    def test_retry_pending(self, app, inventory, failing_inventory, ring_sale):
        ring_sale(1000, [cash(1000)])
        app.extensions[COLLABORATORS_KEY]["inventory"] = inventory

        result = _invoke(app, "inventory", "retry-pending")

        assert result.exit_code == 0
        assert "1 succeeded, 0 still pending" in result.output


class TestPublicEntryPoints:
    def test_settle_pay_and_close_through_api_module(self, db_session):
        shift = api.start_shift(11, 5000)
        customer = customer_service.create_customer(
            customer_code="API-1", customer_name="Entry Point Trading", credit_limit_cents=50000
        )

        api.settle(
            [{"product_id": 1, "unit_price_cents": 30000, "quantity": 1}],
            [ar(10000), cash(25000)],
            cashier_id=11,
            shift_id=shift.id,
            customer_id=customer.id,
        )
        api.record_payment(customer.id, 4000)

        ledger = api.get_customer_ledger(customer.id)
        assert [tx.balance_after_cents for tx in ledger] == [10000, 6000]

        summary = api.end_shift(shift.id, 25000)
        assert summary.expected_cash_cents == 25000  # 5000 float + 25000 tendered - 5000 change
        assert summary.classification == "BALANCED"
