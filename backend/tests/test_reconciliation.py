"""
Integrity reconciliation tests.

Verifies:
- A clean store reports ok
- Tampered charges, missing charges and drifted shift totals are found
- Checks only report; nothing is repaired
"""

from hwpos.extensions import db
from hwpos.models import ARTransaction, CustomerAccount, SalePaymentLeg, Shift
from hwpos.services import ar_ledger_service, reconciliation_service, settlement_service, shift_service

from conftest import actor_headers, ar, cash


def _kinds(issues):
    return sorted(issue["kind"] for issue in issues)


class TestIntegrityCheck:
    def test_clean(self, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id)
        ring_sale(5000, [cash(6000)])
        ar_ledger_service.record_payment(customer.id, 5000)
        voided = ring_sale(3000, [ar(3000)], customer_id=customer.id)
        settlement_service.void_sale(voided.id, user_id=1, reason="duplicate scan")

        report = reconciliation_service.run_integrity_check()

        assert report["ok"] is True
        assert report["customer_balances"] == []
        assert report["sale_charges"] == []
        assert report["shift_totals"] == []

    def test_tampered_charge_amount(self, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        charge = db.session.query(ARTransaction).filter_by(sale_id=sale.id).one()
        charge.amount_cents = 15000
        db.session.commit()

        report = reconciliation_service.run_integrity_check()

        assert report["ok"] is False
        assert _kinds(report["sale_charges"]) == ["CHARGE_AMOUNT_MISMATCH"]
        # The log no longer replays to balance_after either
        assert report["customer_balances"][0]["customer_id"] == customer.id
        assert report["customer_balances"][0]["chain_breaks"] == [1]

    def test_missing_charge(self, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        db.session.query(ARTransaction).filter_by(sale_id=sale.id).delete()
        db.session.commit()

        issues = reconciliation_service.find_sale_charge_mismatches()
        assert issues == [{"kind": "AR_SALE_WITHOUT_CHARGE", "sale_id": sale.id, "ar_cents": 20000}]

        # Cache says 20000, empty log replays to 0
        failures = reconciliation_service.check_customer_balances()
        assert failures[0]["cached_balance_cents"] == 20000
        assert failures[0]["replayed_balance_cents"] == 0

    def test_voided_sale_with_open_charge(self, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        sale.status = "VOIDED"
        db.session.commit()

        assert _kinds(reconciliation_service.find_sale_charge_mismatches()) == ["VOIDED_SALE_CHARGE_OPEN"]

    def test_refunded_sale_with_open_charge(self, ring_sale, make_customer):
        customer = make_customer()
        sale = ring_sale(20000, [ar(20000)], customer_id=customer.id)

        sale.status = "REFUNDED"
        db.session.commit()

        assert _kinds(reconciliation_service.find_sale_charge_mismatches()) == ["REFUNDED_SALE_CHARGE_OPEN"]

    def test_refund_after_close_stays_clean(self, shift, ring_sale, make_customer):
        customer = make_customer()
        on_account = ring_sale(20000, [ar(20000)], customer_id=customer.id)
        paid_cash = ring_sale(5000, [cash(5000)])
        shift_service.close_shift(shift.id, 15000)
        shift_service.start_shift(1, 10000)

        settlement_service.refund_sale(on_account.id, user_id=1, reason="returned")
        settlement_service.refund_sale(paid_cash.id, user_id=1, reason="returned")

        assert reconciliation_service.run_integrity_check()["ok"] is True

    def test_leg_tampering_shows_in_shift_totals(self, shift, ring_sale):
        sale = ring_sale(10000, [cash(10000)])

        leg = db.session.query(SalePaymentLeg).filter_by(sale_id=sale.id).one()
        leg.amount_cents = 12000
        db.session.commit()

        failures = reconciliation_service.check_shift_totals()
        assert [f["shift_id"] for f in failures] == [shift.id]
        assert failures[0]["mismatches"]["total_cash_cents"] == {"stored": 10000, "replayed": 12000}

    def test_active_only_filter(self, shift, ring_sale):
        ring_sale(10000, [cash(10000)])
        stored = db.session.get(Shift, shift.id)
        stored.total_card_cents = 1
        db.session.commit()

        assert len(reconciliation_service.check_shift_totals(active_only=True)) == 1

    def test_checks_do_not_repair(self, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id)
        account = db.session.get(CustomerAccount, customer.id)
        account.current_balance_cents = 1
        db.session.commit()

        reconciliation_service.run_integrity_check()

        db.session.expire_all()
        assert db.session.get(CustomerAccount, customer.id).current_balance_cents == 1


class TestIntegrityEndpoint:
    def test_clean_store_answers_200(self, client, ring_sale):
        ring_sale(1000, [cash(1000)])
        response = client.get("/api/integrity", headers=actor_headers())

        assert response.status_code == 200
        assert response.get_json()["ok"] is True

    def test_mismatch_answers_500(self, client, ring_sale, make_customer):
        customer = make_customer()
        ring_sale(20000, [ar(20000)], customer_id=customer.id)
        account = db.session.get(CustomerAccount, customer.id)
        account.current_balance_cents = 1
        db.session.commit()

        response = client.get("/api/integrity")

        assert response.status_code == 500
        body = response.get_json()
        assert body["ok"] is False
        assert body["customer_balances"][0]["cached_balance_cents"] == 1
