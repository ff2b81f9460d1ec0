import pytest

from exceptions import ValidationError
from models import FundTransaction
from fund import (NEGATIVE_BALANCE_WARNING, find_booking_deposit, fund_balance, plan_deposit,
                  plan_withdrawal, reconcile_booking_deduction, record_booking_deduction,
                  record_inventory_purchase, sort_transactions)


@pytest.fixture
def deducted_booking(make_booking):
    """Booking with a 50 USD development deduction and a locked USD rate of 50."""
    return make_booking(development_deduction=50.0, exchange_rate_at_booking={"USD": 50.0})


@pytest.fixture
def ledger():
    return [
        FundTransaction(id="t1", type="deposit", amount=100.0, amount_egp=5000.0, transaction_date="2025-01-01"),
        FundTransaction(id="t2", type="deposit", amount=50.0, amount_egp=2400.0, transaction_date="2025-02-01"),
        FundTransaction(id="t3", type="withdrawal", amount=30.0, amount_egp=1500.0, transaction_date="2025-03-01"),
    ]


class TestBalance:

    def test_balance_in_both_denominations(self, ledger):
        bal = fund_balance(ledger)
        assert bal.balance == pytest.approx(120.0)
        assert bal.balance_egp == pytest.approx(5900.0)
        assert bal.transaction_count == 3

    def test_newest_first(self, ledger):
        assert [t.id for t in sort_transactions(ledger)] == ["t3", "t2", "t1"]


class TestBookingDeductions:

    def test_new_booking_deposit(self, deducted_booking, rates):
        txn = record_booking_deduction(deducted_booking, rates)
        assert txn.type == "deposit"
        assert txn.amount == pytest.approx(50.0)
        assert txn.amount_egp == pytest.approx(2500.0)
        assert txn.booking_id == deducted_booking.id
        assert txn.is_system_generated
        assert txn.description == "Development Fund Contribution from Booking BK1"

    def test_no_deposit_without_deduction(self, make_booking, rates):
        assert record_booking_deduction(make_booking(), rates) is None

    def test_removed_deduction_converts_deposit_to_withdrawal(self, deducted_booking, rates):
        deposit = record_booking_deduction(deducted_booking, rates)
        deducted_booking.development_deduction = 0.0

        txn = reconcile_booking_deduction(deducted_booking, [deposit], 50.0, rates)

        assert txn.id == deposit.id
        assert txn.type == "withdrawal"
        assert txn.amount == pytest.approx(50.0)
        assert txn.description.startswith("Reversal: Development Deduction removed from Booking BK1")

    def test_changed_deduction_updates_in_place(self, deducted_booking, rates):
        deposit = record_booking_deduction(deducted_booking, rates)
        deducted_booking.development_deduction = 80.0

        txn = reconcile_booking_deduction(deducted_booking, [deposit], 50.0, rates)

        assert txn.id == deposit.id
        assert txn.type == "deposit"
        assert txn.amount == pytest.approx(80.0)
        assert txn.description.endswith("(Updated)")

    def test_unchanged_deduction_is_a_no_op(self, deducted_booking, rates):
        deposit = record_booking_deduction(deducted_booking, rates)
        assert reconcile_booking_deduction(deducted_booking, [deposit], 50.005, rates) is None

    def test_added_deduction_creates_deposit(self, deducted_booking, rates):
        txn = reconcile_booking_deduction(deducted_booking, [], 0.0, rates)
        assert txn.type == "deposit"
        assert find_booking_deposit(deducted_booking.id, [txn]) is txn


class TestManualMovements:

    def test_deposit_egp_defaults_from_usd_rate(self):
        txn = plan_deposit(10, usd_rate=50.0, source="Owner")
        assert txn.amount_egp == pytest.approx(500.0)
        assert txn.description == "External deposit from Owner"

    def test_deposit_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            plan_deposit(0)

    def test_overdraft_is_flagged_not_blocked(self):
        existing = [FundTransaction(id="t", type="deposit", amount=20.0, amount_egp=1000.0)]
        txn, warning = plan_withdrawal(existing, 50, usd_rate=50.0)
        assert txn.type == "withdrawal"
        assert txn.will_create_negative_balance
        assert warning == NEGATIVE_BALANCE_WARNING

    def test_covered_withdrawal_has_no_warning(self, ledger):
        txn, warning = plan_withdrawal(ledger, 100, amount_egp=5000)
        assert warning is None
        assert txn.amount_egp == 5000

    def test_negative_withdrawal_is_deposit(self):
        txn, warning = plan_withdrawal([], -25)
        assert txn.type == "deposit"
        assert txn.amount == 25.0
        assert warning is None

    def test_negative_withdrawal_keeps_egp_mirror_positive(self):
        txn, _ = plan_withdrawal([], -25, amount_egp=-1250)
        assert txn.type == "deposit"
        assert txn.amount_egp == 1250.0
        assert fund_balance([txn]).balance_egp == pytest.approx(1250.0)

    def test_withdrawal_requires_amount(self):
        with pytest.raises(ValidationError):
            plan_withdrawal([], None)

    def test_inventory_purchase(self):
        txn = record_inventory_purchase("Towels", 3, 1000, usd_rate=50.0)
        assert txn.type == "withdrawal"
        assert txn.amount == pytest.approx(60.0)
        assert txn.amount_egp == pytest.approx(3000.0)
        assert txn.is_system_generated
        assert txn.inventory_item_id

    def test_inventory_requires_quantity(self):
        with pytest.raises(ValidationError):
            record_inventory_purchase("Towels", 0, 1000)
