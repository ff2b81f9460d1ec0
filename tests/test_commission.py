import pytest
from datetime import date

from periods import ReportPeriod
from commission import (APPLIED, CHECKOUT_PERIOD, PENDING, STATEMENT, commission_cache,
                        commission_status, pending_commission_usd, recognized_commission_usd)


@pytest.fixture
def stay(make_booking):
    """Cross-month stay checking out on 7 Feb with 150 USD commission."""
    return make_booking(check_in=date(2025, 1, 28), check_out=date(2025, 2, 7),
                        total_amount=500.0, platform_commission=150.0)


class TestCommissionStatus:

    def test_applied_after_checkout(self, stay, as_of):
        assert commission_status(stay, as_of) == APPLIED
        assert commission_cache(stay, as_of) == (APPLIED, "2025-02-07")

    def test_applied_on_checkout_day(self, stay):
        assert commission_status(stay, date(2025, 2, 7)) == APPLIED

    def test_pending_before_checkout(self, stay):
        assert commission_status(stay, date(2025, 2, 6)) == PENDING
        assert commission_cache(stay, date(2025, 2, 6)) == (PENDING, None)

    def test_open_ended_stays_pending(self, make_booking, as_of):
        assert commission_status(make_booking(check_out=None), as_of) == PENDING


class TestCheckoutPeriodRule:

    def test_recognised_in_exactly_one_month(self, stay, rates, as_of):
        """Only the checkout month carries the commission."""
        recognised = [
            m for m in range(1, 13)
            if recognized_commission_usd(stay, ReportPeriod.for_month(2025, m),
                                         CHECKOUT_PERIOD, as_of, rates)[0] > 0
        ]
        assert recognised == [2]

    def test_full_amount_never_split(self, stay, rates, as_of):
        platform, transfer = recognized_commission_usd(stay, ReportPeriod.for_month(2025, 2),
                                                       CHECKOUT_PERIOD, as_of, rates)
        assert platform == pytest.approx(150.0)
        assert transfer == 0.0

    def test_not_recognised_before_checkout_passes(self, stay, rates):
        feb = ReportPeriod.for_month(2025, 2)
        assert recognized_commission_usd(stay, feb, CHECKOUT_PERIOD, date(2025, 2, 5), rates) == (0.0, 0.0)

    def test_cancelled_never_recognised(self, stay, rates, as_of):
        stay.status = "cancelled"
        feb = ReportPeriod.for_month(2025, 2)
        assert recognized_commission_usd(stay, feb, CHECKOUT_PERIOD, as_of, rates) == (0.0, 0.0)


class TestStatementRule:

    def test_completed_stay_recognised_in_check_in_month(self, stay, rates, as_of):
        jan = ReportPeriod.for_month(2025, 1)
        assert recognized_commission_usd(stay, jan, STATEMENT, as_of, rates)[0] == pytest.approx(150.0)

    def test_running_stay_recognised_when_checkout_before_period_end(self, stay, rates):
        as_of = date(2025, 2, 1)
        jan = ReportPeriod.for_month(2025, 1)
        feb = ReportPeriod.for_month(2025, 2)
        assert recognized_commission_usd(stay, jan, STATEMENT, as_of, rates)[0] == 0.0
        assert recognized_commission_usd(stay, feb, STATEMENT, as_of, rates)[0] == pytest.approx(150.0)


class TestPendingCommission:

    def test_pending_until_checkout(self, stay, rates):
        assert pending_commission_usd(stay, date(2025, 2, 1), rates) == pytest.approx(150.0)
        assert pending_commission_usd(stay, date(2025, 2, 8), rates) == 0.0
