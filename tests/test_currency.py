import pytest
from datetime import date

from models import Booking, CurrencyRate, Payment
from currency import (booking_currency, convert_to_usd, effective_rates, guess_currency,
                      lock_rates, paid_amount_usd, rate_for, rate_table, remaining_amount_usd,
                      resolve_amount, to_usd, usd_rate)


class TestRateTables:
    """Rate table construction and fallbacks."""

    def test_rate_table_pins_base_currency(self):
        """EGP is always 1 and non-positive rates are dropped."""
        table = rate_table([
            CurrencyRate(currency="usd", rate_to_base=48.0),
            CurrencyRate(currency="EUR", rate_to_base=0),
        ])
        assert table == {"USD": 48.0, "EGP": 1.0}

    def test_usd_rate_falls_back_to_default(self):
        """Missing USD rate uses the fixed default."""
        assert usd_rate({}) == 50.0
        assert usd_rate(None) == 50.0

    def test_rate_for_unknown_currency_uses_usd_rate(self, rates):
        """A currency with no rate anywhere is treated at the USD rate."""
        assert rate_for("JPY", rates) == 50.0

    def test_rate_for_missing_standard_currency_uses_default(self):
        """A standard currency missing from the table uses its default rate."""
        assert rate_for("EUR", {"USD": 48.0}) == 54.0

    def test_lock_rates_fills_defaults(self):
        """Locked snapshot is the live table over the defaults, EGP at 1."""
        locked = lock_rates({"USD": 48.0})
        assert locked["USD"] == 48.0
        assert locked["EUR"] == 54.0
        assert locked["EGP"] == 1.0


class TestConversion:
    """USD normalisation."""

    def test_egp_to_usd(self, rates):
        assert convert_to_usd(5000, "EGP", rates) == pytest.approx(100.0)

    def test_cross_currency_routes_through_base(self, rates):
        """EUR -> EGP -> USD."""
        assert convert_to_usd(100, "EUR", rates) == pytest.approx(108.0)

    def test_usd_is_identity(self, rates):
        assert convert_to_usd(123.45, "USD", rates) == 123.45


class TestResolveAmount:
    """Currency detection priority."""

    def test_explicit_tag_wins(self, rates):
        """An explicit tag is used even when a mirror disagrees."""
        b = Booking(id="b", apartment_id="a", total_amount=5000, total_amount_currency="EGP",
                    total_amount_usd=5000)
        resolved = resolve_amount(b, "total_amount", rates)
        assert resolved.currency == "EGP"
        assert resolved.base_value == 5000

    def test_mirror_equal_to_value_means_usd(self, rates):
        b = Booking(id="b", apartment_id="a", total_amount=200, total_amount_usd=200, currency="EGP")
        assert booking_currency(b, rates) == "USD"

    def test_mirror_equal_to_converted_value_means_base(self, rates):
        b = Booking(id="b", apartment_id="a", total_amount=5000, total_amount_usd=100)
        assert booking_currency(b, rates) == "EGP"
        assert to_usd(b, "total_amount", rates) == pytest.approx(100.0)

    def test_record_currency_used_without_tags(self, rates):
        b = Booking(id="b", apartment_id="a", total_amount=200, currency="EUR")
        assert booking_currency(b, rates) == "EUR"

    def test_secondary_fields_follow_booking_currency(self, rates):
        """platform_commission shares the currency resolved for the total."""
        b = Booking(id="b", apartment_id="a", total_amount=5000, total_amount_currency="EGP",
                    platform_commission=500)
        assert to_usd(b, "platform_commission", rates) == pytest.approx(10.0)


class TestGuessCurrency:
    """Legacy heuristic branches, in order."""

    def test_usd_mirror_wins(self):
        assert guess_currency(5000, 100, "EGP") == ("USD", 100.0)

    def test_small_value_with_mirror_is_usd(self):
        """A raw value under 1 with a real mirror is a bad save of a USD amount."""
        assert guess_currency(0.5, 250, None) == ("USD", 250.0)

    def test_record_currency_for_positive_value(self):
        assert guess_currency(300, None, "GBP") == ("GBP", 300)

    def test_usd_tag_for_value_at_least_one(self):
        assert guess_currency(150, None, "USD") == ("USD", 150)

    def test_small_untagged_value_falls_back_to_base(self):
        assert guess_currency(0.4, None, None) == ("EGP", 0.4)

    def test_zero_falls_back_to_base(self):
        assert guess_currency(0, None, "USD") == ("EGP", 0)


class TestLockedRates:
    """Historical values do not move with the live table."""

    def test_locked_snapshot_overrides_live(self, rates):
        b = Booking(id="b", apartment_id="a", total_amount=100, total_amount_currency="EUR",
                    exchange_rate_at_booking={"USD": 40.0, "EUR": 44.0})
        before = to_usd(b, "total_amount", rates)
        after = to_usd(b, "total_amount", {**rates, "USD": 60.0, "EUR": 70.0})
        assert before == pytest.approx(110.0)
        assert after == before

    def test_locked_gaps_filled_from_defaults(self, rates):
        """A snapshot without EUR uses the default EUR rate, not the live one."""
        b = Booking(id="b", apartment_id="a", total_amount=100, total_amount_currency="EUR",
                    exchange_rate_at_booking={"USD": 40.0})
        assert effective_rates(b, {**rates, "EUR": 99.0})["EUR"] == 54.0
        assert to_usd(b, "total_amount", rates) == pytest.approx(135.0)


class TestPaidAndRemaining:
    """Paid amounts are capped and remaining crumbs cleared."""

    def test_paid_capped_at_total(self, make_booking, rates):
        b = make_booking(paid_amount=1200)
        assert paid_amount_usd(b, rates) == 1000.0

    def test_paid_from_payment_ledger(self, make_booking, rates):
        b = make_booking(paid_amount=0, payments=[Payment(amount=5000, currency="EGP")])
        assert paid_amount_usd(b, rates) == pytest.approx(100.0)

    def test_remaining_zero_for_completed_crumbs(self, make_booking, rates, as_of):
        b = make_booking(paid_amount=999.995)
        assert remaining_amount_usd(b, as_of, rates) == 0.0

    def test_remaining_for_upcoming_stay(self, make_booking, rates, as_of):
        b = make_booking(check_in=date(2025, 4, 1), check_out=date(2025, 4, 5), paid_amount=400)
        assert remaining_amount_usd(b, as_of, rates) == pytest.approx(600.0)
