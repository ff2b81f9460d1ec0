import pytest
import numpy as np
import pandas as pd
from datetime import date

from loaders import (load_apartments, load_bookings, load_currency_rates, load_expenses,
                     normalize_columns, normalize_record, snake_case)


@pytest.mark.parametrize("raw, expected", [
    ("checkIn", "check_in"),
    ("totalAmountUSD", "total_amount_usd"),
    ("amountEGP", "amount_egp"),
    (" guest name ", "guest_name"),
    ("already_snake", "already_snake"),
])
def test_snake_case(raw, expected):
    assert snake_case(raw) == expected


def test_existing_column_wins_over_alias():
    df = pd.DataFrame([{"_id": "legacy", "id": "current"}])
    out = normalize_columns(df, {"_id": "id"})
    assert out["id"].tolist() == ["current"]


class TestLoadBookings:

    def test_legacy_camel_case_and_nan(self):
        df = pd.DataFrame([{
            "_id": "b1", "apartment": "apt-1", "guestName": "Legacy", "checkIn": "2025-01-01",
            "checkOut": np.nan, "totalBookingPrice": "450", "brokerProfit": np.nan,
        }])
        b = load_bookings(df)[0]
        assert b.id == "b1"
        assert b.apartment_id == "apt-1"
        assert b.check_in == date(2025, 1, 1)
        assert b.check_out is None
        assert b.total_amount == 450.0
        assert b.broker_profit is None

    def test_empty_frame(self):
        assert load_bookings(pd.DataFrame()) == []

    def test_missing_id_column(self):
        with pytest.raises(ValueError):
            load_bookings(pd.DataFrame([{"guestName": "x"}]))


class TestLoadApartments:

    def test_embedded_roster_fallback(self):
        df = pd.DataFrame([{
            "_id": "apt-7", "name": "Dokki",
            "partners": '[{"name": "Ali", "percentage": 25, "type": "investor"}]',
        }])
        apt = load_apartments(df)[0]
        assert apt.id == "apt-7"
        assert apt.partners[0].name == "Ali"
        assert apt.partners[0].apartment_id == "apt-7"
        assert apt.partners[0].percentage == 25

    def test_join_table_preferred(self, simple_apartment):
        df = pd.DataFrame([{"id": "apt-1", "name": "Nile View",
                            "partners": '[{"name": "Ghost", "percentage": 90}]'}])
        apt = load_apartments(df, simple_apartment.partners)[0]
        assert [s.name for s in apt.partners] == ["Ali"]


def test_rate_alias_and_upper_case():
    rates = load_currency_rates(pd.DataFrame([{"currency": " usd ", "rateToEGP": 49.5}]))
    assert rates[0].currency == "USD"
    assert rates[0].rate_to_base == 49.5
    assert rates[0].is_manual


def test_expense_date_alias():
    e = load_expenses(pd.DataFrame([{"id": "e1", "amount": "120", "date": "2025-02-03"}]))[0]
    assert e.expense_date == date(2025, 2, 3)
    assert e.amount == 120.0
