import pytest
import requests

from api import camel_key, camelize


@pytest.fixture
def booking_payload():
    """camelCase booking body as sent by the client."""
    return {
        "apartmentId": "apt-1",
        "roomId": "r1",
        "guestName": "Jane Doe",
        "checkIn": "2025-01-10",
        "checkOut": "2025-01-15",
        "totalAmount": 1000,
        "currency": "USD",
        "source": "Airbnb",
        "platformCommission": 150,
        "devDeductionType": "percent",
        "devDeductionValue": 10,
    }


class TestSerialisation:

    @pytest.mark.parametrize("key, expected", [
        ("total_revenue", "totalRevenue"),
        ("total_revenue_egp", "totalRevenueEGP"),
        ("total_usd", "totalUSD"),
        ("usd_rate", "usdRate"),
        ("id", "id"),
    ])
    def test_camel_key(self, key, expected):
        assert camel_key(key) == expected

    def test_camelize_nested(self):
        assert camelize({"partner_profits": [{"total_egp": 1.0}]}) == {"partnerProfits": [{"totalEGP": 1.0}]}


class TestBookingEndpoints:

    def test_create_persists_settlement_and_fund_deposit(self, api, repo, booking_payload):
        body, status = api.create_booking(booking_payload)
        assert status == 201
        booking = body["booking"]
        assert booking["developmentDeduction"] == pytest.approx(100.0)
        assert booking["finalDistributableAmount"] == pytest.approx(750.0)
        assert booking["ownerAmount"] == pytest.approx(150.0)
        assert booking["brokerProfit"] == pytest.approx(600.0)
        assert body["fundTransaction"]["amount"] == pytest.approx(100.0)
        assert len(repo.list_fund_transactions()) == 1

    def test_create_rejects_incomplete_payload(self, api, booking_payload):
        booking_payload.pop("guestName")
        body, status = api.create_booking(booking_payload)
        assert status == 400
        assert "guest name" in body["error"]

    def test_create_unknown_apartment(self, api, booking_payload):
        booking_payload["apartmentId"] = "nope"
        body, status = api.create_booking(booking_payload)
        assert status == 404

    def test_removing_deduction_reverses_deposit(self, api, repo, booking_payload):
        created, _ = api.create_booking(booking_payload)
        booking_id = created["booking"]["id"]

        body, status = api.update_booking(booking_id, {"devDeductionType": "none", "devDeductionValue": 0})

        assert status == 200
        assert body["booking"]["developmentDeduction"] == 0.0
        txns = repo.list_fund_transactions()
        assert len(txns) == 1
        assert txns[0].type == "withdrawal"
        assert txns[0].id == created["fundTransaction"]["id"]

    def test_update_unknown_booking(self, api):
        body, status = api.update_booking("missing", {"notes": "x"})
        assert status == 404
        assert "missing" in body["error"]

    def test_extend(self, api, booking_payload):
        created, _ = api.create_booking(booking_payload)
        body, status = api.extend_booking(created["booking"]["id"], 2, 400)
        assert status == 200
        assert body["booking"]["checkOut"] == "2025-01-17"
        assert body["booking"]["totalAmount"] == pytest.approx(1400.0)

    def test_extend_invalid(self, api, booking_payload):
        created, _ = api.create_booking(booking_payload)
        body, status = api.extend_booking(created["booking"]["id"], 0, 400)
        assert status == 400


class TestReportEndpoints:

    def test_monthly_report_shape(self, api, booking_payload):
        api.create_booking(booking_payload)
        body, status = api.monthly_report(2025, 1)
        assert status == 200
        assert set(body) >= {"summary", "apartmentFinancials", "partnerProfits", "bookings", "expenses"}
        assert body["summary"]["totalRevenue"] == pytest.approx(1000.0)
        assert body["summary"]["totalOperatingProfit"] == pytest.approx(850.0)
        ali = next(p for p in body["partnerProfits"] if p["name"] == "Ali")
        assert ali["totalUSD"] == pytest.approx(170.0)
        assert ali["totalEGP"] == pytest.approx(170.0 * 50)

    def test_invalid_month(self, api):
        body, status = api.monthly_report(2025, 14)
        assert status == 400

    def test_non_numeric_year(self, api):
        body, status = api.dashboard("twenty", 1)
        assert status == 400

    def test_revenue_by_month(self, api, booking_payload):
        api.create_booking(booking_payload)
        body, status = api.revenue_by_month(2025)
        assert status == 200
        assert body[0]["month"] == 1
        assert body[0]["revenue"] == pytest.approx(1000.0)
        assert body[-1]["month"] == "Total"

    def test_roi_unknown_apartment(self, api):
        body, status = api.roi("nope")
        assert status == 404

    def test_roi_without_target(self, api):
        body, status = api.roi("apt-1")
        assert status == 200
        assert body["hasInvestment"] is False


class TestApartmentEndpoints:

    def test_roster_over_100_rejected(self, api):
        body, status = api.save_apartment({
            "name": "Overbooked",
            "partners": [{"name": "A", "percentage": 70}, {"name": "B", "percentage": 40}],
        })
        assert status == 400

    def test_save_with_roster(self, api, repo):
        body, status = api.save_apartment({
            "id": "apt-9",
            "name": "Garden City",
            "partners": [{"name": "A", "percentage": 60, "type": "company_owner"}],
            "monthlyExpenses": [{"name": "Rent", "amount": 3000}],
            "investmentTarget": 5000,
            "investmentStartDate": "2025-01-01",
        })
        assert status == 200
        saved = repo.get_apartment("apt-9")
        assert saved.partners[0].partner_type == "company_owner"
        assert saved.monthly_expenses_total == 3000
        assert body["partners"][0]["apartmentId"] == "apt-9"


class TestFundEndpoints:

    def test_withdraw_overdraft_warns(self, api):
        body, status = api.withdraw({"amount": 25, "description": "Paint"})
        assert status == 201
        assert body["transaction"]["willCreateNegativeBalance"] is True
        assert body["warning"]

    def test_deposit_then_balance(self, api):
        api.deposit({"amount": 40, "amountEGP": 2000})
        api.withdraw({"amount": 10})
        body, status = api.fund_balance()
        assert body["balance"] == pytest.approx(30.0)
        assert body["balanceEGP"] == pytest.approx(1500.0)

    def test_deposit_rejects_zero(self, api):
        body, status = api.deposit({"amount": 0})
        assert status == 400

    def test_inventory_purchase(self, api):
        body, status = api.purchase_inventory({"name": "Sheets", "quantity": 2, "valuePerUnit": 500})
        assert status == 201
        assert body["transaction"]["amount"] == pytest.approx(20.0)


class TestRateEndpoints:

    def test_set_and_list(self, api):
        body, status = api.set_rate({"currency": "jpy", "rateToEGP": 0.33})
        assert status == 200
        assert body["currency"] == "JPY"
        rates, _ = api.list_rates()
        assert "JPY" in [r["currency"] for r in rates]

    def test_set_rejects_non_positive(self, api):
        body, status = api.set_rate({"currency": "JPY", "rate": 0})
        assert status == 400

    def test_delete_missing(self, api):
        body, status = api.delete_rate("XYZ")
        assert status == 404

    def test_refresh_failure_is_502(self, api):
        class Broken:
            def get(self, url, timeout=None):
                raise requests.ConnectionError("offline")

        body, status = api.refresh_rates(Broken())
        assert status == 502
