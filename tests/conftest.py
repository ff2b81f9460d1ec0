import pytest
from datetime import date

from models import Apartment, Booking, MonthlyExpense, Partner, PartnerShare
from repository import InMemoryRepository
from api import LedgerAPI


AS_OF = date(2025, 3, 15)


@pytest.fixture
def as_of():
    """Fixed reporting date (mid-March 2025)."""
    return AS_OF


@pytest.fixture
def rates():
    """Live rate table: EGP per unit, USD at 50."""
    return {"EGP": 1.0, "USD": 50.0, "EUR": 54.0, "GBP": 63.0, "SAR": 13.3, "AED": 13.6}


@pytest.fixture
def simple_apartment():
    """Apartment with one 20% investor and no fixed costs."""
    return Apartment(
        id="apt-1",
        name="Nile View",
        partners=[PartnerShare(apartment_id="apt-1", name="Ali", percentage=20, partner_type="investor")],
    )


@pytest.fixture
def mixed_apartment():
    """Apartment with an investor and two company owners, plus fixed monthly costs."""
    return Apartment(
        id="apt-2",
        name="Zamalek Loft",
        partners=[
            PartnerShare(apartment_id="apt-2", name="Ali", percentage=20, partner_type="investor"),
            PartnerShare(apartment_id="apt-2", name="Omar", percentage=50, partner_type="company_owner"),
            PartnerShare(apartment_id="apt-2", name="Sara", percentage=30, partner_type="company_owner"),
        ],
        monthly_expenses=[MonthlyExpense(name="Rent", amount=4000), MonthlyExpense(name="Internet", amount=1000)],
    )


@pytest.fixture
def empty_apartment():
    """Apartment with a roster but never booked."""
    return Apartment(
        id="apt-3",
        name="Maadi Studio",
        partners=[PartnerShare(apartment_id="apt-3", name="Hana", percentage=40, partner_type="investor")],
    )


@pytest.fixture
def partners():
    """Partner records; Omar and Sara are company owners."""
    return [
        Partner(id="p-ali", name="Ali", partner_type="investor"),
        Partner(id="p-omar", name="Omar", partner_type="company_owner"),
        Partner(id="p-sara", name="Sara", partner_type="company_owner"),
    ]


@pytest.fixture
def make_booking():
    """Factory for USD-tagged bookings with sensible defaults."""
    def _make(**overrides):
        fields = dict(
            id="b-1",
            apartment_id="apt-1",
            room_id="r1",
            booking_code="BK1",
            guest_name="John Smith",
            check_in=date(2025, 1, 10),
            check_out=date(2025, 1, 15),
            total_amount=1000.0,
            total_amount_currency="USD",
            currency="USD",
            source="Airbnb",
        )
        fields.update(overrides)
        return Booking(**fields)
    return _make


@pytest.fixture
def repo(simple_apartment, mixed_apartment, empty_apartment, partners):
    """In-memory repository seeded with three apartments and default rates."""
    r = InMemoryRepository()
    for apt in (simple_apartment, mixed_apartment, empty_apartment):
        r.save_apartment(apt)
    for p in partners:
        r.save_partner(p)
    return r


@pytest.fixture
def api(repo, as_of):
    """API bound to the seeded repository and the fixed date."""
    return LedgerAPI(repo, as_of=lambda: as_of)
