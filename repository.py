"""
repository.py
Persistence interface for the ledger

Reports never hold state between calls: each request takes one Snapshot
from a Repository and recomputes everything from it.
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import DEFAULT_CURRENCY_RATES
from exceptions import NotFoundError
from models import (Apartment, Booking, CurrencyRate, Expense, FundTransaction,
                    Partner, PartnerShare)
from currency import rate_table
from utils import normalize_key


@dataclass
class Snapshot:
    """One consistent read of every collection the engine needs."""
    bookings: List[Booking] = field(default_factory=list)
    apartments: List[Apartment] = field(default_factory=list)
    partners: List[Partner] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    fund_transactions: List[FundTransaction] = field(default_factory=list)
    currency_rates: List[CurrencyRate] = field(default_factory=list)

    @property
    def rates(self) -> Dict[str, float]:
        return rate_table(self.currency_rates)

    @property
    def apartments_by_id(self) -> Dict[str, Apartment]:
        return {a.id: a for a in self.apartments}

    def apartment(self, apartment_id: str) -> Optional[Apartment]:
        return self.apartments_by_id.get(apartment_id)

    def booking(self, booking_id: str) -> Optional[Booking]:
        for b in self.bookings:
            if b.id == booking_id:
                return b
        return None

    def partner_by_key(self, name: str) -> Optional[Partner]:
        key = normalize_key(name)
        for p in self.partners:
            if p.key == key:
                return p
        return None

    def scoped(self, apartment_id: Optional[str] = None) -> "Snapshot":
        """Same snapshot restricted to one apartment (None = all)."""
        if not apartment_id:
            return self
        return Snapshot(
            bookings=[b for b in self.bookings if b.apartment_id == apartment_id],
            apartments=[a for a in self.apartments if a.id == apartment_id],
            partners=self.partners,
            expenses=[e for e in self.expenses if e.apartment_id == apartment_id],
            fund_transactions=self.fund_transactions,
            currency_rates=self.currency_rates,
        )


class Repository(ABC):
    """Storage collaborator. Implementations must give last-writer-wins semantics."""

    @abstractmethod
    def snapshot(self) -> Snapshot:
        ...

    # bookings
    @abstractmethod
    def get_booking(self, booking_id: str) -> Booking:
        ...

    @abstractmethod
    def save_booking(self, booking: Booking) -> Booking:
        ...

    # apartments & partners
    @abstractmethod
    def get_apartment(self, apartment_id: str) -> Apartment:
        ...

    @abstractmethod
    def save_apartment(self, apartment: Apartment) -> Apartment:
        ...

    @abstractmethod
    def save_partner(self, partner: Partner) -> Partner:
        ...

    # expenses & fund
    @abstractmethod
    def save_expense(self, expense: Expense) -> Expense:
        ...

    @abstractmethod
    def list_fund_transactions(self) -> List[FundTransaction]:
        ...

    @abstractmethod
    def save_fund_transaction(self, txn: FundTransaction) -> FundTransaction:
        ...

    # currency rates
    @abstractmethod
    def list_currency_rates(self) -> List[CurrencyRate]:
        ...

    @abstractmethod
    def save_currency_rate(self, rate: CurrencyRate) -> CurrencyRate:
        ...

    @abstractmethod
    def delete_currency_rate(self, currency: str) -> None:
        ...

    def live_rates(self) -> Dict[str, float]:
        return rate_table(self.list_currency_rates())


class InMemoryRepository(Repository):
    """
    Dict-backed repository.

    Objects are copied on the way in and out so callers cannot mutate
    stored state behind the repository's back.
    """

    def __init__(self, seed_rates: bool = True):
        self.bookings: Dict[str, Booking] = {}
        self.apartments: Dict[str, Apartment] = {}
        self.partners: Dict[str, Partner] = {}
        self.expenses: Dict[str, Expense] = {}
        self.fund_transactions: Dict[str, FundTransaction] = {}
        self.currency_rates: Dict[str, CurrencyRate] = {}
        if seed_rates:
            for r in DEFAULT_CURRENCY_RATES:
                self.currency_rates[r["currency"]] = CurrencyRate(
                    currency=r["currency"], rate_to_base=r["rate_to_base"], symbol=r["symbol"])

    def snapshot(self) -> Snapshot:
        return Snapshot(
            bookings=deepcopy(list(self.bookings.values())),
            apartments=deepcopy(list(self.apartments.values())),
            partners=deepcopy(list(self.partners.values())),
            expenses=deepcopy(list(self.expenses.values())),
            fund_transactions=deepcopy(list(self.fund_transactions.values())),
            currency_rates=deepcopy(list(self.currency_rates.values())),
        )

    def get_booking(self, booking_id: str) -> Booking:
        if booking_id not in self.bookings:
            raise NotFoundError(f"Booking not found: {booking_id}")
        return deepcopy(self.bookings[booking_id])

    def save_booking(self, booking: Booking) -> Booking:
        self.bookings[booking.id] = deepcopy(booking)
        return booking

    def get_apartment(self, apartment_id: str) -> Apartment:
        if apartment_id not in self.apartments:
            raise NotFoundError(f"Apartment not found: {apartment_id}")
        return deepcopy(self.apartments[apartment_id])

    def save_apartment(self, apartment: Apartment) -> Apartment:
        for s in apartment.partners:
            s.apartment_id = apartment.id
        self.apartments[apartment.id] = deepcopy(apartment)
        return apartment

    def save_partner(self, partner: Partner) -> Partner:
        self.partners[partner.id] = deepcopy(partner)
        return partner

    def save_expense(self, expense: Expense) -> Expense:
        self.expenses[expense.id] = deepcopy(expense)
        return expense

    def list_fund_transactions(self) -> List[FundTransaction]:
        return deepcopy(list(self.fund_transactions.values()))

    def save_fund_transaction(self, txn: FundTransaction) -> FundTransaction:
        self.fund_transactions[txn.id] = deepcopy(txn)
        return txn

    def list_currency_rates(self) -> List[CurrencyRate]:
        return deepcopy(list(self.currency_rates.values()))

    def save_currency_rate(self, rate: CurrencyRate) -> CurrencyRate:
        self.currency_rates[rate.currency.upper()] = deepcopy(rate)
        return rate

    def delete_currency_rate(self, currency: str) -> None:
        if currency.upper() not in self.currency_rates:
            raise NotFoundError(f"Currency rate not found: {currency}")
        del self.currency_rates[currency.upper()]
