import itertools
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from snapfest.core.exceptions import NotFoundError, VerificationFailed
from snapfest.schemas.booking import Booking, BookingPaymentStatus
from snapfest.schemas.cart import CartItem, CartItemCreate, CartItemUpdate
from snapfest.schemas.payment import (
    GatewayResult,
    Payment,
    PaymentOrder,
    PaymentStatus,
    VerificationResult,
)
from snapfest.services.cart_store import CartStore
from snapfest.services.payment_state import derive_status
from snapfest.utils.money import percentage_of


# Mark tests by directory
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid or nodeid.startswith("tests/unit/"):
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid or nodeid.startswith("tests/integration/"):
            item.add_marker(pytest.mark.integration)


EVENT_DATE = datetime(2026, 12, 20, 18, 0)

PACKAGES = {
    "pkg-wedding": {"title": "Wedding Shoot", "base": 1000, "per_guest": 0},
    "pkg-birthday": {"title": "Birthday Bash", "base": 2000, "per_guest": 0},
    "pkg-odd": {"title": "Odd Total", "base": 999, "per_guest": 0},
    "pkg-guests": {"title": "Per Guest", "base": 500, "per_guest": 50},
    "pkg-grand": {"title": "Grand Reception", "base": 10000, "per_guest": 0},
    "pkg-decor": {"title": "Stage Decor", "base": 5000, "per_guest": 0},
    "pkg-catering": {"title": "Catering", "base": 7000, "per_guest": 0},
}


class FakeMarketplace:
    """In-memory cart, booking and payment backends sharing one state"""

    def __init__(self):
        self.cart: List[CartItem] = []
        self.bookings: Dict[str, Booking] = {}
        self.payments: List[Payment] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, Dict[int, Exception]] = {}
        self._call_counts: Dict[str, int] = {}
        self._ids = itertools.count(1)

    def fail(self, method: str, exc: Exception, on_call: int = 1) -> None:
        self.failures.setdefault(method, {})[on_call] = exc

    def _enter(self, method: str, *args) -> None:
        self.calls.append((method,) + args)
        count = self._call_counts.get(method, 0) + 1
        self._call_counts[method] = count
        exc = self.failures.get(method, {}).get(count)
        if exc is not None:
            raise exc

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def add_to_cart(self, package_id: str, guests: int = 1, location: str = "Mumbai") -> CartItem:
        package = PACKAGES[package_id]
        item = CartItem(
            id=self._next_id("cart"),
            package_id=package_id,
            package_title=package["title"],
            base_price=package["base"],
            per_guest_price=package["per_guest"],
            guests=guests,
            event_date=EVENT_DATE,
            location=location,
        )
        self.cart.append(item)
        return item

    def add_booking(self, total: int, paid: int = 0, percentage: int = 20,
                    status: Optional[BookingPaymentStatus] = None) -> Booking:
        booking = Booking(
            id=self._next_id("booking"),
            package_id="pkg-wedding",
            event_date=EVENT_DATE,
            location="Mumbai",
            total_amount=total,
            partial_amount=percentage_of(total, percentage),
            payment_percentage=percentage,
            amount_paid=paid,
            payment_status=status or derive_status(total, paid),
        )
        self.bookings[booking.id] = booking
        if paid:
            self.payments.append(Payment(
                id=self._next_id("pay"), booking_id=booking.id, amount=paid,
                status=PaymentStatus.SUCCESS,
            ))
        return booking

    def payments_of(self, booking_id: str) -> List[Payment]:
        return [p for p in self.payments if p.booking_id == booking_id]


class FakeCartAPI:
    def __init__(self, market: FakeMarketplace):
        self.market = market

    async def get_items(self) -> List[CartItem]:
        self.market._enter("get_items")
        return list(self.market.cart)

    async def add_item(self, item: CartItemCreate) -> CartItem:
        self.market._enter("add_item", item.package_id)
        if item.package_id not in PACKAGES:
            raise NotFoundError("Package not found")
        return self.market.add_to_cart(item.package_id, item.guests, item.location)

    async def update_item(self, item_id: str, changes: CartItemUpdate) -> CartItem:
        self.market._enter("update_item", item_id)
        for index, item in enumerate(self.market.cart):
            if item.id == item_id:
                updated = item.model_copy(update=changes.model_dump(exclude_none=True))
                self.market.cart[index] = updated
                return updated
        raise NotFoundError("Cart item not found")

    async def remove_item(self, item_id: str) -> None:
        self.market._enter("remove_item", item_id)
        self.market.cart = [i for i in self.market.cart if i.id != item_id]

    async def clear(self) -> None:
        self.market._enter("clear")
        self.market.cart = []


class FakeBookingAPI:
    def __init__(self, market: FakeMarketplace):
        self.market = market

    async def create_booking(self, package_id, event_date, location, guests, customization,
                             payment_percentage) -> Booking:
        self.market._enter("create_booking", package_id)
        if package_id not in PACKAGES:
            raise NotFoundError("Package not found")
        package = PACKAGES[package_id]
        total = package["base"] + package["per_guest"] * guests
        pct = max(20, min(100, payment_percentage))
        booking = Booking(
            id=self.market._next_id("booking"),
            package_id=package_id,
            event_date=event_date,
            location=location,
            guests=guests,
            customization=customization,
            total_amount=total,
            partial_amount=percentage_of(total, pct),
            payment_percentage=pct,
        )
        self.market.bookings[booking.id] = booking
        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        self.market._enter("get_booking", booking_id)
        if booking_id not in self.market.bookings:
            raise NotFoundError("Booking not found")
        return self.market.bookings[booking_id]

    async def list_payments(self, booking_id: str) -> List[Payment]:
        self.market._enter("list_payments", booking_id)
        return self.market.payments_of(booking_id)


class FakePaymentAPI:
    def __init__(self, market: FakeMarketplace):
        self.market = market

    async def create_partial_order(self, booking_id: str, amount: int) -> PaymentOrder:
        self.market._enter("create_partial_order", booking_id, amount)
        return self._order(booking_id, amount)

    async def create_full_order(self, booking_id: str) -> PaymentOrder:
        self.market._enter("create_full_order", booking_id)
        booking = self.market.bookings[booking_id]
        return self._order(booking_id, booking.total_amount - booking.amount_paid)

    async def verify_payment(self, booking_id, payment_id, order_id, signature) -> VerificationResult:
        self.market._enter("verify_payment", booking_id, payment_id, order_id)
        order = self.market.orders.get(order_id)
        if signature == "bad-signature" or order is None or order["booking_id"] != booking_id:
            raise VerificationFailed("Invalid payment signature")
        booking = self.market.bookings[booking_id]
        paid = booking.amount_paid + order["amount"]
        booking = booking.model_copy(update={
            "amount_paid": paid,
            "payment_status": derive_status(booking.total_amount, paid),
        })
        self.market.bookings[booking_id] = booking
        self.market.payments.append(Payment(
            id=self.market._next_id("pay"), booking_id=booking_id, amount=order["amount"],
            status=PaymentStatus.SUCCESS, order_id=order_id, payment_id=payment_id,
            signature=signature,
        ))
        return VerificationResult(success=True, booking=booking)

    def _order(self, booking_id: str, amount: int) -> PaymentOrder:
        order = PaymentOrder(id=self.market._next_id("order"), amount=amount, currency="INR")
        self.market.orders[order.id] = {"booking_id": booking_id, "amount": amount}
        return order


class ScriptedGateway:
    """Gateway double resolving each checkout from a script of outcomes"""

    def __init__(self, outcomes: Optional[List[Any]] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[Dict[str, Any]] = []

    async def open_checkout(self, order_id, amount, currency, merchant_name, description, payer=None):
        self.calls.append({"order_id": order_id, "amount": amount, "currency": currency,
                           "description": description})
        outcome = self.outcomes.pop(0) if self.outcomes else "pay"
        if isinstance(outcome, Exception):
            raise outcome
        signature = "bad-signature" if outcome == "bad-signature" else f"sig_{order_id}"
        return GatewayResult(
            gateway_payment_id=f"pay_{order_id}",
            gateway_order_id=order_id,
            gateway_signature=signature,
        )


@pytest.fixture
def market() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def cart_api(market) -> FakeCartAPI:
    return FakeCartAPI(market)


@pytest.fixture
def booking_api(market) -> FakeBookingAPI:
    return FakeBookingAPI(market)


@pytest.fixture
def payment_api(market) -> FakePaymentAPI:
    return FakePaymentAPI(market)


@pytest.fixture
def cart_store(cart_api) -> CartStore:
    return CartStore(cart_api, tax_rate=0.18)


@pytest.fixture
def valid_item() -> CartItemCreate:
    return CartItemCreate(
        package_id="pkg-wedding",
        guests=2,
        event_date=EVENT_DATE,
        location="Mumbai",
        customization="Candid photography",
    )


@pytest.fixture
def journal():
    """Checkout journal on a private in-memory SQLite database"""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from snapfest.db.session import init_db
    from snapfest.services.checkout_journal import CheckoutJournal

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield CheckoutJournal(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()
