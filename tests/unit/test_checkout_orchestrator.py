import asyncio

import pytest

from snapfest.core.exceptions import (
    CheckoutCancelled,
    CheckoutError,
    CheckoutFailed,
    CheckoutInProgressError,
    EmptyCartError,
    NetworkError,
    ValidationError,
)
from snapfest.schemas.booking import BookingPaymentStatus
from snapfest.schemas.checkout import CheckoutState
from snapfest.services.checkout_orchestrator import CheckoutOrchestrator
from snapfest.services.payment_state import summarize

from conftest import ScriptedGateway


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def orchestrator(booking_api, payment_api, gateway, journal):
    return CheckoutOrchestrator(booking_api, payment_api, gateway, journal=journal, session_key="s1")


class BlockingGateway(ScriptedGateway):
    """Holds each checkout open until released"""

    def __init__(self):
        super().__init__()
        self.opened = None
        self.release = None

    async def open_checkout(self, *args, **kwargs):
        self.opened.set()
        await self.release.wait()
        return await super().open_checkout(*args, **kwargs)


def _load(cart_store, market, *package_ids):
    for package_id in package_ids:
        market.add_to_cart(package_id)
    asyncio.run(cart_store.refresh())


def test_single_item_twenty_percent_advance(orchestrator, cart_store, market, gateway):
    _load(cart_store, market, "pkg-grand")

    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    assert len(outcome.confirmed) == 1
    confirmed = outcome.confirmed[0]
    assert confirmed.booking.partial_amount == 2000
    assert confirmed.order.amount == 2000
    assert gateway.calls[0]["amount"] == 2000
    assert confirmed.summary.amount_paid == 2000
    assert confirmed.summary.remaining_amount == 8000
    assert confirmed.summary.payment_status == BookingPaymentStatus.PARTIALLY_PAID
    assert outcome.progress.state == CheckoutState.COMPLETED
    assert cart_store.items == ()
    assert market.cart == []


def test_full_advance_settles_booking(orchestrator, cart_store, market):
    _load(cart_store, market, "pkg-grand")

    outcome = asyncio.run(orchestrator.execute(cart_store, 100))

    summary = outcome.confirmed[0].summary
    assert outcome.confirmed[0].booking.partial_amount == 10000
    assert summary.remaining_amount == 0
    assert summary.payment_status == BookingPaymentStatus.FULLY_PAID


def test_items_processed_in_cart_order(orchestrator, cart_store, market):
    _load(cart_store, market, "pkg-decor", "pkg-catering")

    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    assert [c.order.amount for c in outcome.confirmed] == [1000, 1400]
    steps = [call[0] for call in market.calls if call[0] != "get_items"]
    assert steps == [
        "create_booking", "create_partial_order", "verify_payment",
        "create_booking", "create_partial_order", "verify_payment",
        "remove_item", "remove_item",
    ]
    assert outcome.progress.bookings_created == outcome.progress.bookings_paid


def test_cancelling_second_item_keeps_first_booking_and_cart(
    booking_api, payment_api, journal, cart_store, market
):
    gateway = ScriptedGateway(["pay", CheckoutCancelled()])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway, journal=journal, session_key="s1")
    _load(cart_store, market, "pkg-decor", "pkg-catering")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    error = err.value
    assert error.cancelled and error.silent
    assert error.item_index == 2
    assert error.total_items == 2
    assert error.step == "gateway"
    assert error.progress.state == CheckoutState.CANCELLED
    assert len(error.progress.bookings_created) == 2
    assert len(error.progress.bookings_paid) == 1

    first = market.bookings[error.progress.bookings_paid[0]]
    assert first.payment_status == BookingPaymentStatus.PARTIALLY_PAID
    assert first.amount_paid == 1000
    assert len(market.cart) == 2
    assert len(cart_store.items) == 2
    assert not cart_store.checkout_in_progress


def test_cancellation_on_item_k_leaves_later_items_untouched(
    booking_api, payment_api, cart_store, market
):
    gateway = ScriptedGateway(["pay", CheckoutCancelled()])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)
    _load(cart_store, market, "pkg-wedding", "pkg-birthday", "pkg-decor")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    assert err.value.item_index == 2
    created = [call for call in market.calls if call[0] == "create_booking"]
    assert [call[1] for call in created] == ["pkg-wedding", "pkg-birthday"]
    unpaid = market.bookings[err.value.progress.orphaned_bookings[0]]
    assert unpaid.payment_status == BookingPaymentStatus.PENDING_PAYMENT


def test_verification_failure_leaves_amount_paid_unchanged(
    booking_api, payment_api, journal, cart_store, market
):
    gateway = ScriptedGateway(["bad-signature"])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway, journal=journal)
    _load(cart_store, market, "pkg-grand")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    assert err.value.step == "verify"
    assert not err.value.silent
    assert err.value.retryable is False
    booking = market.bookings[err.value.progress.bookings_created[0]]
    assert booking.amount_paid == 0
    assert summarize(booking, market.payments_of(booking.id) or None).remaining_amount == 10000
    assert len(market.cart) == 1


def test_booking_failure_names_item_and_cause(orchestrator, cart_store, market):
    market.fail("create_booking", NetworkError("backend down"), on_call=2)
    _load(cart_store, market, "pkg-decor", "pkg-catering")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    assert err.value.message == "create_booking failed for item 2 of 2: backend down"
    assert err.value.retryable is True
    assert err.value.progress.state == CheckoutState.FAILED


def test_gateway_failure_is_reported(booking_api, payment_api, cart_store, market):
    gateway = ScriptedGateway([CheckoutFailed("Card declined")])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)
    _load(cart_store, market, "pkg-wedding")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    assert err.value.step == "gateway"
    assert isinstance(err.value.cause, CheckoutFailed)


@pytest.mark.parametrize("percentage", [0, 19, 101])
def test_percentage_out_of_range_rejected(orchestrator, cart_store, market, percentage):
    _load(cart_store, market, "pkg-wedding")

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.execute(cart_store, percentage))
    assert not [call for call in market.calls if call[0] == "create_booking"]


def test_empty_cart_rejected(orchestrator, cart_store):
    with pytest.raises(EmptyCartError):
        asyncio.run(orchestrator.execute(cart_store, 20))


def test_concurrent_execute_is_rejected(booking_api, payment_api, cart_store, market):
    _load(cart_store, market, "pkg-wedding")

    gateway = BlockingGateway()
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)

    async def scenario():
        gateway.opened = asyncio.Event()
        gateway.release = asyncio.Event()
        first = asyncio.create_task(orchestrator.execute(cart_store, 20))
        await gateway.opened.wait()
        with pytest.raises(CheckoutInProgressError):
            await orchestrator.execute(cart_store, 20)
        gateway.release.set()
        return await first

    outcome = asyncio.run(scenario())

    assert len(outcome.confirmed) == 1
    assert len([call for call in market.calls if call[0] == "create_booking"]) == 1


def test_rerun_after_failure_creates_new_bookings(booking_api, payment_api, cart_store, market):
    gateway = ScriptedGateway([CheckoutCancelled(), "pay"])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)
    _load(cart_store, market, "pkg-wedding")

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))
    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    assert outcome.confirmed[0].booking.id != err.value.progress.bookings_created[0]
    assert len(market.bookings) == 2


def test_pay_remaining_settles_balance(orchestrator, market, gateway):
    booking = market.add_booking(total=10000, paid=2000)

    confirmed = asyncio.run(orchestrator.pay_remaining(booking.id))

    assert confirmed.order.amount == 8000
    assert gateway.calls[0]["amount"] == 8000
    assert confirmed.summary.amount_paid == 10000
    assert confirmed.summary.remaining_amount == 0
    assert confirmed.summary.payment_status == BookingPaymentStatus.FULLY_PAID


def test_pay_remaining_rejects_settled_booking(orchestrator, market):
    booking = market.add_booking(total=1000, paid=1000)

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.pay_remaining(booking.id))
    assert not [call for call in market.calls if call[0] == "create_full_order"]


def test_pay_remaining_failure_is_item_one_of_one(booking_api, payment_api, market):
    gateway = ScriptedGateway([CheckoutCancelled()])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)
    booking = market.add_booking(total=10000, paid=2000)

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.pay_remaining(booking.id))

    assert err.value.item_index == 1 and err.value.total_items == 1
    assert market.bookings[booking.id].amount_paid == 2000


def test_progress_is_observable_by_run_id(orchestrator, cart_store, market):
    _load(cart_store, market, "pkg-wedding")

    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    progress = orchestrator.progress(outcome.progress.run_id)
    assert progress.state == CheckoutState.COMPLETED
    assert progress.current_item == 1
    assert orchestrator.progress("unknown") is None


def test_checkout_books_the_server_cart_not_the_cached_one(orchestrator, cart_store, market):
    _load(cart_store, market, "pkg-wedding")
    market.add_to_cart("pkg-decor")

    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    assert [c.booking.package_id for c in outcome.confirmed] == ["pkg-wedding", "pkg-decor"]
    assert market.cart == []


def test_items_added_during_checkout_stay_in_cart(booking_api, payment_api, cart_store, market):
    _load(cart_store, market, "pkg-wedding")

    class AddingGateway(ScriptedGateway):
        async def open_checkout(self, *args, **kwargs):
            market.add_to_cart("pkg-catering")
            return await super().open_checkout(*args, **kwargs)

    orchestrator = CheckoutOrchestrator(booking_api, payment_api, AddingGateway())
    outcome = asyncio.run(orchestrator.execute(cart_store, 20))

    assert [c.booking.package_id for c in outcome.confirmed] == ["pkg-wedding"]
    assert [item.package_id for item in market.cart] == ["pkg-catering"]
    assert [item.package_id for item in cart_store.items] == ["pkg-catering"]


def test_pay_remaining_blocks_cart_checkout_before_any_booking(
    booking_api, payment_api, cart_store, market
):
    _load(cart_store, market, "pkg-wedding")
    booking = market.add_booking(total=10000, paid=2000)
    gateway = BlockingGateway()
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)

    async def scenario():
        gateway.opened = asyncio.Event()
        gateway.release = asyncio.Event()
        settling = asyncio.create_task(orchestrator.pay_remaining(booking.id))
        await gateway.opened.wait()
        assert orchestrator.busy
        with pytest.raises(CheckoutInProgressError):
            await orchestrator.execute(cart_store, 20)
        assert not cart_store.checkout_in_progress
        gateway.release.set()
        return await settling

    confirmed = asyncio.run(scenario())

    assert confirmed.summary.remaining_amount == 0
    assert not [call for call in market.calls if call[0] == "create_booking"]
    assert len(market.cart) == 1
    assert not orchestrator.busy


def test_cart_checkout_blocks_pay_remaining(booking_api, payment_api, cart_store, market):
    _load(cart_store, market, "pkg-wedding")
    booking = market.add_booking(total=10000, paid=2000)
    gateway = BlockingGateway()
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway)

    async def scenario():
        gateway.opened = asyncio.Event()
        gateway.release = asyncio.Event()
        running = asyncio.create_task(orchestrator.execute(cart_store, 20))
        await gateway.opened.wait()
        with pytest.raises(CheckoutInProgressError):
            await orchestrator.pay_remaining(booking.id)
        gateway.release.set()
        return await running

    outcome = asyncio.run(scenario())

    assert len(outcome.confirmed) == 1
    assert not [call for call in market.calls if call[0] in ("get_booking", "create_full_order")]


def test_failed_pay_remaining_reports_no_orphans(booking_api, payment_api, journal, market):
    gateway = ScriptedGateway([CheckoutFailed("Card declined")])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway, journal=journal, session_key="s1")
    booking = market.add_booking(total=10000, paid=2000)

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.pay_remaining(booking.id))

    progress = err.value.progress
    assert progress.settling_booking == booking.id
    assert progress.bookings_created == []
    assert progress.orphaned_bookings == []
    assert journal.list_orphans(session_key="s1") == []


def test_background_run_cancelled_before_first_step_releases_cart(orchestrator, cart_store, market):
    _load(cart_store, market, "pkg-wedding")

    async def scenario():
        started = await orchestrator.start(cart_store, 20)
        orchestrator._tasks[started.run_id].cancel()
        for _ in range(5):
            await asyncio.sleep(0)
        return started.run_id

    run_id = asyncio.run(scenario())

    assert not cart_store.checkout_in_progress
    assert not orchestrator.busy
    assert orchestrator.progress(run_id).state == CheckoutState.FAILED
    assert not [call for call in market.calls if call[0] == "create_booking"]


def test_finished_runs_beyond_history_are_forgotten(orchestrator, cart_store, market):
    orchestrator.run_history = 2
    run_ids = []
    for _ in range(3):
        _load(cart_store, market, "pkg-wedding")
        run_ids.append(asyncio.run(orchestrator.execute(cart_store, 20)).progress.run_id)

    assert orchestrator.progress(run_ids[0]) is None
    assert orchestrator.progress(run_ids[1]).state == CheckoutState.COMPLETED
    assert orchestrator.progress(run_ids[2]).state == CheckoutState.COMPLETED
