import asyncio

import pytest

from snapfest.core.exceptions import CheckoutCancelled, CheckoutError
from snapfest.db.models import CheckoutRun, CheckoutRunItem, RunItemStatus, RunStatus
from snapfest.schemas.checkout import CheckoutProgress, CheckoutState
from snapfest.services.checkout_orchestrator import CheckoutOrchestrator

from conftest import ScriptedGateway


def _rows(journal, model):
    db = journal.session_factory()
    try:
        return db.query(model).all()
    finally:
        db.close()


def test_aborted_run_marks_unpaid_bookings_orphaned(booking_api, payment_api, journal, cart_store, market):
    gateway = ScriptedGateway(["pay", CheckoutCancelled()])
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, gateway, journal=journal, session_key="s1")
    market.add_to_cart("pkg-decor")
    market.add_to_cart("pkg-catering")
    asyncio.run(cart_store.refresh())

    with pytest.raises(CheckoutError) as err:
        asyncio.run(orchestrator.execute(cart_store, 20))

    orphans = journal.list_orphans(session_key="s1")
    assert [o.booking_id for o in orphans] == err.value.progress.orphaned_bookings
    assert orphans[0].item_index == 2
    assert orphans[0].amount == 1400
    assert orphans[0].failed_step == "gateway"

    run = _rows(journal, CheckoutRun)[0]
    assert run.status == RunStatus.CANCELLED
    assert run.failed_item == 2
    statuses = sorted(item.status for item in _rows(journal, CheckoutRunItem))
    assert statuses == sorted([RunItemStatus.PAID, RunItemStatus.ORPHANED])


def test_completed_run_has_no_orphans(booking_api, payment_api, journal, cart_store, market):
    orchestrator = CheckoutOrchestrator(booking_api, payment_api, ScriptedGateway(), journal=journal)
    market.add_to_cart("pkg-wedding")
    asyncio.run(cart_store.refresh())

    asyncio.run(orchestrator.execute(cart_store, 20))

    assert journal.list_orphans() == []
    assert _rows(journal, CheckoutRun)[0].status == RunStatus.COMPLETED


def test_orphans_are_scoped_to_session(journal):
    progress = CheckoutProgress(run_id="run1", total_items=1, current_item=1,
                                bookings_created=["b1"], state=CheckoutState.FAILED)
    journal.start_run(progress, session_key="alice")
    journal.record_item("run1", 1, RunItemStatus.BOOKING_CREATED, booking_id="b1")
    journal.finish_run(progress, RunStatus.FAILED, failed_step="create_order")

    assert [o.booking_id for o in journal.list_orphans(session_key="alice")] == ["b1"]
    assert journal.list_orphans(session_key="bob") == []


def test_journal_errors_do_not_propagate(monkeypatch, journal):
    from sqlalchemy.exc import OperationalError

    original = journal.session_factory

    def broken_factory():
        raise_on_add = original()

        def add(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        raise_on_add.add = add
        return raise_on_add

    monkeypatch.setattr(journal, "session_factory", broken_factory)
    progress = CheckoutProgress(run_id="run2", total_items=1)

    journal.start_run(progress)
