"""
Checkout routes
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from snapfest.core.logging_config import logger
from snapfest.routes.dependencies import (
    CheckoutSession,
    get_cart_store,
    get_checkout_session,
    get_journal,
)
from snapfest.schemas.checkout import (
    CheckoutProgress,
    CheckoutRequest,
    CheckoutStartResponse,
    OrphanedBooking,
)
from snapfest.services.cart_store import CartStore
from snapfest.services.checkout_journal import CheckoutJournal

router = APIRouter(
    prefix="/checkout",
    tags=["checkout"]
)


@router.post("", response_model=CheckoutStartResponse, status_code=status.HTTP_202_ACCEPTED, response_model_by_alias=True)
async def start_checkout(
    body: CheckoutRequest,
    session: CheckoutSession = Depends(get_checkout_session),
    store: CartStore = Depends(get_cart_store),
):
    """
    Start checking out the cart

    The run continues in the background; poll ``/checkout/runs/{run_id}``
    and ``/payments/gateway/session`` to drive the payment modal.
    """
    progress = await session.orchestrator.start(store, body.payment_percentage, body.payer)
    logger.info(f"Checkout run {progress.run_id} accepted ({progress.total_items} item(s))")
    return CheckoutStartResponse(
        run_id=progress.run_id,
        total_items=progress.total_items,
        state=progress.state,
    )


@router.get("/runs/{run_id}", response_model=CheckoutProgress, response_model_by_alias=True)
async def get_checkout_run(run_id: str, session: CheckoutSession = Depends(get_checkout_session)):
    """Progress of a checkout run"""
    progress = session.orchestrator.progress(run_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Checkout run {run_id} not found"
        )
    return progress


@router.get("/orphans", response_model=List[OrphanedBooking], response_model_by_alias=True)
async def list_orphaned_bookings(request: Request, journal: CheckoutJournal = Depends(get_journal)):
    """Bookings created by aborted runs of the calling user and never paid"""
    return journal.list_orphans(session_key=request.state.session_key)
