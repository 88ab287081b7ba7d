"""
Payment routes

Gateway callbacks relayed by the browser's checkout modal, plus the booking
payment summary and remaining-balance settlement.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from snapfest.core.exceptions import NotFoundError
from snapfest.core.logging_config import logger
from snapfest.routes.dependencies import CheckoutSession, get_checkout_session
from snapfest.schemas.checkout import CheckoutStartResponse, PayRemainingRequest
from snapfest.schemas.payment import GatewayCallback, GatewayFailure, PaymentSummary
from snapfest.services.gateway_bridge import HostedCheckoutBridge
from snapfest.services.payment_state import summarize

router = APIRouter(
    prefix="/payments",
    tags=["payments"]
)


def _bridge(session: CheckoutSession) -> HostedCheckoutBridge:
    bridge = session.gateway.sdk
    if bridge is None:
        raise NotFoundError("No checkout session is open")
    return bridge


@router.get("/gateway/session")
async def get_gateway_session(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """
    Options for the checkout modal the browser should render

    Returns ``{"session": null}`` while no modal is pending.
    """
    bridge = session.gateway.sdk
    options: Optional[Dict[str, Any]] = bridge.current_session() if bridge else None
    if options is None:
        return {"session": None}

    order_id = options["order_id"]
    options["callbacks"] = {
        "success": f"{router.prefix}/gateway/{order_id}/success",
        "dismiss": f"{router.prefix}/gateway/{order_id}/dismiss",
        "failure": f"{router.prefix}/gateway/{order_id}/failure",
    }
    return {"session": options}


@router.post("/gateway/{order_id}/success")
async def gateway_success(
    order_id: str,
    payload: GatewayCallback,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Widget success handler: hand the payment tuple to the waiting checkout"""
    _bridge(session).complete(order_id, payload)
    return {"status": "received", "order_id": order_id}


@router.post("/gateway/{order_id}/dismiss")
async def gateway_dismiss(order_id: str, session: CheckoutSession = Depends(get_checkout_session)):
    """Modal closed without paying"""
    _bridge(session).dismiss(order_id)
    return {"status": "cancelled", "order_id": order_id}


@router.post("/gateway/{order_id}/failure")
async def gateway_failure(
    order_id: str,
    payload: GatewayFailure,
    session: CheckoutSession = Depends(get_checkout_session),
):
    _bridge(session).fail(order_id, payload.reason)
    return {"status": "failed", "order_id": order_id}


@router.get("/bookings/{booking_id}/summary", response_model=PaymentSummary, response_model_by_alias=True)
async def get_payment_summary(booking_id: str, session: CheckoutSession = Depends(get_checkout_session)):
    """
    Payment summary of a booking

    Args:
        booking_id: Booking to summarize
        session: Session of the calling user

    Returns:
        Total, paid, remaining, status and percentage paid
    """
    booking = await session.booking_api.get_booking(booking_id)
    payments = await session.booking_api.list_payments(booking_id)
    return summarize(booking, payments or None)


@router.post(
    "/bookings/{booking_id}/pay-remaining",
    response_model=CheckoutStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    response_model_by_alias=True,
)
async def pay_remaining(
    booking_id: str,
    body: Optional[PayRemainingRequest] = None,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Start settling the remaining balance of a booking"""
    payer = body.payer if body else None
    progress = await session.orchestrator.start_pay_remaining(booking_id, payer)
    logger.info(f"Remaining payment run {progress.run_id} accepted for booking {booking_id}")
    return CheckoutStartResponse(
        run_id=progress.run_id,
        total_items=progress.total_items,
        state=progress.state,
    )
