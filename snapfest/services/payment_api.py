"""
Payment backend client

Creates gateway payment orders and asks the backend to verify the gateway's
signature. Amounts in and out are whole currency units; the ``order.amount``
the backend echoes from the gateway (minor units) is never used here.
"""
from typing import Any, Dict, Optional

from snapfest.core.config import settings
from snapfest.core.exceptions import (
    NetworkError,
    OrderCreationError,
    SnapfestError,
    VerificationFailed,
)
from snapfest.core.logging_config import logger
from snapfest.schemas.payment import PaymentOrder, VerificationResult
from snapfest.services.backend_client import BackendClient
from snapfest.services.booking_api import booking_from_payload
from snapfest.utils.money import to_amount


class PaymentAPI:
    """Payment order and verification operations"""

    def __init__(self, client: BackendClient):
        self.client = client

    async def create_partial_order(self, booking_id: str, amount: int) -> PaymentOrder:
        """
        Create the advance-payment order for a booking

        Raises:
            OrderCreationError: Backend or gateway refused the order, or the
                order amount does not match ``amount``
            NetworkError: Transient failure
        """
        order = await self._create_order(
            "/payments/create-order/partial",
            {"bookingId": booking_id, "amount": amount},
        )
        if order.amount != amount:
            raise OrderCreationError(
                f"Order amount {order.amount} does not match advance {amount} "
                f"for booking {booking_id}"
            )
        return order

    async def create_full_order(self, booking_id: str) -> PaymentOrder:
        """Create the order settling the booking's remaining balance"""
        return await self._create_order("/payments/create-order/full", {"bookingId": booking_id})

    async def verify_payment(
        self,
        booking_id: str,
        payment_id: str,
        order_id: str,
        signature: str,
    ) -> VerificationResult:
        """
        Ask the backend to verify the gateway signature

        Raises:
            VerificationFailed: Signature rejected or payment unknown
            NetworkError: Transient failure, outcome unknown
        """
        try:
            data = await self.client.post(
                "/payments/verify",
                json={
                    "bookingId": booking_id,
                    "paymentId": payment_id,
                    "orderId": order_id,
                    "signature": signature,
                },
            )
        except NetworkError:
            raise
        except SnapfestError as e:
            logger.warning(f"Payment verification rejected for booking {booking_id}: {e.message}")
            raise VerificationFailed(e.message or "Payment verification failed") from e

        if data.get("success") is False:
            raise VerificationFailed(str(data.get("message") or "Payment verification failed"))

        booking_data = data.get("booking")
        if isinstance(booking_data, dict):
            booking = booking_from_payload(booking_data)
        else:
            booking = await self._fetch_booking(booking_id)
        logger.info(
            f"Payment verified for booking {booking.id}: paid={booking.amount_paid}/"
            f"{booking.total_amount} status={booking.payment_status.value}"
        )
        return VerificationResult(success=True, booking=booking)

    async def _fetch_booking(self, booking_id: str):
        data = await self.client.get(f"/bookings/{booking_id}")
        return booking_from_payload(data.get("booking") or data)

    async def _create_order(self, path: str, payload: Dict[str, Any]) -> PaymentOrder:
        try:
            data = await self.client.post(path, json=payload)
        except NetworkError:
            raise
        except SnapfestError as e:
            logger.error(f"Order creation failed ({path}): {e.message}")
            raise OrderCreationError(e.message or "Failed to create payment order") from e

        order = self._order_from_payload(data)
        logger.info(f"Payment order created: {order.id} amount={order.amount} {order.currency}")
        return order

    @staticmethod
    def _order_from_payload(data: Dict[str, Any]) -> PaymentOrder:
        order_data: Optional[Dict[str, Any]] = data.get("order")
        if not isinstance(order_data, dict) or not order_data.get("id"):
            raise OrderCreationError("Backend returned no payment order")
        try:
            return PaymentOrder(
                id=str(order_data["id"]),
                amount=to_amount(data.get("amount")),
                currency=order_data.get("currency") or settings.CURRENCY,
                receipt=order_data.get("receipt"),
            )
        except (ValueError, TypeError) as e:
            raise OrderCreationError(f"Malformed payment order: {str(e)}") from e
