"""
Booking backend client
"""
from typing import Any, Dict, List

from snapfest.schemas.booking import Booking, BookingCreate
from snapfest.schemas.payment import Payment
from snapfest.services.backend_client import BackendClient
from snapfest.utils.money import percentage_of, to_amount
from snapfest.core.exceptions import BackendError
from snapfest.core.logging_config import logger


def _ref_id(value: Any) -> str:
    """Id of a possibly populated reference ({"_id": ...} or a bare id)"""
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    return str(value or "")


def booking_from_payload(data: Dict[str, Any]) -> Booking:
    """
    Build a Booking from the backend's booking document

    The backend stores ``remainingAmount`` rather than the advance; the
    advance is taken from ``partialAmount`` when present, otherwise derived
    once from ``paymentPercentage`` with the shared rounding rule.
    """
    try:
        total = to_amount(data.get("totalAmount") or 0)
        percentage = int(data.get("paymentPercentage") or 20)
        if data.get("partialAmount") is not None:
            partial = to_amount(data["partialAmount"])
        else:
            partial = percentage_of(total, percentage)
        return Booking(
            id=_ref_id(data.get("_id") or data.get("id")),
            package_id=_ref_id(data.get("packageId") or data.get("beatBloomId")),
            event_date=data.get("eventDate"),
            location=data.get("location") or "",
            guests=int(data.get("guests") or 1),
            customization=data.get("customization") or "",
            total_amount=total,
            partial_amount=partial,
            payment_percentage=percentage,
            amount_paid=to_amount(data.get("amountPaid") or 0),
            payment_status=data.get("paymentStatus") or "PENDING_PAYMENT",
            created_at=data.get("createdAt"),
        )
    except (ValueError, TypeError) as e:
        logger.error(f"Malformed booking payload: {data!r}")
        raise BackendError(f"Malformed booking data: {str(e)}") from e


def payment_from_payload(data: Dict[str, Any]) -> Payment:
    """Build a Payment from the backend's payment document"""
    try:
        return Payment(
            id=_ref_id(data.get("_id") or data.get("id")),
            booking_id=_ref_id(data.get("bookingId")),
            amount=to_amount(data.get("amount") or 0),
            method=data.get("method") or "online",
            status=data.get("status") or "PENDING",
            order_id=data.get("razorpayOrderId") or data.get("orderId") or None,
            payment_id=data.get("razorpayPaymentId") or data.get("paymentId") or None,
            signature=data.get("signature") or None,
            created_at=data.get("createdAt"),
        )
    except (ValueError, TypeError) as e:
        logger.error(f"Malformed payment payload: {data!r}")
        raise BackendError(f"Malformed payment data: {str(e)}") from e


class BookingAPI:
    """Booking operations against the marketplace backend"""

    def __init__(self, client: BackendClient):
        self.client = client

    async def create_booking(
        self,
        package_id: str,
        event_date,
        location: str,
        guests: int,
        customization: str,
        payment_percentage: int,
    ) -> Booking:
        """
        Create a booking for one cart selection

        Raises:
            ValidationError: Bad booking inputs
            NotFoundError: Package does not exist
        """
        request = BookingCreate(
            package_id=package_id,
            event_date=event_date,
            location=location,
            guests=guests,
            customization=customization,
            payment_percentage=payment_percentage,
        )
        data = await self.client.post(
            "/bookings", json=request.model_dump(mode="json", by_alias=True)
        )
        booking = booking_from_payload(data.get("booking") or data)
        logger.info(
            f"Booking created: {booking.id} total={booking.total_amount} "
            f"partial={booking.partial_amount} ({booking.payment_percentage}%)"
        )
        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        data = await self.client.get(f"/bookings/{booking_id}")
        return booking_from_payload(data.get("booking") or data)

    async def list_payments(self, booking_id: str) -> List[Payment]:
        """Payments recorded against a booking"""
        data = await self.client.get("/payments", params={"bookingId": booking_id})
        rows = data.get("payments") or []
        return [
            payment_from_payload(row) for row in rows
            if _ref_id(row.get("bookingId")) == booking_id
        ]
