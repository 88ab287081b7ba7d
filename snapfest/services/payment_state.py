"""
Booking payment state

Pure derivation of a PaymentSummary from a booking and its payment records.
No I/O; safe to call from read-only views and in the middle of a checkout.
"""
from typing import Optional, Sequence

from snapfest.core.logging_config import logger
from snapfest.schemas.booking import Booking, BookingPaymentStatus
from snapfest.schemas.payment import Payment, PaymentStatus, PaymentSummary
from snapfest.utils.money import remaining, round_amount

# Paid-state ordering; a booking only ever moves right unless cancelled
_STATUS_RANK = {
    BookingPaymentStatus.FAILED_PAYMENT: 0,
    BookingPaymentStatus.PENDING_PAYMENT: 0,
    BookingPaymentStatus.PARTIALLY_PAID: 1,
    BookingPaymentStatus.FULLY_PAID: 2,
}


def settled_total(payments: Sequence[Payment]) -> int:
    """Sum of successful payments"""
    return sum(p.amount for p in payments if p.status == PaymentStatus.SUCCESS)


def derive_status(
    total_amount: int,
    amount_paid: int,
    current: BookingPaymentStatus = BookingPaymentStatus.PENDING_PAYMENT,
) -> BookingPaymentStatus:
    if current == BookingPaymentStatus.CANCELLED:
        return current
    if total_amount > 0 and amount_paid >= total_amount:
        return BookingPaymentStatus.FULLY_PAID
    if amount_paid > 0:
        return BookingPaymentStatus.PARTIALLY_PAID
    if current == BookingPaymentStatus.FAILED_PAYMENT:
        return current
    return BookingPaymentStatus.PENDING_PAYMENT


def summarize(booking: Booking, payments: Optional[Sequence[Payment]] = None) -> PaymentSummary:
    """
    Derive the payment summary of a booking

    Args:
        booking: Booking as returned by the backend
        payments: Payment records of the booking; when omitted the booking's
            own ``amount_paid`` is used

    Returns:
        PaymentSummary with ``remaining_amount`` clamped at zero. Payments
        exceeding the total are reported through ``overpaid`` instead of a
        negative balance.
    """
    total = booking.total_amount
    paid = settled_total(payments) if payments is not None else booking.amount_paid

    overpaid = paid > total
    if overpaid:
        logger.warning(
            f"Booking {booking.id} has {paid} paid against a total of {total}; "
            f"remaining clamped to 0"
        )

    if total > 0:
        percentage = min(100, round_amount(paid * 100 / total))
    else:
        percentage = 0

    return PaymentSummary(
        total_amount=total,
        amount_paid=paid,
        remaining_amount=remaining(total, paid),
        payment_status=derive_status(total, paid, booking.payment_status),
        percentage_paid=percentage,
        overpaid=overpaid,
    )


def ensure_monotonic(
    previous: BookingPaymentStatus,
    current: BookingPaymentStatus,
) -> BookingPaymentStatus:
    """
    Keep a booking's paid-state from silently regressing

    Cancellation is the only transition allowed to move backwards.
    """
    if current == BookingPaymentStatus.CANCELLED or previous == BookingPaymentStatus.CANCELLED:
        return current
    if _STATUS_RANK[current] < _STATUS_RANK[previous]:
        logger.warning(
            f"Ignoring payment status regression {previous.value} -> {current.value}"
        )
        return previous
    return current
