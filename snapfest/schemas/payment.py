"""
Pydantic schemas for Payment operations
"""
from __future__ import annotations
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from snapfest.schemas.booking import Booking, BookingPaymentStatus


class PaymentStatus(str, Enum):
    """Payment record status enumeration"""
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    """Payment method enumeration"""
    ONLINE = "online"
    CASH = "cash"


class Payment(BaseModel):
    """One attempted or settled transaction against a booking"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    booking_id: str
    amount: int = Field(ge=0)
    method: PaymentMethod = PaymentMethod.ONLINE
    status: PaymentStatus = PaymentStatus.PENDING
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentOrder(BaseModel):
    """Gateway-side order bridging one booking and one checkout session"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    amount: int = Field(gt=0)
    currency: str = "INR"
    receipt: Optional[str] = None


class PaymentSummary(BaseModel):
    """Derived payment state of a booking (never persisted)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    total_amount: int
    amount_paid: int
    remaining_amount: int
    payment_status: BookingPaymentStatus
    percentage_paid: int
    overpaid: bool = False


class PayerInfo(BaseModel):
    """Gateway prefill details"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = ""
    email: str = ""
    contact: str = ""


class GatewayResult(BaseModel):
    """Normalized result of a successful gateway checkout"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    gateway_payment_id: str
    gateway_order_id: str
    gateway_signature: str


class GatewayCallback(BaseModel):
    """Payload posted by the checkout widget's success handler"""

    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str


class GatewayFailure(BaseModel):
    """Payload posted when the widget reports a failed payment"""

    reason: str = "Payment failed"


class VerificationResult(BaseModel):
    """Backend-confirmed verification"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    booking: Booking
