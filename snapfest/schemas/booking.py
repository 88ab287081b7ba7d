"""
Pydantic schemas for Booking operations
"""
from __future__ import annotations
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class BookingPaymentStatus(str, Enum):
    """Booking payment status enumeration"""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_PAID = "FULLY_PAID"
    FAILED_PAYMENT = "FAILED_PAYMENT"
    CANCELLED = "CANCELLED"


class Booking(BaseModel):
    """Booking created from a cart item at checkout time"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    package_id: str
    event_date: datetime
    location: str
    guests: int = 1
    customization: str = ""
    total_amount: int = Field(ge=0)
    partial_amount: int = Field(ge=0)
    payment_percentage: int = Field(default=20, ge=0, le=100)
    amount_paid: int = Field(default=0, ge=0)
    payment_status: BookingPaymentStatus = BookingPaymentStatus.PENDING_PAYMENT
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _partial_within_total(self) -> "Booking":
        # amount_paid may transiently exceed the total on backend races;
        # payment_state.summarize clamps that case instead of rejecting it
        if self.partial_amount > self.total_amount:
            raise ValueError("partial_amount cannot exceed total_amount")
        return self


class BookingCreate(BaseModel):
    """Booking request sent to the booking backend"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    package_id: str
    event_date: datetime
    location: str
    guests: int = 1
    customization: str = ""
    payment_percentage: int
