"""
Pydantic schemas for Checkout runs
"""
from __future__ import annotations
from enum import Enum
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from snapfest.schemas.booking import Booking
from snapfest.schemas.payment import GatewayResult, PayerInfo, PaymentOrder, PaymentSummary


class CheckoutState(str, Enum):
    """Checkout run states, entered in this order for every item"""
    STARTED = "STARTED"
    CART_VALIDATED = "CART_VALIDATED"
    BOOKING_CREATED = "BOOKING_CREATED"
    ORDER_CREATED = "ORDER_CREATED"
    GATEWAY_RESOLVED = "GATEWAY_RESOLVED"
    VERIFIED = "VERIFIED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class CheckoutStep(str, Enum):
    """Per-item step that can fail"""
    CREATE_BOOKING = "create_booking"
    CREATE_ORDER = "create_order"
    GATEWAY = "gateway"
    VERIFY = "verify"


class CheckoutProgress(BaseModel):
    """Observable progress of one checkout run"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    total_items: int
    current_item: int = 0
    state: CheckoutState = CheckoutState.STARTED
    bookings_created: List[str] = []
    bookings_paid: List[str] = []
    settling_booking: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def orphaned_bookings(self) -> List[str]:
        """Bookings created in this run that were never paid"""
        return [b for b in self.bookings_created if b not in self.bookings_paid]


class ConfirmedBooking(BaseModel):
    """A booking whose payment the backend verified"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    booking: Booking
    order: PaymentOrder
    gateway: GatewayResult
    summary: PaymentSummary


class CheckoutOutcome(BaseModel):
    """Result of a fully successful checkout run"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    confirmed: List[ConfirmedBooking]
    progress: CheckoutProgress


class CheckoutRequest(BaseModel):
    """Schema for starting a checkout"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_percentage: int = 20
    payer: PayerInfo = Field(default_factory=PayerInfo)


class PayRemainingRequest(BaseModel):
    """Schema for settling a booking's remaining balance"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payer: PayerInfo = Field(default_factory=PayerInfo)


class CheckoutStartResponse(BaseModel):
    """Schema for checkout start response"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    total_items: int
    state: CheckoutState


class OrphanedBooking(BaseModel):
    """A booking created by a checkout run whose payment was never verified"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    run_id: str
    item_index: int
    booking_id: str
    order_id: Optional[str] = None
    amount: Optional[int] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
