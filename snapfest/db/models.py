"""
Database models for the checkout journal

One row per checkout run and one per cart item it touched, so bookings that
were created but never paid stay visible after the run ends.
"""
import uuid
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from snapfest.db.session import Base


def generate_uuid() -> str:
    """Generate a unique UUID string"""
    return uuid.uuid4().hex


class RunKind(str, PyEnum):
    """What a journalled run was doing"""
    CART_CHECKOUT = "CART_CHECKOUT"
    PAY_REMAINING = "PAY_REMAINING"


class RunStatus(str, PyEnum):
    """Checkout run outcome"""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class RunItemStatus(str, PyEnum):
    """Per-item journal status"""
    BOOKING_CREATED = "BOOKING_CREATED"
    ORDER_CREATED = "ORDER_CREATED"
    GATEWAY_RESOLVED = "GATEWAY_RESOLVED"
    PAID = "PAID"
    ORPHANED = "ORPHANED"  # Booking exists, payment never verified
    FAILED = "FAILED"


class CheckoutRun(Base):
    """Checkout run model"""
    __tablename__ = "checkout_runs"

    id = Column(String(32), primary_key=True, default=generate_uuid)
    kind = Column(Enum(RunKind), default=RunKind.CART_CHECKOUT, nullable=False)
    session_key = Column(String, nullable=True, index=True)
    total_items = Column(Integer, nullable=False)
    payment_percentage = Column(Integer, nullable=True)
    status = Column(Enum(RunStatus), default=RunStatus.RUNNING, nullable=False, index=True)
    state = Column(String, nullable=False)
    failed_item = Column(Integer, nullable=True)
    failed_step = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    items = relationship(
        "CheckoutRunItem",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="CheckoutRunItem.item_index",
    )


class CheckoutRunItem(Base):
    """Journal row for one cart item within a run"""
    __tablename__ = "checkout_run_items"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(String(32), ForeignKey("checkout_runs.id"), nullable=False, index=True)
    item_index = Column(Integer, nullable=False)
    cart_item_id = Column(String, nullable=True)
    booking_id = Column(String, nullable=True, index=True)
    order_id = Column(String, nullable=True)
    payment_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)
    status = Column(Enum(RunItemStatus), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    run = relationship("CheckoutRun", back_populates="items")
