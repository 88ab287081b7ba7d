"""
Pydantic schemas for Cart operations
"""
from __future__ import annotations
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CartItem(BaseModel):
    """One pending, unbooked selection"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    package_id: str
    package_title: str = ""
    base_price: int = Field(ge=0)
    per_guest_price: int = Field(default=0, ge=0)
    guests: int = Field(default=1, ge=1)
    event_date: datetime
    location: str
    customization: str = ""

    @property
    def item_total(self) -> int:
        return self.base_price + self.per_guest_price * self.guests


class Cart(BaseModel):
    """Ordered cart contents"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[CartItem] = []

    @property
    def total_amount(self) -> int:
        return sum(item.item_total for item in self.items)

    @property
    def item_count(self) -> int:
        return len(self.items)


class CartTotals(BaseModel):
    """Cart price breakdown"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    subtotal: int
    tax: int
    total: int
    item_count: int


class CartItemCreate(BaseModel):
    """Schema for adding an item to the cart"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    package_id: str
    guests: int = 1
    event_date: datetime
    location: str
    customization: str = ""


class CartItemUpdate(BaseModel):
    """Schema for updating a cart item"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    guests: Optional[int] = None
    event_date: Optional[datetime] = None
    location: Optional[str] = None
    customization: Optional[str] = None


class CartResponse(BaseModel):
    """Schema for cart response"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[CartItem]
    total_amount: int
    item_count: int
    checkout_in_progress: bool = False
