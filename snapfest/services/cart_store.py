"""
Cart store

Authoritative client view of a user's pending selections. Every mutation is
persisted through the cart backend and followed by a refresh, so local state
is always what the server returned. The only business logic here is
arithmetic aggregation.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional, Tuple

from snapfest.core.config import settings
from snapfest.core.exceptions import (
    CheckoutInProgressError,
    NotFoundError,
    ValidationError,
)
from snapfest.core.logging_config import logger
from snapfest.schemas.cart import Cart, CartItem, CartItemCreate, CartItemUpdate, CartTotals
from snapfest.services.cart_api import CartAPI
from snapfest.utils.money import tax_on


class CheckoutLease:
    """Handle given to the holder of the checkout lock"""

    def __init__(self, store: "CartStore"):
        self._store = store

    async def reload(self) -> Tuple[CartItem, ...]:
        """Re-read the cart from the backend while it is held"""
        await self._store._reload()
        return self._store.items

    async def remove_checked_out(self, item_ids: Iterable[str]) -> None:
        """Remove the items a successful checkout booked, keeping anything added since"""
        for item_id in item_ids:
            await self._store.api.remove_item(item_id)
        await self._store._reload()
        logger.info(f"Checked-out items removed, {len(self._store.items)} item(s) left in cart")


class CartStore:
    """Per-user cart backed by the cart API"""

    def __init__(self, api: CartAPI, tax_rate: Optional[float] = None):
        self.api = api
        self.tax_rate = settings.TAX_RATE if tax_rate is None else tax_rate
        self._items: Tuple[CartItem, ...] = ()
        self._checkout_active = False

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return self._items

    @property
    def checkout_in_progress(self) -> bool:
        return self._checkout_active

    def snapshot(self) -> Cart:
        """Immutable copy of the current contents, in stored order"""
        return Cart(items=list(self._items))

    def compute_total(self) -> CartTotals:
        """Subtotal, 18% tax and total of the current contents"""
        subtotal = sum(item.item_total for item in self._items)
        tax = tax_on(subtotal, self.tax_rate)
        return CartTotals(
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            item_count=len(self._items),
        )

    async def refresh(self) -> Cart:
        """Replace local state with the backend's cart"""
        self._guard_mutation("refresh")
        items = await self.api.get_items()
        self._items = tuple(items)
        logger.debug(f"Cart refreshed: {len(items)} item(s)")
        return self.snapshot()

    async def add(self, item: CartItemCreate) -> CartItem:
        """
        Add a selection to the cart

        Raises:
            ValidationError: Guests below 1 or blank location
            CheckoutInProgressError: A checkout holds the cart
        """
        self._guard_mutation("add")
        if item.guests < 1:
            raise ValidationError("Guests must be at least 1")
        if not item.location.strip():
            raise ValidationError("Location is required")

        created = await self.api.add_item(item)
        await self._reload()
        logger.info(f"Cart item added: {created.id} (package {item.package_id})")
        return self._find(created.id) or created

    async def update(self, item_id: str, changes: CartItemUpdate) -> CartItem:
        """
        Update guests, date, location or customization of an item

        Raises:
            NotFoundError: Item is not in the cart
        """
        self._guard_mutation("update")
        self._require(item_id)
        if changes.guests is not None and changes.guests < 1:
            raise ValidationError("Guests must be at least 1")
        if changes.location is not None and not changes.location.strip():
            raise ValidationError("Location is required")

        updated = await self.api.update_item(item_id, changes)
        await self._reload()
        logger.info(f"Cart item updated: {item_id}")
        return self._find(item_id) or updated

    async def remove(self, item_id: str) -> None:
        """
        Remove an item

        Raises:
            NotFoundError: Item is not in the cart
        """
        self._guard_mutation("remove")
        self._require(item_id)
        await self.api.remove_item(item_id)
        await self._reload()
        logger.info(f"Cart item removed: {item_id}")

    async def clear(self) -> None:
        """Explicitly empty the cart"""
        self._guard_mutation("clear")
        await self._clear()

    @asynccontextmanager
    async def checkout_lock(self) -> AsyncIterator[CheckoutLease]:
        """
        Hold the cart for one checkout run

        Raises:
            CheckoutInProgressError: Another checkout already holds it
        """
        if self._checkout_active:
            raise CheckoutInProgressError()
        self._checkout_active = True
        logger.debug("Cart locked for checkout")
        try:
            yield CheckoutLease(self)
        finally:
            self._checkout_active = False
            logger.debug("Cart checkout lock released")

    async def _clear(self) -> None:
        await self.api.clear()
        self._items = ()
        logger.info("Cart cleared")

    async def _reload(self) -> None:
        self._items = tuple(await self.api.get_items())

    def _find(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self._items if item.id == item_id), None)

    def _require(self, item_id: str) -> CartItem:
        item = self._find(item_id)
        if item is None:
            raise NotFoundError(f"Cart item {item_id} not found")
        return item

    def _guard_mutation(self, operation: str) -> None:
        if self._checkout_active:
            logger.warning(f"Rejected cart {operation} during checkout")
            raise CheckoutInProgressError(
                f"Cannot {operation} the cart while a checkout is in progress"
            )
