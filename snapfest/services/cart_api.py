"""
Cart backend client
"""
from typing import Any, Dict, List

from snapfest.core.exceptions import BackendError
from snapfest.core.logging_config import logger
from snapfest.schemas.cart import CartItem, CartItemCreate, CartItemUpdate
from snapfest.services.backend_client import BackendClient
from snapfest.utils.money import to_amount


def cart_item_from_payload(data: Dict[str, Any]) -> CartItem:
    """Build a CartItem from a cart row with its populated package"""
    package = data.get("packageId") or {}
    if not isinstance(package, dict):
        package = {"_id": package}
    try:
        return CartItem(
            id=str(data.get("_id") or data.get("id") or ""),
            package_id=str(package.get("_id") or package.get("id") or ""),
            package_title=package.get("title") or "",
            base_price=to_amount(package.get("basePrice") or 0),
            per_guest_price=to_amount(package.get("perGuestPrice") or 0),
            guests=int(data.get("guests") or 1),
            event_date=data.get("eventDate"),
            location=data.get("location") or "",
            customization=data.get("customization") or "",
        )
    except (ValueError, TypeError) as e:
        logger.error(f"Malformed cart item payload: {data!r}")
        raise BackendError(f"Malformed cart item: {str(e)}") from e


class CartAPI:
    """Cart persistence operations"""

    def __init__(self, client: BackendClient):
        self.client = client

    async def get_items(self) -> List[CartItem]:
        """Cart rows in the backend's stored order"""
        data = await self.client.get("/cart")
        return [cart_item_from_payload(row) for row in data.get("cartItems") or []]

    async def add_item(self, item: CartItemCreate) -> CartItem:
        data = await self.client.post("/cart", json=item.model_dump(mode="json", by_alias=True))
        return cart_item_from_payload(data.get("cartItem") or data)

    async def update_item(self, item_id: str, changes: CartItemUpdate) -> CartItem:
        payload = changes.model_dump(mode="json", by_alias=True, exclude_none=True)
        data = await self.client.put(f"/cart/{item_id}", json=payload)
        return cart_item_from_payload(data.get("cartItem") or data)

    async def remove_item(self, item_id: str) -> None:
        await self.client.delete(f"/cart/{item_id}")

    async def clear(self) -> None:
        await self.client.delete("/cart")
