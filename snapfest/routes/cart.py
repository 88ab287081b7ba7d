"""
Cart routes
"""
from fastapi import APIRouter, Depends, status

from snapfest.core.logging_config import logger
from snapfest.routes.dependencies import get_cart_store
from snapfest.schemas.cart import CartItem, CartItemCreate, CartItemUpdate, CartResponse, CartTotals
from snapfest.services.cart_store import CartStore

router = APIRouter(
    prefix="/cart",
    tags=["cart"]
)


def _cart_response(store: CartStore) -> CartResponse:
    cart = store.snapshot()
    return CartResponse(
        items=cart.items,
        total_amount=cart.total_amount,
        item_count=cart.item_count,
        checkout_in_progress=store.checkout_in_progress,
    )


@router.get("", response_model=CartResponse, response_model_by_alias=True)
async def get_cart(store: CartStore = Depends(get_cart_store)):
    """Current cart contents in stored order"""
    return _cart_response(store)


@router.get("/totals", response_model=CartTotals, response_model_by_alias=True)
async def get_cart_totals(store: CartStore = Depends(get_cart_store)):
    """Subtotal, GST and total of the cart"""
    return store.compute_total()


@router.post("/items", response_model=CartItem, status_code=status.HTTP_201_CREATED, response_model_by_alias=True)
async def add_cart_item(item: CartItemCreate, store: CartStore = Depends(get_cart_store)):
    """
    Add a package selection to the cart

    Args:
        item: Package, date, location, guests and customization
        store: Cart store of the calling user

    Returns:
        The stored cart item
    """
    logger.info(f"Adding package {item.package_id} to cart")
    return await store.add(item)


@router.put("/items/{item_id}", response_model=CartItem, response_model_by_alias=True)
async def update_cart_item(item_id: str, changes: CartItemUpdate, store: CartStore = Depends(get_cart_store)):
    return await store.update(item_id, changes)


@router.delete("/items/{item_id}", response_model=CartResponse, response_model_by_alias=True)
async def remove_cart_item(item_id: str, store: CartStore = Depends(get_cart_store)):
    await store.remove(item_id)
    return _cart_response(store)


@router.post("/refresh", response_model=CartResponse, response_model_by_alias=True)
async def refresh_cart(store: CartStore = Depends(get_cart_store)):
    """Reload the cart from the backend"""
    await store.refresh()
    return _cart_response(store)


@router.delete("", response_model=CartResponse, response_model_by_alias=True)
async def clear_cart(store: CartStore = Depends(get_cart_store)):
    """Empty the cart"""
    await store.clear()
    return _cart_response(store)
