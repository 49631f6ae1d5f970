from uuid import UUID

from fastapi import APIRouter, Depends, status

from storefront.api.deps import get_cart_service, get_current_user_id
from storefront.core.models import CartItemAdd, CartItemUpdate, CartSnapshot
from storefront.services.cart import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])

@router.get("/", response_model=CartSnapshot)
async def get_cart(user_id: UUID = Depends(get_current_user_id), cart: CartService = Depends(get_cart_service)):
    return await cart.detail(user_id)

@router.post("/items", response_model=CartSnapshot, status_code=status.HTTP_201_CREATED)
async def add_item(
    item_in: CartItemAdd,
    user_id: UUID = Depends(get_current_user_id),
    cart: CartService = Depends(get_cart_service),
):
    return await cart.add_item(user_id, item_in.product_id, item_in.quantity)

@router.patch("/items/{product_id}", response_model=CartSnapshot)
async def update_item(
    product_id: UUID,
    item_in: CartItemUpdate,
    user_id: UUID = Depends(get_current_user_id),
    cart: CartService = Depends(get_cart_service),
):
    return await cart.update_item(user_id, product_id, item_in.quantity)

@router.delete("/items/{product_id}", response_model=CartSnapshot)
async def remove_item(
    product_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    cart: CartService = Depends(get_cart_service),
):
    return await cart.remove_item(user_id, product_id)

@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(user_id: UUID = Depends(get_current_user_id), cart: CartService = Depends(get_cart_service)):
    await cart.clear(user_id)
