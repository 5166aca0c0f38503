"""
Cart routes

Every response carries freshly computed totals.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user
from storefront.core.database import get_db
from storefront.models.user import User
from storefront.schemas.cart import ApplyCouponRequest, CartItemAdd, CartItemUpdate, CartResponse
from storefront.services.cart_service import cart_service, cart_to_response

router = APIRouter()


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get current user's cart"""
    return cart_to_response(await cart_service.get_cart(db, user))


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    item: CartItemAdd,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Add item to cart, merging with an identical line"""
    cart = await cart_service.add_item(db, user, item.product_id, item.variant_sku, item.quantity)
    return cart_to_response(cart)


@router.patch("/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: int,
    update: CartItemUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update cart item quantity (0 removes it)"""
    cart = await cart_service.update_item(db, user, item_id, update.quantity)
    return cart_to_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_from_cart(
    item_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    cart = await cart_service.remove_item(db, user, item_id)
    return cart_to_response(cart)


@router.post("/coupon", response_model=CartResponse)
async def apply_coupon(
    payload: ApplyCouponRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    cart = await cart_service.apply_coupon(db, user, payload.code)
    return cart_to_response(cart)


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    cart = await cart_service.remove_coupon(db, user)
    return cart_to_response(cart)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Clear entire cart"""
    await cart_service.clear(db, user)
