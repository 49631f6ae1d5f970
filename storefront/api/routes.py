import json
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from storefront.api.deps import get_checkout_service, get_current_user_id, get_order_service
from storefront.caching.redis_client import RedisClient, get_redis
from storefront.core.config import Settings, get_settings
from storefront.core.errors import RateLimited, Unauthorized
from storefront.core.models import CheckoutRequest, CompleteOrderRequest, OrderListResponse, OrderResponse
from storefront.core.status import OrderStatus
from storefront.services.checkout import CheckoutService
from storefront.services.orders import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])

@router.post("/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    checkout_in: CheckoutRequest,
    user_id: UUID = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
    redis: RedisClient = Depends(get_redis),
    settings: Settings = Depends(get_settings),
):
    allowed = await redis.check_rate_limit(
        f"checkout:{user_id}",
        limit=settings.API_RATE_LIMIT_REQUESTS,
        window=settings.API_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        raise RateLimited()

    return await service.checkout(user_id, checkout_in)

@router.get("/", response_model=OrderListResponse)
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user_id: UUID = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_for_user(user_id, status=status_filter, page=page, limit=limit)
    return OrderListResponse(items=orders, total=total, page=page, limit=limit)

@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
    redis: RedisClient = Depends(get_redis),
):
    # 1. Check Cache
    cached_order = await redis.get_cached_order(order_id)
    if cached_order:
        if cached_order.get("user_id") != str(user_id):
            raise Unauthorized()
        return cached_order

    # 2. Fetch from DB
    order = await service.detail(order_id)
    if order.user_id != user_id:
        raise Unauthorized()

    # 3. Cache Result
    await redis.set_cached_order(str(order.id), json.loads(order.model_dump_json()))
    return order

@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
):
    return await service.cancel(order_id, user_id)

@router.patch("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: str,
    body: Optional[CompleteOrderRequest] = None,
    user_id: UUID = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
):
    next_status = body.status if body else OrderStatus.COMPLETED
    return await service.complete(order_id, user_id, next_status)
