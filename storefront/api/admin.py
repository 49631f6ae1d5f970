from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api.deps import get_order_service, require_admin
from storefront.core.models import AdminStatusUpdate, OrderListResponse, OrderResponse
from storefront.core.status import OrderStatus
from storefront.services.orders import OrderService

router = APIRouter(prefix="/api/admin/orders", tags=["admin"], dependencies=[Depends(require_admin)])

@router.get("/", response_model=OrderListResponse)
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=64),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_admin(status=status_filter, search=search, page=page, limit=limit)
    return OrderListResponse(items=orders, total=total, page=page, limit=limit)

@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return await service.detail(order_id)

@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: str,
    body: AdminStatusUpdate,
    service: OrderService = Depends(get_order_service),
):
    return await service.update_status_by_admin(order_id, body.status, body.receipt_no)

# Payment confirmation from the payment gateway callback lands here.
@router.post("/{order_id}/payment", response_model=OrderResponse)
async def confirm_payment(order_id: str, service: OrderService = Depends(get_order_service)):
    return await service.confirm_payment(order_id)
