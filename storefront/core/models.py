from pydantic import BaseModel, Field
from uuid import UUID
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from storefront.core.status import OrderStatus


class ProductResponse(BaseModel):
    id: UUID
    name: str
    price: Decimal
    stock: int

    class Config:
        from_attributes = True


class CartItemAdd(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(gt=0)


class CartLine(BaseModel):
    product_id: UUID
    product_name: str
    price: Decimal
    quantity: int
    subtotal: Decimal


class CartSnapshot(BaseModel):
    user_id: UUID
    items: List[CartLine] = []
    total: Decimal = Decimal("0.00")


class CheckoutRequest(BaseModel):
    address_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=500)


class OrderItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    name_snapshot: str
    unit_price: Decimal
    quantity: int
    total_price: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    subtotal_price: Decimal
    shipping_price: Decimal
    total_price: Decimal
    address_id: Optional[UUID] = None
    address_snapshot: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    receipt_no: Optional[str] = None
    placed_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    limit: int


class CompleteOrderRequest(BaseModel):
    status: OrderStatus = OrderStatus.COMPLETED


class AdminStatusUpdate(BaseModel):
    status: OrderStatus
    receipt_no: Optional[str] = None
