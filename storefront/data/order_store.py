from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.status import OrderStatus
from storefront.data.models import Order, OrderItem, utcnow


class OrderStore:
    """Persistence for orders and their line items.

    The store never commits. Callers own the transaction so that an order, its
    items and its outbox event land in the database together or not at all.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        order_number: str,
        user_id: UUID,
        subtotal_price: Decimal,
        shipping_price: Decimal,
        total_price: Decimal,
        address_id: Optional[UUID] = None,
        address_snapshot: Optional[dict] = None,
        note: Optional[str] = None,
    ) -> Order:
        now = utcnow()
        order = Order(
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING,
            subtotal_price=subtotal_price,
            shipping_price=shipping_price,
            total_price=total_price,
            address_id=address_id,
            address_snapshot=address_snapshot,
            note=note,
            placed_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_items(self, order_id: UUID, items: Iterable[OrderItem]) -> List[OrderItem]:
        rows = []
        for item in items:
            item.order_id = order_id
            self.session.add(item)
            rows.append(item)
        await self.session.flush()
        return rows

    async def get(self, order_id: UUID, *, for_update: bool = False) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_items(self, order_id: UUID) -> List[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.name_snapshot)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_items_for_orders(self, order_ids: Sequence[UUID]) -> dict:
        if not order_ids:
            return {}
        stmt = select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.name_snapshot)
        result = await self.session.execute(stmt)
        grouped = {order_id: [] for order_id in order_ids}
        for item in result.scalars().all():
            grouped[item.order_id].append(item)
        return grouped

    async def update_status(
        self, order: Order, status: OrderStatus, *, receipt_no: Optional[str] = None
    ) -> Order:
        order.status = status
        if receipt_no is not None:
            order.receipt_no = receipt_no
        order.updated_at = utcnow()
        await self.session.flush()
        return order

    async def list_for_user(
        self,
        user_id: UUID,
        *,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        filters = [Order.user_id == user_id]
        if status is not None:
            filters.append(Order.status == status)
        return await self._paginate(filters, page, limit)

    async def list_admin(
        self,
        *,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        filters = []
        if status is not None:
            filters.append(Order.status == status)
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            filters.append(Order.order_number.ilike(f"%{escaped}%", escape="\\"))
        return await self._paginate(filters, page, limit)

    async def _paginate(self, filters, page: int, limit: int) -> Tuple[List[Order], int]:
        count_stmt = select(func.count()).select_from(Order).where(*filters)
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.placed_at.desc(), Order.order_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total
