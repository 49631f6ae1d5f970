import logging
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.caching.redis_client import RedisClient
from storefront.core.errors import (
    AppError,
    CannotCancel,
    InvalidOrderID,
    InvalidStatusTransition,
    OrderNotFound,
    ReceiptRequired,
    Unauthorized,
)
from storefront.core.models import OrderItemResponse, OrderResponse
from storefront.core.status import ADMIN_TARGETS, OrderStatus, ensure_transition
from storefront.data.models import Order
from storefront.data.order_store import OrderStore
from storefront.services.checkout import parse_user_id

logger = logging.getLogger(__name__)


def parse_order_id(order_id) -> UUID:
    if isinstance(order_id, UUID):
        return order_id
    try:
        return UUID(str(order_id))
    except ValueError:
        raise InvalidOrderID()


def to_response(order: Order, items=None) -> OrderResponse:
    response = OrderResponse.model_validate(order)
    if items is not None:
        response.items = [OrderItemResponse.model_validate(item) for item in items]
    return response


class OrderService:
    """Order queries and the status state machine.

    Every transition runs as lock -> validate -> write -> commit in a single
    transaction and rolls back on any failure, so a rejected request leaves the
    order exactly as it was.
    """

    def __init__(self, session: AsyncSession, cache: Optional[RedisClient] = None):
        self.session = session
        self.store = OrderStore(session)
        self.cache = cache

    async def detail(self, order_id) -> OrderResponse:
        oid = parse_order_id(order_id)
        order = await self.store.get(oid)
        if not order:
            raise OrderNotFound()
        items = await self.store.get_items(oid)
        return to_response(order, items)

    async def list_for_user(
        self, user_id, status: Optional[OrderStatus] = None, page: int = 1, limit: int = 10
    ) -> Tuple[List[OrderResponse], int]:
        uid = parse_user_id(user_id)
        orders, total = await self.store.list_for_user(uid, status=status, page=page, limit=limit)
        return await self._with_items(orders), total

    async def list_admin(
        self,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[OrderResponse], int]:
        orders, total = await self.store.list_admin(status=status, search=search, page=page, limit=limit)
        return [to_response(order) for order in orders], total

    # Customer actions

    async def cancel(self, order_id, user_id) -> OrderResponse:
        uid = parse_user_id(user_id)

        def validate(order: Order):
            self._ensure_owner(order, uid)
            if order.status != OrderStatus.PENDING:
                raise CannotCancel()

        return await self._transition(order_id, OrderStatus.CANCELLED, validate)

    async def complete(self, order_id, user_id, next_status: OrderStatus = OrderStatus.COMPLETED) -> OrderResponse:
        uid = parse_user_id(user_id)

        def validate(order: Order):
            self._ensure_owner(order, uid)
            if next_status != OrderStatus.COMPLETED:
                raise InvalidStatusTransition("customers can only complete an order")
            ensure_transition(order.status, next_status)

        return await self._transition(order_id, next_status, validate)

    # Payment / admin actions

    async def confirm_payment(self, order_id) -> OrderResponse:
        def validate(order: Order):
            ensure_transition(order.status, OrderStatus.PAID)

        return await self._transition(order_id, OrderStatus.PAID, validate)

    async def update_status_by_admin(
        self, order_id, next_status: OrderStatus, receipt_no: Optional[str] = None
    ) -> OrderResponse:
        if next_status not in ADMIN_TARGETS:
            raise InvalidStatusTransition(f"admin cannot set status {next_status.value}")
        receipt_no = receipt_no.strip() if receipt_no else None
        if next_status == OrderStatus.SHIPPED and not receipt_no:
            raise ReceiptRequired()

        def validate(order: Order):
            ensure_transition(order.status, next_status)

        return await self._transition(
            order_id,
            next_status,
            validate,
            receipt_no=receipt_no if next_status == OrderStatus.SHIPPED else None,
        )

    async def _transition(
        self,
        order_id,
        target: OrderStatus,
        validate: Callable[[Order], None],
        receipt_no: Optional[str] = None,
    ) -> OrderResponse:
        oid = parse_order_id(order_id)
        try:
            order = await self.store.get(oid, for_update=True)
            if not order:
                raise OrderNotFound()
            previous = order.status
            validate(order)
            await self.store.update_status(order, target, receipt_no=receipt_no)
            await self.session.commit()
        except AppError:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Status update to {target.value} failed for order {oid}: {e}")
            raise

        logger.info(f"Order {oid} moved from {previous.value} to {target.value}")
        if self.cache:
            await self.cache.invalidate_order(str(oid))
        return to_response(order)

    async def _with_items(self, orders: List[Order]) -> List[OrderResponse]:
        items = await self.store.get_items_for_orders([order.id for order in orders])
        return [to_response(order, items.get(order.id, [])) for order in orders]

    @staticmethod
    def _ensure_owner(order: Order, user_id: UUID):
        if order.user_id != user_id:
            raise Unauthorized()
