"""Checkout: turns a user's cart into a persisted order.

The order row, its line items and the ``DELETE_CART`` outbox event are written
in one transaction. The cart itself is not touched here; the outbox dispatcher
and the cart consumer clear it once the event is delivered.
"""
import logging
import secrets
import time
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.errors import (
    AppError,
    CartEmpty,
    CartUnavailable,
    CheckoutFailed,
    InvalidAddressReference,
    InvalidUserID,
)
from storefront.core.models import CartLine, CheckoutRequest, OrderResponse
from storefront.data.models import Address, OrderItem
from storefront.data.order_store import OrderStore
from storefront.data.outbox_store import OutboxStore
from storefront.messaging.events import AGGREGATE_ORDER, EVENT_DELETE_CART, encode_delete_cart
from storefront.services.cart import CartService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT)


def parse_user_id(user_id) -> UUID:
    if isinstance(user_id, UUID):
        return user_id
    try:
        return UUID(str(user_id))
    except ValueError:
        raise InvalidUserID()


def compute_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return to_money(sum((line.price * line.quantity for line in lines), Decimal("0")))


def generate_order_number(prefix: str, now: Optional[float] = None) -> str:
    """``GGS-1718000000-3FA9C1``: unix seconds keep numbers sortable, the hex
    suffix makes same-second collisions unlikely. The unique index on
    ``orders.order_number`` is what actually guarantees uniqueness."""
    timestamp = int(now if now is not None else time.time())
    return f"{prefix}-{timestamp}-{secrets.token_hex(3).upper()}"


class CheckoutService:
    def __init__(self, session: AsyncSession, settings: Settings, cart: Optional[CartService] = None):
        self.session = session
        self.settings = settings
        self.cart = cart or CartService(session)
        self.orders = OrderStore(session)
        self.outbox = OutboxStore(session)

    async def checkout(self, user_id, request: CheckoutRequest) -> OrderResponse:
        uid = parse_user_id(user_id)

        try:
            cart = await self.cart.detail(uid)
        except Exception as e:
            logger.error(f"Failed to fetch cart for user {uid}: {e}")
            raise CartUnavailable() from e
        if not cart.items:
            raise CartEmpty()

        subtotal = compute_subtotal(cart.items)
        shipping = to_money(self.settings.SHIPPING_PRICE)
        total = subtotal + shipping

        address_id, address_snapshot = await self._resolve_address(uid, request.address_id)
        order_number = generate_order_number(self.settings.ORDER_NUMBER_PREFIX)

        try:
            order = await self.orders.create(
                order_number=order_number,
                user_id=uid,
                subtotal_price=subtotal,
                shipping_price=shipping,
                total_price=total,
                address_id=address_id,
                address_snapshot=address_snapshot,
                note=request.note or None,
            )
            await self.orders.add_items(order.id, self._line_items(cart.items))
            await self.outbox.enqueue(
                aggregate_type=AGGREGATE_ORDER,
                aggregate_id=order.id,
                event_type=EVENT_DELETE_CART,
                payload=encode_delete_cart(uid, order.id),
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Checkout {order_number} for user {uid} rolled back: {e}")
            if isinstance(e, AppError):
                raise
            raise CheckoutFailed() from e

        logger.info(f"Checkout {order_number} succeeded for user {uid}, order {order.id}, total {total}")
        return OrderResponse.model_validate(order)

    @staticmethod
    def _line_items(lines: Iterable[CartLine]) -> list:
        # Name and price come from the cart snapshot, never from the live catalog.
        items = []
        for line in lines:
            unit_price = to_money(line.price)
            items.append(
                OrderItem(
                    product_id=line.product_id,
                    name_snapshot=line.product_name,
                    unit_price=unit_price,
                    quantity=line.quantity,
                    total_price=to_money(unit_price * line.quantity),
                )
            )
        return items

    async def _resolve_address(self, user_id: UUID, address_ref: Optional[str]) -> Tuple[Optional[UUID], Optional[dict]]:
        if not address_ref:
            return None, None
        try:
            address_id = UUID(address_ref)
        except ValueError:
            raise InvalidAddressReference()

        stmt = select(Address).where(Address.id == address_id, Address.user_id == user_id)
        address = (await self.session.execute(stmt)).scalar_one_or_none()
        if not address:
            raise InvalidAddressReference("address not found")

        snapshot = {
            "address_id": str(address.id),
            "recipient_name": address.recipient_name,
            "phone": address.phone,
            "street": address.street,
            "city": address.city,
            "province": address.province,
            "postal_code": address.postal_code,
        }
        return address.id, snapshot
