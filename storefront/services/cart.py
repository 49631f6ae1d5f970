import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import InvalidQuantity, ProductNotFound
from storefront.core.models import CartLine, CartSnapshot
from storefront.data.models import CartItem, Product

logger = logging.getLogger(__name__)


class CartService:
    """Cart snapshot provider.

    ``detail`` is read-only and is what checkout consumes. The mutations commit
    on their own; ``clear`` is idempotent so the cart consumer can run it for a
    redelivered event without failing.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def detail(self, user_id: UUID) -> CartSnapshot:
        stmt = (
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at, Product.name)
        )
        result = await self.session.execute(stmt)

        lines = []
        total = Decimal("0.00")
        for cart_item, product in result.all():
            price = Decimal(product.price)
            subtotal = price * cart_item.quantity
            total += subtotal
            lines.append(
                CartLine(
                    product_id=product.id,
                    product_name=product.name,
                    price=price,
                    quantity=cart_item.quantity,
                    subtotal=subtotal,
                )
            )
        return CartSnapshot(user_id=user_id, items=lines, total=total)

    async def add_item(self, user_id: UUID, product_id: UUID, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            raise InvalidQuantity()
        await self._get_product(product_id)

        existing = await self._get_line(user_id, product_id)
        if existing:
            existing.quantity += quantity
        else:
            self.session.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
        await self.session.commit()
        return await self.detail(user_id)

    async def update_item(self, user_id: UUID, product_id: UUID, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            raise InvalidQuantity()
        line = await self._get_line(user_id, product_id)
        if not line:
            raise ProductNotFound("product is not in the cart")
        line.quantity = quantity
        await self.session.commit()
        return await self.detail(user_id)

    async def remove_item(self, user_id: UUID, product_id: UUID) -> CartSnapshot:
        await self.session.execute(
            delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        )
        await self.session.commit()
        return await self.detail(user_id)

    async def clear(self, user_id: UUID) -> None:
        result = await self.session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        await self.session.commit()
        logger.info(f"Cleared cart for user {user_id} ({result.rowcount} lines)")

    async def _get_product(self, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if not product:
            raise ProductNotFound()
        return product

    async def _get_line(self, user_id: UUID, product_id: UUID):
        stmt = select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
