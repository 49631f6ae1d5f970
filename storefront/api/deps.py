from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.caching.redis_client import RedisClient, get_redis
from storefront.core.config import Settings, get_settings
from storefront.core.errors import Forbidden, InvalidUserID
from storefront.data.database import get_db
from storefront.services.cart import CartService
from storefront.services.checkout import CheckoutService, parse_user_id
from storefront.services.orders import OrderService

# Token verification happens upstream; by the time a request reaches us the
# gateway has resolved the caller into these headers.


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    if not x_user_id:
        raise InvalidUserID("missing X-User-ID header")
    return parse_user_id(x_user_id)


async def require_admin(x_user_role: str | None = Header(default=None)) -> None:
    if (x_user_role or "").lower() != "admin":
        raise Forbidden()


async def get_cart_service(db: AsyncSession = Depends(get_db)) -> CartService:
    return CartService(db)


async def get_checkout_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CheckoutService:
    return CheckoutService(db, settings)


async def get_order_service(
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
) -> OrderService:
    return OrderService(db, cache=redis)
