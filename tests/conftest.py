import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BACKGROUND_WORKERS_ENABLED", "false")

import uuid
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.caching.redis_client import RedisClient
from storefront.core.config import Settings
from storefront.data.database import Base
from storefront.data.models import Address, CartItem, Product


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        SHIPPING_PRICE=Decimal("0"),
        OUTBOX_POLL_INTERVAL_SECONDS=0.01,
        OUTBOX_BATCH_SIZE=10,
        OUTBOX_MAX_ATTEMPTS=3,
        CONSUMER_RETRY_DELAY_SECONDS=0,
        API_RATE_LIMIT_ENABLED=True,
        API_RATE_LIMIT_REQUESTS=5,
        BACKGROUND_WORKERS_ENABLED=False,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def product(session_factory) -> Product:
    async with session_factory() as s:
        product = Product(name="Mechanical Keyboard", price=Decimal("5000.00"), stock=20)
        s.add(product)
        await s.commit()
        return product


@pytest.fixture
def add_to_cart(session_factory):
    async def _add(user_id, product, quantity):
        async with session_factory() as s:
            s.add(CartItem(user_id=user_id, product_id=product.id, quantity=quantity))
            await s.commit()

    return _add


@pytest.fixture
def make_address(session_factory):
    async def _make(user_id, **overrides):
        fields = {
            "user_id": user_id,
            "recipient_name": "Rina Kusuma",
            "phone": "+62811000111",
            "street": "Jl. Merdeka 10",
            "city": "Bandung",
            "province": "Jawa Barat",
            "postal_code": "40111",
        }
        fields.update(overrides)
        async with session_factory() as s:
            address = Address(**fields)
            s.add(address)
            await s.commit()
            return address

    return _make


class FakeRedisBackend:
    """The handful of redis commands the service uses, kept in a dict."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.data.pop(key, None) is not None
        return removed

    async def incr(self, key):
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key, seconds):
        self.expiry[key] = seconds
        return True

    async def aclose(self):
        pass


@pytest.fixture
def redis_client(settings) -> RedisClient:
    client = RedisClient(settings)
    client.redis = FakeRedisBackend()
    return client


class FakePublisher:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.published = []

    async def publish(self, event):
        if event.id in self.fail_for:
            raise ConnectionError("broker unavailable")
        self.published.append(event)


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


class FakeMessage:
    def __init__(self, body: bytes, headers=None, message_id=None):
        self.body = body
        self.headers = headers or {}
        self.message_id = message_id or str(uuid.uuid4())
        self.acked = False
        self.nacked = False
        self.rejected = False
        self.requeue = None

    async def ack(self):
        self.acked = True

    async def nack(self, requeue=True):
        self.nacked = True
        self.requeue = requeue

    async def reject(self, requeue=False):
        self.rejected = True
        self.requeue = requeue


@pytest.fixture
def make_message():
    return FakeMessage
