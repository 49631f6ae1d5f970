import asyncio
import logging
from typing import Awaitable, Callable, Dict

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings
from storefront.messaging.events import EVENT_DELETE_CART, HEADER_EVENT_TYPE, DeleteCartPayload
from storefront.services.cart import CartService

logger = logging.getLogger(__name__)


class CartEventConsumer:
    """Consumes order events from the shared ``cart-consumer-group`` queue.

    Instances bound to the same queue split the work between them. A message is
    acked only after its handler succeeds; anything else is nacked and comes
    back later, so handlers must be idempotent.
    """

    def __init__(self, settings: Settings, session_factory: async_sessionmaker[AsyncSession]):
        self.settings = settings
        self.session_factory = session_factory
        self.connection = None
        self.channel = None
        self.queue = None
        self._stopping = asyncio.Event()
        self._iterator = None
        self.handlers: Dict[str, Callable[[bytes], Awaitable[None]]] = {
            EVENT_DELETE_CART: self.handle_delete_cart,
        }

    async def connect(self):
        try:
            self.connection = await aio_pika.connect_robust(self.settings.RABBITMQ_URL)
            self.channel = await self.connection.channel()
            await self.channel.set_qos(prefetch_count=self.settings.CONSUMER_PREFETCH)
            exchange = await self.channel.declare_exchange(
                self.settings.ORDER_EVENTS_EXCHANGE, aio_pika.ExchangeType.TOPIC, durable=True
            )
            self.queue = await self.channel.declare_queue(self.settings.CART_CONSUMER_QUEUE, durable=True)
            await self.queue.bind(exchange, routing_key="order.#")
            logger.info(f"Listening for order events on queue {self.settings.CART_CONSUMER_QUEUE}...")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ consumer: {e}")
            raise

    async def run(self):
        while not self.queue:
            try:
                await self.connect()
            except Exception:
                if await self._stopped_within(self.settings.BROKER_RECONNECT_DELAY_SECONDS):
                    logger.info("Cart event consumer stopped before connecting")
                    return

        if not self._stopping.is_set():
            async with self.queue.iterator() as queue_iter:
                self._iterator = queue_iter
                async for message in queue_iter:
                    await self.process_message(message)
                    if self._stopping.is_set():
                        break
            self._iterator = None
        logger.info("Cart event consumer stopped")

    async def stop(self):
        # Ends the iteration after the in-flight message has been settled.
        self._stopping.set()
        if self._iterator:
            await self._iterator.close()

    async def _stopped_within(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
            self.queue = None

    async def process_message(self, message: AbstractIncomingMessage):
        headers = message.headers or {}
        event_type = headers.get(HEADER_EVENT_TYPE)
        if isinstance(event_type, bytes):
            event_type = event_type.decode()

        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Skipping message {message.message_id} with unknown event type {event_type!r}")
            await self._settle(message, message.ack())
            return

        try:
            await handler(message.body)
        except ValidationError as e:
            # Redelivering a body that can never parse would loop forever.
            logger.error(f"Rejecting malformed {event_type} message {message.message_id}: {e}")
            await self._settle(message, message.reject(requeue=False))
            return
        except Exception as e:
            logger.error(f"Error handling {event_type} message {message.message_id}: {e}")
            await asyncio.sleep(self.settings.CONSUMER_RETRY_DELAY_SECONDS)
            await self._settle(message, message.nack(requeue=True))
            return

        await self._settle(message, message.ack())

    async def _settle(self, message, outcome):
        # A lost ack only means the broker redelivers; it must not end the loop.
        try:
            await outcome
        except Exception as e:
            logger.error(f"Failed to settle message {message.message_id}: {e}")

    async def handle_delete_cart(self, body: bytes):
        payload = DeleteCartPayload.model_validate_json(body)
        logger.info(f"Deleting cart for user {payload.user_id} (order {payload.order_id})")
        async with self.session_factory() as session:
            await CartService(session).clear(payload.user_id)
