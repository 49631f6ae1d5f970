import logging
import aio_pika
from storefront.core.config import Settings
from storefront.data.models import OutboxEvent
from storefront.messaging.events import (
    HEADER_AGGREGATE_ID,
    HEADER_AGGREGATE_TYPE,
    HEADER_EVENT_TYPE,
    routing_key,
)

logger = logging.getLogger(__name__)


class OrderEventProducer:
    """Publishes stored outbox events to the ``order.events`` topic exchange.

    The payload goes out byte-for-byte as stored. Event and aggregate type ride
    along as headers so consumers can route without decoding the body.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.connection = None
        self.channel = None
        self.exchange = None

    async def connect(self):
        if not self.exchange:
            try:
                self.connection = await aio_pika.connect_robust(self.settings.RABBITMQ_URL)
                # Publisher confirms: publish() only returns once the broker has the message.
                self.channel = await self.connection.channel(publisher_confirms=True)
                self.exchange = await self.channel.declare_exchange(
                    self.settings.ORDER_EVENTS_EXCHANGE, aio_pika.ExchangeType.TOPIC, durable=True
                )
                logger.info("Connected to RabbitMQ for producing.")
            except Exception as e:
                logger.error(f"Failed to connect to RabbitMQ producer: {e}")
                raise

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
            self.exchange = None

    async def publish(self, event: OutboxEvent):
        if not self.exchange:
            await self.connect()

        message = aio_pika.Message(
            body=bytes(event.payload),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=str(event.id),
            correlation_id=str(event.aggregate_id),
            timestamp=event.created_at,
            headers={
                HEADER_EVENT_TYPE: event.event_type,
                HEADER_AGGREGATE_TYPE: event.aggregate_type,
                HEADER_AGGREGATE_ID: str(event.aggregate_id),
            },
        )

        await self.exchange.publish(message, routing_key=routing_key(event.aggregate_type, event.event_type))
        logger.info(f"Published {event.event_type} event {event.id} for {event.aggregate_type} {event.aggregate_id}")
