"""
Standalone background workers.

    python -m storefront.workers dispatcher
    python -m storefront.workers consumer

Each runs until SIGINT/SIGTERM, then finishes its current tick or message and
exits.
"""
import argparse
import asyncio
import logging
import signal

from storefront.core.config import get_settings
from storefront.data.database import AsyncSessionLocal, engine
from storefront.messaging.consumer import CartEventConsumer
from storefront.messaging.dispatcher import OutboxDispatcher
from storefront.messaging.producer import OrderEventProducer

logger = logging.getLogger(__name__)


async def run_dispatcher(settings):
    producer = OrderEventProducer(settings)
    dispatcher = OutboxDispatcher(AsyncSessionLocal, producer, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, dispatcher.stop)

    try:
        await dispatcher.run()
    finally:
        await producer.close()
        await engine.dispose()


async def run_consumer(settings):
    consumer = CartEventConsumer(settings, AsyncSessionLocal)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(consumer.stop()))

    try:
        await consumer.run()
    finally:
        await consumer.close()
        await engine.dispose()


WORKERS = {
    "dispatcher": run_dispatcher,
    "consumer": run_consumer,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a storefront background worker.")
    parser.add_argument("worker", choices=sorted(WORKERS))
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info(f"Starting {args.worker} worker...")
    asyncio.run(WORKERS[args.worker](settings))
    logger.info(f"{args.worker} worker stopped")


if __name__ == "__main__":
    main()
