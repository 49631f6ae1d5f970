import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from storefront.api import admin, cart, catalog, routes
from storefront.caching.redis_client import redis_client
from storefront.core.config import get_settings
from storefront.core.errors import AppError
from storefront.data.database import AsyncSessionLocal, engine, Base
from storefront.messaging.consumer import CartEventConsumer
from storefront.messaging.dispatcher import OutboxDispatcher
from storefront.messaging.producer import OrderEventProducer
import logging

settings = get_settings()

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up...")

    # Create DB tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client.connect()

    producer = consumer = dispatcher = None
    tasks = []
    if settings.BACKGROUND_WORKERS_ENABLED:
        # The broker is reached from inside the tasks: the producer connects on
        # first publish and the consumer keeps retrying until RabbitMQ is up.
        producer = OrderEventProducer(settings)
        dispatcher = OutboxDispatcher(AsyncSessionLocal, producer, settings)
        consumer = CartEventConsumer(settings, AsyncSessionLocal)
        tasks.append(asyncio.create_task(dispatcher.run(), name="outbox-dispatcher"))
        tasks.append(asyncio.create_task(consumer.run(), name="cart-consumer"))

    yield

    # Shutdown
    logger.info("Shutting down...")
    if dispatcher:
        dispatcher.stop()
    if consumer:
        await consumer.stop()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    if consumer:
        await consumer.close()
    if producer:
        await producer.close()
    await redis_client.close()
    await engine.dispose()

app = FastAPI(title="Storefront Service", lifespan=lifespan)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Global exception: {exc}")
    return JSONResponse(
        status_code=500,
        content=AppError().to_dict(),
    )

app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(routes.router)
app.include_router(admin.router)

@app.get("/")
async def root():
    return {"message": "Storefront service is running"}
