import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from loguru import logger

from app import settings
from app.availability import AvailabilityChecker
from app.checkout import OrderCheckoutTransaction
from app.clock import Clock
from app.db import Database
from app.job_lock import RedisJobLock, redis_from_url
from app.notifications import NotificationsClient
from app.repository import Repository
from app.routers.booking import router as booking_router
from app.routers.orders import router as orders_router
from app.state_machine import BookingStateMachine
from app.sweeper import ExpirationSweeper


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = Database(settings.db_url)
    if settings.CREATE_SCHEMA:
        await database.create_all()

    repository = Repository(database)
    clock = Clock(settings.BUSINESS_TIMEZONE)
    notifier = NotificationsClient(settings.notifications_ms_url)
    redis = redis_from_url(settings.REDIS_URL)

    availability = AvailabilityChecker(
        repository, clock, default_max_daily=settings.DEFAULT_MAX_DAILY_BOOKINGS
    )
    state_machine = BookingStateMachine(
        repository,
        availability,
        notifier,
        clock,
        pending_ttl=timedelta(hours=settings.BOOKING_PENDING_TTL_HOURS),
    )
    sweeper = ExpirationSweeper(
        repository,
        state_machine,
        notifier,
        clock,
        batch_limit=settings.SWEEP_BATCH_LIMIT,
        job_lock=RedisJobLock(redis, ttl_seconds=settings.SWEEP_LOCK_TTL_SECONDS),
    )
    checkout = OrderCheckoutTransaction(
        repository,
        notifier,
        platform_fee=settings.PRODUCT_ORDER_PLATFORM_FEE,
        tolerance=settings.TOTAL_TOLERANCE,
        timeout=settings.CHECKOUT_TIMEOUT_SECONDS,
        max_attempts=settings.CHECKOUT_MAX_ATTEMPTS,
    )

    app.state.availability = availability
    app.state.state_machine = state_machine
    app.state.sweeper = sweeper
    app.state.checkout = checkout

    stop_event = asyncio.Event()
    sweep_task = asyncio.create_task(
        sweeper.run_forever(stop_event, interval=settings.SWEEP_INTERVAL_SECONDS)
    )
    logger.info("marketplace-core started")
    try:
        yield
    finally:
        stop_event.set()
        await sweep_task
        await notifier.aclose()
        await redis.aclose()
        await database.dispose()
        logger.info("marketplace-core stopped")


app = FastAPI(title="Marketplace Core", lifespan=lifespan)
app.include_router(booking_router)
app.include_router(orders_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
