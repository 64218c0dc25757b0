"""FastAPI application entry point for riskgate."""

import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from riskgate.api.dependencies import (
    build_in_memory_services,
    build_sql_services,
    build_velocity_store,
)
from riskgate.api.middleware.error_handler import (
    domain_exception_handler,
    global_exception_handler,
)
from riskgate.api.middleware.logging import StructuredLoggingMiddleware
from riskgate.api.routes.fraud import router as fraud_router
from riskgate.api.routes.health import router as health_router
from riskgate.api.routes.refunds import router as refunds_router
from riskgate.api.routes.transactions import router as transactions_router
from riskgate.config import settings
from riskgate.domains.fraud.config import FraudConfig
from riskgate.shared.errors import RiskGateError
from riskgate.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level, json_output=settings.log_json)

    logger.info(
        "riskgate_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        storage_backend=settings.storage_backend,
        velocity_backend=settings.velocity_backend,
    )

    if settings.storage_backend not in ("postgres", "memory"):
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
    fraud_config = FraudConfig.from_env()

    producer = None
    if settings.kafka_enabled:
        try:
            from riskgate.shared.kafka_utils import create_producer

            producer = await create_producer(settings.kafka_bootstrap_servers)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)

    redis_client = None
    if settings.velocity_backend == "redis":
        redis_client = aioredis.from_url(settings.redis_url)

    session_factory = None
    uses_database = "postgres" in (settings.storage_backend, settings.velocity_backend)
    if uses_database:
        from riskgate.db.database import async_session_factory, init_db

        await init_db()
        session_factory = async_session_factory

    velocity_store = build_velocity_store(
        settings.velocity_backend, session_factory=session_factory, redis_client=redis_client
    )
    if settings.storage_backend == "memory":
        app.state.services = build_in_memory_services(
            fraud_config, velocity_store=velocity_store, producer=producer
        )
    else:
        app.state.services = build_sql_services(
            fraud_config, session_factory, velocity_store, producer=producer
        )

    yield

    if producer is not None:
        with contextlib.suppress(Exception):
            await producer.stop()
    if redis_client is not None:
        await redis_client.aclose()
    if uses_database:
        from riskgate.db.database import dispose_db

        await dispose_db()
    logger.info("riskgate_shutting_down")


app = FastAPI(
    title="riskgate",
    description="Real-time fraud risk decisions and payment ledger",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Exception handlers
app.add_exception_handler(RiskGateError, domain_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(fraud_router)
app.include_router(transactions_router)
app.include_router(refunds_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
