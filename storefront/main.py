"""Storefront API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.checkout import router as checkout_router
from storefront.api.errors import setup_exception_handlers
from storefront.api.health import router as health_router
from storefront.api.middleware import setup_middleware
from storefront.api.orders import router as orders_router
from storefront.api.webhooks import router as webhooks_router
from storefront.dependencies import get_container, reset_container
from storefront.infrastructure.config import settings
from storefront.infrastructure.logging import configure_logging
from storefront.infrastructure.seed import seed_catalog
from storefront.infrastructure.sql_store import SqlAlchemyStore

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    configure_logging()
    logger.info(
        "Starting storefront API",
        version=settings.api_version,
        debug=settings.debug,
    )

    container = get_container()
    store = container.store
    if isinstance(store, SqlAlchemyStore):
        await store.create_tables()
        if settings.seed_demo_catalog and await store.count_products() == 0:
            await seed_catalog(store, container.config.currency)
    elif settings.seed_demo_catalog:
        await seed_catalog(store, container.config.currency)

    yield

    logger.info("Shutting down storefront API")
    await container.close()
    reset_container()


app = FastAPI(
    title="Storefront API",
    description="Checkout, payment and order orchestration for the storefront",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID, API key auth, error handling
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)


def run() -> None:
    """Run the API with uvicorn."""
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
