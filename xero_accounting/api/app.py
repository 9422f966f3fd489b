"""FastAPI service wrapper around the Xero command set."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from xero_accounting.api.middleware import RequestLoggingMiddleware
from xero_accounting.api.routes.cache import router as cache_router
from xero_accounting.api.routes.commands import router as commands_router
from xero_accounting.cache import CacheManager, create_cache_manager
from xero_accounting.config.settings import Settings, settings
from xero_accounting.logging import configure_logging
from xero_accounting.xero.client import XeroClient

logger = structlog.get_logger()


def create_app(
    app_settings: Optional[Settings] = None,
    cache: Optional[CacheManager] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the app. One cache and one XeroClient live for the app's lifetime.

    Args:
        app_settings: Settings (defaults to the environment)
        cache: Pre-built cache (defaults to one built from settings)
        transport: Optional httpx transport for the Xero client (tests)
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_cache = cache or create_cache_manager(app_settings)
        async with XeroClient(app_settings, app_cache, transport=transport) as client:
            app.state.client = client
            logger.info(
                "Xero service started",
                environment=app_settings.environment,
                cache_namespace=app_cache.namespace,
                cache_persistent=app_cache.persistent,
            )
            yield
        logger.info("Xero service stopped")

    app = FastAPI(title="Xero Accounting API", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(commands_router)
    app.include_router(cache_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "cache_enabled": app.state.client.cache.enabled}

    return app


def run() -> None:
    """Serve the API with uvicorn (the xero-api entry point)."""
    configure_logging()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
