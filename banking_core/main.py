"""
Banking Core: FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from banking_core.config import get_settings
from banking_core.logging_config import setup_logging
from banking_core.jobs import create_scheduler
from banking_core.api.health import router as health_router
from banking_core.api.accounts import router as accounts_router
from banking_core.api.transfers import router as transfers_router
from banking_core.api.transactions import router as transactions_router
from banking_core.api.admin import router as admin_router

settings = get_settings()
setup_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Expiry sweep scheduled")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Money-movement core: balances, transfers and verification",
    lifespan=lifespan,
)

# Register routers
app.include_router(health_router)
app.include_router(accounts_router)
app.include_router(transfers_router)
app.include_router(transactions_router)
app.include_router(admin_router)
