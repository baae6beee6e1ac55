"""
Canteen ticketing backend - application entry point
HTTP API over the balance and meal-scheduling engine

Main modules:
- meal booking, cancellation and self-service redemption
- counter deposits
- counter verification
- ledger history and admin balance adjustments
- accounts and the ledger consistency audit

Stack: FastAPI + DuckDB + JWT bearer tokens
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config.settings import Settings, settings as default_settings
from .core.database import DatabaseManager, db_manager
from .core.error_handler import (
    application_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import BaseApplicationError
from .services.consistency_service import ConsistencyService
from .services.expiry_service import ExpiryService
from .services.ledger_service import LedgerService
from .services.meal_service import MealService
from .services.payment_service import PaymentService
from .services.redemption_service import RedemptionService
from .services.user_service import UserService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def run_expiry_sweep(expiry: ExpiryService, interval_seconds: int):
    """Periodically persist expired meals until cancelled"""
    while True:
        try:
            await asyncio.to_thread(expiry.expire_overdue_meals)
        except BaseApplicationError as e:
            logger.error("Expiry sweep failed: %s", e.message)
        except Exception:
            logger.exception("Expiry sweep failed unexpectedly")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    app.state.db.init_database()
    logger.info("Database ready at %s", app.state.db.db_path)

    sweep_task = None
    interval = app.state.settings.expiry_sweep_interval_seconds
    if interval > 0:
        sweep_task = asyncio.create_task(run_expiry_sweep(app.state.expiry_service, interval))

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task


def create_app(settings: Optional[Settings] = None, db: Optional[DatabaseManager] = None,
               clock: Optional[Callable[[], datetime]] = None) -> FastAPI:
    """Create the FastAPI application"""
    settings = settings or default_settings
    db = db or db_manager
    clock = clock or datetime.now
    policy = settings.meal_policy

    configure_logging(settings)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Canteen meal ticketing API",
        debug=settings.debug,
        lifespan=lifespan
    )

    ledger = LedgerService(db, clock)
    app.state.settings = settings
    app.state.db = db
    app.state.ledger_service = ledger
    app.state.user_service = UserService(db, clock)
    app.state.meal_service = MealService(db, policy, clock, ledger)
    app.state.redemption_service = RedemptionService(db, policy, clock, ledger)
    app.state.payment_service = PaymentService(db, clock, ledger)
    app.state.expiry_service = ExpiryService(db, policy, clock)
    app.state.consistency_service = ConsistencyService(db, clock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health_check():
        try:
            db.execute_one("SELECT 1")
            return {
                "status": "healthy",
                "version": settings.api_version,
                "database": "connected"
            }
        except BaseApplicationError as e:
            return {
                "status": "unhealthy",
                "version": settings.api_version,
                "database": f"error: {e.message}"
            }

    @app.get("/")
    def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "description": "Canteen meal ticketing API"
        }

    return app


# Application instance
app = create_app()
