"""
orderflow API application.

Run with:
    uvicorn orderflow.main:create_app --factory
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from orderflow.api import analytics, backups, health, orders, payments
from orderflow.core.config import Settings, settings as default_settings, validate_config
from orderflow.core.database import Database
from orderflow.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from orderflow.core.logging import configure_logging
from orderflow.core.middleware.request_id import RequestIdMiddleware
from orderflow.features.backups.storage import BlobStore, LocalBlobStore
from orderflow.features.notifications.dispatcher import Dispatcher
from orderflow.features.payments.provider import PaymentProvider


def create_app(
    cfg: Optional[Settings] = None,
    *,
    db: Optional[Database] = None,
    dispatcher: Optional[Dispatcher] = None,
    blob_store: Optional[BlobStore] = None,
    payment_provider: Optional[PaymentProvider] = None,
) -> FastAPI:
    """
    Build the app with its process-wide dependencies on app.state.

    Anything not passed in is constructed from settings.
    """
    cfg = cfg or default_settings
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)

    owns_db = db is None
    database = db or Database(cfg.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("orderflow")
        logger.info("Starting orderflow...")
        app.state.startup_time = time.time()
        database.create_all()
        try:
            yield
        finally:
            logger.info("Stopping orderflow...")
            if owns_db:
                database.dispose()

    app = FastAPI(title="orderflow", lifespan=lifespan)
    app.state.settings = cfg
    app.state.db = database
    app.state.dispatcher = dispatcher or Dispatcher.from_settings(cfg, database)
    app.state.blob_store = blob_store or LocalBlobStore(cfg.BACKUP_ROOT)
    app.state.payment_provider = payment_provider

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(orders.router, prefix="/api")
    app.include_router(payments.router, prefix="/api")
    app.include_router(analytics.router, prefix="/api")
    app.include_router(backups.router, prefix="/api")
    app.include_router(health.router)

    return app
