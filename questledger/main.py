"""
Main application entry point for the Quest Ledger service.

This module builds the FastAPI application, wires the ledger services onto
the application state and manages the database lifecycle.

Usage:
    - Direct: python -m questledger.main
    - ASGI server: uvicorn questledger.main:app
"""

import os
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from questledger.api import (
    main_router, register_module, validation_exception_handler, ledger_exception_handler
)
from questledger.config import Settings, settings as default_settings
from questledger.common.exceptions import LedgerError
from questledger.common.logger import app_logger, configure_logger
from questledger.database.init_db import (
    initialize_database, close_database, create_schema, get_session_factory
)
from questledger.ledger.aggregator import Aggregator
from questledger.ledger.controllers import router as ledger_router
from questledger.ledger.event_store import EventStore
from questledger.ledger.gateway import RewardCreditingGateway
from questledger.ledger.query import ProgressQueryService
from questledger.ledger.service import LedgerService

# Setup module logger
logger = app_logger.getChild("main")

register_module("ledger", ledger_router)


def build_services(
    session_factory: sessionmaker,
    config: Settings,
) -> Tuple[LedgerService, ProgressQueryService]:
    """
    Build the ledger services on one session factory.

    Args:
        session_factory: SQLAlchemy session factory for creating database sessions
        config: Application settings

    Returns:
        Tuple of (ledger service, progress query service)
    """
    event_store = EventStore(session_factory)
    gateway = RewardCreditingGateway(session_factory)
    aggregator = Aggregator(session_factory, event_store=event_store, tz=ZoneInfo(config.LEDGER_TIMEZONE))

    ledger_service = LedgerService(
        session_factory,
        event_store=event_store,
        gateway=gateway,
        aggregator=aggregator,
        write_timeout=config.LEDGER_WRITE_TIMEOUT_SECONDS,
    )
    query_service = ProgressQueryService(
        session_factory,
        aggregator=aggregator,
        event_store=event_store,
        gateway=gateway,
    )
    return ledger_service, query_service


def create_app(
    config: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Application settings; the environment-derived settings when omitted
        session_factory: Pre-built session factory; the database is initialized
            from ``config`` at startup when omitted

    Returns:
        The configured application
    """
    config = config or default_settings

    configure_logger(
        level=config.LOG_LEVEL,
        format_string=config.LOG_FORMAT,
        use_json=config.LOG_JSON,
        log_file=config.LOG_FILE,
    )

    app = FastAPI(
        title=config.PROJECT_NAME,
        description="Progress and reward ledger for learning quests",
        version="0.1.0"
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(LedgerError, ledger_exception_handler)

    app.include_router(main_router, prefix=config.API_V1_STR)

    if session_factory is not None:
        app.state.ledger_service, app.state.query_service = build_services(session_factory, config)

    @app.on_event("startup")
    async def startup_event():
        """Initialize the database and services on application startup."""
        if session_factory is not None:
            return
        try:
            engine = await initialize_database(
                database_url=config.DATABASE_URL,
                echo=config.SQL_ECHO,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                pool_timeout=config.DB_POOL_TIMEOUT
            )

            if config.DB_CREATE_SCHEMA:
                await create_schema(engine)

            app.state.ledger_service, app.state.query_service = build_services(
                get_session_factory(), config
            )
            logger.info("Application startup complete")
        except Exception as e:
            logger.error(f"Failed to initialize application: {str(e)}")
            raise

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup services on application shutdown."""
        if session_factory is not None:
            return
        try:
            await close_database()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.error(f"Error during application shutdown: {str(e)}")
            raise

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"Welcome to {config.PROJECT_NAME} API"}

    logger.info(f"Application initialized with {len(app.routes)} routes")
    return app


app = create_app()

# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    # Get configuration from environment or use defaults
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    reload_enabled = os.environ.get("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")

    uvicorn.run(
        "questledger.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )
