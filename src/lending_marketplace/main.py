"""FastAPI application entry point for the lending marketplace backend.

Lifecycle:
    1. Factory: build the engine, session factory, identity verifier, oracle
       adapter, asset verifier and background task runner, and place them on
       `app.state` so dependencies (and tests) can reach them.
    2. Startup: initialize logging, create tables (dev mode), connect Redis.
    3. Shutdown: cancel background jobs, close Redis and the database.

Run with:
    uvicorn lending_marketplace.main:app --reload --host 0.0.0.0 --port 4000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from lending_marketplace.config import Settings, get_settings
from lending_marketplace.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from lending_marketplace.domain.identity import IdentityVerifier
    from lending_marketplace.domain.oracle_protocol import OracleAdapter
    from lending_marketplace.domain.verifier_protocol import VerifierStrategy


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings: Settings = app.state.settings

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
        environment=settings.app_env,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from lending_marketplace.infrastructure.database.engine import close_db, init_db

    if app.state.engine is not None:
        await init_db(app.state.engine, create_tables=settings.is_development)
    else:
        logger.warning("app.database_not_configured")

    # 3. Initialize Redis
    from lending_marketplace.infrastructure.redis_client import close_redis, init_redis

    app.state.redis = await init_redis(settings)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.task_runner.shutdown()
    await close_redis(app.state.redis)
    app.state.redis = None
    if app.state.engine is not None:
        await close_db(app.state.engine)
    logger.info("app.stopped")


def create_app(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    identity_verifier: IdentityVerifier | None = None,
    oracle: OracleAdapter | None = None,
    verifier: VerifierStrategy | None = None,
) -> FastAPI:
    """Application factory — creates and configures the FastAPI app.

    Any capability passed in replaces the one built from settings.
    """
    from lending_marketplace.infrastructure.database.engine import (
        build_engine,
        build_session_factory,
    )
    from lending_marketplace.infrastructure.identity import JwtIdentityVerifier
    from lending_marketplace.infrastructure.oracle import MockOracleAdapter
    from lending_marketplace.services.background import BackgroundTaskRunner
    from lending_marketplace.verifiers import AssetRuleVerifier

    settings = settings or get_settings()

    app = FastAPI(
        title="Lending Marketplace",
        description=(
            "SME lending marketplace: milestone escrow, asset tokenization, "
            "loan review and funding."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Capabilities ---
    if engine is None and settings.database_url:
        engine = build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine) if engine is not None else None
    app.state.redis = None
    app.state.identity_verifier = identity_verifier or JwtIdentityVerifier(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        audience=settings.jwt_audience,
    )
    app.state.oracle = oracle or MockOracleAdapter(settings.oracle_latency_seconds)
    app.state.verifier = verifier or AssetRuleVerifier(settings.oracle_latency_seconds)
    app.state.task_runner = BackgroundTaskRunner(
        timeout_seconds=settings.background_task_timeout_seconds,
        max_attempts=settings.background_max_attempts,
        retry_wait_seconds=settings.background_retry_wait_seconds,
    )

    # --- Middleware ---
    from lending_marketplace.api.middleware import setup_middleware

    setup_middleware(app, expose_tracebacks=not settings.is_production)

    # --- REST API Routes ---
    from lending_marketplace.api.routes.assets import router as assets_router
    from lending_marketplace.api.routes.escrow import router as escrow_router
    from lending_marketplace.api.routes.health import router as health_router
    from lending_marketplace.api.routes.lender import router as lender_router
    from lending_marketplace.api.routes.loans import router as loans_router
    from lending_marketplace.api.routes.milestones import router as milestones_router
    from lending_marketplace.api.routes.verification import router as verification_router

    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(milestones_router)
    app.include_router(assets_router)
    app.include_router(loans_router)
    app.include_router(lender_router)
    app.include_router(verification_router)

    return app


# The app instance used by Uvicorn
app = create_app()
