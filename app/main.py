"""
Tollgate — bot classification and paywall access control.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.admin import router as admin_router
from app.api.paywall import mount_paywall
from app.config import get_settings
from app.core.gate import build_gate
from app.middleware.bot_gate import BotGateMiddleware
from app.middleware.security import SecurityHeadersMiddleware

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.audit_sql_enabled:
        from app.models.database import create_tables

        await create_tables()
    logger.info("tollgate_starting",
                policy_enabled=app.state.gate.policy.enabled,
                threshold=app.state.gate.policy.confidence_threshold,
                audit_sql=settings.audit_sql_enabled)
    yield
    await app.state.gate.emitter.drain()
    logger.info("tollgate_shutting_down")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Tollgate",
        description="Bot classification and paywall access control.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.gate = build_gate(settings)

    # Last added runs first: security headers wrap the gate's responses too
    app.add_middleware(BotGateMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    mount_paywall(app, app.state.gate.policy.paywall_path)
    app.include_router(admin_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "tollgate", "version": "0.1.0"}

    return app


app = create_app()
