"""
Taskflow API Server

Entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskflow.api.v1 import router as api_v1_router
from taskflow.core.config import get_settings
from taskflow.core.database import init_db
from taskflow.core.errors import install_error_handlers
from taskflow.core.logging import configure_logging
from taskflow.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware

settings = get_settings()
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    log.info("taskflow.starting", debug=settings.debug)
    await init_db()
    yield
    log.info("taskflow.stopping")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Taskflow",
        description="Task assignment, acceptance and approval workflow.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (order matters: last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Actor-Id", "X-Request-Id"],
    )

    install_error_handlers(app)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("taskflow.main:app", host=settings.host, port=settings.port)
