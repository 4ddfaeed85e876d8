"""
Maestro - FastAPI Application
=============================

Main application factory with all routers and middleware.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from maestro.api import branches, executions, promptsets, repositories, revisions
from maestro.core.config import settings
from maestro.core.database import AsyncSessionLocal, close_db, init_db
from maestro.core.execution import Orchestrator
from maestro.core.execution.errors import (
    ExecutionConflictError,
    GitCommandError,
    OrchestratorError,
    RecordNotFoundError,
    UnsupportedProviderError,
    ValidationPreconditionError,
)
from maestro.core.schemas import ErrorResponse, HealthResponse
from maestro.core.store import Store

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Orchestrator errors that are the caller's fault, by HTTP status
ERROR_STATUS = {
    RecordNotFoundError: (status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    ExecutionConflictError: (status.HTTP_409_CONFLICT, "CONFLICT"),
    ValidationPreconditionError: (status.HTTP_400_BAD_REQUEST, "PRECONDITION_FAILED"),
    UnsupportedProviderError: (status.HTTP_400_BAD_REQUEST, "UNSUPPORTED_PROVIDER"),
    GitCommandError: (status.HTTP_502_BAD_GATEWAY, "GIT_ERROR"),
}


# ==========================================================================
# Lifespan
# ==========================================================================

def build_lifespan(orchestrator: Optional[Orchestrator] = None, create_tables: bool = True):
    """
    Lifespan handler factory.

    Startup:
    - Initialize database
    - Build the orchestrator and reconcile work interrupted by a restart

    Shutdown:
    - Cancel background tasks
    - Close database connections
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Maestro", version=settings.APP_VERSION)

        if create_tables:
            await init_db()
            logger.info("Database initialized")

        app.state.orchestrator = orchestrator or Orchestrator.build(Store(AsyncSessionLocal), settings)
        await app.state.orchestrator.startup()
        logger.info("Orchestrator ready", clone_root=str(settings.clone_root))

        yield

        logger.info("Shutting down Maestro")
        await app.state.orchestrator.shutdown()
        if create_tables:
            await close_db()
            logger.info("Database connections closed")

    return lifespan


# ==========================================================================
# App Factory
# ==========================================================================

def create_app(orchestrator: Optional[Orchestrator] = None, create_tables: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Prebuilt orchestrator (tests); built from settings when omitted
        create_tables: Create tables on startup and dispose the engine on shutdown

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Maestro - prompt execution orchestrator",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=build_lifespan(orchestrator, create_tables),
    )
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(OrchestratorError)
    async def orchestrator_exception_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
        """Map orchestrator errors to client errors."""
        for error_cls, (status_code, code) in ERROR_STATUS.items():
            if isinstance(exc, error_cls):
                break
        else:
            status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, "ORCHESTRATOR_ERROR"

        logger.warning(
            "Orchestrator error",
            path=request.url.path,
            method=request.method,
            code=code,
            error=str(exc),
        )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=type(exc).__name__,
                detail=str(exc),
                code=code,
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=detail,
                code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """
        Check application health.

        Returns status of:
        - Application
        - Database connection
        """
        database = "connected"
        try:
            store: Store = request.app.state.orchestrator.store
            await store.ping()
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
            max_concurrent_executions=settings.MAX_CONCURRENT_EXECUTIONS,
        )

    app.include_router(repositories.router, prefix=settings.API_V1_PREFIX)
    app.include_router(promptsets.router, prefix=settings.API_V1_PREFIX)
    app.include_router(revisions.router, prefix=settings.API_V1_PREFIX)
    app.include_router(executions.router, prefix=settings.API_V1_PREFIX)
    app.include_router(branches.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "maestro.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
