"""
FastAPI Application

Main FastAPI application for QueryPilot with:
- Lifespan management (logging, tool registration and policy)
- CORS middleware for frontend integration
- Global exception handlers for connector and agent errors
- Agent, query, schema, chat and health endpoints

Usage:
    uvicorn querypilot.api.main:app --reload --port 8000
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from querypilot.agents.query_agent import describe_provider_error
from querypilot.api.routes import agent, chat, health, query, schema
from querypilot.config import get_settings
from querypilot.connectors.base import ConnectorError
from querypilot.models.errors import AgentError, QueryPilotError
from querypilot.tools import initialize_tools

logger = logging.getLogger(__name__)

# SQLSTATE / driver code -> (HTTP status, user-facing message or None to keep the driver's)
CONNECTOR_ERRORS: dict[str, tuple[int, str | None]] = {
    "ECONNREFUSED": (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Unable to connect to database. Check your connection string "
        "and ensure the database is running.",
    ),
    "28P01": (
        status.HTTP_401_UNAUTHORIZED,
        "Authentication failed. Check your username and password.",
    ),
    "3D000": (status.HTTP_404_NOT_FOUND, "Database does not exist. Check your connection string."),
    "42601": (status.HTTP_400_BAD_REQUEST, "SQL syntax error: {message}"),
    "42P01": (status.HTTP_404_NOT_FOUND, "Table does not exist: {message}"),
    "read_only": (status.HTTP_400_BAD_REQUEST, None),
}


def describe_connector_error(exc: ConnectorError) -> tuple[int, str]:
    """HTTP status and message for a connector failure, keyed by its SQLSTATE."""
    if exc.code in CONNECTOR_ERRORS:
        status_code, template = CONNECTOR_ERRORS[exc.code]
        return status_code, template.format(message=exc.message) if template else exc.message
    if "connection refused" in exc.message.lower():
        status_code, template = CONNECTOR_ERRORS["ECONNREFUSED"]
        return status_code, template or exc.message
    return status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan context manager for startup and shutdown.

    Initializes:
    - Logging (through settings)
    - Built-in agent tools and the tool policy file
    """
    config = get_settings()
    logger.info(f"Starting {config.app_name} API server...")

    try:
        logger.info("Registering agent tools...")
        initialize_tools(config.tools.policy_path)
        logger.info(f"{config.app_name} API server started successfully")

        yield  # Application runs here

    finally:
        logger.info(f"{config.app_name} API server shut down complete")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware, handlers and routers."""
    config = get_settings()
    app = FastAPI(
        title="QueryPilot API",
        description="Natural language to SQL agent for PostgreSQL",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConnectorError)
    async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
        """Handle database errors with a status derived from the SQLSTATE."""
        status_code, message = describe_connector_error(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(f"Database error: {exc}", extra={"sqlstate": exc.code, "path": request.url.path})
        return JSONResponse(
            status_code=status_code,
            content={"error": message, "code": exc.code},
        )

    @app.exception_handler(AgentError)
    async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
        """Handle agent errors with context."""
        logger.error(
            f"Agent error: {exc}",
            extra={"agent": exc.agent, "recoverable": exc.recoverable},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": describe_provider_error(exc), "code": type(exc).__name__},
        )

    @app.exception_handler(QueryPilotError)
    async def querypilot_error_handler(request: Request, exc: QueryPilotError) -> JSONResponse:
        logger.error(f"Unhandled QueryPilot error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc), "code": None},
        )

    # Include routers
    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(agent.router, prefix="/api/v1", tags=["agent"])
    app.include_router(query.router, prefix="/api/v1", tags=["query"])
    app.include_router(schema.router, prefix="/api/v1", tags=["schema"])
    app.include_router(chat.router, prefix="/api/v1", tags=["chat"])

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": "QueryPilot API",
            "version": "0.1.0",
            "description": "Natural language to SQL agent for PostgreSQL",
            "docs": "/docs",
        }

    return app


app = create_app()
