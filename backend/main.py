"""FastAPI application entry point for the Sleuth backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.catalog import build_default_agents, build_onchain_kit_agent
from agents.data_sources import DataSources
from agents.tools import ToolExecutor
from agents.utils import LLMClient
from api.routes import router, set_supervisor
from config import settings
from events import get_event_bus
from metrics import MetricsCollector
from supervisor.aggregator import Aggregator
from supervisor.identity import (
    HttpIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
)
from supervisor.planner import Planner
from supervisor.supervisor import Supervisor, create_supervisor

logger = structlog.get_logger(__name__)


def build_identity_provider() -> IdentityProvider | None:
    """Remote verification when configured, else the static token table."""
    if settings.auth_verify_url:
        return HttpIdentityProvider(
            settings.auth_verify_url, timeout=settings.http_timeout_seconds
        )
    if settings.auth_static_tokens:
        return StaticIdentityProvider(settings.auth_static_tokens)
    return None


def build_supervisor(
    data_sources: DataSources,
    identity_provider: IdentityProvider | None,
) -> Supervisor:
    """Wire the agents, LLM client and pipeline stages together."""
    event_bus = get_event_bus()
    metrics_collector = MetricsCollector()

    llm_client = LLMClient(event_bus=event_bus, metrics_collector=metrics_collector)
    tool_executor = ToolExecutor(
        data_sources,
        event_bus=event_bus,
        metrics_collector=metrics_collector,
    )

    return create_supervisor(
        build_default_agents(llm_client, tool_executor),
        planner=Planner(llm_client),
        aggregator=Aggregator(llm_client, metrics_collector=metrics_collector),
        identity_provider=identity_provider,
        request_agent_factories=[
            lambda identity: build_onchain_kit_agent(identity, llm_client),
        ],
        event_bus=event_bus,
        metrics_collector=metrics_collector,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the Supervisor and its HTTP clients on startup and closes the
    clients on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        planner_model=settings.planner_model,
        agent_model=settings.agent_model,
    )

    # LiteLLM reads provider keys from the process environment.
    if settings.openai_api_key:
        os.environ.setdefault("OPENAI_API_KEY", settings.openai_api_key)
    if not settings.dune_api_key:
        logger.warning("dune_api_key_missing")

    data_sources = DataSources.from_settings()
    identity_provider = build_identity_provider()
    supervisor = build_supervisor(data_sources, identity_provider)

    set_supervisor(supervisor)
    app.state.supervisor = supervisor
    app.state.data_sources = data_sources

    logger.info(
        "application_started",
        agents=supervisor.registry.names,
        identity_provider=type(identity_provider).__name__ if identity_provider else None,
    )

    yield

    logger.info("application_shutting_down")

    set_supervisor(None)
    await data_sources.aclose()
    if isinstance(identity_provider, HttpIdentityProvider):
        await identity_provider.aclose()

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Sleuth",
    description="Blockchain forensics assistant: a supervisor plans, runs and "
    "merges specialized on-chain analysis agents for each question.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["query"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that redirects to API documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "Sleuth API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
