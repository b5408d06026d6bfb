"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Sleuth
backend. All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        openai_api_key: API key picked up by LiteLLM for OpenAI models.
        planner_model: Model used by the Planner to build execution plans.
        aggregator_model: Model used to synthesize the final answer.
        agent_model: Model used inside the domain analysis agents.
        planner_temperature: Sampling temperature for plan generation.
        aggregator_temperature: Sampling temperature for synthesis.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        llm_max_retries: Retries on transient LLM errors before falling back.
        llm_fallback_model: Model tried once when the primary exhausts retries.
        agent_step_timeout_seconds: Timeout applied by the Executor to every
            plan step.
        max_agent_iterations: Maximum reason/act rounds inside one agent.
        dune_api_key: API key for Dune Analytics.
        dune_api_base: Base URL of the Dune REST API.
        dune_poll_interval_seconds: Delay between execution status polls.
        dune_max_polls: Maximum number of status polls per query execution.
        dune_cache_ttl_seconds: How long completed Dune results are reused for
            the same query and parameters. 0 disables the cache.
        dexscreener_api_base: Base URL of the DexScreener API.
        ens_api_base: Base URL of the ENS resolution API.
        http_timeout_seconds: Timeout for outbound data-source requests.
        auth_verify_url: Endpoint of the external auth service used to verify
            bearer tokens. Empty disables remote verification.
        auth_static_tokens: JSON object mapping tokens to user ids (development).
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    openai_api_key: str = ""
    # Model names must include provider prefix for LiteLLM where needed
    planner_model: str = "gpt-4o"
    aggregator_model: str = "gpt-4o"
    agent_model: str = "gpt-4o-mini"
    planner_temperature: float = 0.0
    aggregator_temperature: float = 0.0
    llm_request_timeout_seconds: int = 60

    # LLM Fallback & Degradation
    llm_fallback_model: str | None = None
    llm_max_retries: int = 2

    # Orchestration Limits
    agent_step_timeout_seconds: float = 120.0
    max_agent_iterations: int = 6

    # Data Sources
    dune_api_key: str = ""
    dune_api_base: str = "https://api.dune.com/api/v1"
    dune_poll_interval_seconds: float = 2.0
    dune_max_polls: int = 60
    dune_cache_ttl_seconds: float = 5 * 24 * 3600
    dexscreener_api_base: str = "https://api.dexscreener.com"
    ens_api_base: str = "https://api.ensideas.com"
    http_timeout_seconds: float = 30.0

    # Identity
    auth_verify_url: str = ""
    auth_static_tokens: dict[str, str] = {}

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

configure_logging(settings.log_level, settings.log_format)
