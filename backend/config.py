"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Storyboard
canvas backend. All settings can be overridden via environment variables or a
.env file.
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
        text_model: LiteLLM model id for title/description/tweets generation
            and chat refinement.
        vision_model: LiteLLM model id that turns uploaded frames into a
            thumbnail concept.
        image_model: LiteLLM model id used to render thumbnail images.
        use_mock_generation: If True, use the deterministic in-process
            generation service instead of calling any provider.
        llm_request_timeout_seconds: Timeout for a single provider call.
        llm_max_retries: Retries on transient provider failures.
        autosave_debounce_seconds: Quiet period before a canvas snapshot write.
        viewport_debounce_seconds: Quiet period before a viewport-only write.
        transcription_poll_interval_seconds: Period of the video transcription
            status poll loop.
        chat_context_window_seconds: How far back a thumbnail "regenerate"
            chat request is still used as upload context.
        database_path: SQLite file holding records and canvas snapshots.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Generation backends (provider prefix required by LiteLLM)
    text_model: str = "gemini/gemini-2.0-flash"
    vision_model: str = "gemini/gemini-2.0-flash"
    image_model: str = "openai/gpt-image-1"
    use_mock_generation: bool = False
    llm_request_timeout_seconds: int = 120
    llm_max_retries: int = 2

    # Canvas synchronization
    autosave_debounce_seconds: float = 2.0
    viewport_debounce_seconds: float = 1.0
    transcription_poll_interval_seconds: float = 3.0
    chat_context_window_seconds: float = 60.0

    # Database Configuration
    database_path: str = "./data/canvas.db"

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:5173"]'
        - Comma-separated: 'http://localhost:5173,http://localhost:3000'
        - Single value: 'http://localhost:5173'
        - Already a list: ["http://localhost:5173"]
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
        return ["http://localhost:5173"]

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

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

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
