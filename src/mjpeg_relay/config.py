"""
MJPEG Relay Configuration
=========================

This module handles configuration loading for the relay.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    MJPEG_STREAM_URL         -> stream.url (required)
    MJPEG_RELAY_TIMEOUT      -> stream.timeout_seconds
    MJPEG_RELAY_RETRY_DELAY  -> stream.retry_delay_seconds
    MJPEG_RELAY_MAX_BUFFER   -> stream.max_buffer_bytes
    MJPEG_RELAY_MAX_PENDING  -> relay.max_pending_frames
    MJPEG_RELAY_PORT         -> server.port
    MJPEG_RELAY_LOG_LEVEL    -> logging.level
    MJPEG_RELAY_LOG_FORMAT   -> logging.format
    PORT                     -> server.port (takes precedence)

Example:
    from mjpeg_relay.config import load_config, setup_logging

    settings = load_config()
    setup_logging(settings)

    print(settings.stream.url)
    print(settings.server.port)
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a required setting is missing."""
    pass


# =============================================================================
# Configuration Models
# =============================================================================

class StreamConfig(BaseModel):
    """Upstream M-JPEG source configuration."""

    url: Optional[str] = Field(
        default=None,
        description="Base URL of the M-JPEG source (action=stream is appended)",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Connect / read-inactivity timeout",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Fixed delay before reconnecting after a failure",
    )
    max_buffer_bytes: int = Field(
        default=0,
        ge=0,
        description="Cap on unconsumed stream bytes (0 = unbounded)",
    )

    @field_validator("url")
    @classmethod
    def _check_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"stream URL must start with http:// or https://, got {value!r}")
        return value


class RelayConfig(BaseModel):
    """Downstream fan-out configuration."""

    max_pending_frames: int = Field(
        default=8,
        ge=1,
        description="Frames queued per client before the oldest is dropped",
    )


class ServerConfig(BaseModel):
    """Listener configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")

    @field_validator("format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("json", "text"):
            raise ValueError(f"log format must be 'json' or 'text', got {value!r}")
        return value


class Settings(BaseModel):
    """
    Main settings class for the relay.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    stream: StreamConfig = Field(default_factory=StreamConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration

    Raises:
        ConfigurationError: If no stream URL is configured.
        pydantic.ValidationError: If a value is out of range.
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    settings = Settings.model_validate(config_data)

    if not settings.stream.url:
        raise ConfigurationError("The MJPEG_STREAM_URL environment variable is not set.")

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Stream settings
    if env_url := os.environ.get("MJPEG_STREAM_URL"):
        config_data.setdefault("stream", {})["url"] = env_url
    if env_timeout := os.environ.get("MJPEG_RELAY_TIMEOUT"):
        config_data.setdefault("stream", {})["timeout_seconds"] = float(env_timeout)
    if env_delay := os.environ.get("MJPEG_RELAY_RETRY_DELAY"):
        config_data.setdefault("stream", {})["retry_delay_seconds"] = float(env_delay)
    if env_buffer := os.environ.get("MJPEG_RELAY_MAX_BUFFER"):
        config_data.setdefault("stream", {})["max_buffer_bytes"] = int(env_buffer)

    # Relay settings
    if env_pending := os.environ.get("MJPEG_RELAY_MAX_PENDING"):
        config_data.setdefault("relay", {})["max_pending_frames"] = int(env_pending)

    # Server settings (PORT wins, as on most hosting platforms)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("MJPEG_RELAY_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("MJPEG_RELAY_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_format := os.environ.get("MJPEG_RELAY_LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_format


# These log every upstream request at INFO; shown only at DEBUG.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def setup_logging(settings: Settings) -> None:
    """
    Configure logging based on settings.

    The relay logs to the root logger; uvicorn keeps its own handlers.
    Below DEBUG the HTTP client libraries are limited to warnings, so
    reconnect attempts are reported once, by the StreamController.
    """
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logging.getLogger("mjpeg_relay").setLevel(log_level)

    client_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(client_level)
