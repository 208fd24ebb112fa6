"""
Configuration Tests
===================

YAML + environment loading and the fatal missing-URL path.
"""

import logging

import pytest
from pydantic import ValidationError

from mjpeg_relay.config import (
    ConfigurationError,
    LoggingConfig,
    Settings,
    load_config,
    setup_logging,
)


ENV_VARS = [
    "MJPEG_STREAM_URL",
    "MJPEG_RELAY_TIMEOUT",
    "MJPEG_RELAY_RETRY_DELAY",
    "MJPEG_RELAY_MAX_BUFFER",
    "MJPEG_RELAY_MAX_PENDING",
    "MJPEG_RELAY_PORT",
    "MJPEG_RELAY_LOG_LEVEL",
    "MJPEG_RELAY_LOG_FORMAT",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_with_url_from_env(self, monkeypatch):
        monkeypatch.setenv("MJPEG_STREAM_URL", "http://192.168.1.100")

        settings = load_config()

        assert settings.stream.url == "http://192.168.1.100"
        assert settings.stream.timeout_seconds == 10.0
        assert settings.stream.retry_delay_seconds == 5.0
        assert settings.stream.max_buffer_bytes == 0
        assert settings.relay.max_pending_frames == 8
        assert settings.server.port == 8080

    def test_missing_url_is_fatal(self):
        with pytest.raises(ConfigurationError):
            load_config()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "relay.yaml"
        path.write_text(
            "stream:\n"
            "  url: http://printer.local:8080\n"
            "  retry_delay_seconds: 2\n"
            "server:\n"
            "  port: 9000\n"
        )

        settings = load_config(str(path))

        assert settings.stream.url == "http://printer.local:8080"
        assert settings.stream.retry_delay_seconds == 2.0
        assert settings.server.port == 9000

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("stream:\n  url: http://from-file\nserver:\n  port: 9000\n")
        monkeypatch.setenv("MJPEG_STREAM_URL", "http://from-env")
        monkeypatch.setenv("PORT", "7000")
        monkeypatch.setenv("MJPEG_RELAY_PORT", "7001")

        settings = load_config()

        assert settings.stream.url == "http://from-env"
        assert settings.server.port == 7000

    def test_invalid_scheme_rejected(self, monkeypatch):
        monkeypatch.setenv("MJPEG_STREAM_URL", "rtsp://camera/stream")

        with pytest.raises(ValidationError):
            load_config()

    def test_port_out_of_range_rejected(self, monkeypatch):
        monkeypatch.setenv("MJPEG_STREAM_URL", "http://camera")
        monkeypatch.setenv("PORT", "70000")

        with pytest.raises(ValidationError):
            load_config()

    def test_settings_defaults_without_url(self):
        """Settings itself allows a missing URL; load_config enforces it."""
        assert Settings().stream.url is None

    def test_max_pending_from_env(self, monkeypatch):
        monkeypatch.setenv("MJPEG_STREAM_URL", "http://camera")
        monkeypatch.setenv("MJPEG_RELAY_MAX_PENDING", "2")

        assert load_config().relay.max_pending_frames == 2

    def test_unknown_log_format_rejected(self, monkeypatch):
        monkeypatch.setenv("MJPEG_STREAM_URL", "http://camera")
        monkeypatch.setenv("MJPEG_RELAY_LOG_FORMAT", "xml")

        with pytest.raises(ValidationError):
            load_config()


@pytest.fixture
def restore_log_levels():
    names = ["mjpeg_relay", "httpx", "httpcore"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_http_client_loggers_quiet_at_info(self, restore_log_levels):
        setup_logging(Settings())

        assert logging.getLogger("mjpeg_relay").level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_http_client_loggers_follow_debug(self, restore_log_levels):
        setup_logging(Settings(logging=LoggingConfig(level="debug")))

        assert logging.getLogger("mjpeg_relay").level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_format_is_normalized(self):
        assert LoggingConfig(format=" JSON ").format == "json"
