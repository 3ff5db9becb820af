"""
Bridge Configuration.
Loads environment variables and sets up logging for the bridge process.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import List, Optional

DEFAULT_API_URL = "https://api.green-api.com"
DEFAULT_LOG_FILE = "green_api_debug.log"

ENV_PREFIX = "GREEN_BRIDGE_"


@dataclass
class BridgeConfig:
    # Provider credentials
    api_url: str = DEFAULT_API_URL
    id_instance: Optional[str] = None
    api_token_instance: Optional[str] = None

    # Rate limiting (shared by every provider call)
    rate_limit_max_requests: int = 8
    rate_limit_window_ms: int = 60_000

    # Retry policy for on-demand commands
    max_retries: int = 3
    backoff_schedule_ms: List[int] = field(default_factory=lambda: [2000, 4000, 6000])

    # Polling cadences
    notification_interval_ms: int = 500
    notification_rate_limited_interval_ms: int = 5000
    notification_server_error_interval_ms: int = 10_000
    state_check_interval_ms: int = 30_000
    qr_interval_ms: int = 3000
    qr_redisplay_window_ms: int = 5000
    qr_max_failed_attempts: int = 10
    qr_reboot_pause_ms: int = 10_000

    # Timeouts
    request_timeout_sec: int = 30
    groups_timeout_sec: int = 30
    qr_fetch_timeout_sec: int = 30
    logout_timeout_sec: int = 10
    groups_initial_delay_ms: int = 2000

    # Chat history / media
    history_count: int = 100
    media_max_bytes: int = 50 * 1024 * 1024

    # Global
    debug: bool = False
    console: bool = False
    log_file: Optional[str] = DEFAULT_LOG_FILE
    qr_fallback_dir: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.id_instance and self.api_token_instance)

    def __repr__(self):
        """Redact token/secret fields in logs and debug output."""
        d = self.__dict__.copy()
        for k in d:
            if "token" in k or "secret" in k:
                if d[k]:
                    d[k] = "***REDACTED***"
        fields = ", ".join(f"{k}={v!r}" for k, v in d.items())
        return f"{self.__class__.__name__}({fields})"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_int(cfg: BridgeConfig, attr: str, name: str):
    if raw := _env(name):
        if raw.strip().isdigit():
            setattr(cfg, attr, int(raw.strip()))


def load_config() -> BridgeConfig:
    """Load configuration from environment variables."""
    cfg = BridgeConfig()

    cfg.api_url = (_env("API_URL", DEFAULT_API_URL) or DEFAULT_API_URL).rstrip("/")
    cfg.id_instance = _env("ID_INSTANCE")
    cfg.api_token_instance = _env("API_TOKEN_INSTANCE")
    cfg.debug = _env("DEBUG", "0") == "1"

    # Rate limiting
    _env_int(cfg, "rate_limit_max_requests", "RATE_LIMIT_MAX_REQUESTS")
    _env_int(cfg, "rate_limit_window_ms", "RATE_LIMIT_WINDOW_MS")

    # Retry
    _env_int(cfg, "max_retries", "MAX_RETRIES")
    if schedule := _env("BACKOFF_SCHEDULE_MS"):
        cfg.backoff_schedule_ms = [
            int(s.strip()) for s in schedule.split(",") if s.strip().isdigit()
        ]

    # Cadences
    _env_int(cfg, "notification_interval_ms", "NOTIFICATION_INTERVAL_MS")
    _env_int(
        cfg,
        "notification_rate_limited_interval_ms",
        "NOTIFICATION_RATE_LIMITED_INTERVAL_MS",
    )
    _env_int(
        cfg,
        "notification_server_error_interval_ms",
        "NOTIFICATION_SERVER_ERROR_INTERVAL_MS",
    )
    _env_int(cfg, "state_check_interval_ms", "STATE_CHECK_INTERVAL_MS")
    _env_int(cfg, "qr_interval_ms", "QR_INTERVAL_MS")
    _env_int(cfg, "qr_redisplay_window_ms", "QR_REDISPLAY_WINDOW_MS")
    _env_int(cfg, "qr_max_failed_attempts", "QR_MAX_FAILED_ATTEMPTS")
    _env_int(cfg, "qr_reboot_pause_ms", "QR_REBOOT_PAUSE_MS")

    # Timeouts
    _env_int(cfg, "request_timeout_sec", "REQUEST_TIMEOUT_SEC")
    _env_int(cfg, "groups_timeout_sec", "GROUPS_TIMEOUT_SEC")
    _env_int(cfg, "qr_fetch_timeout_sec", "QR_FETCH_TIMEOUT_SEC")
    _env_int(cfg, "logout_timeout_sec", "LOGOUT_TIMEOUT_SEC")
    _env_int(cfg, "groups_initial_delay_ms", "GROUPS_INITIAL_DELAY_MS")

    _env_int(cfg, "history_count", "HISTORY_COUNT")
    if mb := _env("MEDIA_MAX_MB"):
        if mb.isdigit():
            cfg.media_max_bytes = int(mb) * 1024 * 1024

    # An explicitly empty value disables the log file.
    if f"{ENV_PREFIX}LOG_FILE" in os.environ:
        cfg.log_file = _env("LOG_FILE") or None
    cfg.qr_fallback_dir = _env("QR_FALLBACK_DIR")

    return cfg


class RedactedFormatter(logging.Formatter):
    """
    Formatter that masks sensitive strings (the API token) in every record.
    """

    def __init__(self, sensitive_strings: List[str], fmt=None, datefmt=None, style="%"):
        super().__init__(fmt, datefmt, style)
        self.sensitive_strings = sensitive_strings

    def format(self, record):
        original = super().format(record)
        for s in self.sensitive_strings:
            if s:
                original = original.replace(s, "[REDACTED]")
        return original


def setup_logging(config: BridgeConfig, name: str = "green_bridge") -> logging.Logger:
    """
    Configure the package logger.

    Console output goes to stderr: stdout carries host events only.
    A rotating log file is added when ``config.log_file`` is set.
    """
    logger = logging.getLogger(name)

    # Only add handlers once to avoid duplicates when called again
    if not logger.handlers:
        formatter = RedactedFormatter(
            [config.api_token_instance] if config.api_token_instance else [],
            fmt="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
        )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        # File handler with rotation (5MB, 3 backups)
        if config.log_file:
            try:
                log_dir = os.path.dirname(os.path.abspath(config.log_file))
                os.makedirs(log_dir, exist_ok=True)
                file_handler = RotatingFileHandler(
                    config.log_file,
                    maxBytes=5 * 1024 * 1024,
                    backupCount=3,
                    encoding="utf-8",
                )
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
            except OSError as e:
                logger.warning(f"File logging disabled ({config.log_file}): {e}")

        logger.propagate = False

    logger.setLevel(logging.DEBUG if config.debug else logging.INFO)
    return logger
