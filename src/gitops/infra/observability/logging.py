"""Structured logging configuration using structlog.

Library modules in this project log through stdlib ``logging`` with
snake_case event names and ``extra={...}`` context. ``configure_logging``
routes those records through the same structlog processor chain as
structlog loggers, so both end up with:

- request_id from RequestIdMiddleware (contextvars merge)
- ISO 8601 UTC timestamps
- redaction of credentials (passwords, tokens, cookies, client secrets)
- JSON output in production, console output otherwise

Usage:
    from gitops.infra.observability import configure_logging, get_logger

    configure_logging()
    logger = get_logger(__name__)
    logger.info("auth_server_ready", oidc_configured=True)
"""

from __future__ import annotations

import logging
import sys
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from collections.abc import MutableMapping

Processor = structlog.types.Processor

# Field names whose values never reach a log sink
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "password_hash",
        "authorization",
        "cookie",
        "set_cookie",
        "id_token",
        "refresh_token",
        "access_token",
        "code",
        "code_verifier",
        "client_secret",
        "secret",
        "bearer",
        "credential",
    }
)

REDACTED_VALUE: str = "***REDACTED***"

# Attributes every stdlib LogRecord carries; anything else came from ``extra``
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)


class LoggingSettings(BaseSettings):
    """Logging configuration settings from environment variables.

    - LOG_LEVEL: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Environment name (development, staging, production, test)

    Example:
        >>> LoggingSettings(environment="production").use_json_logs
        True
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Minimum log level to output",
    )
    environment: str = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Environment name for format selection",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        if isinstance(v, str):
            return v.strip().upper()
        return str(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Reject names the logging module does not know.

        Raises:
            ValueError: If log level is not a valid Python logging level.
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            msg = f"log_level must be one of {sorted(valid_levels)}"
            raise ValueError(msg)
        return v

    @property
    def use_json_logs(self) -> bool:
        """True for the production environment."""
        return self.environment == "production"

    @property
    def log_level_int(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


class SensitiveDataProcessor:
    """Structlog processor that redacts credential-bearing fields.

    Redacts values for keys that:
    1. Match SENSITIVE_FIELDS exactly (case-insensitive, dashes as underscores)
    2. Contain "password", "token" or "secret" as substrings

    Nested dictionaries are walked so that header or cookie maps attached
    to an event are redacted too.

    Example:
        >>> processor = SensitiveDataProcessor()
        >>> processor(None, "info", {"event": "sign_in", "password": "hunter2"})["password"]
        '***REDACTED***'
    """

    def __call__(
        self,
        logger: Any,
        method_name: str,
        event_dict: MutableMapping[str, Any],
    ) -> MutableMapping[str, Any]:
        self._redact(event_dict)
        return event_dict

    def _redact(self, mapping: MutableMapping[str, Any]) -> None:
        for key in list(mapping.keys()):
            if key == "event":
                continue
            if self._is_sensitive(str(key)):
                mapping[key] = REDACTED_VALUE
            elif isinstance(mapping[key], dict):
                nested = dict(mapping[key])
                self._redact(nested)
                mapping[key] = nested

    @staticmethod
    def _is_sensitive(key: str) -> bool:
        key_lower = key.lower().replace("-", "_")
        if key_lower in SENSITIVE_FIELDS:
            return True
        # Compound names (e.g. admin_password, oidc_client_secret)
        return any(part in key_lower for part in ("password", "token", "secret"))


def _add_record_extras(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Lift ``extra={...}`` fields of a stdlib record into the event dict."""
    record = event_dict.get("_record")
    if record is None:
        return event_dict
    for key, value in vars(record).items():
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_"):
            event_dict.setdefault(key, value)
    return event_dict


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached LoggingSettings instance.

    Clear cache with ``get_logging_settings.cache_clear()`` for testing.
    """
    return LoggingSettings()


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure structlog and stdlib logging for structured output.

    Should be called once during application startup (in the lifespan
    handler). Calling it again replaces the previous configuration.

    Args:
        settings: Optional LoggingSettings instance. If not provided,
            settings are loaded from environment variables.
    """
    if settings is None:
        settings = get_logging_settings()

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        SensitiveDataProcessor(),
    ]

    renderer: Processor
    if settings.use_json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*shared, structlog.processors.format_exc_info, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(settings.log_level_int),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Stdlib records from library modules go through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.add_logger_name, _add_record_extras, *shared],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    # Replace only a handler installed by an earlier call
    for existing in list(root.handlers):
        if isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(settings.log_level_int)


def get_logger(name: str | None = None) -> structlog.typing.WrappedLogger:
    """Get a structlog logger bound to the given name.

    The logger inherits request_id from RequestIdMiddleware through the
    contextvars merge.

    Args:
        name: Logger name (typically __name__ from calling module).
            If None, returns unbound logger.
    """
    logger = structlog.get_logger()
    if name is not None:
        logger = logger.bind(logger=name)
    return logger
