"""Logging configuration loaded from environment variables.

Uses a frozen dataclass for immutable, type-safe settings.  Invalid values
fall back to their defaults instead of failing start-up, since a logging
misconfiguration should never keep the service from booting.
"""

import logging
import os
from dataclasses import dataclass

from cloud_json_logging.models.schemas import SchemaVariant

_TRANSPORTS = ("stdout", "api")

# Level names accepted for LOG_LEVEL and LOG_FLUSH_LEVEL.
LEVELS = {
    "TRACE": 5,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_bool(value: str) -> bool:
    """Parse a boolean from an environment string, accepting common truthy values."""
    return value.strip().lower() in ("true", "1", "yes")


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _parse_list(value: str) -> tuple:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """Immutable logging settings populated from environment variables."""

    # Service metadata reported in serviceContext
    service_name: str = "default"
    service_version: str = "default"

    # Record layout
    add_trace_fields: bool = True
    add_http_request_fields: bool = True
    schema: str = SchemaVariant.STRUCTURED.value

    # Cloud Logging API transport
    transport: str = "stdout"
    log_name: str = "python.log"
    resource_type: str = "global"
    flush_level: str = "ERROR"
    batch_size: int = 50
    enhancers: tuple = ()
    gcp_project_id: str = ""

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate settings after initialisation."""
        if self.schema not in {v.value for v in SchemaVariant}:
            object.__setattr__(self, "schema", SchemaVariant.STRUCTURED.value)
        if self.transport not in _TRANSPORTS:
            object.__setattr__(self, "transport", "stdout")
        if self.batch_size < 1:
            object.__setattr__(self, "batch_size", 1)
        if self.flush_level not in LEVELS:
            object.__setattr__(self, "flush_level", "ERROR")
        if self.log_level not in LEVELS:
            object.__setattr__(self, "log_level", "INFO")
        if not self.log_name:
            object.__setattr__(self, "log_name", "python.log")

    @property
    def schema_variant(self) -> SchemaVariant:
        return SchemaVariant(self.schema)

    @classmethod
    def load(cls) -> "Settings":
        """Create a Settings instance from the current environment variables.

        On Cloud Run the service name and revision default to ``K_SERVICE``
        and ``K_REVISION``.
        """
        env = os.environ
        return cls(
            service_name=env.get("SERVICE_NAME") or env.get("K_SERVICE") or "default",
            service_version=env.get("SERVICE_VERSION") or env.get("K_REVISION") or "default",
            add_trace_fields=_parse_bool(env.get("LOG_ADD_TRACE_FIELDS", "true")),
            add_http_request_fields=_parse_bool(env.get("LOG_ADD_HTTP_REQUEST_FIELDS", "true")),
            schema=env.get("LOG_SCHEMA", "structured").strip().lower(),
            transport=env.get("LOG_TRANSPORT", "stdout").strip().lower(),
            log_name=env.get("LOG_NAME", "python.log"),
            resource_type=env.get("LOG_RESOURCE_TYPE", "global"),
            flush_level=env.get("LOG_FLUSH_LEVEL", "ERROR").upper(),
            batch_size=_parse_int(env.get("LOG_BATCH_SIZE", "50"), 50),
            enhancers=_parse_list(env.get("LOG_ENHANCERS", "")),
            gcp_project_id=env.get("GCP_PROJECT_ID", ""),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


settings = Settings.load()
