"""Structured JSON logging for Google Cloud Logging integration.

Cloud Run and GKE capture structured JSON from stdout as Cloud Logging
entries, picking up severity, timestamp, trace correlation, ``httpRequest``
and source location from the well-known keys.  With ``LOG_TRANSPORT=api``
entries are additionally written through the Cloud Logging API.
"""

import json
import logging
import sys

from cloud_json_logging.config import LEVELS, Settings, settings as default_settings
from cloud_json_logging.services.appender import CloudLoggingAppender
from cloud_json_logging.services.enhancers import create_enhancers
from cloud_json_logging.services.events import event_from_record
from cloud_json_logging.services.record_builder import StructuredLogRecordBuilder

TRACE = LEVELS["TRACE"]

_NOISY_LOGGERS = ("google", "urllib3", "httpx", "httpcore")


class CloudJSONFormatter(logging.Formatter):
    """Formats log records as JSON for Cloud Logging ingestion."""

    def __init__(self, builder: StructuredLogRecordBuilder | None = None) -> None:
        super().__init__()
        self.builder = builder or StructuredLogRecordBuilder()

    def format(self, record: logging.LogRecord) -> str:
        try:
            entry = self.builder.build(event_from_record(record))
            return json.dumps(entry, default=str)
        except Exception:
            # Keep the line even if the event could not be adapted.
            return json.dumps(
                {"severity": "DEFAULT", "message": str(record.msg), "logger": record.name},
                default=str,
            )


def build_record_builder(config: Settings) -> StructuredLogRecordBuilder:
    return StructuredLogRecordBuilder(
        service_name=config.service_name,
        service_version=config.service_version,
        add_trace_fields=config.add_trace_fields,
        add_http_request_fields=config.add_http_request_fields,
        schema=config.schema_variant,
    )


def build_appender(config: Settings, builder: StructuredLogRecordBuilder) -> CloudLoggingAppender:
    return CloudLoggingAppender(
        builder,
        log_name=config.log_name,
        resource_type=config.resource_type,
        flush_level=LEVELS[config.flush_level],
        batch_size=config.batch_size,
        enhancers=create_enhancers(config.enhancers),
        project=config.gcp_project_id or None,
    )


def setup_logging(config: Settings | None = None) -> StructuredLogRecordBuilder:
    """Configure the root logger and return the shared record builder."""
    config = config or default_settings
    logging.addLevelName(TRACE, "TRACE")
    builder = build_record_builder(config)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CloudJSONFormatter(builder))
    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing, CloudLoggingAppender):
            existing.close()
    root.handlers.clear()
    root.addHandler(handler)
    if config.transport == "api":
        root.addHandler(build_appender(config, builder))
    root.setLevel(LEVELS[config.log_level])

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return builder
