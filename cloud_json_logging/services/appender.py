"""``logging.Handler`` that writes structured records to the Cloud Logging API.

Records are built with the same ``StructuredLogRecordBuilder`` as the
stdout formatter, then split into ``LogEntry`` fields: severity, timestamp,
trace and ``httpRequest`` become first-class entry fields, thread, logger
and context values become labels, and the rest is the JSON payload.

Entries are buffered and written in one ``batch()`` call once the buffer
holds ``batch_size`` entries, or immediately for records at or above
``flush_level``.  Retries and transport are left to ``google-cloud-logging``.
"""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any

from google.cloud import logging as cloud_logging

from cloud_json_logging.services.enhancers import LoggingEnhancer
from cloud_json_logging.services.events import event_from_record
from cloud_json_logging.services.record_builder import (
    SOURCE_LOCATION_FIELD_KEY,
    SPAN_ID_FIELD_KEY,
    TRACE_ID_FIELD_KEY,
    StructuredLogRecordBuilder,
)

# Records from the client stack itself would loop back into this handler.
_EXCLUDED_LOGGERS = ("google.cloud", "google.auth", "google.api_core", "urllib3", "grpc")


def qualify_trace(trace_id: str, project: str) -> str:
    """Expand a bare trace id to ``projects/<project>/traces/<id>``."""
    if trace_id.startswith("projects/") or not project:
        return trace_id
    return f"projects/{project}/traces/{trace_id}"


def to_log_entry(record: dict[str, Any], project: str = "") -> dict[str, Any]:
    """Split a structured record into keyword arguments for ``log_struct``.

    The returned dict carries the payload under ``info``.
    """
    payload = dict(record)
    entry: dict[str, Any] = {"severity": payload.pop("severity", "DEFAULT")}

    timestamp = payload.pop("timestamp", None)
    if timestamp:
        entry["timestamp"] = datetime.fromtimestamp(
            timestamp["seconds"], tz=timezone.utc
        ) + timedelta(microseconds=timestamp["nanos"] // 1000)

    trace_id = payload.pop(TRACE_ID_FIELD_KEY, None)
    if trace_id:
        entry["trace"] = qualify_trace(trace_id, project)
    span_id = payload.pop(SPAN_ID_FIELD_KEY, None)
    if span_id:
        entry["span_id"] = span_id

    http_request = payload.pop("httpRequest", None)
    if http_request:
        entry["http_request"] = http_request
    source_location = payload.pop(SOURCE_LOCATION_FIELD_KEY, None)
    if source_location:
        entry["source_location"] = source_location

    labels: dict[str, str] = {}
    for key in ("thread", "logger"):
        if key in payload:
            labels[key] = str(payload.pop(key))
    details = payload.pop("details", None)

    # legacy_v2 nests thread/logger under context.reportLocation and details under context.
    context = payload.pop("context", None)
    if isinstance(context, dict):
        context = dict(context)
        report_location = context.pop("reportLocation", None)
        if isinstance(report_location, dict):
            report_location = dict(report_location)
            for key in ("thread", "logger"):
                if key in report_location:
                    labels[key] = str(report_location.pop(key))
            if report_location:
                context["reportLocation"] = report_location
        details = context.pop("details", None) or details
        if context:
            payload["context"] = context
    elif context is not None:
        payload["context"] = context

    if details:
        labels.update({key: str(value) for key, value in details.items()})
    if labels:
        entry["labels"] = labels

    entry["info"] = payload
    return entry


class CloudLoggingAppender(logging.Handler):
    """Batches structured entries and writes them through ``google.cloud.logging``."""

    def __init__(
        self,
        builder: StructuredLogRecordBuilder,
        log_name: str = "python.log",
        resource_type: str = "global",
        flush_level: int = logging.ERROR,
        batch_size: int = 50,
        enhancers: list[LoggingEnhancer] | None = None,
        project: str | None = None,
        level: int = logging.NOTSET,
    ) -> None:
        super().__init__(level)
        self._builder = builder
        self._log_name = log_name
        self._resource_type = resource_type
        self._flush_level = flush_level
        self._batch_size = max(batch_size, 1)
        self._enhancers = list(enhancers or [])
        self._project = project or None
        self._pending: list[dict[str, Any]] = []
        self._client: cloud_logging.Client | None = None
        self._cloud_logger: Any = None
        self._client_lock = threading.Lock()

    @property
    def log_name(self) -> str:
        return self._log_name

    @property
    def flush_level(self) -> int:
        return self._flush_level

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _connect(self) -> None:
        with self._client_lock:
            if self._client is not None:
                return
            client = cloud_logging.Client(project=self._project)
            project = self._project or client.project
            resource = cloud_logging.Resource(
                type=self._resource_type, labels={"project_id": project}
            )
            self._cloud_logger = client.logger(self._log_name, resource=resource)
            self._client = client

    @property
    def client(self) -> cloud_logging.Client:
        """The API client, created on first use."""
        if self._client is None:
            self._connect()
        return self._client

    @property
    def project(self) -> str:
        return self._project or self.client.project

    @property
    def cloud_logger(self) -> Any:
        if self._client is None:
            self._connect()
        return self._cloud_logger

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(_EXCLUDED_LOGGERS):
            return
        try:
            entry = to_log_entry(self._builder.build(event_from_record(record)), self.project)
            for enhancer in self._enhancers:
                enhancer.enhance(entry)
            self._pending.append(entry)
            if record.levelno >= self._flush_level or len(self._pending) >= self._batch_size:
                self._commit()
        except Exception:
            self.handleError(record)

    def _commit(self) -> None:
        # Entries stay buffered until the write succeeds; a failed commit is retried on the next one.
        if not self._pending:
            return
        entries = list(self._pending)
        batch = self.cloud_logger.batch()
        for entry in entries:
            fields = dict(entry)
            info = fields.pop("info")
            batch.log_struct(info, **fields)
        batch.commit()
        del self._pending[: len(entries)]

    def flush(self) -> None:
        """Write every buffered entry now."""
        self.acquire()
        try:
            self._commit()
        except Exception:
            if logging.raiseExceptions:
                traceback.print_exc(file=sys.stderr)
        finally:
            self.release()

    def close(self) -> None:
        self.flush()
        self.acquire()
        try:
            if self._client is not None:
                try:
                    self._client.close()
                except Exception:
                    if logging.raiseExceptions:
                        traceback.print_exc(file=sys.stderr)
            self._client = None
            self._cloud_logger = None
        finally:
            self.release()
        super().close()
