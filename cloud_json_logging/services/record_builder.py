"""Structured Cloud Logging records built from framework-neutral log events.

``StructuredLogRecordBuilder.build`` maps a ``LogEvent`` onto the JSON
shape Cloud Logging recognises in ``jsonPayload`` / stdout lines:
severity, split timestamp, service context, trace correlation,
``httpRequest`` and source location.

Every field is extracted independently.  A field that cannot be produced
is left out (or replaced by a fixed default for the required keys); the
builder never raises, because a formatting problem must not break the
log call that triggered it.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from typing import Any

from cloud_json_logging.models.schemas import Level, LogEvent, SchemaVariant, StackFrame

TRACE_ID_FIELD_KEY = "logging.googleapis.com/trace"
SPAN_ID_FIELD_KEY = "logging.googleapis.com/spanId"
SOURCE_LOCATION_FIELD_KEY = "logging.googleapis.com/sourceLocation"

# Placeholders used when no caller frame is available.
NOT_AVAILABLE = "?"
LINE_NOT_AVAILABLE = -1

NATIVE_METHOD_SUFFIX = " (Native Method)"

_SEVERITIES = {
    Level.ALL: "DEBUG",
    Level.TRACE: "DEBUG",
    Level.DEBUG: "DEBUG",
    Level.INFO: "INFO",
    Level.WARN: "WARNING",
    Level.ERROR: "ERROR",
}


def severity(level: Any) -> str:
    """Translate an input level to a Cloud Logging severity name.

    Unknown values, including ``Level.OFF`` and anything unhashable,
    map to ``DEFAULT``.
    """
    try:
        return _SEVERITIES.get(level, "DEFAULT")
    except TypeError:
        return "DEFAULT"


def split_timestamp(millis: int) -> dict[str, int]:
    """Split epoch milliseconds into ``{"seconds", "nanos"}``."""
    seconds, remainder = divmod(millis, 1000)
    return {"seconds": seconds, "nanos": remainder * 1_000_000}


def render_exception(exception: BaseException | str | None) -> str:
    """Render an attached exception as a full traceback string.

    Chained causes are included.  Returns ``""`` when nothing is attached.
    """
    if exception is None:
        return ""
    if isinstance(exception, str):
        return exception
    lines = traceback.format_exception(type(exception), exception, exception.__traceback__)
    return "".join(lines).rstrip("\n")


def find_argument(arguments: list[Any], kind: str) -> Any | None:
    """Return the first argument tagged with *kind*, or ``None``."""
    for arg in arguments:
        if getattr(arg, "kind", None) == kind:
            return arg
    return None


def source_file(frame: StackFrame) -> str:
    """Slash-delimited path from the declaring type's package plus the file name."""
    if not frame.file_name:
        return NOT_AVAILABLE
    package, dot, _ = frame.declaring_type.rpartition(".")
    if not dot:
        return frame.file_name
    return package.replace(".", "/") + "/" + frame.file_name


def source_function(frame: StackFrame) -> str:
    function = f"{frame.declaring_type}.{frame.method_name}"
    if frame.native:
        function += NATIVE_METHOD_SUFFIX
    return function


def _first_frame(event: LogEvent) -> StackFrame | None:
    return event.caller_data[0] if event.caller_data else None


def _attempt(step: Callable[[], Any], default: Any = None) -> Any:
    # Logging from here would re-enter the handler that is formatting this event.
    try:
        return step()
    except Exception:
        return default


class StructuredLogRecordBuilder:
    """Builds one structured log record per ``LogEvent``.

    Service metadata, feature flags and the schema variant are fixed at
    construction.  The instance holds no per-event state, so a single
    builder can be shared by every handler and thread in the process.
    """

    def __init__(
        self,
        service_name: str = "default",
        service_version: str = "default",
        add_trace_fields: bool = True,
        add_http_request_fields: bool = True,
        schema: SchemaVariant = SchemaVariant.STRUCTURED,
    ) -> None:
        self._service_name = service_name
        self._service_version = service_version
        self._add_trace_fields = add_trace_fields
        self._add_http_request_fields = add_http_request_fields
        self._schema = SchemaVariant(schema)
        self._service_context = {"service": service_name, "version": service_version}
        self._layouts: dict[SchemaVariant, Callable[[LogEvent], dict[str, Any]]] = {
            SchemaVariant.STRUCTURED: self._structured,
            SchemaVariant.LEGACY_V2: self._legacy_v2,
        }

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def service_version(self) -> str:
        return self._service_version

    @property
    def add_trace_fields(self) -> bool:
        return self._add_trace_fields

    @property
    def add_http_request_fields(self) -> bool:
        return self._add_http_request_fields

    @property
    def schema(self) -> SchemaVariant:
        return self._schema

    @property
    def service_context(self) -> dict[str, str]:
        """The ``serviceContext`` mapping; the same object for every record."""
        return self._service_context

    def build(self, event: LogEvent) -> dict[str, Any]:
        """Return the structured record for *event* in the configured schema."""
        return self._layouts[self._schema](event)

    # ------------------------------------------------------------------
    # Shared fields
    # ------------------------------------------------------------------

    def _header(self, event: LogEvent) -> dict[str, Any]:
        record: dict[str, Any] = {
            "severity": severity(event.level),
            "timestamp": _attempt(lambda: split_timestamp(event.timestamp), {"seconds": 0, "nanos": 0}),
            "serviceContext": self._service_context,
            "message": self.message(event),
        }
        if self._add_trace_fields:
            record.update(_attempt(lambda: self.trace_fields(event), {}))
        if self._add_http_request_fields:
            http_request = _attempt(lambda: self.http_request(event))
            if http_request:
                record["httpRequest"] = http_request
        return record

    def message(self, event: LogEvent) -> str:
        """The formatted message, followed by the rendered exception if any."""
        message = event.message
        stack_trace = _attempt(lambda: render_exception(event.exception), "")
        if stack_trace:
            return message + "\n" + stack_trace
        return message

    def trace_fields(self, event: LogEvent) -> dict[str, str]:
        fields: dict[str, str] = {}
        trace_ctx = find_argument(event.arguments, "trace")
        if trace_ctx is None:
            return fields
        if trace_ctx.trace_id:
            fields[TRACE_ID_FIELD_KEY] = trace_ctx.trace_id
        if trace_ctx.span_id:
            fields[SPAN_ID_FIELD_KEY] = trace_ctx.span_id
        return fields

    def http_request(self, event: LogEvent) -> dict[str, Any] | None:
        http_ctx = find_argument(event.arguments, "http_request")
        if http_ctx is None:
            return None
        return http_ctx.fields

    def details(self, event: LogEvent) -> dict[str, Any]:
        """Event context merged over the first attached ``CustomAttributes``."""
        details: dict[str, Any] = {}
        attributes = find_argument(event.arguments, "attributes")
        if attributes is not None and attributes.attributes:
            details.update(attributes.attributes)
        if event.context:
            details.update(event.context)
        return details

    def source_location(self, event: LogEvent) -> dict[str, Any]:
        frame = _first_frame(event)
        if frame is None:
            return {"file": NOT_AVAILABLE, "line": LINE_NOT_AVAILABLE, "function": NOT_AVAILABLE}
        return {
            "file": _attempt(lambda: source_file(frame), NOT_AVAILABLE),
            "line": frame.line_number,
            "function": source_function(frame),
        }

    # ------------------------------------------------------------------
    # Layouts
    # ------------------------------------------------------------------

    def _structured(self, event: LogEvent) -> dict[str, Any]:
        record = self._header(event)
        details = _attempt(lambda: self.details(event))
        if details:
            record["details"] = details
        location = _attempt(lambda: self.source_location(event))
        if location:
            record[SOURCE_LOCATION_FIELD_KEY] = location
        record["thread"] = event.thread_name
        record["logger"] = event.logger_name
        return record

    def _legacy_v2(self, event: LogEvent) -> dict[str, Any]:
        record = self._header(event)
        context: dict[str, Any] = {}
        report_location = _attempt(lambda: self._report_location(event))
        if report_location:
            context["reportLocation"] = report_location
        details = _attempt(lambda: self.details(event))
        if details:
            context["details"] = details
        if context:
            record["context"] = context
        return record

    @staticmethod
    def _report_location(event: LogEvent) -> dict[str, Any]:
        location: dict[str, Any] = {}
        frame = _first_frame(event)
        if frame is not None:
            location["filePath"] = frame.declaring_type.replace(".", "/") + ".py"
            location["lineNumber"] = frame.line_number
            location["functionName"] = f"{frame.declaring_type}.{frame.method_name}"
        location["thread"] = event.thread_name
        location["logger"] = event.logger_name
        return location
