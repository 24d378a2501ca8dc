"""Pydantic models for log events and the context objects attached to them.

A ``LogEvent`` is the framework-neutral view of one log call.  Context
objects (``TraceContext``, ``HttpRequestContext``, ``CustomAttributes``)
travel in the event's ``arguments`` list and are recognised by their
``kind`` tag; anything else in that list is ignored by the record builder.
"""

from __future__ import annotations

import sys
from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Level(IntEnum):
    """Ordered input log levels, numbered like the stdlib ``logging`` levels."""

    ALL = 0
    TRACE = 5
    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40
    OFF = sys.maxsize

    @classmethod
    def from_levelno(cls, levelno: int) -> "Level":
        """Floor a stdlib level number to the closest level at or below it.

        ``CRITICAL`` (50) therefore becomes ``ERROR``; ``OFF`` is never
        produced from a record.
        """
        for level in (cls.ERROR, cls.WARN, cls.INFO, cls.DEBUG, cls.TRACE):
            if levelno >= level:
                return level
        return cls.ALL


class SchemaVariant(str, Enum):
    """Output layout of a structured record."""

    STRUCTURED = "structured"
    LEGACY_V2 = "legacy_v2"


class StackFrame(BaseModel):
    """One caller frame: where the log call was made."""

    model_config = ConfigDict(frozen=True)

    declaring_type: str
    method_name: str
    file_name: str | None = None
    line_number: int = -1
    native: bool = False


class LogEvent(BaseModel):
    """Read-only description of a single log call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    level: Level | int = Level.INFO
    timestamp: int = Field(default=0, ge=0)
    message: str = ""
    exception: BaseException | str | None = None
    caller_data: list[StackFrame] = Field(default_factory=list)
    thread_name: str = ""
    logger_name: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    arguments: list[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Context objects attached to log calls
# ---------------------------------------------------------------------------

class TraceContext(BaseModel):
    """Cloud Trace identifiers for correlating a log entry with a request."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["trace"] = "trace"
    trace_id: str = ""
    span_id: str = ""

    @classmethod
    def from_header(cls, header: str | None) -> "TraceContext | None":
        """Parse an ``X-Cloud-Trace-Context`` value (``TRACE/SPAN;o=1``)."""
        if not header:
            return None
        trace_id, _, rest = header.partition("/")
        span_id = rest.split(";", 1)[0]
        if not trace_id:
            return None
        return cls(trace_id=trace_id.strip(), span_id=span_id.strip())


class HttpRequestContext(BaseModel):
    """Ordered ``httpRequest`` fields describing an inbound request/response pair.

    Values are stored the way Cloud Logging's ``HttpRequest`` JSON expects
    them: sizes, status and latency as strings, cache flags as booleans.
    """

    kind: Literal["http_request"] = "http_request"
    fields: dict[str, Any] = Field(default_factory=dict)

    def put(self, key: str, value: Any) -> Any:
        """Set *key* and return the previous value.  ``None`` values are skipped."""
        previous = self.fields.get(key)
        if value is not None:
            self.fields[key] = value
        return previous

    def set_latency(self, latency_seconds: float) -> None:
        self.put("latency", f"{latency_seconds}s")

    def set_cache_lookup(self, cache_lookup: bool) -> None:
        self.put("cacheLookup", cache_lookup)

    def set_cache_hit(self, cache_hit: bool) -> None:
        self.put("cacheHit", cache_hit)

    def set_cache_validated_with_origin_server(self, validated: bool) -> None:
        self.put("cacheValidatedWithOriginServer", validated)

    def set_cache_fill_bytes(self, cache_fill_bytes: int) -> None:
        self.put("cacheFillBytes", str(cache_fill_bytes))

    @classmethod
    def from_request(cls, request: Any = None, response: Any = None) -> "HttpRequestContext":
        """Build the field mapping from a Starlette-style request and response.

        Either side may be ``None``; missing headers are left out.
        """
        ctx = cls()
        if request is not None:
            headers = request.headers
            ctx.put("requestMethod", request.method)
            ctx.put("requestUrl", request_url(request.url))
            ctx.put("requestSize", headers.get("content-length"))
            ctx.put("userAgent", headers.get("user-agent"))
            remote_ip = headers.get("x-forwarded-for")
            if remote_ip is None and request.client is not None:
                remote_ip = request.client.host
            ctx.put("remoteIp", remote_ip)
            ctx.put("referer", headers.get("referer"))
            http_version = request.scope.get("http_version")
            if http_version:
                ctx.put("protocol", f"HTTP/{http_version}")
        if response is not None:
            ctx.put("status", str(response.status_code))
        return ctx


class CustomAttributes(BaseModel):
    """Free-form attributes merged into a record's ``details``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["attributes"] = "attributes"
    attributes: dict[str, Any] = Field(default_factory=dict)


def request_url(url: Any) -> str:
    """Render ``scheme://host[:port]path[?query]``, omitting default ports."""
    scheme = url.scheme
    port = url.port
    parts = [scheme, "://", url.hostname or ""]
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        parts.append(f":{port}")
    parts.append(url.path)
    if url.query:
        parts.append(f"?{url.query}")
    return "".join(parts)
