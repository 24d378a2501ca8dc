import logging

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cloud_json_logging.logging_config import CloudJSONFormatter
from cloud_json_logging.middleware import RequestLoggingMiddleware
from cloud_json_logging.models.schemas import Level, LogEvent, StackFrame
from cloud_json_logging.services.appender import CloudLoggingAppender
from cloud_json_logging.services.events import clear_context, get_context
from cloud_json_logging.services.record_builder import StructuredLogRecordBuilder


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def restore_root_logger():
    """Remove the handlers installed by setup_logging and restore the root level."""
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if isinstance(handler, CloudLoggingAppender) or isinstance(handler.formatter, CloudJSONFormatter):
            handler.close()
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def builder():
    return StructuredLogRecordBuilder(service_name="orders-api", service_version="1.4.2")


@pytest.fixture
def frame():
    return StackFrame(
        declaring_type="shop.services.orders",
        method_name="place_order",
        file_name="orders.py",
        line_number=42,
    )


@pytest.fixture
def make_event(frame):
    def _make(**overrides):
        fields = {
            "level": Level.INFO,
            "timestamp": 1_500_000_123,
            "message": "order placed",
            "caller_data": [frame],
            "thread_name": "MainThread",
            "logger_name": "shop.orders",
        }
        fields.update(overrides)
        return LogEvent(**fields)

    return _make


@pytest.fixture
def make_record():
    def _make(msg="order placed", args=None, level=logging.INFO, name="shop.orders", **attrs):
        record = logging.LogRecord(
            name=name,
            level=level,
            pathname="/srv/shop/jobs/nightly.py",
            lineno=17,
            msg=msg,
            args=args,
            exc_info=attrs.pop("exc_info", None),
            func="run",
        )
        for key, value in attrs.items():
            setattr(record, key, value)
        return record

    return _make


@pytest.fixture
def app():
    application = FastAPI()
    application.add_middleware(RequestLoggingMiddleware)

    @application.get("/api/orders")
    async def list_orders() -> dict:
        return {"context": get_context()}

    @application.get("/js/app.js")
    async def script() -> dict:
        return {}

    return application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
