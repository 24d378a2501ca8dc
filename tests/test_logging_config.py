import json
import logging
from unittest.mock import MagicMock

from cloud_json_logging.config import Settings
from cloud_json_logging.logging_config import CloudJSONFormatter, setup_logging
from cloud_json_logging.models.schemas import TraceContext
from cloud_json_logging.services.appender import CloudLoggingAppender
from cloud_json_logging.services.record_builder import SOURCE_LOCATION_FIELD_KEY, TRACE_ID_FIELD_KEY


class TestCloudJSONFormatter:
    def test_formats_structured_json(self, builder, make_record):
        line = CloudJSONFormatter(builder).format(
            make_record(msg="shipped %s", args=("o-9",), level=logging.WARNING)
        )
        entry = json.loads(line)
        assert entry["severity"] == "WARNING"
        assert entry["message"] == "shipped o-9"
        assert entry["serviceContext"] == {"service": "orders-api", "version": "1.4.2"}
        assert entry["logger"] == "shop.orders"
        assert entry[SOURCE_LOCATION_FIELD_KEY] == {
            "file": "nightly.py",
            "line": 17,
            "function": "nightly.run",
        }

    def test_trace_attachment(self, builder, make_record):
        record = make_record(attachments=[TraceContext(trace_id="t1", span_id="s1")])
        entry = json.loads(CloudJSONFormatter(builder).format(record))
        assert entry[TRACE_ID_FIELD_KEY] == "t1"

    def test_exception_in_message(self, builder, make_record):
        try:
            raise ValueError("bad sku")
        except ValueError as e:
            record = make_record(msg="failed", exc_info=(type(e), e, e.__traceback__))
        entry = json.loads(CloudJSONFormatter(builder).format(record))
        assert entry["message"].startswith("failed\nTraceback")
        assert entry["message"].endswith("ValueError: bad sku")

    def test_non_serialisable_details_stringified(self, builder, make_record):
        entry = json.loads(CloudJSONFormatter(builder).format(make_record(details={"when": object})))
        assert entry["details"]["when"] == str(object)

    def test_builder_failure_still_emits_line(self, make_record):
        broken = MagicMock()
        broken.build.side_effect = RuntimeError("boom")
        entry = json.loads(CloudJSONFormatter(broken).format(make_record()))
        assert entry == {"severity": "DEFAULT", "message": "order placed", "logger": "shop.orders"}

    def test_default_builder(self, make_record):
        entry = json.loads(CloudJSONFormatter().format(make_record()))
        assert entry["serviceContext"] == {"service": "default", "version": "default"}


class TestSetupLogging:
    def test_installs_stdout_handler(self, restore_root_logger):
        builder = setup_logging(Settings(service_name="orders-api", log_level="DEBUG"))
        root = restore_root_logger
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CloudJSONFormatter)
        assert root.handlers[0].formatter.builder is builder
        assert root.level == logging.DEBUG
        assert builder.service_name == "orders-api"

    def test_registers_trace_level(self, restore_root_logger):
        setup_logging(Settings())
        assert logging.getLevelName(5) == "TRACE"

    def test_lines_written_to_stdout(self, restore_root_logger, capsys):
        setup_logging(Settings(service_name="orders-api"))
        logging.getLogger("shop.orders").info("order %s placed", "o-9")
        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["message"] == "order o-9 placed"
        assert entry["severity"] == "INFO"

    def test_api_transport_adds_appender(self, restore_root_logger):
        setup_logging(Settings(transport="api", flush_level="WARNING", batch_size=5))
        appenders = [h for h in restore_root_logger.handlers if isinstance(h, CloudLoggingAppender)]
        assert len(appenders) == 1
        assert appenders[0].flush_level == logging.WARNING
        assert appenders[0].pending == 0

    def test_quiets_noisy_loggers(self, restore_root_logger):
        setup_logging(Settings(log_level="DEBUG"))
        assert logging.getLogger("google").level == logging.WARNING
        assert logging.getLogger("urllib3").level == logging.WARNING
