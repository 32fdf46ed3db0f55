import json
import logging

from pythonjsonlogger.json import JsonFormatter

from logging_config import ReportJsonFormatter, build_logging_config


def test_json_formatter_adds_standard_fields():
    formatter = ReportJsonFormatter("%(message)s")
    record = logging.LogRecord("services", logging.INFO, __file__, 1, "report approved", None, None)
    record.report_id = "r1"
    payload = json.loads(formatter.format(record))
    assert payload["message"] == "report approved"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "services"
    assert payload["report_id"] == "r1"
    assert "timestamp" in payload


def test_format_selection():
    assert build_logging_config("info", "json")["handlers"]["console"]["formatter"] == "json"
    standard = build_logging_config("debug", "standard")
    assert standard["handlers"]["console"]["formatter"] == "standard"
    assert standard["root"]["level"] == "DEBUG"


def test_formatter_builds_on_current_json_module():
    assert issubclass(ReportJsonFormatter, JsonFormatter)
