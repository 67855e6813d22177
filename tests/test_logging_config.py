import json
import logging

from app.logging_config import JSONFormatter, get_logger, mask_address


def make_record(message, context=None):
    record = logging.LogRecord("life_forecast.test", logging.INFO, __file__, 1, message, None, None)
    if context is not None:
        record.context = context
    return record


class TestMaskAddress:
    def test_keeps_last_four_digits(self):
        assert mask_address("whatsapp:+233541234567") == "***4567"

    def test_short_or_missing(self):
        assert mask_address("12") == "***"
        assert mask_address(None) == "unknown"


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record("hello")))
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "life_forecast.test"
        assert "context" not in entry

    def test_context_addresses_are_masked(self):
        record = make_record("sent", {"phone": "whatsapp:+233541234567", "attempt": 2})
        entry = json.loads(JSONFormatter().format(record))
        assert entry["context"] == {"phone": "***4567", "attempt": 2}

    def test_namespace(self):
        assert get_logger("bot_service").name == "life_forecast.bot_service"
