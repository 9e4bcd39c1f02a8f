import json
import logging

from checkout.logging_filters import LOG_FORMAT, RequestIdFilter, configure_logging
from checkout.middleware import REQUEST_ID_CTX
from pythonjsonlogger import jsonlogger


def _record(**extra):
    record = logging.LogRecord("checkout.test", logging.INFO, __file__, 1, "hello", None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_filter_uses_context_request_id():
    token = REQUEST_ID_CTX.set("abc-123")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert record.request_id == "abc-123"
    finally:
        REQUEST_ID_CTX.reset(token)


def test_filter_keeps_explicit_request_id():
    record = _record(request_id="explicit")
    RequestIdFilter().filter(record)
    assert record.request_id == "explicit"


def test_filter_outside_request():
    record = _record()
    RequestIdFilter().filter(record)
    assert record.request_id == "-"


def test_json_output_carries_request_id_and_extras():
    record = _record(order_id="o-1")
    RequestIdFilter().filter(record)
    payload = json.loads(jsonlogger.JsonFormatter(LOG_FORMAT).format(record))
    assert payload["message"] == "hello"
    assert payload["request_id"] == "-"
    assert payload["order_id"] == "o-1"


def test_configure_logging_is_idempotent():
    logger = configure_logging("debug")
    handlers = list(logger.handlers)
    configure_logging("info")
    assert logger.handlers == handlers
    assert logger.level == logging.INFO
