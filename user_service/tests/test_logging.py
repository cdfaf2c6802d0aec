import json
import logging

from user_service.core.logging import (
    LOGGER_NAME,
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    configure_logging,
    latency_bucket_ms,
    request_id_ctx_var,
)


def _record(msg="added entity to user", **extra):
    record = logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_structured_fields():
    record = _record(request_id="rid-1", user_id="User-0", entity_id="Entity-0")
    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "added entity to user"
    assert payload["level"] == "INFO"
    assert payload["logger"] == LOGGER_NAME
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "User-0"
    assert payload["entity_id"] == "Entity-0"
    assert "n_users" not in payload
    assert payload["timestamp"].endswith("Z")


def test_pretty_formatter():
    line = PrettyFormatter().format(_record(request_id="rid-2", n_entities=3))
    assert "[rid=rid-2]" in line
    assert "n_entities=3" in line


def test_request_id_filter_reads_context():
    token = request_id_ctx_var.set("rid-ctx")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "rid-ctx"


def test_configure_logging_picks_formatter():
    configure_logging("production", "WARNING")
    logger = logging.getLogger(LOGGER_NAME)
    assert logger.level == logging.WARNING
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    configure_logging("development", "DEBUG")
    assert isinstance(logger.handlers[0].formatter, PrettyFormatter)


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"


def test_request_logs_carry_request_id(client, caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    client.post("/v1/user/entities/add", json={"user_id": "User-0", "entity_id": "Entity-0"},
                headers={"x-request-id": "rid-log"})

    added = [r for r in caplog.records if r.getMessage() == "added entity to user"]
    assert added
    assert added[0].user_id == "User-0"

    complete = [r for r in caplog.records if r.getMessage() == "request.complete"]
    assert complete[-1].request_id == "rid-log"
    assert complete[-1].status == 200
