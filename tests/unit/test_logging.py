import json
import logging

from safetyops.app.core.logging import JSONFormatter, correlation_id_ctx, entity_id_ctx


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("safetyops.test", logging.INFO, __file__, 10, "CAPA %s closed", ("CAPA-2026-0001",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context_and_extra_data():
    cid = correlation_id_ctx.set("corr-1")
    eid = entity_id_ctx.set("capa-42")
    try:
        entry = json.loads(JSONFormatter().format(_record(extra_data={"days_open": 33})))
    finally:
        correlation_id_ctx.reset(cid)
        entity_id_ctx.reset(eid)

    assert entry["message"] == "CAPA CAPA-2026-0001 closed"
    assert entry["level"] == "INFO"
    assert entry["correlation_id"] == "corr-1"
    assert entry["entity_id"] == "capa-42"
    assert entry["days_open"] == 33


def test_json_formatter_omits_unset_context():
    entry = json.loads(JSONFormatter().format(_record()))
    assert "correlation_id" not in entry
    assert "entity_id" not in entry
