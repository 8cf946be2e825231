"""
Tests for settings, logging setup and metrics helpers.
"""

import json
import logging

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from devicetrust.core import metrics
from devicetrust.core.config import DEFAULT_ALGORITHMS, Settings
from devicetrust.core.logging_config import TraceIDFilter, get_logger, setup_logging


def test_defaults():
    settings = Settings()

    assert settings.log_format == "json"
    assert settings.algorithms == DEFAULT_ALGORITHMS
    assert settings.one_time_key_batch == 50
    assert settings.sas_emoji_count == 7
    assert settings.request_timeout_seconds is None
    assert not settings.metrics_enabled


def test_from_env(monkeypatch):
    monkeypatch.setenv("DEVICETRUST_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("DEVICETRUST_LOG_FORMAT", "TEXT")
    monkeypatch.setenv("DEVICETRUST_METRICS_ENABLED", "true")
    monkeypatch.setenv("DEVICETRUST_METRICS_PORT", "9200")
    monkeypatch.setenv("DEVICETRUST_ALGORITHMS", "m.megolm.v1.aes-sha2, m.olm.v1.curve25519-aes-sha2")
    monkeypatch.setenv("DEVICETRUST_ONE_TIME_KEY_BATCH", "20")
    monkeypatch.setenv("DEVICETRUST_REQUEST_TIMEOUT", "30")
    monkeypatch.setenv("DEVICETRUST_KEY_DIR", "/tmp/devicetrust-keys")

    settings = Settings.from_env()

    assert settings.log_level == "DEBUG"
    assert settings.log_format == "text"
    assert settings.metrics_enabled
    assert settings.metrics_port == 9200
    assert settings.algorithms == ["m.megolm.v1.aes-sha2", "m.olm.v1.curve25519-aes-sha2"]
    assert settings.one_time_key_batch == 20
    assert settings.request_timeout_seconds == 30.0
    assert settings.key_dir == "/tmp/devicetrust-keys"


@pytest.mark.parametrize("field,value", [
    ("log_format", "xml"),
    ("one_time_key_batch", 0),
    ("sas_emoji_count", 8),
    ("request_timeout_seconds", 0),
])
def test_invalid_settings_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_json_logging_includes_trace_id(capsys):
    setup_logging(level="INFO", log_format="json")
    try:
        get_logger("devicetrust.test", trace_id="txn-42").info("hello")
        line = capsys.readouterr().err.strip().splitlines()[-1]
    finally:
        logging.getLogger().handlers.clear()

    record = json.loads(line)
    assert record["message"] == "hello"
    assert record["trace_id"] == "txn-42"
    assert record["level"] == "INFO"


def test_trace_id_filter_fills_default():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

    assert TraceIDFilter().filter(record)
    assert record.trace_id == "N/A"


def test_metric_helpers_are_safe_before_init():
    if metrics.VERIFICATION_TRANSITIONS is not None:
        pytest.skip("metrics already initialized in this process")

    metrics.track_keys_generated("identity")
    metrics.track_verify_failure()
    metrics.track_transition("completed")
    metrics.track_session_created()


def test_metrics_count_transitions():
    metrics.init_metrics()
    metrics.init_metrics()
    sample = ("devicetrust_verification_transitions_total", {"state": "started"})
    before = REGISTRY.get_sample_value(*sample) or 0.0

    metrics.track_transition("started")

    assert REGISTRY.get_sample_value(*sample) == before + 1
