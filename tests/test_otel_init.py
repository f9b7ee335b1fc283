"""Tests for telemetry bootstrap helpers."""

import otel_init


def test_parse_otlp_headers():
    headers = otel_init.parse_otlp_headers("api-key=abc, tenant = ops ,broken")

    assert headers == {"api-key": "abc", "tenant": "ops"}


def test_parse_otlp_headers_empty():
    assert otel_init.parse_otlp_headers(None) is None
    assert otel_init.parse_otlp_headers("  ") is None
    assert otel_init.parse_otlp_headers("no-pairs") is None


def test_setup_telemetry_without_endpoint_is_noop(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    otel_init.setup_telemetry(service_name="deadman-test")

    state = otel_init.get_initialization_state()
    assert state["tracing"]["success"] is False
    assert state["logs"]["success"] is False


def test_attach_logging_handler_without_provider():
    assert otel_init.attach_logging_handler() is False
