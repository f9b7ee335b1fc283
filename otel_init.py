"""
OpenTelemetry initialization for the deadman service.

Traces and logs are exported over OTLP/gRPC when OTEL_EXPORTER_OTLP_ENDPOINT
is set. Without an endpoint the global no-op providers stay in place, so
`get_tracer()` is always safe to call.

For FastAPI/Uvicorn the OTLP handler must be attached to the root logger AND
the uvicorn loggers, because uvicorn loggers don't propagate to root.
"""

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_TRUTHY = ("true", "1", "yes")

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)


def _env_enabled(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def parse_otlp_headers(headers_env: str | None) -> dict[str, str] | None:
    """
    Parse OTLP headers from environment variable.

    Args:
        headers_env: Header string in format "key1=value1,key2=value2"

    Returns:
        Dictionary of headers or None if invalid/empty
    """
    if not headers_env or not headers_env.strip():
        return None

    headers = {}
    for item in headers_env.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        if key.strip():
            headers[key.strip()] = value.strip()

    if not headers:
        logger.warning(
            "OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found"
        )
        return None
    return headers


_initialization_state = {
    "tracing": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
}


def setup_telemetry(
    service_name: str = "deadman",
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """
    Set up OpenTelemetry tracing and log export.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint URL
        enable_traces: Whether to enable traces
        enable_logs: Whether to enable logs
    """
    if not _env_enabled("ENABLE_OTEL"):
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not otlp_endpoint:
        logger.debug("OTEL_EXPORTER_OTLP_ENDPOINT not set, telemetry export disabled")
        return

    enable_traces = enable_traces and _env_enabled("ENABLE_TRACES")
    enable_logs = enable_logs and _env_enabled("ENABLE_LOGS")
    fail_fast = _env_enabled("OTEL_FAIL_FAST", "false")
    headers = parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
        }
    )

    if enable_traces:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _initialization_state["tracing"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry tracing: {e}", exc_info=True)
            if fail_fast:
                raise

    if enable_logs:
        global _global_logger_provider
        try:
            # set_logging_format=False to avoid clearing existing handlers
            LoggingInstrumentor().instrument(set_logging_format=False)

            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(endpoint=otlp_endpoint, headers=headers)
                )
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _initialization_state["logs"]["error"] = str(e)
            logger.error(
                f"Failed to set up OpenTelemetry logging export: {e}", exc_info=True
            )
            if fail_fast:
                raise


def instrument_fastapi_app(app) -> None:
    """Instrument a FastAPI application."""
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if _env_enabled("OTEL_FAIL_FAST", "false"):
            raise


def attach_logging_handler() -> bool:
    """
    Attach the OTLP logging handler to the root logger and uvicorn loggers.

    Call this after uvicorn has configured logging, i.e. in app startup.
    """
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.debug("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        logger.debug("OTLP logging handler already attached")
        return True

    handler = LoggingHandler(
        level=logging.NOTSET,
        logger_provider=_global_logger_provider,
    )
    for name in (None, "uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).addHandler(handler)
    _otlp_logging_handler = handler

    logger.info("OTLP logging handler attached to root and uvicorn loggers")
    return True


def get_tracer(name: str = None) -> trace.Tracer:
    """
    Get a tracer instance.

    Args:
        name: Tracer name

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name or "deadman")


def get_initialization_state() -> dict:
    return {k: dict(v) for k, v in _initialization_state.items()}
