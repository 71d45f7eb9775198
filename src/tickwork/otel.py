"""Tracing and logging for Tickwork, exported over OTLP/HTTP.

Every tick, job execution and run outcome becomes a span; every log line
from the `tickwork` logger is also shipped as an OTel log record. Until
init_otel() runs (tests, one-off scripts) spans are no-ops and logs only
go to stderr.

record_run() is the sink the dispatcher reports each outcome to. It makes
one span and one log line; export happens on the batch processors' own
threads, never on the tick.
"""

import os
import logging
import sys

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter

from opentelemetry.sdk.resources import Resource, SERVICE_NAME

LOGGER_NAME = "tickwork"
DEFAULT_ENDPOINT = "http://localhost:4318"
LOG_FORMAT = "[Tickwork] %(levelname)s [%(threadName)s] %(message)s"

_tracer: trace.Tracer | None = None
_logger: logging.Logger | None = None
_exporting = False


def _endpoints() -> tuple[str, str]:
    """(traces, logs) URLs. Per-signal variables win over the shared base."""
    base = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_ENDPOINT).rstrip("/")
    return (
        os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", f"{base}/v1/traces"),
        os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT", f"{base}/v1/logs"),
    )


def init_otel(service_name: str = "tickwork", environment: str = ""):
    """Install OTLP exporters for traces and logs. Calling it again does nothing."""
    global _tracer, _exporting
    if _exporting:
        return

    traces_endpoint, logs_endpoint = _endpoints()
    attributes = {SERVICE_NAME: service_name}
    if environment:
        attributes["deployment.environment"] = environment
    resource = Resource.create(attributes)

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint)))
    trace.set_tracer_provider(tracer_provider)
    _tracer = trace.get_tracer(LOGGER_NAME)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(endpoint=logs_endpoint)))
    set_logger_provider(logger_provider)

    # On the root logger; the tickwork logger propagates into it
    logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=logger_provider))
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    _exporting = True
    get_logger().info(f"OTel exporting: traces → {traces_endpoint}, logs → {logs_endpoint}")


def init_logging(level: int = logging.INFO) -> logging.Logger:
    """Set up the `tickwork` logger with one stderr handler.

    Job runs log from worker threads, so the thread name is in every line.
    """
    global _logger

    _logger = logging.getLogger(LOGGER_NAME)
    _logger.setLevel(level)
    _logger.propagate = True
    _logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _logger.addHandler(handler)
    return _logger


def get_logger() -> logging.Logger:
    global _logger
    if _logger is None:
        init_logging()
    return _logger


def get_tracer() -> trace.Tracer:
    """The Tickwork tracer. A no-op tracer until init_otel() runs."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(LOGGER_NAME)
    return _tracer


def span(name: str, **attributes):
    """Context manager for a span named `name`.

    Attributes that are None are left off (OTel rejects them), so callers
    can pass optional values straight through:

        with span("tickwork.tick", now=now.isoformat(), jobs=len(jobs)):
            ...
    """
    s = get_tracer().start_span(name)
    for key, value in attributes.items():
        if value is not None:
            s.set_attribute(key, value)
    return trace.use_span(s, end_on_exit=True)


def record_run(job_name: str, outcome, duration: float | None):
    """Report one finished (or skipped) run.

    Args:
        job_name: The job's name
        outcome: An Outcome (or its string value)
        duration: Seconds the run took, None for skips
    """
    status = getattr(outcome, "value", str(outcome))
    elapsed = round(duration, 3) if duration is not None else None

    with span("tickwork.run", job=job_name, outcome=status, duration_s=elapsed):
        log = get_logger()
        if status == "failure":
            log.error(f"Job {job_name} failed after {duration or 0:.1f}s")
        elif status.startswith("skipped"):
            log.info(f"Job {job_name} {status}")
        else:
            log.info(f"Job {job_name} {status} in {duration or 0:.1f}s")
