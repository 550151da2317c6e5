"""OpenTelemetry wiring: Prometheus metrics plus request and store traces."""

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import start_http_server

from .context import AppContext
from .logging_config import get_logger

logger = get_logger(__name__)

# The webhook is called by Telegram on every tap; its traces are noise.
EXCLUDED_URLS = "telegram/webhook"


def setup_telemetry(app: FastAPI, context: AppContext) -> bool:
    """Export metrics and traces when ``ENABLE_TELEMETRY`` is set.

    Access, notification, callback and refresh counters from ``metrics`` are
    served on ``METRICS_PORT``. Spans cover the API routes and the statements
    run on this app's own engine.

    Returns:
        True when telemetry was set up
    """
    settings = context.settings
    if not settings.enable_telemetry:
        return False

    try:
        resource = Resource.create(
            {"service.name": "service-tracker", "service.version": settings.version}
        )
        prometheus_reader = PrometheusMetricReader()
        metrics.set_meter_provider(
            MeterProvider(resource=resource, metric_readers=[prometheus_reader])
        )
        start_http_server(settings.metrics_port)
        logger.info("Prometheus metrics server started", port=settings.metrics_port)

        tracer_provider = TracerProvider(resource=resource)
        # Console exporter until an OTLP collector is deployed
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(tracer_provider)

        FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
        SQLAlchemyInstrumentor().instrument(engine=context.engine)
    except Exception as e:
        # Telemetry never keeps the tracker from serving
        logger.error("Failed to set up OpenTelemetry", error=str(e))
        return False

    logger.info("OpenTelemetry enabled", metrics_port=settings.metrics_port)
    return True
