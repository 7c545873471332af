# telemetry.py — Optional OpenTelemetry tracing for the HR Onboarding API
"""
Tracing is off unless OTEL_EXPORTER_OTLP_ENDPOINT is set and the
``telemetry`` extra is installed. Domain code opens spans through
``onboarding_span``; with tracing off those spans are no-ops.
"""
import os
import logging
import importlib
from contextlib import contextmanager

logger = logging.getLogger("hr-onboarding.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "hr-onboarding-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
TRACER_NAME = "hr-onboarding"

# (module, class) pairs; database and outbound LLM calls
LIBRARY_INSTRUMENTORS = (
    ("opentelemetry.instrumentation.sqlalchemy", "SQLAlchemyInstrumentor"),
    ("opentelemetry.instrumentation.httpx", "HTTPXClientInstrumentor"),
)

_provider = None


def _instrument_libraries(provider) -> list:
    enabled = []
    for module_name, class_name in LIBRARY_INSTRUMENTORS:
        try:
            instrumentor = getattr(importlib.import_module(module_name), class_name)
        except ImportError:
            logger.warning(f"{module_name} not installed; {class_name} skipped")
            continue
        instrumentor().instrument(tracer_provider=provider)
        enabled.append(class_name)
    return enabled


def setup_telemetry(app=None):
    """Register an OTLP tracer provider and instrument the app.

    Returns the provider, or None when tracing stays off.
    """
    global _provider
    if not OTLP_ENDPOINT:
        logger.info("Tracing off (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("Tracing off (install the 'telemetry' extra to enable it)")
        return None

    provider = TracerProvider(resource=Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    enabled = _instrument_libraries(provider)
    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed; routes untraced")
        else:
            # Health probes would drown the approval and checklist traces
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
            enabled.append("FastAPIInstrumentor")

    _provider = provider
    logger.info(f"Tracing to {OTLP_ENDPOINT} as {SERVICE_NAME} ({', '.join(enabled) or 'no instrumentors'})")
    return provider


@contextmanager
def onboarding_span(name: str, **attributes):
    """Span around one domain step, e.g. an approval transition.

    Attribute values of None are dropped. Yields the span, or None when
    tracing is off.
    """
    if _provider is None:
        yield None
        return
    tracer = _provider.get_tracer(TRACER_NAME, SERVICE_VERSION)
    with tracer.start_as_current_span(f"hr_onboarding.{name}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"hr_onboarding.{key}", value)
        yield span
