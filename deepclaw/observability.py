"""
DeepClaw Observability (OpenTelemetry)

Tracing is off unless ``DEEPCLAW_OTEL_ENABLED`` is truthy. The other knobs:

- DEEPCLAW_OTEL_SERVICE_NAME   resource name on every span (default ``deepclaw-api``)
- DEEPCLAW_OTEL_EXPORTER       ``console`` or ``otlp``
- DEEPCLAW_OTEL_OTLP_ENDPOINT  collector URL, OTLP only
- DEEPCLAW_OTEL_EXCLUDED_URLS  comma-separated paths left untraced (default ``health``)

The OpenTelemetry packages are an optional extra (``pip install deepclaw[otel]``);
without them both hooks log once and report False.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from deepclaw.config import DEEPCLAW_VERSION
from deepclaw.logs import get_logger

logger = get_logger(__name__)

EXPORTERS = ("console", "otlp")
TRUTHY = {"1", "true", "yes", "on"}


def _bool_env(name: str, default: bool = False, environ: Optional[Mapping[str, str]] = None) -> bool:
    raw = (os.environ if environ is None else environ).get(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def tracing_enabled() -> bool:
    return _bool_env("DEEPCLAW_OTEL_ENABLED", False)


@dataclass(frozen=True)
class TracingSettings:
    enabled: bool = False
    service_name: str = "deepclaw-api"
    exporter: str = "console"
    endpoint: Optional[str] = None
    excluded_urls: str = "health"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TracingSettings":
        env = os.environ if environ is None else environ
        exporter = env.get("DEEPCLAW_OTEL_EXPORTER", "console").strip().lower()
        if exporter not in EXPORTERS:
            logger.warning("otel_unknown_exporter", exporter=exporter, fallback="console")
            exporter = "console"
        return cls(
            enabled=_bool_env("DEEPCLAW_OTEL_ENABLED", False, env),
            service_name=env.get("DEEPCLAW_OTEL_SERVICE_NAME", "deepclaw-api").strip() or "deepclaw-api",
            exporter=exporter,
            endpoint=env.get("DEEPCLAW_OTEL_OTLP_ENDPOINT") or None,
            excluded_urls=env.get("DEEPCLAW_OTEL_EXCLUDED_URLS", "health"),
        )


def _span_exporter(settings: TracingSettings):
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter

    if settings.exporter != "otlp":
        return ConsoleSpanExporter()
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("otlp_exporter_unavailable", fallback="console")
        return ConsoleSpanExporter()
    return OTLPSpanExporter(endpoint=settings.endpoint) if settings.endpoint else OTLPSpanExporter()


def configure_observability(settings: Optional[TracingSettings] = None) -> bool:
    """Install a global tracer provider. Returns True when tracing is live."""
    settings = settings or TracingSettings.from_env()
    if not settings.enabled:
        return False
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning("otel_unavailable", reason="opentelemetry-sdk not installed")
        return False

    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": DEEPCLAW_VERSION,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(settings)))
    trace.set_tracer_provider(provider)
    logger.info("otel_configured", service_name=settings.service_name, exporter=settings.exporter)
    return True


def instrument_app(app, settings: Optional[TracingSettings] = None) -> bool:
    settings = settings or TracingSettings.from_env()
    if not settings.enabled:
        return False
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    except ImportError:
        logger.warning("otel_instrumentation_unavailable")
        return False

    FastAPIInstrumentor.instrument_app(app, excluded_urls=settings.excluded_urls)
    return True
