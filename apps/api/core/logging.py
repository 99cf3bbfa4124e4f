"""Log and span plumbing for the helpdesk API.

Ticket code logs through ``logging.getLogger(__name__)`` and opens spans
through ``trace.get_tracer(__name__)``; this module only decides where those
records and spans end up.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from apps.api.core.config import Settings

_active_provider: TracerProvider | None = None


def _parse_headers(header_string: str | None) -> dict[str, str]:
    """Turn ``key=value,key2=value2`` into a dict, dropping items without a key."""

    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def _library_levels(settings: Settings) -> dict[str, dict[str, int]]:
    # SQL statements only when database_echo is on
    return {
        "sqlalchemy.engine": {"level": logging.INFO if settings.database_echo else logging.WARNING},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the stream handler on the root logger and return the app logger."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "loggers": _library_levels(settings),
            "root": {"handlers": ["default"], "level": level},
        }
    )

    logger = logging.getLogger(settings.app_name)
    logger.setLevel(level)
    return logger


def _span_exporter(settings: Settings) -> OTLPSpanExporter:
    options: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Export ticket spans over OTLP when ``otel_enabled`` is set.

    Returns the new provider, or ``None`` when tracing is off or a provider
    from an earlier call is still active.
    """

    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource(
            attributes={
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(settings)))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending ticket spans and release the provider."""

    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
