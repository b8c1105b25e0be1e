"""Tracing setup for agent trees.

One tracer provider per process. Its resource names the service from the
telemetry settings (or ``deva-<agent key>`` for the agent that turned
tracing on) so spans from ``deva.question`` and ``deva.ask`` can be grouped
per agent tree in the collector.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from ..config import TelemetryConfig

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:4317"

_provider: Optional[TracerProvider] = None


def service_name_for(telemetry: TelemetryConfig, agent_key: Optional[str] = None) -> str:
    """Service name: explicit setting, then OTEL_SERVICE_NAME, then the agent key."""
    if telemetry.service_name:
        return telemetry.service_name
    env_name = os.getenv("OTEL_SERVICE_NAME")
    if env_name:
        return env_name
    return f"deva-{agent_key}" if agent_key else "deva"


def build_tracer_provider(
    telemetry: Any = None,
    *,
    agent_key: Optional[str] = None,
    exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """Build (but do not install) a tracer provider for an agent tree.

    Args:
        telemetry: TelemetryConfig or mapping with service_name/endpoint
        agent_key: Key of the agent that enabled tracing
        exporter: Span exporter; defaults to OTLP gRPC with batching.
            A custom exporter gets a SimpleSpanProcessor so spans are
            exported as soon as they end.
    """
    telemetry = TelemetryConfig.coerce(telemetry)
    attributes = {
        "service.name": service_name_for(telemetry, agent_key),
        "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development"),
    }
    if agent_key:
        attributes["deva.root"] = agent_key

    provider = TracerProvider(resource=Resource.create(attributes))

    if exporter is None:
        endpoint = telemetry.endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_ENDPOINT)
        processor = BatchSpanProcessor(
            OTLPSpanExporter(endpoint=endpoint, insecure=True),
            max_queue_size=2048,
            schedule_delay_millis=1000,
            max_export_batch_size=512,
        )
    else:
        processor = SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)
    return provider


def init_telemetry(
    telemetry: Any = None,
    *,
    agent_key: Optional[str] = None,
    exporter: Optional[SpanExporter] = None,
) -> Optional[TracerProvider]:
    """Install the process tracer provider; later calls are no-ops.

    Returns:
        The installed provider, or None if one was already installed
    """
    global _provider
    if _provider is not None:
        return None

    provider = build_tracer_provider(telemetry, agent_key=agent_key, exporter=exporter)
    trace.set_tracer_provider(provider)
    _provider = provider

    logger.info(
        "[deva.tracing] Tracing enabled: service=%s",
        provider.resource.attributes.get("service.name"),
    )
    return provider


def shutdown_telemetry() -> None:
    """Flush pending spans and shut the installed provider down."""
    global _provider
    if _provider is None:
        return

    provider, _provider = _provider, None
    provider.shutdown()
    logger.info("[deva.tracing] Tracing shut down")


__all__ = [
    "build_tracer_provider",
    "init_telemetry",
    "service_name_for",
    "shutdown_telemetry",
]
