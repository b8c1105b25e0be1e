"""OpenTelemetry tracing for agent trees.

Off by default. An agent turns it on at ``init`` when its config has
``telemetry.enabled`` or ``DEVA_TELEMETRY=1`` is set; question and ask
spans then go to the OTLP endpoint from the config.
"""

from .tracing import build_tracer_provider, init_telemetry, shutdown_telemetry

__all__ = [
    "build_tracer_provider",
    "init_telemetry",
    "shutdown_telemetry",
]
