"""Tracing opt-in and question/ask spans."""

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from deva import Deva, DevaConfig, TelemetryConfig, method
from deva import agent as agent_module
from deva.telemetry import tracing


class Echo(Deva):
    @method("echo")
    async def echo(self, packet):
        return packet.q.text


@pytest.fixture
def init_calls(monkeypatch):
    """Record init_telemetry calls instead of installing a global provider."""
    calls = []
    monkeypatch.delenv("DEVA_TELEMETRY", raising=False)
    monkeypatch.setattr(
        tracing, "init_telemetry", lambda telemetry, **kwargs: calls.append((telemetry, kwargs))
    )
    return calls


@pytest.fixture
def exporter(monkeypatch):
    """Route agent spans to an in-memory exporter."""
    spans = InMemorySpanExporter()
    monkeypatch.delenv("OTEL_SERVICE_NAME", raising=False)
    provider = tracing.build_tracer_provider(agent_key="test", exporter=spans)
    monkeypatch.setattr(agent_module, "tracer", provider.get_tracer("deva.test"))
    yield spans
    provider.shutdown()


class TestOptIn:
    @pytest.mark.asyncio
    async def test_off_by_default(self, make_deva, init_calls) -> None:
        await make_deva().init()
        assert init_calls == []

    @pytest.mark.asyncio
    async def test_enabled_in_config(self, make_deva, init_calls) -> None:
        config = DevaConfig(telemetry=TelemetryConfig(enabled=True, service_name="desk"))
        await make_deva("buddy", config=config).init()

        assert init_calls == [(config.telemetry, {"agent_key": "buddy"})]

    @pytest.mark.asyncio
    async def test_enabled_in_mapping_config(self, make_deva, init_calls) -> None:
        await make_deva("buddy", config={"telemetry": {"enabled": True}}).init()

        assert init_calls == [(TelemetryConfig(enabled=True), {"agent_key": "buddy"})]

    @pytest.mark.asyncio
    async def test_enabled_by_env(self, make_deva, init_calls, monkeypatch) -> None:
        monkeypatch.setenv("DEVA_TELEMETRY", "1")
        await make_deva("buddy").init()

        assert init_calls == [(TelemetryConfig(), {"agent_key": "buddy"})]

    @pytest.mark.asyncio
    async def test_failing_init_is_logged(self, make_deva, monkeypatch, caplog) -> None:
        def broken(telemetry, **kwargs):
            raise RuntimeError("collector down")

        monkeypatch.setenv("DEVA_TELEMETRY", "1")
        monkeypatch.setattr(tracing, "init_telemetry", broken)
        deva = make_deva("buddy")

        with caplog.at_level("WARNING", logger="deva.agent"):
            await deva.init()

        assert deva.active
        assert "collector down" in caplog.text


class TestProvider:
    def test_resource_from_config(self) -> None:
        provider = tracing.build_tracer_provider(
            TelemetryConfig(service_name="desk"), agent_key="buddy", exporter=InMemorySpanExporter()
        )

        assert provider.resource.attributes["service.name"] == "desk"
        assert provider.resource.attributes["deva.root"] == "buddy"

    def test_service_name_defaults_to_agent_key(self, monkeypatch) -> None:
        monkeypatch.delenv("OTEL_SERVICE_NAME", raising=False)
        assert tracing.service_name_for(TelemetryConfig(), "buddy") == "deva-buddy"
        assert tracing.service_name_for(TelemetryConfig()) == "deva"

        monkeypatch.setenv("OTEL_SERVICE_NAME", "from-env")
        assert tracing.service_name_for(TelemetryConfig(), "buddy") == "from-env"

    def test_init_installs_once_and_shuts_down(self, monkeypatch) -> None:
        installed = []
        monkeypatch.setattr(tracing, "_provider", None)
        monkeypatch.setattr(tracing.trace, "set_tracer_provider", installed.append)

        provider = tracing.init_telemetry(
            {"service_name": "desk"}, agent_key="buddy", exporter=InMemorySpanExporter()
        )

        assert installed == [provider]
        assert tracing.init_telemetry(TelemetryConfig()) is None
        assert installed == [provider]

        tracing.shutdown_telemetry()
        assert tracing._provider is None
        tracing.shutdown_telemetry()


class TestSpans:
    @pytest.mark.asyncio
    async def test_local_question_span(self, make_deva, exporter) -> None:
        deva = make_deva("buddy", cls=Echo)
        await deva.init()

        packet = await deva.question("!echo hi")

        (span,) = exporter.get_finished_spans()
        assert span.name == "deva.question"
        assert span.attributes["deva.key"] == "buddy"
        assert span.attributes["deva.method"] == "echo"
        assert span.attributes["packet.id"] == packet.id

    @pytest.mark.asyncio
    async def test_remote_question_spans(self, make_deva, exporter) -> None:
        alpha = make_deva("alpha")
        beta = make_deva("beta", cls=Echo)
        await alpha.init()
        await beta.init()

        packet = await alpha.question("#beta echo hi")

        spans = {span.name: span for span in exporter.get_finished_spans()}
        assert set(spans) == {"deva.question", "deva.ask"}
        assert spans["deva.ask"].attributes["deva.key"] == "beta"
        assert spans["deva.ask"].attributes["deva.method"] == "echo"
        assert spans["deva.question"].attributes["deva.target"] == "beta"
        assert spans["deva.ask"].attributes["packet.id"] == packet.id

    @pytest.mark.asyncio
    async def test_failed_question_span_records_error(self, make_deva, exporter) -> None:
        async def broken(packet):
            raise RuntimeError("boom")

        deva = make_deva("buddy", methods={"broken": broken})
        await deva.init()

        with pytest.raises(RuntimeError):
            await deva.question("!broken")

        (span,) = exporter.get_finished_spans()
        assert not span.status.is_ok
        assert span.events[0].name == "exception"
