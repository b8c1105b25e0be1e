"""Tests for deva.config."""

from pathlib import Path

import pytest

from deva import Deva, DevaConfig, load_config
from deva.config import DEFAULT_ASK_TIMEOUT_SEC

CONFIG_TEXT = """
name = "support-desk"
ask_timeout_sec = 5
max_listeners = 20
ask_chr = "@"

[telemetry]
enabled = false
service_name = "${DESK_SERVICE}"

[agents.buddy]
greeting = "hello"

[agents.clerk]
shift = "night"
"""


def test_config_defaults():
    """Test DevaConfig defaults."""
    config = DevaConfig()
    assert config.name is None
    assert config.ask_timeout_sec == DEFAULT_ASK_TIMEOUT_SEC
    assert config.ask_chr == "#"
    assert config.cmd_chr == "!"
    assert config.max_listeners == 0
    assert config.telemetry.enabled is False
    assert config.agents == {}
    assert not hasattr(config, "version")
    assert not hasattr(config, "description")


def test_load_missing_file(tmp_path: Path):
    """A missing file yields defaults."""
    config = DevaConfig.load(tmp_path / "deva.toml")
    assert config == DevaConfig()


def test_load_with_env_expansion(tmp_path: Path, monkeypatch):
    """Test loading deva.toml with ${VAR} expansion."""
    monkeypatch.setenv("DESK_SERVICE", "desk-svc")
    path = tmp_path / "deva.toml"
    path.write_text(CONFIG_TEXT, encoding="utf-8")

    config = DevaConfig.load(path)

    assert config.name == "support-desk"
    assert config.ask_timeout_sec == 5.0
    assert config.max_listeners == 20
    assert config.ask_chr == "@"
    assert config.cmd_chr == "!"
    assert config.telemetry.service_name == "desk-svc"
    assert config.for_agent("buddy") == {"greeting": "hello"}
    assert config.for_agent("clerk") == {"shift": "night"}
    assert config.for_agent("nobody") == {}


def test_load_env_file(tmp_path: Path, monkeypatch):
    """Values from a sibling .env file are used for expansion."""
    monkeypatch.setenv("DESK_SERVICE", "placeholder")
    monkeypatch.delenv("DESK_SERVICE")
    (tmp_path / ".env").write_text('DESK_SERVICE="from-dotenv"\n# comment\n', encoding="utf-8")
    path = tmp_path / "deva.toml"
    path.write_text(CONFIG_TEXT, encoding="utf-8")

    config = DevaConfig.load(path)

    assert config.telemetry.service_name == "from-dotenv"


def test_load_config_searches_upward(tmp_path: Path, monkeypatch):
    """load_config finds deva.toml in a parent directory."""
    monkeypatch.setenv("DESK_SERVICE", "svc")
    (tmp_path / "deva.toml").write_text(CONFIG_TEXT, encoding="utf-8")
    nested = tmp_path / "agents" / "buddy"
    nested.mkdir(parents=True)

    config = load_config(nested)

    assert config.name == "support-desk"


def test_agent_reads_settings():
    """Agents read protocol settings from objects or mappings."""
    assert Deva(config=DevaConfig(ask_timeout_sec=2)).ask_timeout == 2.0
    assert Deva(config={"ask_timeout_sec": 0}).ask_timeout is None
    assert Deva(config={}).ask_timeout == DEFAULT_ASK_TIMEOUT_SEC
    assert Deva(config=DevaConfig(ask_chr="@")).ask_chr == "@"
    assert Deva(config=object()).cmd_chr == "!"


@pytest.mark.asyncio
async def test_config_max_listeners_applied(bus):
    """The config listener cap reaches the bus at init."""
    deva = Deva(agent={"key": "buddy"}, events=bus, config=DevaConfig(max_listeners=99))
    await deva.init()
    assert bus.max_listeners == 99
