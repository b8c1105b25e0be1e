"""Configuration management for deva projects.

Parses deva.toml files with support for:
- Project metadata
- Question/ask protocol settings
- Telemetry settings
- Per-agent tables

Example deva.toml structure:

    name = "support-desk"
    ask_timeout_sec = 10
    max_listeners = 50

    [telemetry]
    enabled = true
    endpoint = "http://localhost:4317"

    [agents.buddy]
    greeting = "hello"

Note: Use proper TOML tables (not string-encoded Python dictionaries).
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

if sys.version_info >= (3, 11):
    import tomllib as toml  # type: ignore
else:
    try:
        import tomli as toml  # type: ignore
    except ImportError:
        toml = None  # type: ignore

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "deva.toml"
DEFAULT_ASK_TIMEOUT_SEC = 30.0


def _load_env_file(env_path: Path) -> None:
    """Load environment variables from .env file."""
    if not env_path.exists():
        return

    try:
        with open(env_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                # KEY=VALUE, KEY='VALUE' or KEY="VALUE"
                if "=" in line:
                    key, _, value = line.partition("=")
                    key = key.strip()
                    value = value.strip()

                    if value and value[0] in ('"', "'") and value[-1] == value[0]:
                        value = value[1:-1]

                    # Real environment wins
                    if key and key not in os.environ:
                        os.environ[key] = value
    except OSError as e:
        logger.warning("[deva.config] Failed to load .env file %s: %s", env_path, e)


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and $VAR environment variable references."""
    if isinstance(value, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        pattern = r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)"
        return re.sub(pattern, replace_var, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    else:
        return value


@dataclass
class TelemetryConfig:
    """OpenTelemetry export settings."""

    enabled: bool = False
    service_name: Optional[str] = None
    endpoint: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> TelemetryConfig:
        """Accept a TelemetryConfig, a mapping (e.g. a plain dict config) or None."""
        if isinstance(value, TelemetryConfig):
            return value
        if isinstance(value, dict):
            return cls(
                enabled=bool(value.get("enabled", False)),
                service_name=value.get("service_name"),
                endpoint=value.get("endpoint"),
            )
        return cls()


@dataclass
class DevaConfig:
    """Complete deva project configuration.

    Passed to agents as their ``config`` and shared with every child.
    """

    name: Optional[str] = None

    # Question/ask protocol
    ask_timeout_sec: float = DEFAULT_ASK_TIMEOUT_SEC
    ask_chr: str = "#"
    cmd_chr: str = "!"
    max_listeners: int = 0

    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    # Agent-specific settings keyed by agent key
    agents: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path = Path(CONFIG_FILENAME)) -> DevaConfig:
        """Load configuration from a deva.toml file.

        Loads the first .env file found next to the config, in the current
        working directory, or in a parent directory, then expands ${VAR}
        references in the config.
        """
        if not path.exists():
            return cls()

        if toml is None:
            raise ImportError(
                "tomli is required for Python < 3.11. Install with: pip install tomli"
            )

        env_search_paths = [
            path.parent / ".env",
            Path.cwd() / ".env",
        ]
        current = path.parent
        while current != current.parent:
            env_search_paths.append(current / ".env")
            current = current.parent

        for env_path in env_search_paths:
            if env_path.exists():
                _load_env_file(env_path)
                break

        try:
            raw_data = toml.loads(path.read_text(encoding="utf-8"))
            data = _expand_env_vars(raw_data)
        except Exception as e:
            raise RuntimeError(f"Failed to parse {path}: {e}") from e

        config = cls()
        config.name = data.get("name")

        config.ask_timeout_sec = float(data.get("ask_timeout_sec", DEFAULT_ASK_TIMEOUT_SEC))
        config.ask_chr = data.get("ask_chr", "#")
        config.cmd_chr = data.get("cmd_chr", "!")
        config.max_listeners = int(data.get("max_listeners", 0))

        if "telemetry" in data:
            config.telemetry = TelemetryConfig.coerce(data["telemetry"])

        agents: dict[str, Any] = {}
        for key, val in data.get("agents", {}).items():
            if not isinstance(val, dict):
                # Skip invalid entries - TOML should provide tables
                logger.warning("[deva.config] Ignoring non-table agent entry %s", key)
                continue
            agents[key] = val
        config.agents = agents

        return config

    def for_agent(self, key: str) -> dict[str, Any]:
        """Settings table for one agent (empty if none)."""
        return dict(self.agents.get(key, {}))


def load_config(start_dir: Path = Path(".")) -> DevaConfig:
    """Load project configuration, searching up from start_dir."""
    current = start_dir.resolve()
    while current != current.parent:
        config_path = current / CONFIG_FILENAME
        if config_path.exists():
            return DevaConfig.load(config_path)
        current = current.parent

    return DevaConfig()


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_ASK_TIMEOUT_SEC",
    "DevaConfig",
    "TelemetryConfig",
    "load_config",
]
