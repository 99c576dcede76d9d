"""Runtime configuration and logging setup.

Configuration sources, lowest to highest precedence:
- Dataclass defaults
- YAML file (``load_config``)
- Environment variables (``AGENT_RUNTIME_*``)
- Explicit constructor arguments

YAML layout:

    transport:
      mode: http
      url: http://localhost:8000/agent
      encoding: binary
      read_timeout: 60
    server:
      path: /agent
      validate_output: true
    logging:
      level: DEBUG
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "AGENT_RUNTIME_"

TRANSPORT_MODES = ("http", "websocket", "local")
ENCODINGS = ("text", "binary")
SYNC_ERROR_POLICIES = ("report", "escalate")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _check_choice(key: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {key} {value!r} (expected one of {', '.join(choices)})")


@dataclass
class TransportConfig:
    """Client-side configuration for one run.

    Attributes:
        mode: "http" | "websocket" | "local" (in-process agent)
        url: Agent endpoint for http/websocket modes
        headers: Extra request headers (e.g. auth tokens set by the caller)
        timeout: Connect/request timeout in seconds
        read_timeout: Max seconds between frames; None waits forever
        encoding: Preferred wire encoding, "text" or "binary"
        sync_error_policy: "report" keeps the run going on a rejected delta,
            "escalate" ends it with a RUN_ERROR
    """

    mode: str = "http"
    url: str = "http://localhost:8000/"
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    read_timeout: float | None = None
    encoding: str = "text"
    sync_error_policy: str = "report"

    def __post_init__(self) -> None:
        _check_choice("mode", self.mode, TRANSPORT_MODES)
        _check_choice("encoding", self.encoding, ENCODINGS)
        _check_choice("sync_error_policy", self.sync_error_policy, SYNC_ERROR_POLICIES)
        if self.timeout <= 0:
            raise ValueError(f"Invalid timeout {self.timeout!r} (must be positive)")
        if self.read_timeout is not None and self.read_timeout <= 0:
            raise ValueError(f"Invalid read_timeout {self.read_timeout!r} (must be positive)")

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> TransportConfig:
        """Build a config from environment variables.

        Reads ``<prefix>MODE``, ``URL``, ``TIMEOUT``, ``READ_TIMEOUT``,
        ``ENCODING`` and ``SYNC_ERROR_POLICY``. Keyword overrides win.
        """
        values: dict[str, Any] = {}
        env = os.environ
        if f"{prefix}MODE" in env:
            values["mode"] = env[f"{prefix}MODE"].lower()
        if f"{prefix}URL" in env:
            values["url"] = env[f"{prefix}URL"]
        if f"{prefix}TIMEOUT" in env:
            values["timeout"] = _parse_float("timeout", env[f"{prefix}TIMEOUT"])
        if f"{prefix}READ_TIMEOUT" in env:
            raw = env[f"{prefix}READ_TIMEOUT"]
            values["read_timeout"] = None if raw.lower() in ("", "none") else _parse_float(
                "read_timeout", raw
            )
        if f"{prefix}ENCODING" in env:
            values["encoding"] = env[f"{prefix}ENCODING"].lower()
        if f"{prefix}SYNC_ERROR_POLICY" in env:
            values["sync_error_policy"] = env[f"{prefix}SYNC_ERROR_POLICY"].lower()
        values.update(overrides)
        return cls(**values)


@dataclass
class ServerConfig:
    """Configuration for the server-side adapter.

    Attributes:
        path: Route for POST (and ``<path>/ws`` for WebSocket)
        validate_output: Check producer output with the run state machine
        default_encoding: Used when the client sends no usable Accept header
    """

    path: str = "/"
    validate_output: bool = True
    default_encoding: str = "text"

    def __post_init__(self) -> None:
        _check_choice("default_encoding", self.default_encoding, ENCODINGS)
        if not self.path.startswith("/"):
            raise ValueError(f"Invalid path {self.path!r} (must start with '/')")


@dataclass
class RuntimeConfig:
    """Everything loaded from a config file."""

    transport: TransportConfig = field(default_factory=TransportConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {key} {raw!r} (expected a number)") from None


def _section(cls: type, data: Any, section: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {section} section (expected a mapping)")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {section} option(s): {', '.join(sorted(unknown))}")
    return cls(**data)


def load_config(path: str | Path) -> RuntimeConfig:
    """Load a RuntimeConfig from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a section or option is invalid
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file {path} (expected a mapping)")

    logging_section = data.get("logging") or {}
    level = str(logging_section.get("level", "INFO")).upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(f"Invalid logging level {level!r}")

    return RuntimeConfig(
        transport=_section(TransportConfig, data.get("transport"), "transport"),
        server=_section(ServerConfig, data.get("server"), "server"),
        log_level=level,
    )


def configure_logging(level: str | int = logging.INFO) -> None:
    """Send all logging to stderr with a single handler.

    Removes handlers installed earlier so that stdout stays free for wire
    output (e.g. when events are piped to another process).
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(level)
