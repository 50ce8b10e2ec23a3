from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from wscommon.log import get_logger
from wscommon.utils import parse_hostport

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClientConfig:
    """
    Timing and TLS knobs for WebSocketClient.

    The connect timeout is tied to the reconnect delay (twice its value), so a
    single attempt never outlasts two retry periods.
    """
    reconnect_delay: float = 3.0          # seconds between automatic reconnect attempts
    ping_interval: float = 30.0           # seconds between keepalive pings
    ping_payload_size: int = 10           # random bytes carried by each ping
    handshake_timeout: Optional[float] = None  # defaults to connect_timeout
    verify_tls: bool = True

    def __post_init__(self) -> None:
        if self.reconnect_delay <= 0:
            raise ValueError("reconnect_delay must be positive")
        if self.ping_interval <= 0:
            raise ValueError("ping_interval must be positive")
        if not 0 <= self.ping_payload_size <= 125:
            raise ValueError("ping_payload_size must be between 0 and 125")
        if self.handshake_timeout is not None and self.handshake_timeout <= 0:
            raise ValueError("handshake_timeout must be positive")

    @property
    def connect_timeout(self) -> float:
        return self.reconnect_delay * 2

    @property
    def effective_handshake_timeout(self) -> float:
        return self.handshake_timeout if self.handshake_timeout is not None else self.connect_timeout

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Build a config from a plain dict, ignoring (and logging) unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, path: Path) -> "ClientConfig":
        """
        Load a config from YAML. Accepts either a top-level mapping or one
        nested under ``client:``. A missing or empty file yields the defaults.
        """
        if not path.exists():
            logger.info("No config file at %s; using defaults", path)
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
        section = data.get("client", data)
        if not isinstance(section, dict):
            raise ValueError(f"{path}: 'client' must be a mapping")
        return cls.from_mapping(section)

    @classmethod
    def from_env(cls, base: Optional["ClientConfig"] = None) -> "ClientConfig":
        """Overlay WSCLIENT_RECONNECT_DELAY / WSCLIENT_PING_INTERVAL onto ``base``."""
        config = base or cls()
        overrides: Dict[str, Any] = {}
        delay = os.getenv("WSCLIENT_RECONNECT_DELAY")
        if delay:
            overrides["reconnect_delay"] = float(delay)
        interval = os.getenv("WSCLIENT_PING_INTERVAL")
        if interval:
            overrides["ping_interval"] = float(interval)
        return replace(config, **overrides) if overrides else config


def proxy_from_env() -> Optional[Tuple[str, int]]:
    """Read WSCLIENT_PROXY ('host:port'); None when unset."""
    raw = os.getenv("WSCLIENT_PROXY", "").strip()
    if not raw:
        return None
    parsed = parse_hostport(raw)
    if parsed is None:
        raise ValueError(f"WSCLIENT_PROXY must be host:port, got {raw!r}")
    return parsed
