"""
Configuration loading.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from printbridge.access import AccessFilter
from printbridge.discovery.subscription import PollContext

logger = logging.getLogger(__name__)

PROTOCOL_CUPS = "cups"
PROTOCOL_DNSSD = "dnssd"
KNOWN_PROTOCOLS = (PROTOCOL_CUPS, PROTOCOL_DNSSD)

AUTOSHUTDOWN_ON = "on"
AUTOSHUTDOWN_OFF = "off"
AUTOSHUTDOWN_AVAHI = "avahi"

DEFAULT_PORT = 631


class ConfigError(ValueError):
    """Raised for configuration values that cannot be used."""
    pass


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from YAML file.

    Looks for config in order:
    1. Explicit path if provided
    2. CONFIG_FILE environment variable
    3. ./config/local.yaml
    4. ./config/default.yaml
    """
    search_paths = []

    if config_path:
        search_paths.append(Path(config_path))

    if env_path := os.environ.get("CONFIG_FILE"):
        search_paths.append(Path(env_path))

    search_paths.extend([
        Path("config") / "local.yaml",
        Path("config") / "default.yaml",
    ])

    for path in search_paths:
        if path.exists():
            logger.info(f"Loading config from {path}")
            with open(path) as f:
                return yaml.safe_load(f) or {}

    logger.warning("No config file found, using defaults")
    return {}


def parse_protocols(value: Any) -> set[str]:
    """
    Parse a protocol list: a YAML list or a whitespace separated string.

    "none" yields the empty set.

    Raises:
        ConfigError: on an unknown protocol name
    """
    if value is None:
        return set()
    if isinstance(value, str):
        value = value.split()

    protocols = set()
    for item in value:
        name = str(item).strip().lower()
        if name == "none":
            continue
        if name not in KNOWN_PROTOCOLS:
            raise ConfigError(f"Unknown protocol: {item}")
        protocols.add(name)
    return protocols


def parse_autoshutdown(value: Any) -> str:
    """
    Normalize an auto-shutdown mode.

    YAML turns a bare on/off into booleans, so those are accepted too.

    Raises:
        ConfigError: on an unknown mode
    """
    if isinstance(value, bool):
        return AUTOSHUTDOWN_ON if value else AUTOSHUTDOWN_OFF

    mode = str(value).strip().lower()
    if mode in ("on", "yes", "true", "1"):
        return AUTOSHUTDOWN_ON
    if mode in ("off", "no", "false", "0"):
        return AUTOSHUTDOWN_OFF
    if mode == AUTOSHUTDOWN_AVAHI:
        return AUTOSHUTDOWN_AVAHI
    raise ConfigError(f"Unknown auto-shutdown mode: {value}")


def _as_int(section: dict, key: str, default: int) -> int:
    value = section.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {key}: {value!r}, using {default}")
        return default


@dataclass
class Timeouts:
    """Seconds relative to now; negative values mean 'immediately'."""

    confirm: int = 10
    retry: int = 10
    remove: int = -1

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Timeouts":
        data = data or {}
        defaults = cls()
        return cls(
            confirm=_as_int(data, "confirm", defaults.confirm),
            retry=_as_int(data, "retry", defaults.retry),
            remove=_as_int(data, "remove", defaults.remove),
        )


@dataclass
class BrowseConfig:
    local_protocols: set[str] = field(default_factory=lambda: {PROTOCOL_CUPS})
    remote_protocols: set[str] = field(default_factory=lambda: {PROTOCOL_DNSSD})
    interval: int = 60
    timeout: int = 300
    port: int = DEFAULT_PORT
    poll: list[str] = field(default_factory=list)
    allow: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BrowseConfig":
        data = data or {}
        config = cls(
            interval=_as_int(data, "interval", 60),
            timeout=_as_int(data, "timeout", 300),
            port=_as_int(data, "port", DEFAULT_PORT),
            poll=[str(v) for v in data.get("poll") or []],
            allow=[str(v) for v in data.get("allow") or []],
        )

        for key in ("local_protocols", "remote_protocols"):
            if key not in data:
                continue
            try:
                setattr(config, key, parse_protocols(data[key]))
            except ConfigError as e:
                logger.warning(f"browse.{key}: {e}, using default")

        if PROTOCOL_DNSSD in config.local_protocols:
            logger.warning("Advertising local queues via DNS-SD is not supported, ignored")
            config.local_protocols.discard(PROTOCOL_DNSSD)

        return config


@dataclass
class StatusAPIConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8631

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "StatusAPIConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            host=str(data.get("host", "127.0.0.1")),
            port=_as_int(data, "port", 8631),
        )


@dataclass
class BrowsedConfig:
    browse: BrowseConfig = field(default_factory=BrowseConfig)
    create_ipp_printer_queues: bool = False
    autoshutdown: str = AUTOSHUTDOWN_OFF
    autoshutdown_timeout: int = 30
    domain_socket: Optional[str] = None
    timeouts: Timeouts = field(default_factory=Timeouts)
    status_api: StatusAPIConfig = field(default_factory=StatusAPIConfig)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BrowsedConfig":
        """Build the typed configuration; unusable values keep their default."""
        data = data or {}
        config = cls(
            browse=BrowseConfig.from_dict(data.get("browse")),
            create_ipp_printer_queues=bool(data.get("create_ipp_printer_queues", False)),
            autoshutdown_timeout=_as_int(data, "autoshutdown_timeout", 30),
            domain_socket=data.get("domain_socket"),
            timeouts=Timeouts.from_dict(data.get("timeouts")),
            status_api=StatusAPIConfig.from_dict(data.get("status_api")),
        )

        if "autoshutdown" in data:
            try:
                config.autoshutdown = parse_autoshutdown(data["autoshutdown"])
            except ConfigError as e:
                logger.warning(f"{e}, using '{AUTOSHUTDOWN_OFF}'")

        return config

    @property
    def browse_remote_cups(self) -> bool:
        return PROTOCOL_CUPS in self.browse.remote_protocols

    @property
    def browse_remote_dnssd(self) -> bool:
        return PROTOCOL_DNSSD in self.browse.remote_protocols

    @property
    def browse_local_cups(self) -> bool:
        return PROTOCOL_CUPS in self.browse.local_protocols

    def poll_contexts(self) -> list[PollContext]:
        return [PollContext.from_config(v, self.browse.port) for v in self.browse.poll]

    def access_filter(self) -> AccessFilter:
        return AccessFilter.from_values(self.browse.allow)

    def spooler_server(self) -> str:
        """The domain socket when it is usable, localhost otherwise."""
        socket_path = self.domain_socket
        if socket_path and os.access(socket_path, os.R_OK | os.W_OK):
            return socket_path
        return "localhost"
