"""YAML configuration for the log stream bridge."""

from __future__ import annotations

import ipaddress
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from .interfaces import BridgeError, IPAddress

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/opt/lsb/etc/lsb.yaml"
DEFAULT_TAG_NAME = "default"
DEFAULT_COMMAND = ["log", "stream", "--style=json"]
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

MAX_TAG_LENGTH = 4096
_FORBIDDEN_TAG_CHARS = set("!@#$%^&*()=+<>,.:;\"'{}[]|\\")


class ConfigError(BridgeError):
    """Configuration file is missing or invalid."""


@dataclass
class BridgeConfig:
    """Validated bridge configuration."""
    tag_name: str = DEFAULT_TAG_NAME
    source_override: Optional[str] = None
    log_file: Optional[str] = None
    log_level: str = "INFO"
    shutdown_timeout: float = 1.0
    restart_delay: float = 1.0
    read_period: float = 1.0
    max_launch_failures: int = 0
    ingester_uuid: Optional[str] = None
    status_file: Optional[str] = None
    command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
    sink_path: str = "-"

    def source_address(self) -> Optional[IPAddress]:
        """Parsed source override, or None when not configured."""
        if not self.source_override:
            return None
        return ipaddress.ip_address(self.source_override)


def validate_tag_name(name: str) -> None:
    if not name:
        raise ConfigError("tag_name must not be empty")
    if len(name) > MAX_TAG_LENGTH:
        raise ConfigError(f"tag_name longer than {MAX_TAG_LENGTH} characters")
    bad = sorted({ch for ch in name if ch.isspace() or ch in _FORBIDDEN_TAG_CHARS})
    if bad:
        raise ConfigError(f"tag_name {name!r} contains invalid characters: {''.join(bad)!r}")


def _section(data: dict, name: str) -> dict:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def _positive_float(section: dict, key: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def config_from_dict(data: dict[str, Any]) -> BridgeConfig:
    """Build and validate a :class:`BridgeConfig` from parsed YAML."""
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    glob = _section(data, "global")
    producer = _section(data, "producer")
    sink = _section(data, "sink")

    cfg = BridgeConfig()

    cfg.tag_name = str(glob.get("tag_name") or DEFAULT_TAG_NAME)
    validate_tag_name(cfg.tag_name)

    src = glob.get("source_override")
    if src:
        cfg.source_override = str(src)
        try:
            cfg.source_address()
        except ValueError:
            raise ConfigError(f"source_override {src!r} is not a valid IP address") from None

    cfg.log_file = glob.get("log_file") or None
    cfg.log_level = str(glob.get("log_level") or "INFO").upper()
    if cfg.log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {cfg.log_level!r}")

    cfg.shutdown_timeout = _positive_float(glob, "shutdown_timeout", cfg.shutdown_timeout)
    cfg.restart_delay = _positive_float(glob, "restart_delay", cfg.restart_delay)
    cfg.read_period = _positive_float(glob, "read_period", cfg.read_period)

    try:
        cfg.max_launch_failures = int(glob.get("max_launch_failures", 0))
    except (TypeError, ValueError):
        raise ConfigError("max_launch_failures must be an integer") from None
    if cfg.max_launch_failures < 0:
        raise ConfigError("max_launch_failures must not be negative")

    ingester_uuid = glob.get("ingester_uuid")
    if ingester_uuid:
        try:
            cfg.ingester_uuid = str(uuid.UUID(str(ingester_uuid)))
        except ValueError:
            raise ConfigError(f"ingester_uuid {ingester_uuid!r} is not a valid UUID") from None

    cfg.status_file = glob.get("status_file") or None

    command = producer.get("command", DEFAULT_COMMAND)
    if isinstance(command, str):
        command = command.split()
    if not isinstance(command, list) or not command:
        raise ConfigError("producer.command must be a non-empty list")
    cfg.command = [str(arg) for arg in command]

    sink_path = sink.get("path", cfg.sink_path)
    if not sink_path:
        raise ConfigError("sink.path must not be empty")
    cfg.sink_path = str(sink_path)

    return cfg


def load_config(path: str) -> BridgeConfig:
    """Read and validate the YAML config at *path*."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    return config_from_dict(data)


def ensure_ingester_uuid(cfg: BridgeConfig, path: str) -> str:
    """Generate an ingester UUID if the config lacks one and persist it to *path*.

    The YAML file is rewritten, so comments in it are not preserved.
    """
    if cfg.ingester_uuid:
        return cfg.ingester_uuid

    new_id = str(uuid.uuid4())
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("global", {})
        if data["global"] is None:
            data["global"] = {}
        data["global"]["ingester_uuid"] = new_id
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to persist ingester UUID to {path}: {e}") from e

    logger.info("Generated ingester UUID %s", new_id)
    cfg.ingester_uuid = new_id
    return new_id
