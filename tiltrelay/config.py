from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .filters import FILTER_KINDS

PACKAGE_DIR = Path(__file__).resolve().parent
ROOT_DIR = PACKAGE_DIR.parent
"""Repository root; the default ``config.yaml`` is looked up here."""

LOGGER = logging.getLogger(__name__)

VALID_LOG_LEVELS: tuple[str, ...] = ("debug", "info", "warning", "error", "critical")

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8787},
    "relay": {
        "path": "/ws",
        "send_timeout_s": 0.5,
    },
    "store": {
        "freshness_ms": 2000,
        "retention_ms": 5000,
        "default_room": "default",
        "sweep_interval_s": 5.0,
    },
    "client": {
        "secure_schemes": ["wss"],
        "send_hz": 60,
        "poll_hz": 30,
        "http_timeout_s": 1.0,
    },
    "conditioning": {
        "two_axis": True,
        "pitch_limit_deg": 60.0,
        "roll_limit_deg": 45.0,
        "deadzone_deg": 0.0,
        "soft_deadzone": True,
        "filter": "lowpass",
        "lowpass_alpha": 0.4,
        "min_cutoff": 1.5,
        "beta": 0.01,
        "d_cutoff": 1.0,
        "complementary_alpha": 0.85,
    },
    "logging": {"level": "info"},
}


def documented_default_config() -> dict[str, Any]:
    """Return runtime defaults in the shape documented by config.example.yaml."""
    return deepcopy(DEFAULT_CONFIG)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"ServerConfig.port must be 1-65535, got {self.port!r}")


@dataclass(slots=True)
class RelayConfig:
    path: str
    send_timeout_s: float

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValueError(f"relay.path must start with '/', got {self.path!r}")
        if self.send_timeout_s <= 0:
            LOGGER.warning(
                "relay.send_timeout_s=%s is not positive; using 0.5", self.send_timeout_s
            )
            self.send_timeout_s = 0.5


@dataclass(slots=True)
class StoreConfig:
    freshness_ms: int
    retention_ms: int
    default_room: str
    sweep_interval_s: float

    def __post_init__(self) -> None:
        if self.freshness_ms < 0:
            raise ValueError(f"store.freshness_ms must be >= 0, got {self.freshness_ms!r}")
        if self.retention_ms < self.freshness_ms:
            raise ValueError(
                "store.retention_ms must be >= store.freshness_ms, "
                f"got {self.retention_ms!r} < {self.freshness_ms!r}"
            )
        if not self.default_room:
            raise ValueError("store.default_room must not be empty")
        if self.sweep_interval_s <= 0:
            LOGGER.warning(
                "store.sweep_interval_s=%s is not positive; clamped to 1.0",
                self.sweep_interval_s,
            )
            self.sweep_interval_s = 1.0


@dataclass(slots=True)
class ClientConfig:
    secure_schemes: tuple[str, ...]
    send_hz: int
    poll_hz: int
    http_timeout_s: float

    def __post_init__(self) -> None:
        if not self.secure_schemes:
            raise ValueError("client.secure_schemes must list at least one scheme")
        for field_name in ("send_hz", "poll_hz"):
            val = getattr(self, field_name)
            if val < 1:
                LOGGER.warning("client.%s=%s is below minimum 1; clamped to 1", field_name, val)
                setattr(self, field_name, 1)
        if self.http_timeout_s <= 0:
            LOGGER.warning(
                "client.http_timeout_s=%s is not positive; using 1.0", self.http_timeout_s
            )
            self.http_timeout_s = 1.0


@dataclass(slots=True)
class ConditioningConfig:
    two_axis: bool
    pitch_limit_deg: float
    roll_limit_deg: float
    deadzone_deg: float
    soft_deadzone: bool
    filter: str
    lowpass_alpha: float
    min_cutoff: float
    beta: float
    d_cutoff: float
    complementary_alpha: float

    def __post_init__(self) -> None:
        if self.filter not in FILTER_KINDS:
            raise ValueError(
                f"conditioning.filter must be one of {', '.join(FILTER_KINDS)}, "
                f"got {self.filter!r}"
            )
        for field_name in ("pitch_limit_deg", "roll_limit_deg", "min_cutoff", "d_cutoff"):
            if getattr(self, field_name) <= 0:
                raise ValueError(f"conditioning.{field_name} must be positive")
        if not 0.0 < self.lowpass_alpha <= 1.0:
            raise ValueError(
                f"conditioning.lowpass_alpha must be in (0, 1], got {self.lowpass_alpha!r}"
            )
        if not 0.0 <= self.complementary_alpha <= 1.0:
            raise ValueError(
                "conditioning.complementary_alpha must be in [0, 1], "
                f"got {self.complementary_alpha!r}"
            )
        if self.beta < 0:
            LOGGER.warning("conditioning.beta=%s is negative; clamped to 0", self.beta)
            self.beta = 0.0
        limit = min(self.pitch_limit_deg, self.roll_limit_deg)
        if self.deadzone_deg < 0 or self.deadzone_deg >= limit:
            raise ValueError(
                f"conditioning.deadzone_deg must be in [0, {limit}), got {self.deadzone_deg!r}"
            )


@dataclass(slots=True)
class LoggingConfig:
    level: str

    def __post_init__(self) -> None:
        level = str(self.level).lower()
        if level not in VALID_LOG_LEVELS:
            LOGGER.warning("logging.level=%r is not recognised; using info", self.level)
            level = "info"
        self.level = level


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    relay: RelayConfig
    store: StoreConfig
    client: ClientConfig
    conditioning: ConditioningConfig
    logging: LoggingConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (ROOT_DIR / "config.yaml")
    path = path.resolve()
    override = _read_config_file(path)
    merged = _deep_merge(DEFAULT_CONFIG, override)

    server_port = int(merged["server"]["port"])
    if not 1 <= server_port <= 65535:
        raise ValueError(f"server.port must be 1-65535, got {server_port}")

    schemes_raw = merged["client"].get("secure_schemes") or []
    if isinstance(schemes_raw, str):
        schemes_raw = [schemes_raw]
    secure_schemes = tuple(str(s).strip().lower() for s in schemes_raw if str(s).strip())

    cond = merged["conditioning"]
    app_config = AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=server_port,
        ),
        relay=RelayConfig(
            path=str(merged["relay"]["path"]),
            send_timeout_s=float(merged["relay"]["send_timeout_s"]),
        ),
        store=StoreConfig(
            freshness_ms=int(merged["store"]["freshness_ms"]),
            retention_ms=int(merged["store"]["retention_ms"]),
            default_room=str(merged["store"]["default_room"]).strip(),
            sweep_interval_s=float(merged["store"]["sweep_interval_s"]),
        ),
        client=ClientConfig(
            secure_schemes=secure_schemes,
            send_hz=int(merged["client"]["send_hz"]),
            poll_hz=int(merged["client"]["poll_hz"]),
            http_timeout_s=float(merged["client"]["http_timeout_s"]),
        ),
        conditioning=ConditioningConfig(
            two_axis=bool(cond["two_axis"]),
            pitch_limit_deg=float(cond["pitch_limit_deg"]),
            roll_limit_deg=float(cond["roll_limit_deg"]),
            deadzone_deg=float(cond["deadzone_deg"]),
            soft_deadzone=bool(cond["soft_deadzone"]),
            filter=str(cond["filter"]).strip().lower(),
            lowpass_alpha=float(cond["lowpass_alpha"]),
            min_cutoff=float(cond["min_cutoff"]),
            beta=float(cond["beta"]),
            d_cutoff=float(cond["d_cutoff"]),
            complementary_alpha=float(cond["complementary_alpha"]),
        ),
        logging=LoggingConfig(level=str(merged["logging"]["level"])),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s relay_path=%s freshness_ms=%d retention_ms=%d",
        app_config.config_path,
        app_config.relay.path,
        app_config.store.freshness_ms,
        app_config.store.retention_ms,
    )
    return app_config
