"""Configuration management for bitcoin-handshake.

Loads settings from ~/.bitcoin-handshake/config.toml with environment
variable overrides (``BITCOIN_HANDSHAKE_{SECTION}_{KEY}``).
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from pathlib import Path
from typing import TypeVar

import structlog

from bitcoin_handshake import PORT_MAINNET, PROTOCOL_VERSION, __version__

logger = structlog.get_logger()

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".bitcoin-handshake"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

ENV_PREFIX = "BITCOIN_HANDSHAKE"

DEFAULT_DNS_SEEDS: list[str] = [
    "seed.bitcoin.sipa.be",
    "dnsseed.bluematt.me",
    "seed.bitcoinstats.com",
    "seed.bitcoin.jonasschnelli.ch",
    "seed.btc.petertodd.net",
    "seed.bitcoin.sprovoost.nl",
]


@dataclass(frozen=True)
class HandshakeConfig:
    """What we connect to and what our own ``version`` advertises."""

    network: str = "mainnet"
    port: int = PORT_MAINNET
    timeout: float = 10.0  # seconds, per attempt
    user_agent: str = f"/bitcoin-handshake:{__version__}/"
    protocol_version: int = PROTOCOL_VERSION
    services: int = 1  # NODE_NETWORK
    start_height: int = 0
    relay: bool = False


@dataclass(frozen=True)
class SeedConfig:
    """DNS seeds used when no seed is given on the command line."""

    dns_seeds: list[str] = field(default_factory=lambda: list(DEFAULT_DNS_SEEDS))


@dataclass(frozen=True)
class LogConfig:
    """Logging settings."""

    level: str = "info"


@dataclass(frozen=True)
class Config:
    """Root configuration container."""

    handshake: HandshakeConfig = field(default_factory=HandshakeConfig)
    seeds: SeedConfig = field(default_factory=SeedConfig)
    log: LogConfig = field(default_factory=LogConfig)


def _env_override(section: str, key: str) -> str | None:
    """Check for BITCOIN_HANDSHAKE_{SECTION}_{KEY} environment variable."""
    env_key = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
    return os.environ.get(env_key)


def _coerce(value: str, target_type: type) -> object:
    """Coerce a string value to the target type."""
    if target_type is bool:
        return value.lower() in ("true", "1", "yes")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        # Env var lists are comma-separated
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


# Configuration value constraints
_VALUE_CONSTRAINTS: dict[str, tuple[float, float]] = {
    "port": (1, 65535),
    "timeout": (0.1, 600.0),
    "protocol_version": (209, 2**31 - 1),
    "services": (0, 2**64 - 1),
    "start_height": (0, 2**31 - 1),
}

# Allowed values for string enums
_ALLOWED_VALUES: dict[str, frozenset[str]] = {
    "network": frozenset({"mainnet", "testnet", "signet", "regtest"}),
    "level": frozenset({"debug", "info", "warning", "error", "critical"}),
}


def _validate_value(
    key: str, value: object, target_type: type | None = None
) -> object:
    """Validate a config value against known constraints.

    Integers given for a float field (TOML ``timeout = 0``) are widened
    first, so clamping keeps the fractional bound.
    """
    if (
        target_type is float
        and isinstance(value, int)
        and not isinstance(value, bool)
    ):
        value = float(value)
    if (
        key in _VALUE_CONSTRAINTS
        and isinstance(value, (int, float))
        and not isinstance(value, bool)
    ):
        lo, hi = _VALUE_CONSTRAINTS[key]
        if not (lo <= value <= hi):
            logger.warning(
                "config_value_out_of_range",
                key=key,
                value=value,
                min=lo,
                max=hi,
            )
            # Clamp to valid range
            return type(value)(max(lo, min(hi, value)))
    if key in _ALLOWED_VALUES and isinstance(value, str):
        if value.lower() not in _ALLOWED_VALUES[key]:
            logger.warning(
                "config_invalid_value",
                key=key,
                value=value,
                allowed=sorted(_ALLOWED_VALUES[key]),
            )
            return None  # Will use default
        return value.lower()
    return value


def _field_type(f_type: object, default: object) -> type:
    if isinstance(f_type, type):
        return f_type
    # ``from __future__ import annotations`` leaves annotations as strings
    names: dict[str, type] = {
        "bool": bool,
        "int": int,
        "float": float,
        "str": str,
        "list[str]": list,
    }
    if isinstance(f_type, str) and f_type in names:
        return names[f_type]
    return type(default)


T = TypeVar("T")


def _build_section(
    cls: type[T], toml_section: dict[str, object], section_name: str
) -> T:
    """Build a dataclass instance from TOML data + env overrides."""
    kwargs: dict[str, object] = {}
    for f in dataclass_fields(cls):  # type: ignore[arg-type]
        # TOML value
        raw = toml_section.get(f.name)
        f_type = _field_type(f.type, f.default)
        # env override
        env_val = _env_override(section_name, f.name)
        if env_val is not None:
            raw = _coerce(env_val, f_type)
        if raw is not None:
            # Validate value against constraints
            validated = _validate_value(f.name, raw, f_type)
            if validated is not None:
                kwargs[f.name] = validated
    return cls(**kwargs)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file with environment variable overrides.

    Priority: env vars > config.toml > defaults.

    Args:
        config_path: Path to config file. Defaults to
            ~/.bitcoin-handshake/config.toml.

    Returns:
        Populated Config instance.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    raw: dict[str, object] = {}

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        logger.debug("config_loaded", path=str(path))
    else:
        logger.debug("config_default", path=str(path), reason="file not found")

    handshake = _build_section(HandshakeConfig, raw.get("handshake", {}), "handshake")  # type: ignore[arg-type]
    seeds = _build_section(SeedConfig, raw.get("seeds", {}), "seeds")  # type: ignore[arg-type]
    log = _build_section(LogConfig, raw.get("log", {}), "log")  # type: ignore[arg-type]

    return Config(handshake=handshake, seeds=seeds, log=log)
