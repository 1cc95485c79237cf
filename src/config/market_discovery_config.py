from __future__ import annotations

"""Configuration loader for up/down market discovery."""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from src.data.market.constants import (
    DEFAULT_CLOB_HOST,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_GAMMA_HOST,
    DEFAULT_INSTRUMENTS,
    DEFAULT_LOOKAHEAD_SLOTS,
    DEFAULT_WINDOW,
    WINDOW_SECONDS,
)

_CONFIG_ENV_VAR = "MARKET_DISCOVERY_CONFIG"
_DEFAULT_FILE_NAME = "marketDiscovery.ini"
_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@dataclass(slots=True)
class MarketDiscoveryConfig:
    instruments: tuple[str, ...] = DEFAULT_INSTRUMENTS
    window: str = DEFAULT_WINDOW
    refresh_interval: float = DEFAULT_DISCOVERY_INTERVAL
    lookahead_slots: int = DEFAULT_LOOKAHEAD_SLOTS
    gamma_host: str = DEFAULT_GAMMA_HOST
    clob_host: str = DEFAULT_CLOB_HOST

    @property
    def window_seconds(self) -> int:
        return WINDOW_SECONDS[self.window]


def _parse_instruments(raw: str) -> tuple[str, ...]:
    symbols = [sym.strip().upper() for sym in raw.split(",")]
    unique: list[str] = []
    for sym in symbols:
        if sym and sym not in unique:
            unique.append(sym)
    return tuple(unique)


def _parse_config(parser: configparser.ConfigParser, path: Path) -> MarketDiscoveryConfig:
    if "discovery" not in parser:
        raise ValueError(f"market discovery config missing [discovery] section in {path}")
    section = parser["discovery"]
    instruments = _parse_instruments(section.get("instruments", fallback=""))
    window = section.get("window", fallback=DEFAULT_WINDOW).strip().lower() or DEFAULT_WINDOW
    if window not in WINDOW_SECONDS:
        raise ValueError(
            f"unsupported window {window!r} in {path}; expected one of {', '.join(WINDOW_SECONDS)}"
        )
    refresh_interval = section.getfloat("refresh_interval", fallback=DEFAULT_DISCOVERY_INTERVAL)
    lookahead = section.getint("lookahead_slots", fallback=DEFAULT_LOOKAHEAD_SLOTS)
    gamma_host = section.get("gamma_host", fallback=DEFAULT_GAMMA_HOST).strip().rstrip("/")
    clob_host = section.get("clob_host", fallback=DEFAULT_CLOB_HOST).strip().rstrip("/")
    return MarketDiscoveryConfig(
        instruments=instruments or DEFAULT_INSTRUMENTS,
        window=window,
        refresh_interval=max(5.0, refresh_interval),
        lookahead_slots=max(0, lookahead),
        gamma_host=gamma_host or DEFAULT_GAMMA_HOST,
        clob_host=clob_host or DEFAULT_CLOB_HOST,
    )


def resolve_market_discovery_config_path(
    path: str | os.PathLike[str] | None = None,
) -> Path:
    candidates: list[Path] = []
    if path:
        candidates.append(Path(path).expanduser())
    env_path = os.environ.get(_CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(_CONFIG_DIR / _DEFAULT_FILE_NAME)
    candidates.append(Path(_DEFAULT_FILE_NAME))
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def load_market_discovery_config(
    path: str | os.PathLike[str] | None = None,
) -> MarketDiscoveryConfig:
    config_path = resolve_market_discovery_config_path(path)
    parser = configparser.ConfigParser()
    read_files = parser.read(config_path)
    if not read_files:
        raise FileNotFoundError(f"market discovery config not found at {config_path}")
    return _parse_config(parser, config_path)


def maybe_load_market_discovery_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[MarketDiscoveryConfig]:
    try:
        return load_market_discovery_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None
