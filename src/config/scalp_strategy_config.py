from __future__ import annotations

"""Configuration loader for the up/down scalp trading strategy."""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

_CONFIG_ENV_VAR = "SCALP_STRATEGY_CONFIG"
_DEFAULT_FILE_NAME = "scalpStrategy.ini"
_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_BASE_SECTION = "scalp_strategy"
_INSTRUMENT_PREFIX = f"{_BASE_SECTION}.instrument_"


@dataclass(slots=True)
class PriceBand:
    """Accept a top-of-book price inside [low, high] and quote ``quote``."""

    low: float
    high: float
    quote: float

    def contains(self, price: float) -> bool:
        return self.low - 1e-9 <= price <= self.high + 1e-9


@dataclass(slots=True)
class GapStep:
    """Scale factor applied to the dynamic buffer once ``min_seconds`` or more remain."""

    min_seconds: float
    factor: float


@dataclass(slots=True)
class InstrumentRiskProfile:
    """Per-instrument thresholds for the entry risk gates."""

    symbol: str
    okx_inst_id: str
    binance_symbol: str
    base_gap: float
    gap_floor: float
    overextension_pct: float
    momentum_threshold: float
    momentum_lookback: int = 8
    min_samples: int = 10
    long_window: int = 20
    max_top_ask_notional: float = 5000.0
    divergence_threshold: float = 8.0


_DEFAULT_BANDS: tuple[PriceBand, ...] = (
    PriceBand(low=0.978, high=0.984, quote=0.98),
    PriceBand(low=0.985, high=0.9999, quote=0.99),
)

_DEFAULT_GAP_STEPS: tuple[GapStep, ...] = (
    GapStep(min_seconds=240.0, factor=1.0),
    GapStep(min_seconds=120.0, factor=0.8),
    GapStep(min_seconds=60.0, factor=0.6),
    GapStep(min_seconds=30.0, factor=0.45),
    GapStep(min_seconds=0.0, factor=0.35),
)

_DEFAULT_PROFILES: tuple[InstrumentRiskProfile, ...] = (
    InstrumentRiskProfile(
        symbol="BTC",
        okx_inst_id="BTC-USDT",
        binance_symbol="btcusdt",
        base_gap=40.0,
        gap_floor=15.0,
        overextension_pct=0.002,
        momentum_threshold=30.0,
        divergence_threshold=8.0,
    ),
    InstrumentRiskProfile(
        symbol="ETH",
        okx_inst_id="ETH-USDT",
        binance_symbol="ethusdt",
        base_gap=2.0,
        gap_floor=0.8,
        overextension_pct=0.0025,
        momentum_threshold=1.5,
        divergence_threshold=0.8,
    ),
    InstrumentRiskProfile(
        symbol="SOL",
        okx_inst_id="SOL-USDT",
        binance_symbol="solusdt",
        base_gap=0.12,
        gap_floor=0.05,
        overextension_pct=0.003,
        momentum_threshold=0.1,
        divergence_threshold=0.06,
    ),
    InstrumentRiskProfile(
        symbol="XRP",
        okx_inst_id="XRP-USDT",
        binance_symbol="xrpusdt",
        base_gap=0.002,
        gap_floor=0.0008,
        overextension_pct=0.003,
        momentum_threshold=0.0015,
        divergence_threshold=0.0012,
    ),
)


@dataclass(slots=True)
class ScalpStrategyConfig:
    """Top-level configuration values for the scalp strategy."""

    enabled: bool = True
    bands: tuple[PriceBand, ...] = _DEFAULT_BANDS
    min_order_size: float = 5.0
    max_order_size: float = 50.0
    min_order_notional: float = 1.0
    max_position_per_market: float = 60.0
    max_trades_per_window: int = 2
    max_open_positions: int = 1
    profit_target: float = 0.01
    stop_loss: float = 0.04
    max_hold_seconds: float = 120.0
    min_exit_size: float = 5.0
    full_fill_ratio: float = 0.99
    partial_fill_min_size: float = 5.0
    expiry_safety_seconds: float = 8.0
    pending_max_age_seconds: float = 45.0
    entry_lock_seconds: float = 10.0
    entry_min_seconds_left: float = 15.0
    entry_max_seconds_left: float = 0.0
    loss_cooldown_seconds: float = 90.0
    balance_cooldown_seconds: float = 60.0
    history_capacity: int = 30
    dynamic_range_weight: float = 0.6
    gap_steps: tuple[GapStep, ...] = _DEFAULT_GAP_STEPS
    position_poll_interval: float = 1.0
    active_poll_interval: float = 2.0
    idle_poll_interval: float = 30.0
    exit_max_attempts: int = 3
    exit_price_step: float = 0.01
    exit_final_fak: bool = True
    balance_wait_attempts: int = 3
    balance_wait_seconds: float = 5.0
    balance_error_wait_seconds: float = 4.0
    settlement_delay_seconds: float = 1.5
    authorization_sync_attempts: int = 3
    authorization_sync_interval: float = 2.0
    reconcile_attempts: int = 2
    reconcile_retry_delay: float = 0.5
    drift_check_interval_seconds: float = 0.0
    instruments: tuple[InstrumentRiskProfile, ...] = _DEFAULT_PROFILES
    _profile_index: dict[str, InstrumentRiskProfile] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def profile_for(self, instrument: str) -> InstrumentRiskProfile:
        symbol = instrument.upper()
        if not self._profile_index or len(self._profile_index) != len(self.instruments):
            self._profile_index = {item.symbol.upper(): item for item in self.instruments}
        profile = self._profile_index.get(symbol)
        if profile is None:
            # unknown instruments get feed symbols only; every gap collapses to zero
            profile = InstrumentRiskProfile(
                symbol=symbol,
                okx_inst_id=f"{symbol}-USDT",
                binance_symbol=f"{symbol.lower()}usdt",
                base_gap=0.0,
                gap_floor=0.0,
                overextension_pct=0.0,
                momentum_threshold=0.0,
                max_top_ask_notional=0.0,
                divergence_threshold=0.0,
            )
        return profile


def _percent(value: float) -> float:
    return max(0.0, value) / 100.0


def _parse_bands(raw: str) -> tuple[PriceBand, ...]:
    """Parse ``low-high:quote`` entries separated by commas."""

    bands: list[PriceBand] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            bounds, quote = chunk.split(":")
            low, high = bounds.split("-")
            band = PriceBand(low=float(low), high=float(high), quote=float(quote))
        except ValueError as exc:
            raise ValueError(f"invalid price band {chunk!r}; expected low-high:quote") from exc
        if band.low > band.high:
            raise ValueError(f"price band {chunk!r} has low above high")
        bands.append(band)
    return tuple(sorted(bands, key=lambda item: item.low))


def _parse_gap_steps(raw: str) -> tuple[GapStep, ...]:
    steps: list[GapStep] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            seconds, factor = chunk.split(":")
            steps.append(GapStep(min_seconds=max(0.0, float(seconds)), factor=max(0.0, float(factor))))
        except ValueError as exc:
            raise ValueError(f"invalid gap step {chunk!r}; expected seconds:factor") from exc
    return tuple(sorted(steps, key=lambda item: item.min_seconds, reverse=True))


def _parse_profile(section_name: str, section: configparser.SectionProxy) -> InstrumentRiskProfile:
    symbol = section.get("symbol", fallback=section_name[len(_INSTRUMENT_PREFIX):]).strip().upper()
    return InstrumentRiskProfile(
        symbol=symbol,
        okx_inst_id=section.get("okx_inst_id", fallback=f"{symbol}-USDT").strip(),
        binance_symbol=section.get("binance_symbol", fallback=f"{symbol.lower()}usdt").strip().lower(),
        base_gap=max(0.0, section.getfloat("base_gap", fallback=0.0)),
        gap_floor=max(0.0, section.getfloat("gap_floor", fallback=0.0)),
        overextension_pct=_percent(section.getfloat("overextension_pct", fallback=0.2)),
        momentum_threshold=max(0.0, section.getfloat("momentum_threshold", fallback=0.0)),
        momentum_lookback=max(1, section.getint("momentum_lookback", fallback=8)),
        min_samples=max(2, section.getint("min_samples", fallback=10)),
        long_window=max(2, section.getint("long_window", fallback=20)),
        max_top_ask_notional=max(0.0, section.getfloat("max_top_ask_notional", fallback=5000.0)),
        divergence_threshold=max(0.0, section.getfloat("divergence_threshold", fallback=0.0)),
    )


def resolve_scalp_strategy_config_path(
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


def load_scalp_strategy_config(
    path: str | os.PathLike[str] | None = None,
) -> ScalpStrategyConfig:
    config_path = resolve_scalp_strategy_config_path(path)
    parser = configparser.ConfigParser()
    read_files = parser.read(config_path)
    if not read_files:
        raise FileNotFoundError(f"scalp strategy config not found at {config_path}")
    if _BASE_SECTION not in parser:
        raise ValueError(f"config missing '[{_BASE_SECTION}]' section in {config_path}")
    base = parser[_BASE_SECTION]
    defaults = ScalpStrategyConfig()

    bands_raw = base.get("bands", fallback="").strip()
    bands = _parse_bands(bands_raw) if bands_raw else defaults.bands
    if not bands:
        raise ValueError(f"at least one price band is required in {config_path}")
    steps_raw = base.get("gap_steps", fallback="").strip()
    gap_steps = _parse_gap_steps(steps_raw) if steps_raw else defaults.gap_steps

    min_order_size = max(0.0, base.getfloat("min_order_size", fallback=defaults.min_order_size))
    max_order_size = max(
        min_order_size,
        base.getfloat("max_order_size", fallback=defaults.max_order_size),
    )

    profiles: list[InstrumentRiskProfile] = []
    for section_name in parser.sections():
        if section_name.startswith(_INSTRUMENT_PREFIX):
            profiles.append(_parse_profile(section_name, parser[section_name]))
    known = {profile.symbol for profile in profiles}
    # configured sections override defaults, other defaults stay available
    profiles.extend(item for item in defaults.instruments if item.symbol not in known)

    return ScalpStrategyConfig(
        enabled=base.getboolean("enabled", fallback=True),
        bands=bands,
        min_order_size=min_order_size,
        max_order_size=max_order_size,
        min_order_notional=max(0.0, base.getfloat("min_order_notional", fallback=defaults.min_order_notional)),
        max_position_per_market=max(
            0.0, base.getfloat("max_position_per_market", fallback=defaults.max_position_per_market)
        ),
        max_trades_per_window=max(1, base.getint("max_trades_per_window", fallback=defaults.max_trades_per_window)),
        max_open_positions=max(1, base.getint("max_open_positions", fallback=defaults.max_open_positions)),
        profit_target=max(0.0, base.getfloat("profit_target", fallback=defaults.profit_target)),
        stop_loss=max(0.0, base.getfloat("stop_loss", fallback=defaults.stop_loss)),
        max_hold_seconds=max(1.0, base.getfloat("max_hold_seconds", fallback=defaults.max_hold_seconds)),
        min_exit_size=max(0.0, base.getfloat("min_exit_size", fallback=defaults.min_exit_size)),
        full_fill_ratio=min(1.0, max(0.5, base.getfloat("full_fill_ratio", fallback=defaults.full_fill_ratio))),
        partial_fill_min_size=max(
            0.0, base.getfloat("partial_fill_min_size", fallback=defaults.partial_fill_min_size)
        ),
        expiry_safety_seconds=max(
            0.0, base.getfloat("expiry_safety_seconds", fallback=defaults.expiry_safety_seconds)
        ),
        pending_max_age_seconds=max(
            0.0, base.getfloat("pending_max_age_seconds", fallback=defaults.pending_max_age_seconds)
        ),
        entry_lock_seconds=max(0.0, base.getfloat("entry_lock_seconds", fallback=defaults.entry_lock_seconds)),
        entry_min_seconds_left=max(
            0.0, base.getfloat("entry_min_seconds_left", fallback=defaults.entry_min_seconds_left)
        ),
        entry_max_seconds_left=max(
            0.0, base.getfloat("entry_max_seconds_left", fallback=defaults.entry_max_seconds_left)
        ),
        loss_cooldown_seconds=max(
            0.0, base.getfloat("loss_cooldown_seconds", fallback=defaults.loss_cooldown_seconds)
        ),
        balance_cooldown_seconds=max(
            0.0, base.getfloat("balance_cooldown_seconds", fallback=defaults.balance_cooldown_seconds)
        ),
        history_capacity=max(10, base.getint("history_capacity", fallback=defaults.history_capacity)),
        dynamic_range_weight=max(
            0.0, base.getfloat("dynamic_range_weight", fallback=defaults.dynamic_range_weight)
        ),
        gap_steps=gap_steps,
        position_poll_interval=max(
            0.2, base.getfloat("position_poll_interval", fallback=defaults.position_poll_interval)
        ),
        active_poll_interval=max(
            0.2, base.getfloat("active_poll_interval", fallback=defaults.active_poll_interval)
        ),
        idle_poll_interval=max(1.0, base.getfloat("idle_poll_interval", fallback=defaults.idle_poll_interval)),
        exit_max_attempts=max(1, base.getint("exit_max_attempts", fallback=defaults.exit_max_attempts)),
        exit_price_step=max(0.0, base.getfloat("exit_price_step", fallback=defaults.exit_price_step)),
        exit_final_fak=base.getboolean("exit_final_fak", fallback=defaults.exit_final_fak),
        balance_wait_attempts=max(0, base.getint("balance_wait_attempts", fallback=defaults.balance_wait_attempts)),
        balance_wait_seconds=max(0.0, base.getfloat("balance_wait_seconds", fallback=defaults.balance_wait_seconds)),
        balance_error_wait_seconds=max(
            0.0, base.getfloat("balance_error_wait_seconds", fallback=defaults.balance_error_wait_seconds)
        ),
        settlement_delay_seconds=max(
            0.0, base.getfloat("settlement_delay_seconds", fallback=defaults.settlement_delay_seconds)
        ),
        authorization_sync_attempts=max(
            1, base.getint("authorization_sync_attempts", fallback=defaults.authorization_sync_attempts)
        ),
        authorization_sync_interval=max(
            0.0, base.getfloat("authorization_sync_interval", fallback=defaults.authorization_sync_interval)
        ),
        reconcile_attempts=max(1, base.getint("reconcile_attempts", fallback=defaults.reconcile_attempts)),
        reconcile_retry_delay=max(
            0.0, base.getfloat("reconcile_retry_delay", fallback=defaults.reconcile_retry_delay)
        ),
        drift_check_interval_seconds=max(
            0.0, base.getfloat("drift_check_interval_seconds", fallback=defaults.drift_check_interval_seconds)
        ),
        instruments=tuple(profiles),
    )


def maybe_load_scalp_strategy_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[ScalpStrategyConfig]:
    try:
        return load_scalp_strategy_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def _format_float(value: float) -> str:
    formatted = f"{value:.6f}"
    while formatted.endswith("0") and "." in formatted:
        formatted = formatted[:-1]
    if formatted.endswith("."):
        formatted = formatted[:-1]
    return formatted or "0"


def _format_percent(value: float) -> str:
    return _format_float(value * 100.0)


def write_scalp_strategy_config(
    config: ScalpStrategyConfig,
    path: str | os.PathLike[str],
) -> Path:
    parser = configparser.ConfigParser()
    parser[_BASE_SECTION] = {
        "enabled": "true" if config.enabled else "false",
        "bands": ", ".join(
            f"{_format_float(band.low)}-{_format_float(band.high)}:{_format_float(band.quote)}"
            for band in config.bands
        ),
        "gap_steps": ", ".join(
            f"{_format_float(step.min_seconds)}:{_format_float(step.factor)}" for step in config.gap_steps
        ),
        "min_order_size": _format_float(config.min_order_size),
        "max_order_size": _format_float(config.max_order_size),
        "min_order_notional": _format_float(config.min_order_notional),
        "max_position_per_market": _format_float(config.max_position_per_market),
        "max_trades_per_window": str(config.max_trades_per_window),
        "max_open_positions": str(config.max_open_positions),
        "profit_target": _format_float(config.profit_target),
        "stop_loss": _format_float(config.stop_loss),
        "max_hold_seconds": _format_float(config.max_hold_seconds),
        "min_exit_size": _format_float(config.min_exit_size),
        "full_fill_ratio": _format_float(config.full_fill_ratio),
        "partial_fill_min_size": _format_float(config.partial_fill_min_size),
        "expiry_safety_seconds": _format_float(config.expiry_safety_seconds),
        "pending_max_age_seconds": _format_float(config.pending_max_age_seconds),
        "entry_lock_seconds": _format_float(config.entry_lock_seconds),
        "entry_min_seconds_left": _format_float(config.entry_min_seconds_left),
        "entry_max_seconds_left": _format_float(config.entry_max_seconds_left),
        "loss_cooldown_seconds": _format_float(config.loss_cooldown_seconds),
        "balance_cooldown_seconds": _format_float(config.balance_cooldown_seconds),
        "history_capacity": str(config.history_capacity),
        "dynamic_range_weight": _format_float(config.dynamic_range_weight),
        "position_poll_interval": _format_float(config.position_poll_interval),
        "active_poll_interval": _format_float(config.active_poll_interval),
        "idle_poll_interval": _format_float(config.idle_poll_interval),
        "exit_max_attempts": str(config.exit_max_attempts),
        "exit_price_step": _format_float(config.exit_price_step),
        "exit_final_fak": "true" if config.exit_final_fak else "false",
        "balance_wait_attempts": str(config.balance_wait_attempts),
        "balance_wait_seconds": _format_float(config.balance_wait_seconds),
        "balance_error_wait_seconds": _format_float(config.balance_error_wait_seconds),
        "settlement_delay_seconds": _format_float(config.settlement_delay_seconds),
        "authorization_sync_attempts": str(config.authorization_sync_attempts),
        "authorization_sync_interval": _format_float(config.authorization_sync_interval),
        "reconcile_attempts": str(config.reconcile_attempts),
        "reconcile_retry_delay": _format_float(config.reconcile_retry_delay),
        "drift_check_interval_seconds": _format_float(config.drift_check_interval_seconds),
    }
    for profile in config.instruments:
        parser[f"{_INSTRUMENT_PREFIX}{profile.symbol.lower()}"] = {
            "symbol": profile.symbol,
            "okx_inst_id": profile.okx_inst_id,
            "binance_symbol": profile.binance_symbol,
            "base_gap": _format_float(profile.base_gap),
            "gap_floor": _format_float(profile.gap_floor),
            "overextension_pct": _format_percent(profile.overextension_pct),
            "momentum_threshold": _format_float(profile.momentum_threshold),
            "momentum_lookback": str(profile.momentum_lookback),
            "min_samples": str(profile.min_samples),
            "long_window": str(profile.long_window),
            "max_top_ask_notional": _format_float(profile.max_top_ask_notional),
            "divergence_threshold": _format_float(profile.divergence_threshold),
        }

    output_path = Path(path).expanduser()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    return output_path


def default_scalp_strategy_config() -> ScalpStrategyConfig:
    """Return an in-memory config with the documented default bands and profiles."""

    return ScalpStrategyConfig()
