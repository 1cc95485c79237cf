"""Configuration utilities for updownStrategy."""

from .account_config import (
    PolymarketAccountConfig,
    interactive_setup,
    load_account_config,
    maybe_load_account_config,
)
from .market_discovery_config import (
    MarketDiscoveryConfig,
    load_market_discovery_config,
    maybe_load_market_discovery_config,
    resolve_market_discovery_config_path,
)
from .scalp_strategy_config import (
    GapStep,
    InstrumentRiskProfile,
    PriceBand,
    ScalpStrategyConfig,
    default_scalp_strategy_config,
    load_scalp_strategy_config,
    maybe_load_scalp_strategy_config,
    resolve_scalp_strategy_config_path,
    write_scalp_strategy_config,
)
from .wallet_config import (
    WalletConfig,
    load_wallet_config,
    maybe_load_wallet_config,
    resolve_wallet_config_path,
)

__all__ = [
    "GapStep",
    "InstrumentRiskProfile",
    "MarketDiscoveryConfig",
    "PolymarketAccountConfig",
    "PriceBand",
    "ScalpStrategyConfig",
    "WalletConfig",
    "default_scalp_strategy_config",
    "interactive_setup",
    "load_account_config",
    "maybe_load_account_config",
    "load_market_discovery_config",
    "maybe_load_market_discovery_config",
    "resolve_market_discovery_config_path",
    "load_scalp_strategy_config",
    "maybe_load_scalp_strategy_config",
    "resolve_scalp_strategy_config_path",
    "write_scalp_strategy_config",
    "load_wallet_config",
    "maybe_load_wallet_config",
    "resolve_wallet_config_path",
]
