"""Unit tests for the INI configuration loaders."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.config import account_config
from src.config.market_discovery_config import (
    load_market_discovery_config,
    maybe_load_market_discovery_config,
)
from src.config.scalp_strategy_config import (
    default_scalp_strategy_config,
    load_scalp_strategy_config,
    maybe_load_scalp_strategy_config,
    write_scalp_strategy_config,
)
from src.config.wallet_config import load_wallet_config


def _write(tmp_path: Path, name: str, body: str) -> Path:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return path


class TestScalpStrategyConfig:
    def test_parses_bands_steps_and_profiles(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "scalp.ini",
            "[scalp_strategy]\n"
            "bands = 0.985-0.9999:0.99, 0.978-0.984:0.98\n"
            "gap_steps = 60:0.5, 240:1\n"
            "min_order_size = 8\n"
            "max_order_size = 4\n"
            "max_open_positions = 0\n"
            "exit_final_fak = false\n"
            "\n"
            "[scalp_strategy.instrument_btc]\n"
            "base_gap = 55\n"
            "gap_floor = 20\n"
            "overextension_pct = 0.5\n"
            "divergence_threshold = 12\n",
        )
        config = load_scalp_strategy_config(path)
        assert [band.quote for band in config.bands] == [0.98, 0.99]
        assert [step.min_seconds for step in config.gap_steps] == [240.0, 60.0]
        assert config.min_order_size == 8.0
        assert config.max_order_size == 8.0
        assert config.max_open_positions == 1
        assert config.exit_final_fak is False

        btc = config.profile_for("btc")
        assert btc.base_gap == 55.0
        assert btc.overextension_pct == pytest.approx(0.005)
        assert btc.okx_inst_id == "BTC-USDT"
        assert btc.binance_symbol == "btcusdt"
        assert config.profile_for("ETH").base_gap == 2.0

    def test_unknown_instrument_has_zero_thresholds(self) -> None:
        profile = default_scalp_strategy_config().profile_for("doge")
        assert profile.symbol == "DOGE"
        assert profile.okx_inst_id == "DOGE-USDT"
        assert profile.gap_floor == 0.0
        assert profile.divergence_threshold == 0.0

    def test_invalid_band_is_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "scalp.ini", "[scalp_strategy]\nbands = 0.99-0.98:0.99\n")
        with pytest.raises(ValueError):
            load_scalp_strategy_config(path)
        assert maybe_load_scalp_strategy_config(path) is None
        with pytest.raises(ValueError):
            maybe_load_scalp_strategy_config(path, strict=True)

    def test_missing_section(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "scalp.ini", "[other]\nkey = 1\n")
        assert maybe_load_scalp_strategy_config(path) is None

    def test_written_config_loads_back(self, tmp_path: Path) -> None:
        defaults = default_scalp_strategy_config()
        path = write_scalp_strategy_config(defaults, tmp_path / "out" / "scalp.ini")
        loaded = load_scalp_strategy_config(path)
        assert loaded.bands == defaults.bands
        assert loaded.gap_steps == defaults.gap_steps
        assert loaded.profit_target == defaults.profit_target
        assert loaded.profile_for("BTC").overextension_pct == pytest.approx(
            defaults.profile_for("BTC").overextension_pct
        )

    def test_shipped_sample_parses(self) -> None:
        sample = Path(__file__).resolve().parents[1] / "config" / "scalpStrategy.ini"
        config = load_scalp_strategy_config(sample)
        assert config.profit_target == pytest.approx(0.01)
        assert config.stop_loss == pytest.approx(0.04)
        assert config.profile_for("BTC").overextension_pct == pytest.approx(0.002)


class TestMarketDiscoveryConfig:
    def test_parses_and_clamps(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "discovery.ini",
            "[discovery]\ninstruments = btc, eth, btc\nwindow = 5m\nrefresh_interval = 1\nlookahead_slots = -2\n",
        )
        config = load_market_discovery_config(path)
        assert config.instruments == ("BTC", "ETH")
        assert config.window_seconds == 300
        assert config.refresh_interval == 5.0
        assert config.lookahead_slots == 0

    def test_unsupported_window(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "discovery.ini", "[discovery]\nwindow = 1h\n")
        with pytest.raises(ValueError):
            load_market_discovery_config(path)
        assert maybe_load_market_discovery_config(path) is None


class TestWalletConfig:
    def test_clamps_values(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "wallet.ini", "[wallet]\nrefresh_interval = 1\nlow_balance_warning = -5\n")
        config = load_wallet_config(path)
        assert config.refresh_interval == 10.0
        assert config.low_balance_warning == 0.0


class TestAccountConfig:
    def test_loads_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "accountConfig.ini",
            "[polymarket]\n"
            "account_name = main\n"
            "private_key = abc123\n"
            "funder_address = 0xfunder\n"
            "signature_type = 1\n"
            "api_key = k\napi_secret = s\napi_passphrase = p\n",
        )
        config = account_config.load_account_config(path)
        assert config.account_name == "main"
        assert config.signature_type == 1
        assert config.normalized_private_key == "0xabc123"
        assert config.has_api_creds
        assert config.as_env()["POLY_API_KEY"] == "k"

    def test_invalid_signature_type(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "accountConfig.ini",
            "[polymarket]\nprivate_key = abc\nfunder_address = 0xf\nsignature_type = 7\n",
        )
        with pytest.raises(ValueError):
            account_config.load_account_config(path)
        assert account_config.maybe_load_account_config(path) is None

    def test_environment_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(account_config, "_CONFIG_DIR", tmp_path)
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("POLYMARKET_ACCOUNT_CONFIG", raising=False)
        monkeypatch.setenv("PRIVATE_KEY", "0xkey")
        monkeypatch.setenv("POLYMARKET_FUNDER_ADDRESS", "0xfunder")
        monkeypatch.delenv("SIGNATURE_TYPE", raising=False)
        monkeypatch.delenv("POLY_API_KEY", raising=False)
        config = account_config.load_account_config()
        assert config.private_key == "0xkey"
        assert config.signature_type == 2
        assert not config.has_api_creds

    def test_missing_everything(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(account_config, "_CONFIG_DIR", tmp_path)
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("POLYMARKET_ACCOUNT_CONFIG", raising=False)
        monkeypatch.delenv("PRIVATE_KEY", raising=False)
        monkeypatch.delenv("POLYMARKET_FUNDER_ADDRESS", raising=False)
        assert account_config.maybe_load_account_config() is None
