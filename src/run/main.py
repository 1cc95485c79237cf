from __future__ import annotations

"""Main entry point: ``python -m src.run.main [start|stop]``."""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path

# allow running as a script (e.g. F5 in IDE) without manual PYTHONPATH tweaks
if __package__ is None or __package__ == "":
    current_file = Path(__file__).resolve()
    project_root = current_file.parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

from src.config.account_config import (  # noqa: E402  pylint: disable=wrong-import-position
    PolymarketAccountConfig,
    maybe_load_account_config,
    resolve_config_path,
)
from src.config import (  # noqa: E402  pylint: disable=wrong-import-position
    MarketDiscoveryConfig,
    default_scalp_strategy_config,
    maybe_load_market_discovery_config,
    maybe_load_scalp_strategy_config,
)
from src.data.market.discovery import (  # noqa: E402  pylint: disable=wrong-import-position
    GammaMarketDiscovery,
    MarketDataService,
)
from src.data.prices import ReferencePriceProvider  # noqa: E402  pylint: disable=wrong-import-position
from src.data.wallet_manager import WalletDataManager  # noqa: E402  pylint: disable=wrong-import-position
from src.exchange.okx_rest import OkxRESTClient  # noqa: E402  pylint: disable=wrong-import-position
from src.exchange.polymarket_clob import (  # noqa: E402  pylint: disable=wrong-import-position
    PolymarketExecutionGateway,
)
from src.exchange.polymarket_rest import PolymarketRESTClient  # noqa: E402  pylint: disable=wrong-import-position
from src.exchange.price_feeds import (  # noqa: E402  pylint: disable=wrong-import-position
    BinanceTradeFeed,
    OkxTickerFeed,
)
from src.notify.telegram_notifier import TelegramNotifier  # noqa: E402  pylint: disable=wrong-import-position
from src.run.control import (  # noqa: E402  pylint: disable=wrong-import-position
    clear_stop,
    request_stop,
    stop_requested,
)
from src.strategy.scalp import ScalpTradingStrategy  # noqa: E402  pylint: disable=wrong-import-position

logger = logging.getLogger("updownStrategy")


def _configure_logging(log_file: Path) -> None:
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    root.addHandler(file_handler)
    # per-request lines from the HTTP stack drown the decision log
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _setup_logging() -> tuple[Path, datetime]:
    log_dir = Path(__file__).resolve().parents[2] / "log"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"updownStrategy_{timestamp}.log"
    _configure_logging(log_file)
    return log_file, datetime.now()


def _maybe_rotate_logs(
    current_file: Path,
    start_time: datetime,
    rotation_hours: int = 6,
) -> tuple[Path, datetime]:
    if datetime.now() - start_time < timedelta(hours=rotation_hours):
        return current_file, start_time
    return _setup_logging()


def _require_account_config() -> PolymarketAccountConfig:
    config = maybe_load_account_config()
    if config is None:
        default_path = resolve_config_path()
        sample_path = Path(default_path.parent, "sampleConfig.ini")
        raise FileNotFoundError(
            "accountConfig.ini not found and PRIVATE_KEY/POLYMARKET_FUNDER_ADDRESS unset. "
            f"Run `python -m src.config.account_config` or copy {sample_path} to create one."
        )
    logger.info(
        "Loaded account config: name=%s, funder=%s, signature_type=%s, api_creds=%s",
        config.account_name or "default",
        config.funder_address,
        config.signature_type,
        "configured" if config.has_api_creds else "derived",
    )
    return config


async def run_strategy() -> None:
    log_file, log_started = _setup_logging()
    logger.info("Logging to %s", log_file)
    account = _require_account_config()
    gateway = PolymarketExecutionGateway.from_account_config(account)

    strategy_config = maybe_load_scalp_strategy_config()
    if strategy_config is None:
        logger.warning("scalpStrategy.ini not found; using in-memory defaults")
        strategy_config = default_scalp_strategy_config()
    discovery_config = maybe_load_market_discovery_config() or MarketDiscoveryConfig()
    logger.info(
        "Markets: instruments=%s window=%s refresh=%ss lookahead=%s",
        ",".join(discovery_config.instruments),
        discovery_config.window,
        discovery_config.refresh_interval,
        discovery_config.lookahead_slots,
    )

    profiles = [strategy_config.profile_for(symbol) for symbol in discovery_config.instruments]
    primary_feed = OkxTickerFeed([profile.okx_inst_id for profile in profiles])
    secondary_feed = BinanceTradeFeed([profile.binance_symbol for profile in profiles])
    primary_feed.start()
    secondary_feed.start()

    rest = PolymarketRESTClient(
        clob_host=discovery_config.clob_host,
        gamma_host=discovery_config.gamma_host,
    )
    okx = OkxRESTClient()
    market_data = MarketDataService(
        discovery=GammaMarketDiscovery(rest=rest, config=discovery_config),
        rest=rest,
        refresh_interval=discovery_config.refresh_interval,
    )
    prices = ReferencePriceProvider(
        config=strategy_config,
        primary=primary_feed,
        secondary=secondary_feed,
        rest=okx,
    )
    notifier = TelegramNotifier.from_env()
    wallet_manager = WalletDataManager(gateway)
    wallet_snapshot = None
    try:
        wallet_snapshot = await wallet_manager.fetch_once()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Initial collateral fetch failed: %s", exc)
    if wallet_snapshot is None:
        logger.warning("Collateral snapshot unavailable; trading loop will rely on later refresh")

    strategy = ScalpTradingStrategy(
        gateway=gateway,
        market_data=market_data,
        prices=prices,
        config=strategy_config,
        notifier=notifier,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # signal handlers are unavailable on some platforms
            pass

    logger.info("Starting up/down scalp loop")
    try:
        await strategy.startup()
        while not stop_event.is_set():
            if stop_requested():
                logger.info("Stop file detected; leaving trading loop")
                break
            try:
                await strategy.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Scalp strategy cycle failed: %s", exc)
            await wallet_manager.maybe_refresh()
            new_log_file, new_start = _maybe_rotate_logs(log_file, log_started)
            if new_log_file != log_file:
                logger.info("Rotated log file to %s", new_log_file)
            log_file, log_started = new_log_file, new_start
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=strategy.next_poll_interval())
            except asyncio.TimeoutError:
                pass
    finally:
        logger.info("Shutting down: cancelling pending orders and closing clients")
        try:
            await strategy.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to cancel pending orders on shutdown: %s", exc)
        primary_feed.stop()
        secondary_feed.stop()
        await rest.aclose()
        await okx.aclose()
        if notifier is not None:
            await notifier.aclose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Polymarket up/down scalp strategy")
    parser.add_argument("command", nargs="?", choices=("start", "stop"), default="start")
    args = parser.parse_args(argv)
    if args.command == "stop":
        path = request_stop()
        print(f"Stop requested ({path}); the running loop exits after its current cycle.")
        return
    clear_stop()
    try:
        asyncio.run(run_strategy())
    except KeyboardInterrupt:
        logger.info("Received interrupt, stopping trading loop")


if __name__ == "__main__":
    main()
