from __future__ import annotations

"""Telegram trade notifications (python-telegram-bot ``Bot.send_message``)."""

import logging
import os
from typing import TYPE_CHECKING, Optional

from telegram import Bot
from telegram.error import TelegramError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from src.strategy.analytics.models import TradeRecord
    from src.strategy.exits import ExitResult

logger = logging.getLogger("updownStrategy.notify.telegram")


class TelegramNotifier:
    """Best-effort notifier; delivery failures are logged and swallowed."""

    def __init__(self, *, bot_token: str, chat_id: str, bot: Optional[Bot] = None) -> None:
        self._chat_id = chat_id
        self._bot = bot or Bot(token=bot_token)
        self._initialized = bot is not None

    @classmethod
    def from_env(cls) -> Optional["TelegramNotifier"]:
        token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
        chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
        if not token or not chat_id:
            logger.info("Telegram notifications disabled (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID unset)")
            return None
        return cls(bot_token=token, chat_id=chat_id)

    async def send(self, text: str) -> bool:
        try:
            if not self._initialized:
                await self._bot.initialize()
                self._initialized = True
            await self._bot.send_message(chat_id=self._chat_id, text=text)
        except TelegramError as exc:
            logger.warning("Telegram delivery failed: %s", exc)
            return False
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected Telegram error: %s", exc)
            return False
        return True

    async def notify_exit(self, result: "ExitResult", record: Optional["TradeRecord"] = None) -> bool:
        signal = result.signal
        lines = [
            f"[{result.status.value.upper()}] {signal.market_slug}",
            f"{signal.direction} {signal.reason.value}: avg {signal.avg_price:.4f}",
        ]
        if result.sold_size > 0:
            lines.append(f"sold {result.sold_size:.2f} @ {result.avg_sell_price:.4f} (pnl {result.realized_pnl:+.4f})")
        if result.forced_size > 0:
            lines.append(f"force-cleared {result.forced_size:.2f} without a confirmed sale")
        if record is not None:
            lines.append(f"held {record.holding_seconds:.0f}s")
        return await self.send("\n".join(lines))

    async def aclose(self) -> None:
        if not self._initialized:
            return
        try:
            await self._bot.shutdown()
        except TelegramError as exc:
            logger.debug("Telegram shutdown failed: %s", exc)
        self._initialized = False
