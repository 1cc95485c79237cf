#!/usr/bin/env python3
"""
Telegram bot entrypoint for controlling the up/down trading loop and
fetching status and performance snapshots.

Environment variables:
  TELEGRAM_BOT_TOKEN            Telegram bot token (required)
  TELEGRAM_ALLOWED_CHAT_IDS     Comma-separated chat IDs allowed to interact (optional)
"""

from __future__ import annotations

import asyncio
import json
import os
import subprocess
import sys
from pathlib import Path

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.run.control import clear_stop, request_stop, stop_requested  # noqa: E402

ANALYTICS_DIR = PROJECT_ROOT / "analytics"
PERFORMANCE_FILE = ANALYTICS_DIR / "performance_snapshot.json"
STATUS_FILE = ANALYTICS_DIR / "status_snapshot.json"

BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
ALLOWED_CHAT_IDS = {
    int(cid)
    for cid in filter(None, (part.strip() for part in os.getenv("TELEGRAM_ALLOWED_CHAT_IDS", "").split(",")))
}


async def send_text(update: Update, text: str, **kwargs) -> None:
    if update.message:
        await update.message.reply_text(text, **kwargs)
    elif update.effective_chat:
        await update.effective_chat.send_message(text, **kwargs)


def ensure_token() -> None:
    if not BOT_TOKEN:
        raise RuntimeError("Set TELEGRAM_BOT_TOKEN before starting the Telegram bot.")


def is_authorized(chat_id: int) -> bool:
    return not ALLOWED_CHAT_IDS or chat_id in ALLOWED_CHAT_IDS


async def guard_authorization(update: Update) -> bool:
    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None or is_authorized(chat_id):
        return True
    await send_text(update, "🚫 이 챗은 허용되지 않았습니다.")
    return False


def launch_strategy() -> int:
    clear_stop(PROJECT_ROOT)
    process = subprocess.Popen(
        [sys.executable, "-m", "src.run.main", "start"],
        cwd=PROJECT_ROOT,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    return process.pid


def format_status_snapshot() -> str:
    if not STATUS_FILE.exists():
        raise FileNotFoundError(f"파일이 없습니다: {STATUS_FILE}")
    data = json.loads(STATUS_FILE.read_text())
    lines = [f"*상태* ({data.get('updated_at', 'N/A')})"]
    if stop_requested(PROJECT_ROOT):
        lines.append("- 정지 요청됨")
    positions = data.get("positions") or []
    if positions:
        for pos in positions:
            lines.append(
                f"- 포지션: {pos.get('direction')} {pos.get('size', 0):.2f} @ {pos.get('avg_price', 0):.4f} "
                f"({pos.get('market_slug')}, {pos.get('state')})"
            )
    else:
        lines.append("- 포지션 없음")
    pending = data.get("pending_orders") or []
    lines.append(f"- 대기 주문: {len(pending)}")
    markets = data.get("active_markets") or []
    if markets:
        lines.append(
            "- 활성 마켓: "
            + ", ".join(f"{m.get('slug')} ({m.get('seconds_left', 0):.0f}s)" for m in markets)
        )
    else:
        lines.append("- 활성 마켓 없음")
    return "\n".join(lines)


def format_performance_snapshot() -> str:
    if not PERFORMANCE_FILE.exists():
        raise FileNotFoundError(f"파일이 없습니다: {PERFORMANCE_FILE}")

    data = json.loads(PERFORMANCE_FILE.read_text())
    total = data.get("total", {})
    window = data.get("window", {})

    def pack(section_name: str, section: dict) -> str:
        if not section:
            return f"*{section_name}*\n데이터가 없습니다."
        reasons = section.get("exit_reasons") or {}
        reason_text = ", ".join(f"{key} {value}" for key, value in sorted(reasons.items())) or "-"
        return (
            f"*{section_name}*\n"
            f"- 거래 수: {section.get('trades', 'N/A')} (승 {section.get('wins', 'N/A')}, 패 {section.get('losses', 'N/A')}, 무 {section.get('ties', 0)})\n"
            f"- 승률: {section.get('win_rate', 0):.2%}\n"
            f"- 순손익: {section.get('net_pnl', 0):.4f}\n"
            f"- 손익비: {section.get('profit_factor', 0):.4f}\n"
            f"- 강제 정리: {section.get('forced_clears', 0)}\n"
            f"- 청산 사유: {reason_text}"
        )

    segments = [
        "*거래 성과 요약*",
        pack("전체", total),
        pack("최근 구간", window),
    ]
    return "\n\n".join(segments)


async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:  # noqa: ARG001
    if not await guard_authorization(update):
        return
    try:
        pid = await asyncio.to_thread(launch_strategy)
        await send_text(update, f"✅ 전략을 시작했습니다 (pid {pid}).")
    except Exception as exc:  # pragma: no cover - defensive
        await send_text(update, f"❌ 시작 실패: {exc}")


async def handle_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:  # noqa: ARG001
    if not await guard_authorization(update):
        return
    path = await asyncio.to_thread(request_stop, PROJECT_ROOT)
    await send_text(update, f"🛑 정지 요청을 기록했습니다: {path.name}\n현재 사이클 이후 종료됩니다.")


async def handle_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:  # noqa: ARG001
    if not await guard_authorization(update):
        return
    try:
        summary = await asyncio.to_thread(format_status_snapshot)
        await send_text(update, summary, parse_mode=ParseMode.MARKDOWN)
    except FileNotFoundError as exc:
        await send_text(update, f"❌ {exc}")
    except json.JSONDecodeError:
        await send_text(update, "❌ 상태 파일 JSON 파싱에 실패했습니다.")


async def handle_performance(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:  # noqa: ARG001
    if not await guard_authorization(update):
        return

    try:
        summary = await asyncio.to_thread(format_performance_snapshot)
        await send_text(update, summary, parse_mode=ParseMode.MARKDOWN)
    except FileNotFoundError as exc:
        await send_text(update, f"❌ {exc}")
    except json.JSONDecodeError:
        await send_text(update, "❌ 성과 파일 JSON 파싱에 실패했습니다.")
    except Exception as exc:  # pragma: no cover - defensive
        await send_text(update, f"❌ 알 수 없는 오류: {exc}")


def build_application() -> Application:
    ensure_token()
    return ApplicationBuilder().token(BOT_TOKEN).build()


def main() -> None:
    app = build_application()
    app.add_handler(CommandHandler("start", handle_start))
    app.add_handler(CommandHandler("stop", handle_stop))
    app.add_handler(CommandHandler("status", handle_status))
    app.add_handler(CommandHandler(["performance", "stats"], handle_performance))

    print("✅ Telegram bot 초기화 완료.")
    print("🤖 Telegram bot이 시작되었습니다. 종료하려면 Ctrl+C 입력.")
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
