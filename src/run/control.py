from __future__ import annotations

"""Stop-file control shared by the trading loop, the CLI and the Telegram bot."""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("updownStrategy.run.control")

PROJECT_ROOT = Path(__file__).resolve().parents[2]
STOP_FILE_NAME = ".updown-strategy-stop"


def stop_file_path(root: Optional[Path] = None) -> Path:
    return (root or PROJECT_ROOT) / STOP_FILE_NAME


def request_stop(root: Optional[Path] = None) -> Path:
    path = stop_file_path(root)
    path.write_text("stop\n", encoding="utf-8")
    logger.info("Stop requested via %s", path)
    return path


def clear_stop(root: Optional[Path] = None) -> bool:
    path = stop_file_path(root)
    if not path.exists():
        return False
    path.unlink()
    logger.info("Removed stale stop file %s", path)
    return True


def stop_requested(root: Optional[Path] = None) -> bool:
    return stop_file_path(root).exists()
