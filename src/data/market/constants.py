from __future__ import annotations

"""Constants shared by market discovery, order books and position tracking."""

DEFAULT_GAMMA_HOST = "https://gamma-api.polymarket.com"
DEFAULT_CLOB_HOST = "https://clob.polymarket.com"
DEFAULT_CHAIN_ID = 137

DEFAULT_INSTRUMENTS: tuple[str, ...] = ("BTC",)
DEFAULT_WINDOW = "15m"
WINDOW_SECONDS: dict[str, int] = {"5m": 300, "15m": 900}
DEFAULT_DISCOVERY_INTERVAL = 30.0
DEFAULT_LOOKAHEAD_SLOTS = 2

DEFAULT_TICK_SIZE = 0.01
MIN_PRICE = 0.01
MAX_PRICE = 0.99

DIRECTION_UP = "up"
DIRECTION_DOWN = "down"
DIRECTIONS: tuple[str, ...] = (DIRECTION_UP, DIRECTION_DOWN)

# sizes below this are treated as fully closed
POSITION_EPSILON = 0.01
