from __future__ import annotations

"""Utilities for managing Polymarket account configuration stored under config/accountConfig.ini."""

import configparser
import getpass
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from src.data.market.constants import DEFAULT_CHAIN_ID, DEFAULT_CLOB_HOST

_CONFIG_ENV_VAR = "POLYMARKET_ACCOUNT_CONFIG"
_DEFAULT_FILE_NAME = "accountConfig.ini"
_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_SECTION = "polymarket"

# environment fallbacks, matching the variable names used by the CLOB tooling
_ENV_KEYS = {
    "private_key": "PRIVATE_KEY",
    "funder_address": "POLYMARKET_FUNDER_ADDRESS",
    "signature_type": "SIGNATURE_TYPE",
    "api_key": "POLY_API_KEY",
    "api_secret": "POLY_SECRET",
    "api_passphrase": "POLY_PASSPHRASE",
}


@dataclass
class PolymarketAccountConfig:
    """Parsed configuration values for a single Polymarket trading wallet."""

    private_key: str
    funder_address: str
    signature_type: int = 2
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_passphrase: Optional[str] = None
    clob_host: str = DEFAULT_CLOB_HOST
    chain_id: int = DEFAULT_CHAIN_ID
    account_name: Optional[str] = None

    @property
    def has_api_creds(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)

    @property
    def normalized_private_key(self) -> str:
        key = self.private_key.strip()
        return key if key.startswith("0x") else f"0x{key}"

    def as_env(self) -> dict[str, str]:
        """Return env-var friendly mapping for quick integration with existing workflows."""

        env = {
            "PRIVATE_KEY": self.private_key,
            "POLYMARKET_FUNDER_ADDRESS": self.funder_address,
            "SIGNATURE_TYPE": str(self.signature_type),
        }
        if self.has_api_creds:
            env["POLY_API_KEY"] = self.api_key or ""
            env["POLY_SECRET"] = self.api_secret or ""
            env["POLY_PASSPHRASE"] = self.api_passphrase or ""
        if self.account_name:
            env["POLYMARKET_ACCOUNT_NAME"] = self.account_name
        return env


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    """Resolve configuration path using explicit value, env override, or project default."""

    candidates = []
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
    # Fall back to first candidate even if it does not exist for creation workflows
    return candidates[0]


def _env_value(field_name: str) -> str:
    return os.environ.get(_ENV_KEYS[field_name], "").strip()


def _parse_signature_type(raw: str | None) -> int:
    if not raw:
        return 2
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"signature_type must be an integer, got {raw!r}") from exc
    if value not in {0, 1, 2}:
        raise ValueError(f"signature_type must be 0, 1 or 2, got {value}")
    return value


def _from_environment() -> Optional[PolymarketAccountConfig]:
    private_key = _env_value("private_key")
    funder = _env_value("funder_address")
    if not private_key or not funder:
        return None
    return PolymarketAccountConfig(
        private_key=private_key,
        funder_address=funder,
        signature_type=_parse_signature_type(_env_value("signature_type")),
        api_key=_env_value("api_key") or None,
        api_secret=_env_value("api_secret") or None,
        api_passphrase=_env_value("api_passphrase") or None,
    )


def load_account_config(
    path: str | os.PathLike[str] | None = None,
) -> PolymarketAccountConfig:
    """Load the Polymarket account configuration from disk, falling back to env vars."""

    config_path = resolve_config_path(path)
    parser = configparser.ConfigParser()
    read_files = parser.read(config_path)
    if not read_files:
        env_config = _from_environment()
        if env_config is not None:
            return env_config
        raise FileNotFoundError(f"account config not found at {config_path}")
    if _SECTION not in parser:
        raise ValueError(
            f"section [{_SECTION}] missing in accountConfig.ini; run interactive setup first"
        )
    section = parser[_SECTION]

    def _value(key: str) -> str:
        return section.get(key, fallback="").strip() or _env_value(key)

    private_key = _value("private_key")
    funder = _value("funder_address")
    if not private_key or not funder:
        raise ValueError("private_key/funder_address missing in accountConfig.ini")
    account_name = section.get("account_name", fallback=None)
    return PolymarketAccountConfig(
        private_key=private_key,
        funder_address=funder,
        signature_type=_parse_signature_type(_value("signature_type")),
        api_key=_value("api_key") or None,
        api_secret=_value("api_secret") or None,
        api_passphrase=_value("api_passphrase") or None,
        clob_host=section.get("clob_host", fallback=DEFAULT_CLOB_HOST).strip().rstrip("/")
        or DEFAULT_CLOB_HOST,
        chain_id=section.getint("chain_id", fallback=DEFAULT_CHAIN_ID),
        account_name=account_name.strip() if account_name else None,
    )


def maybe_load_account_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[PolymarketAccountConfig]:
    """Best-effort loader that returns None when the file is absent or incomplete."""

    try:
        return load_account_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def interactive_setup(
    path: str | os.PathLike[str] | None = None,
    *,
    force: bool = False,
) -> Path:
    """Prompt the user for wallet credentials and write config/accountConfig.ini.

    Parameters
    ----------
    path:
        Optional location for the config file. Defaults to config/accountConfig.ini in the
        project root, or the `POLYMARKET_ACCOUNT_CONFIG` override if it resolves to an existing file.
    force:
        Overwrite an existing file instead of prompting the user to confirm.
    """

    config_path = resolve_config_path(path)
    if config_path.exists() and not force:
        answer = input(
            f"Config file {config_path} already exists. Overwrite? [y/N]: "
        ).strip()
        if answer.lower() not in {"y", "yes"}:
            return config_path
    print("Enter your Polymarket wallet credentials. Values are kept locally in INI format.")
    account_name = input("Account nickname (optional): ").strip() or None
    private_key = getpass.getpass("Private key: ").strip()
    funder = input("Funder (proxy wallet) address: ").strip()
    signature_type = input("Signature type (0=EOA, 1=email, 2=browser proxy) [2]: ").strip() or "2"
    print("API credentials are optional; leave blank to derive them on startup.")
    api_key = input("API key: ").strip()
    api_secret = getpass.getpass("API secret: ").strip() if api_key else ""
    api_passphrase = getpass.getpass("API passphrase: ").strip() if api_key else ""

    parser = configparser.ConfigParser()
    parser[_SECTION] = {
        "account_name": account_name or "",
        "private_key": private_key,
        "funder_address": funder,
        "signature_type": str(_parse_signature_type(signature_type)),
        "api_key": api_key,
        "api_secret": api_secret,
        "api_passphrase": api_passphrase,
        "clob_host": DEFAULT_CLOB_HOST,
        "chain_id": str(DEFAULT_CHAIN_ID),
    }
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as fh:
        parser.write(fh)
    print(f"Saved Polymarket account configuration to {config_path}")
    return config_path


if __name__ == "__main__":
    interactive_setup()
