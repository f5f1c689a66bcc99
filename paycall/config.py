"""
Runtime configuration for paycall.

Values come from the environment (a local ``.env`` file is loaded on import),
then from the JSON rc file in the user's home directory, then from defaults.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# --- Environment variable names ---
API_URL_ENV = "PAYCALL_API_URL"
CHAIN_ENV = "PAYCALL_CHAIN"
SOLANA_RPC_URL_ENV = "SOLANA_RPC_URL"
BASE_RPC_URL_ENV = "BASE_RPC_URL"
TIMEOUT_ENV = "PAYCALL_TIMEOUT"
SOLANA_WALLET_ENV = "PAYCALL_WALLET"
EVM_PRIVATE_KEY_ENV = "PAYCALL_EVM_PRIVATE_KEY"

# --- Well-known paths (relative to the home directory) ---
RC_FILE_NAME = ".paycallrc"
SOLANA_WALLET_RELATIVE_PATH = Path(".config") / "solana" / "id.json"
EVM_WALLET_RELATIVE_PATH = Path(".paycall") / "evm-wallet.json"

# --- Defaults ---
DEFAULT_API_URL = "https://agents.memeputer.com/x402"
DEFAULT_CHAIN = "solana"
DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_BASE_RPC_URL = "https://mainnet.base.org"
DEFAULT_TIMEOUT = 120.0

PAYCALL_API_URL = os.getenv(API_URL_ENV, DEFAULT_API_URL)
PAYCALL_CHAIN = os.getenv(CHAIN_ENV, DEFAULT_CHAIN)
SOLANA_RPC_URL = os.getenv(SOLANA_RPC_URL_ENV, DEFAULT_SOLANA_RPC_URL)
BASE_RPC_URL = os.getenv(BASE_RPC_URL_ENV, DEFAULT_BASE_RPC_URL)
PAYCALL_TIMEOUT = float(os.getenv(TIMEOUT_ENV, str(DEFAULT_TIMEOUT)))

USER_AGENT = "paycall-python"


def home_dir(home: Optional[Path] = None) -> Path:
    return Path(home) if home is not None else Path.home()


def expand_path(path: str, home: Optional[Path] = None) -> Path:
    """Expand a leading ``~`` against ``home`` (defaults to the user's home)."""
    if path == "~":
        return home_dir(home)
    if path.startswith("~/"):
        return home_dir(home) / path[2:]
    return Path(path)


def rc_file_path(home: Optional[Path] = None) -> Path:
    return home_dir(home) / RC_FILE_NAME


def read_rc_file(home: Optional[Path] = None) -> Dict[str, Any]:
    """
    Read the JSON rc file.

    A missing or malformed file is treated as empty.
    """
    path = rc_file_path(home)
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable rc file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring rc file {path}: expected a JSON object")
        return {}
    return data


def _resolve(env_name: str, rc_key: str, default: str, home: Optional[Path]) -> str:
    value = os.getenv(env_name)
    if value:
        return value
    rc_value = read_rc_file(home).get(rc_key)
    if isinstance(rc_value, str) and rc_value:
        return rc_value
    return default


def resolve_api_url(home: Optional[Path] = None) -> str:
    return _resolve(API_URL_ENV, "apiUrl", DEFAULT_API_URL, home)


def resolve_chain(home: Optional[Path] = None) -> str:
    return _resolve(CHAIN_ENV, "chain", DEFAULT_CHAIN, home)


def resolve_solana_rpc_url(home: Optional[Path] = None) -> str:
    return _resolve(SOLANA_RPC_URL_ENV, "rpcUrl", DEFAULT_SOLANA_RPC_URL, home)
