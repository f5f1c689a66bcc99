"""
Signing wallets and per-request wallet resolution.

A wallet's chain family is fixed when it is loaded: :class:`SolanaWallet` wraps
a solders ``Keypair`` and :class:`EvmWallet` wraps a hex private key.
:class:`WalletResolver` picks the wallet that matches the network a quote
demands, falling back to auto-discovery when the caller's wallet is for the
other family.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Mapping, Optional, Tuple, Union

from eth_account import Account
from solders.keypair import Keypair

from paycall import config
from paycall.errors import ConfigurationError
from paycall.networks import ChainFamily, classify_network

_BASE58_SECRET_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{80,90}$")
_EVM_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class SolanaWallet:
    keypair: Keypair = field(repr=False)
    family: ClassVar[ChainFamily] = ChainFamily.SOLANA

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


@dataclass(frozen=True)
class EvmWallet:
    private_key: str = field(repr=False)
    family: ClassVar[ChainFamily] = ChainFamily.EVM

    def __post_init__(self) -> None:
        key = self.private_key.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        if not _EVM_KEY_RE.match(key):
            raise ConfigurationError(
                "Invalid EVM private key; expected 32 bytes of hex",
                error_detail=f"Set {config.EVM_PRIVATE_KEY_ENV} to a 0x-prefixed hex private key",
            )
        object.__setattr__(self, "private_key", key)

    @property
    def account(self):
        return Account.from_key(self.private_key)

    @property
    def address(self) -> str:
        return self.account.address


SigningWallet = Union[SolanaWallet, EvmWallet]


@dataclass(frozen=True)
class ResolvedWallet:
    wallet: SigningWallet
    substituted: bool = False
    source: str = "supplied"


# ============================================
# Loading
# ============================================


def parse_solana_keypair(secret: str) -> Keypair:
    """
    Parse a Solana keypair from a JSON array of ints or a base58 secret key.

    Raises:
        ConfigurationError: If the string is empty or not a valid keypair.
    """
    s = (secret or "").strip()
    if not s:
        raise ConfigurationError("Empty Solana secret key")

    # Format 1: JSON array of ints (Solana CLI id.json)
    if s.startswith("["):
        try:
            arr = json.loads(s)
        except ValueError as e:
            raise ConfigurationError(
                "Invalid JSON Solana secret key", error_detail=str(e)
            ) from e
        return _keypair_from_array(arr)

    # Format 2: base58 string
    if not _BASE58_SECRET_RE.match(s):
        raise ConfigurationError(
            "Invalid Solana secret key; expected a base58 string or a JSON array of ints"
        )
    try:
        return Keypair.from_base58_string(s)
    except ValueError as e:
        raise ConfigurationError(
            "Invalid base58 Solana secret key", error_detail=str(e)
        ) from e


def _keypair_from_array(arr: Any) -> Keypair:
    if not isinstance(arr, list) or not all(
        isinstance(x, int) and 0 <= x < 256 for x in arr
    ):
        raise ConfigurationError(
            "Invalid JSON Solana secret key; expected a list of ints"
        )
    if len(arr) != 64:
        raise ConfigurationError(
            f"Invalid Solana secret key; expected 64 bytes, got {len(arr)}"
        )
    try:
        return Keypair.from_bytes(bytes(arr))
    except ValueError as e:
        raise ConfigurationError(
            "Invalid Solana secret key bytes", error_detail=str(e)
        ) from e


def load_solana_wallet(path: Union[str, Path], home: Optional[Path] = None) -> SolanaWallet:
    """
    Load a Solana wallet file.

    The file holds either a JSON array of ints (Solana CLI format) or a JSON
    string with a base58 secret key. A leading ``~`` is expanded.
    """
    wallet_path = config.expand_path(str(path), home)
    if not wallet_path.is_file():
        raise ConfigurationError(f"Wallet file not found: {wallet_path}")
    try:
        data = json.loads(wallet_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            f"Failed to load wallet: {wallet_path}", error_detail=str(e)
        ) from e

    if isinstance(data, list):
        return SolanaWallet(_keypair_from_array(data))
    if isinstance(data, str):
        return SolanaWallet(parse_solana_keypair(data))
    raise ConfigurationError(f"Invalid wallet format in {wallet_path}")


def load_evm_wallet(path: Union[str, Path], home: Optional[Path] = None) -> EvmWallet:
    """Load an EVM wallet file: a JSON object with a ``privateKey`` field."""
    wallet_path = config.expand_path(str(path), home)
    if not wallet_path.is_file():
        raise ConfigurationError(f"EVM wallet file not found: {wallet_path}")
    try:
        data = json.loads(wallet_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            f"Failed to load EVM wallet: {wallet_path}", error_detail=str(e)
        ) from e

    private_key = data.get("privateKey") if isinstance(data, dict) else None
    if not isinstance(private_key, str) or not private_key:
        raise ConfigurationError(
            f"EVM wallet file {wallet_path} has no 'privateKey'"
        )
    return EvmWallet(private_key)


def wallet_from_secret(value: str) -> SigningWallet:
    """Build a wallet from a raw secret, guessing the family from its shape."""
    s = (value or "").strip()
    if _EVM_KEY_RE.match(s):
        return EvmWallet(s)
    return SolanaWallet(parse_solana_keypair(s))


# ============================================
# Resolution
# ============================================


class WalletResolver:
    """
    Picks the signing wallet for the network a quote demands.

    The caller's wallet is used unchanged when its family matches. Otherwise a
    wallet for the required family is discovered, in order:

    - Solana: ``PAYCALL_WALLET`` (file path, base58 or JSON array), the rc
      file's ``wallet`` path, then ``~/.config/solana/id.json``.
    - EVM: ``PAYCALL_EVM_PRIVATE_KEY``, the rc file's
      ``evmWallet.privateKey``, then ``~/.paycall/evm-wallet.json``.

    Args:
        environ: Environment mapping to read (defaults to ``os.environ``).
        home: Home directory for the rc file and default wallet paths.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
    ):
        self.environ = os.environ if environ is None else environ
        self.home = home

    def resolve(
        self, network: Optional[str], supplied: Optional[SigningWallet] = None
    ) -> ResolvedWallet:
        """
        Return the wallet to sign with for ``network``.

        Raises:
            ConfigurationError: If no wallet of the required family can be
                found. The message names the env var and file to provide.
        """
        required = classify_network(network)
        if supplied is not None and supplied.family is required:
            return ResolvedWallet(wallet=supplied, substituted=False, source="supplied")

        discovered = self.discover(required)
        if discovered is None:
            raise ConfigurationError(
                self._missing_wallet_message(required, network),
                error_detail=self._missing_wallet_hint(required),
            )
        wallet, source = discovered
        return ResolvedWallet(
            wallet=wallet, substituted=supplied is not None, source=source
        )

    def discover(self, family: ChainFamily) -> Optional[Tuple[SigningWallet, str]]:
        if family is ChainFamily.EVM:
            return self._discover_evm()
        return self._discover_solana()

    def _discover_solana(self) -> Optional[Tuple[SigningWallet, str]]:
        env_value = self.environ.get(config.SOLANA_WALLET_ENV)
        if env_value:
            source = f"env:{config.SOLANA_WALLET_ENV}"
            candidate = config.expand_path(env_value, self.home)
            if _looks_like_path(env_value) and candidate.is_file():
                return load_solana_wallet(candidate), source
            return SolanaWallet(parse_solana_keypair(env_value)), source

        rc_wallet = config.read_rc_file(self.home).get("wallet")
        if isinstance(rc_wallet, str) and rc_wallet:
            candidate = config.expand_path(rc_wallet, self.home)
            if candidate.is_file():
                return load_solana_wallet(candidate), "rc:wallet"

        default_path = config.home_dir(self.home) / config.SOLANA_WALLET_RELATIVE_PATH
        if default_path.is_file():
            return load_solana_wallet(default_path), f"file:{default_path}"
        return None

    def _discover_evm(self) -> Optional[Tuple[SigningWallet, str]]:
        env_value = self.environ.get(config.EVM_PRIVATE_KEY_ENV)
        if env_value:
            return EvmWallet(env_value), f"env:{config.EVM_PRIVATE_KEY_ENV}"

        rc_evm = config.read_rc_file(self.home).get("evmWallet")
        if isinstance(rc_evm, dict):
            private_key = rc_evm.get("privateKey")
            if isinstance(private_key, str) and private_key:
                return EvmWallet(private_key), "rc:evmWallet.privateKey"

        default_path = config.home_dir(self.home) / config.EVM_WALLET_RELATIVE_PATH
        if default_path.is_file():
            return load_evm_wallet(default_path), f"file:{default_path}"
        return None

    def _missing_wallet_message(self, family: ChainFamily, network: Optional[str]) -> str:
        if family is ChainFamily.EVM:
            return (
                f"Agent requires {network} payment but no EVM wallet was found. "
                f"Set {config.EVM_PRIVATE_KEY_ENV} or create "
                f"~/{config.EVM_WALLET_RELATIVE_PATH.as_posix()} with {{\"privateKey\": \"0x...\"}}"
            )
        return (
            f"Agent requires {network} payment but no Solana wallet was found. "
            f"Set {config.SOLANA_WALLET_ENV} or create "
            f"~/{config.SOLANA_WALLET_RELATIVE_PATH.as_posix()}"
        )

    def _missing_wallet_hint(self, family: ChainFamily) -> str:
        if family is ChainFamily.EVM:
            return f"env {config.EVM_PRIVATE_KEY_ENV} / ~/{config.EVM_WALLET_RELATIVE_PATH.as_posix()}"
        return f"env {config.SOLANA_WALLET_ENV} / ~/{config.SOLANA_WALLET_RELATIVE_PATH.as_posix()}"


def _looks_like_path(value: str) -> bool:
    return value.startswith(("~", "/", ".")) or value.endswith(".json")
