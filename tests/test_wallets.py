import json

import pytest
from eth_account import Account
from solders.keypair import Keypair

from paycall.errors import ConfigurationError
from paycall.networks import ChainFamily
from paycall.wallets import (
    EvmWallet,
    SolanaWallet,
    WalletResolver,
    load_evm_wallet,
    load_solana_wallet,
    parse_solana_keypair,
    wallet_from_secret,
)


def write_solana_cli_wallet(path, keypair):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(list(bytes(keypair))))


def test_parse_solana_keypair_formats():
    keypair = Keypair()
    assert parse_solana_keypair(json.dumps(list(bytes(keypair)))).pubkey() == keypair.pubkey()
    assert parse_solana_keypair(str(keypair)).pubkey() == keypair.pubkey()


@pytest.mark.parametrize("secret", ["", "   ", "[1, 2, 3]", "[\"a\"]", "0OIl", "[not json"])
def test_parse_solana_keypair_rejects_invalid(secret):
    with pytest.raises(ConfigurationError):
        parse_solana_keypair(secret)


def test_load_solana_wallet_expands_home(tmp_path):
    keypair = Keypair()
    write_solana_cli_wallet(tmp_path / "keys" / "id.json", keypair)
    wallet = load_solana_wallet("~/keys/id.json", home=tmp_path)
    assert wallet.address == str(keypair.pubkey())
    assert wallet.family is ChainFamily.SOLANA


def test_load_solana_wallet_base58_string_file(tmp_path):
    keypair = Keypair()
    path = tmp_path / "wallet.json"
    path.write_text(json.dumps(str(keypair)))
    assert load_solana_wallet(path).address == str(keypair.pubkey())


def test_load_solana_wallet_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_solana_wallet(tmp_path / "missing.json")


def test_evm_wallet_normalizes_key():
    account = Account.create()
    raw = account.key.hex()
    if raw.startswith("0x"):
        raw = raw[2:]
    wallet = EvmWallet(raw)
    assert wallet.private_key.startswith("0x")
    assert wallet.address == account.address
    assert wallet.family is ChainFamily.EVM
    assert raw not in repr(wallet)


def test_evm_wallet_rejects_bad_key():
    with pytest.raises(ConfigurationError):
        EvmWallet("0x1234")


def test_load_evm_wallet(tmp_path):
    account = Account.create()
    path = tmp_path / "evm.json"
    path.write_text(json.dumps({"privateKey": account.key.hex()}))
    assert load_evm_wallet(path).address == account.address

    path.write_text(json.dumps({"address": account.address}))
    with pytest.raises(ConfigurationError):
        load_evm_wallet(path)


def test_wallet_from_secret_guesses_family():
    assert isinstance(wallet_from_secret("0x" + "ab" * 32), EvmWallet)
    assert isinstance(wallet_from_secret(str(Keypair())), SolanaWallet)


def test_resolver_keeps_matching_wallet(solana_wallet, isolated_resolver):
    resolved = isolated_resolver.resolve("solana-mainnet", solana_wallet)
    assert resolved.wallet is solana_wallet
    assert not resolved.substituted
    assert resolved.source == "supplied"


def test_resolver_substitutes_evm_wallet_from_env(solana_wallet, tmp_path):
    key = "0x" + "cd" * 32
    resolver = WalletResolver(environ={"PAYCALL_EVM_PRIVATE_KEY": key}, home=tmp_path)
    resolved = resolver.resolve("base", solana_wallet)
    assert isinstance(resolved.wallet, EvmWallet)
    assert resolved.wallet.private_key == key
    assert resolved.substituted
    assert resolved.source == "env:PAYCALL_EVM_PRIVATE_KEY"


def test_resolver_reads_evm_key_from_rc_file(solana_wallet, tmp_path):
    key = "0x" + "ef" * 32
    (tmp_path / ".paycallrc").write_text(json.dumps({"evmWallet": {"privateKey": key}}))
    resolved = WalletResolver(environ={}, home=tmp_path).resolve("eip155:8453", solana_wallet)
    assert resolved.wallet.private_key == key
    assert resolved.source == "rc:evmWallet.privateKey"


def test_resolver_reads_evm_wallet_file(solana_wallet, tmp_path):
    account = Account.create()
    path = tmp_path / ".paycall" / "evm-wallet.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"privateKey": account.key.hex()}))
    resolved = WalletResolver(environ={}, home=tmp_path).resolve("base", solana_wallet)
    assert resolved.wallet.address == account.address


def test_resolver_substitutes_solana_wallet_from_default_path(evm_wallet, tmp_path):
    keypair = Keypair()
    write_solana_cli_wallet(tmp_path / ".config" / "solana" / "id.json", keypair)
    resolved = WalletResolver(environ={}, home=tmp_path).resolve("solana", evm_wallet)
    assert resolved.wallet.address == str(keypair.pubkey())
    assert resolved.substituted


def test_resolver_solana_env_accepts_path_and_secret(tmp_path):
    keypair = Keypair()
    path = tmp_path / "payer.json"
    write_solana_cli_wallet(path, keypair)

    by_path = WalletResolver(environ={"PAYCALL_WALLET": str(path)}, home=tmp_path)
    assert by_path.resolve("solana").wallet.address == str(keypair.pubkey())

    by_secret = WalletResolver(environ={"PAYCALL_WALLET": str(keypair)}, home=tmp_path)
    assert by_secret.resolve("solana").wallet.address == str(keypair.pubkey())


def test_resolver_rc_wallet_path(tmp_path):
    keypair = Keypair()
    write_solana_cli_wallet(tmp_path / "agent.json", keypair)
    (tmp_path / ".paycallrc").write_text(json.dumps({"wallet": "~/agent.json"}))
    resolved = WalletResolver(environ={}, home=tmp_path).resolve("solana")
    assert resolved.wallet.address == str(keypair.pubkey())
    assert resolved.source == "rc:wallet"


def test_resolver_names_what_to_configure(solana_wallet, isolated_resolver):
    with pytest.raises(ConfigurationError) as exc_info:
        isolated_resolver.resolve("base", solana_wallet)
    message = str(exc_info.value)
    assert "PAYCALL_EVM_PRIVATE_KEY" in message
    assert ".paycall/evm-wallet.json" in message

    with pytest.raises(ConfigurationError) as exc_info:
        isolated_resolver.resolve("solana", None)
    assert "PAYCALL_WALLET" in str(exc_info.value)
    assert ".config/solana/id.json" in str(exc_info.value)


def test_malformed_rc_file_is_ignored(tmp_path, solana_wallet):
    (tmp_path / ".paycallrc").write_text("{not json")
    with pytest.raises(ConfigurationError):
        WalletResolver(environ={}, home=tmp_path).resolve("base", solana_wallet)
