import pytest

from paycall.errors import PaymentConstructionError
from paycall.networks import (
    ChainFamily,
    classify_network,
    get_evm_network,
    normalize_network,
)


@pytest.mark.parametrize(
    "network, family",
    [
        ("solana", ChainFamily.SOLANA),
        ("solana-mainnet", ChainFamily.SOLANA),
        ("solana-devnet", ChainFamily.SOLANA),
        (None, ChainFamily.SOLANA),
        ("base", ChainFamily.EVM),
        ("Base-Mainnet", ChainFamily.EVM),
        ("base-sepolia", ChainFamily.EVM),
        ("ethereum", ChainFamily.EVM),
        ("polygon", ChainFamily.EVM),
        ("arbitrum", ChainFamily.EVM),
        ("eip155:8453", ChainFamily.EVM),
        ("something-else", ChainFamily.SOLANA),
    ],
)
def test_classify_network(network, family):
    assert classify_network(network) is family


def test_normalize_network():
    assert normalize_network("Base-Mainnet") == "base"
    assert normalize_network("") == "solana"


def test_get_evm_network_by_name_and_caip_id():
    base = get_evm_network("base-mainnet")
    assert base.chain_id == 8453
    assert base.usdc_address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    assert get_evm_network("eip155:8453") is base
    assert get_evm_network("polygon").chain_id == 137


@pytest.mark.parametrize("network", ["solana", "eip155:999999", "eip155:abc", "optimism"])
def test_get_evm_network_rejects_unknown(network):
    with pytest.raises(PaymentConstructionError):
        get_evm_network(network)
