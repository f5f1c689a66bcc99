"""
Chain classification and per-network constants.

A quote's ``network`` string decides which payment artifact is built. EVM
networks (Base, Ethereum, Polygon, Arbitrum, or any ``eip155:<chain id>``) get
an EIP-3009 authorization; everything else is treated as Solana.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from paycall import config
from paycall.errors import PaymentConstructionError


class ChainFamily(str, Enum):
    SOLANA = "solana"
    EVM = "evm"


# ============================================
# Solana
# ============================================

# Facilitator that pays network fees for Solana payments.
SPONSOR_FEE_PAYER = "2wKupLR9q6wXYppw8Gr2NvWxKBUqm4PPJKkQfoxHDBg4"
SOLANA_USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


# ============================================
# EVM
# ============================================

EVM_NETWORK_NAMES = ("base", "ethereum", "polygon", "arbitrum")
CAIP_EVM_PREFIX = "eip155:"


@dataclass(frozen=True)
class EvmNetwork:
    """Configuration for an EVM network that accepts USDC authorizations."""

    name: str
    chain_id: int
    usdc_address: str
    rpc_url: str
    usdc_name: str = "USD Coin"
    usdc_version: str = "2"


EVM_NETWORKS: Dict[str, EvmNetwork] = {
    "base": EvmNetwork(
        name="base",
        chain_id=8453,
        usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        rpc_url=config.BASE_RPC_URL,
    ),
    "base-sepolia": EvmNetwork(
        name="base-sepolia",
        chain_id=84532,
        usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        rpc_url="https://sepolia.base.org",
    ),
    "ethereum": EvmNetwork(
        name="ethereum",
        chain_id=1,
        usdc_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        rpc_url="https://cloudflare-eth.com",
    ),
    "polygon": EvmNetwork(
        name="polygon",
        chain_id=137,
        usdc_address="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        rpc_url="https://polygon-rpc.com",
    ),
    "arbitrum": EvmNetwork(
        name="arbitrum",
        chain_id=42161,
        usdc_address="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        rpc_url="https://arb1.arbitrum.io/rpc",
    ),
}

_NETWORKS_BY_CHAIN_ID = {n.chain_id: n for n in EVM_NETWORKS.values()}


def normalize_network(network: Optional[str]) -> str:
    """
    Lowercase a network name and drop a trailing ``-mainnet``.

    ``"Base-Mainnet"`` -> ``"base"``, ``None`` -> ``"solana"``.
    """
    if not network:
        return ChainFamily.SOLANA.value
    name = network.strip().lower()
    if name.endswith("-mainnet"):
        name = name[: -len("-mainnet")]
    return name


def classify_network(network: Optional[str]) -> ChainFamily:
    name = normalize_network(network)
    if name.startswith(CAIP_EVM_PREFIX):
        return ChainFamily.EVM
    if name.split("-", 1)[0] in EVM_NETWORK_NAMES:
        return ChainFamily.EVM
    return ChainFamily.SOLANA


def is_evm_network(network: Optional[str]) -> bool:
    return classify_network(network) is ChainFamily.EVM


def get_evm_network(network: Optional[str]) -> EvmNetwork:
    """
    Look up the EVM network configuration for a quote's network string.

    Args:
        network: Network name (``"base"``, ``"base-mainnet"``) or CAIP-2 id
            (``"eip155:8453"``).

    Returns:
        EvmNetwork: chain id, USDC address and RPC URL.

    Raises:
        PaymentConstructionError: If the network is not a supported EVM network.
    """
    name = normalize_network(network)
    if name.startswith(CAIP_EVM_PREFIX):
        try:
            chain_id = int(name[len(CAIP_EVM_PREFIX):])
        except ValueError:
            chain_id = None
        if chain_id in _NETWORKS_BY_CHAIN_ID:
            return _NETWORKS_BY_CHAIN_ID[chain_id]
    elif name in EVM_NETWORKS:
        return EVM_NETWORKS[name]

    raise PaymentConstructionError(
        f"Unsupported EVM network: {network!r}",
        error_detail=f"Supported networks: {', '.join(sorted(EVM_NETWORKS))}",
    )
