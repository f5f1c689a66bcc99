"""
USDC payments on EVM chains via EIP-3009 ``TransferWithAuthorization``.

The payer signs an EIP-712 typed message authorizing the facilitator to move
USDC on their behalf. Nothing is broadcast here and the payer needs no gas.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from paycall.amounts import USDC_DECIMALS, atomic_to_usdc
from paycall.errors import PaymentConstructionError
from paycall.networks import EvmNetwork, get_evm_network
from paycall.schemas import EvmAuthorization, EvmPaymentPayload
from paycall.wallets import EvmWallet

AUTHORIZATION_VALIDITY_SECONDS = 300

ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
]

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}

BalanceReader = Callable[[str, EvmNetwork], Awaitable[int]]


class Web3BalanceReader:
    """
    Reads USDC balances in atomic units over JSON-RPC.

    One ``AsyncWeb3`` is kept per network and reused across reads until
    :meth:`aclose` disconnects them.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, AsyncWeb3] = {}

    def web3_for(self, network: EvmNetwork) -> AsyncWeb3:
        w3 = self._clients.get(network.name)
        if w3 is None:
            w3 = AsyncWeb3(AsyncHTTPProvider(network.rpc_url))
            self._clients[network.name] = w3
        return w3

    async def __call__(self, address: str, network: EvmNetwork) -> int:
        contract = self.web3_for(network).eth.contract(
            address=Web3.to_checksum_address(network.usdc_address),
            abi=ERC20_BALANCE_ABI,
        )
        return int(
            await contract.functions.balanceOf(Web3.to_checksum_address(address)).call()
        )

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for w3 in clients:
            await w3.provider.disconnect()


def build_typed_data(
    network: EvmNetwork,
    from_address: str,
    to_address: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: bytes,
) -> Dict[str, Any]:
    return {
        "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": network.usdc_name,
            "version": network.usdc_version,
            "chainId": network.chain_id,
            "verifyingContract": Web3.to_checksum_address(network.usdc_address),
        },
        "message": {
            "from": Web3.to_checksum_address(from_address),
            "to": Web3.to_checksum_address(to_address),
            "value": value,
            "validAfter": valid_after,
            "validBefore": valid_before,
            "nonce": nonce,
        },
    }


def sign_transfer_authorization(private_key: str, typed_data: Dict[str, Any]) -> str:
    """Sign EIP-712 typed data and return the 0x-prefixed hex signature."""
    signed = Account.from_key(private_key).sign_message(
        encode_typed_data(full_message=typed_data)
    )
    sig_hex = signed.signature.hex()
    if not sig_hex.startswith("0x"):
        sig_hex = "0x" + sig_hex
    return sig_hex


@dataclass
class AuthorizationResult:
    payload: EvmPaymentPayload
    balance_atomic: Optional[int] = None


class EvmAuthorizationBuilder:
    """
    Builds the EVM payment artifact for a quote.

    **Args:**
        balance_reader (Optional[BalanceReader]): Async callable returning the
            payer's USDC balance in atomic units. Defaults to a
            :class:`Web3BalanceReader`, closed by :meth:`aclose`.
        check_balance (bool): Read the balance before signing. The result is
            diagnostic only and never blocks signing. Default: True.
        clock (Callable[[], float]): Time source for the validity window.
    """

    def __init__(
        self,
        balance_reader: Optional[BalanceReader] = None,
        check_balance: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.balance_reader = balance_reader or Web3BalanceReader()
        self.check_balance = check_balance
        self.clock = clock

    async def build(
        self,
        amount: int,
        recipient: str,
        wallet: EvmWallet,
        network: str,
    ) -> AuthorizationResult:
        """
        Sign a ``TransferWithAuthorization`` for ``amount`` to ``recipient``.

        Args:
            amount: Atomic USDC units. Must be positive.
            recipient: Merchant address.
            wallet: Payer wallet.
            network: Network from the quote, e.g. ``"base"``.

        Returns:
            AuthorizationResult: Payload plus the balance read, if any.

        Raises:
            PaymentConstructionError: For a non-positive amount, an invalid
                recipient, or an unsupported network.
        """
        if amount <= 0:
            raise PaymentConstructionError(
                f"Payment amount must be positive, got {amount}"
            )
        if not isinstance(recipient, str) or not Web3.is_address(recipient):
            raise PaymentConstructionError(f"Invalid EVM recipient address: {recipient!r}")
        evm_network = get_evm_network(network)

        from_address = wallet.address
        balance_atomic = None
        if self.check_balance:
            balance_atomic = await self._read_balance(from_address, evm_network, amount)

        now = int(self.clock())
        valid_after = now
        valid_before = now + AUTHORIZATION_VALIDITY_SECONDS
        nonce = secrets.token_bytes(32)

        typed_data = build_typed_data(
            evm_network,
            from_address=from_address,
            to_address=recipient,
            value=amount,
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce,
        )
        signature = sign_transfer_authorization(wallet.private_key, typed_data)

        payload = EvmPaymentPayload(
            signature=signature,
            authorization=EvmAuthorization(
                from_address=from_address,
                to=Web3.to_checksum_address(recipient),
                value=str(amount),
                valid_after=str(valid_after),
                valid_before=str(valid_before),
                nonce="0x" + nonce.hex(),
            ),
        )
        logger.debug(
            f"Signed EIP-3009 authorization on {evm_network.name} (chain {evm_network.chain_id}): "
            f"{amount} atomic units from {from_address} to {recipient}"
        )
        return AuthorizationResult(payload=payload, balance_atomic=balance_atomic)

    async def _read_balance(
        self, address: str, network: EvmNetwork, amount: int
    ) -> Optional[int]:
        try:
            balance = await self.balance_reader(address, network)
        except Exception as e:
            logger.warning(f"Could not read USDC balance on {network.name} for {address}: {e}")
            return None
        if balance < amount:
            logger.warning(
                f"USDC balance on {network.name} ({atomic_to_usdc(balance)}) is below "
                f"the quoted amount ({atomic_to_usdc(amount)}); signing anyway"
            )
        return balance

    async def aclose(self) -> None:
        if isinstance(self.balance_reader, Web3BalanceReader):
            await self.balance_reader.aclose()

    async def get_usdc_balance(self, address: str, network: str = "base") -> Decimal:
        """Return an address's USDC balance on ``network`` in whole USDC."""
        atomic = await self.balance_reader(address, get_evm_network(network))
        return Decimal(atomic) / (10**USDC_DECIMALS)
