"""
Fee-sponsored USDC payments on Solana.

The payer signs a v0 transaction containing a single SPL ``TransferChecked``
(plus compute budget instructions). The fee-payer slot belongs to the sponsor,
which co-signs and submits the transaction after the server accepts it, so the
payer never needs SOL.
"""

from __future__ import annotations

import base64
from decimal import Decimal
from typing import List

from loguru import logger
from solana.rpc.async_api import AsyncClient as SolanaClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.exceptions import SolanaRpcException
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from paycall.amounts import USDC_DECIMALS
from paycall.errors import NetworkError, PaymentConstructionError
from paycall.networks import SOLANA_USDC_MINT, SPONSOR_FEE_PAYER
from paycall.schemas import SolanaPaymentPayload
from paycall.wallets import SolanaWallet

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string(
    "ComputeBudget111111111111111111111111111111"
)

DEFAULT_COMPUTE_UNIT_LIMIT = 40_000
DEFAULT_COMPUTE_UNIT_PRICE = 1  # micro-lamports

_U64_MAX = 2**64 - 1

# Instruction discriminators
_SET_COMPUTE_UNIT_LIMIT = 2
_SET_COMPUTE_UNIT_PRICE = 3
_TRANSFER_CHECKED = 12


def parse_pubkey(value: str, what: str = "recipient") -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except (ValueError, TypeError) as e:
        raise PaymentConstructionError(
            f"Invalid Solana {what} address: {value!r}",
            error_detail=str(e),
        ) from e


def derive_associated_token_account(
    owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Pubkey:
    """Derive an owner's associated token account for ``mint``. No RPC call."""
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


def set_compute_unit_limit(units: int) -> Instruction:
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=bytes([_SET_COMPUTE_UNIT_LIMIT]) + units.to_bytes(4, "little"),
    )


def set_compute_unit_price(micro_lamports: int) -> Instruction:
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=bytes([_SET_COMPUTE_UNIT_PRICE]) + micro_lamports.to_bytes(8, "little"),
    )


def transfer_checked(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int = USDC_DECIMALS,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    """SPL Token ``TransferChecked``: [12, u64 amount LE, u8 decimals]."""
    return Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ],
        data=bytes([_TRANSFER_CHECKED]) + amount.to_bytes(8, "little") + bytes([decimals]),
    )


class SolanaPaymentBuilder:
    """
    Builds the Solana payment artifact for a quote.

    **Args:**
        connection (SolanaClient): Async RPC client used only to fetch the
            latest blockhash.
        mint (str): USDC mint. Defaults to the mainnet mint.
        fee_payer (str): Sponsor that pays network fees. Defaults to the
            facilitator address.
        compute_unit_limit (int): Compute units requested. Default: 40 000.
        compute_unit_price (int): Priority fee in micro-lamports. Default: 1.

    **Example:**
        ```python
        from solana.rpc.async_api import AsyncClient
        from paycall.solana_payment import SolanaPaymentBuilder

        builder = SolanaPaymentBuilder(AsyncClient("https://api.mainnet-beta.solana.com"))
        payload = await builder.build(10_000, "<merchant address>", wallet)
        ```
    """

    def __init__(
        self,
        connection: SolanaClient,
        mint: str = SOLANA_USDC_MINT,
        fee_payer: str = SPONSOR_FEE_PAYER,
        compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT,
        compute_unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE,
    ):
        self.connection = connection
        self.mint = Pubkey.from_string(mint)
        self.fee_payer = Pubkey.from_string(fee_payer)
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price

    def instructions(self, amount: int, recipient: Pubkey, owner: Pubkey) -> List[Instruction]:
        source = derive_associated_token_account(owner, self.mint)
        destination = derive_associated_token_account(recipient, self.mint)
        return [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(self.compute_unit_price),
            transfer_checked(source, self.mint, destination, owner, amount),
        ]

    async def build(
        self, amount: int, recipient: str, payer: SolanaWallet
    ) -> SolanaPaymentPayload:
        """
        Build and partially sign a fee-sponsored USDC transfer.

        Args:
            amount: Atomic USDC units. Must be positive.
            recipient: Base58 owner address of the merchant (not its token account).
            payer: Wallet that owns the USDC and signs the transfer.

        Returns:
            SolanaPaymentPayload: Base64 transaction and base58 payer signature.

        Raises:
            PaymentConstructionError: If the amount is not positive or the
                recipient is not a valid public key. Raised before any RPC call.
        """
        if amount <= 0 or amount > _U64_MAX:
            raise PaymentConstructionError(
                f"Payment amount must be a positive u64, got {amount}"
            )
        recipient_key = parse_pubkey(recipient)
        owner = payer.keypair.pubkey()

        instructions = self.instructions(amount, recipient_key, owner)

        try:
            blockhash_resp = await self.connection.get_latest_blockhash(commitment=Confirmed)
        except (SolanaRpcException, RPCException) as e:
            raise NetworkError(
                "Failed to fetch the latest Solana blockhash",
                error_detail=str(e),
                error_type="RPC error",
            ) from e
        blockhash = blockhash_resp.value.blockhash

        message = MessageV0.try_compile(
            payer=self.fee_payer,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )

        # v0 messages are signed with the 0x80 version prefix
        payer_signature = payer.keypair.sign_message(bytes([0x80]) + bytes(message))

        num_signers = message.header.num_required_signatures
        signer_keys = list(message.account_keys[:num_signers])
        try:
            payer_index = signer_keys.index(owner)
        except ValueError as e:
            raise PaymentConstructionError(
                "Payer is not a required signer of the payment transaction"
            ) from e

        signatures = [Signature.default()] * num_signers
        signatures[payer_index] = payer_signature
        tx = VersionedTransaction.populate(message, signatures)

        logger.debug(
            f"Built Solana payment: {amount} atomic units from {owner} to {recipient_key} "
            f"(fee payer {self.fee_payer})"
        )
        return SolanaPaymentPayload(
            transaction=base64.b64encode(bytes(tx)).decode("utf-8"),
            signature=str(payer_signature),
        )


async def get_usdc_balance(
    connection: SolanaClient,
    owner: str,
    mint: str = SOLANA_USDC_MINT,
) -> Decimal:
    """
    Read an owner's USDC balance from its associated token account.

    Returns ``Decimal(0)`` when the token account does not exist.
    """
    ata = derive_associated_token_account(
        parse_pubkey(owner, "owner"), Pubkey.from_string(mint)
    )
    try:
        resp = await connection.get_token_account_balance(ata, commitment=Confirmed)
    except RPCException as e:
        logger.debug(f"No USDC token account for {owner}: {e}")
        return Decimal(0)

    value = getattr(resp, "value", None)
    if value is None:
        return Decimal(0)
    return Decimal(value.amount) / (10**value.decimals)
