import base64

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from paycall.errors import NetworkError, PaymentConstructionError
from paycall.networks import SOLANA_USDC_MINT, SPONSOR_FEE_PAYER
from paycall.solana_payment import (
    COMPUTE_BUDGET_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    SolanaPaymentBuilder,
    derive_associated_token_account,
)


def decode_transaction(payload):
    return VersionedTransaction.from_bytes(base64.b64decode(payload.transaction))


@pytest.mark.asyncio
async def test_sponsor_is_fee_payer_and_payer_signs(solana_connection, solana_wallet, merchant):
    builder = SolanaPaymentBuilder(solana_connection)
    payload = await builder.build(10_000, merchant, solana_wallet)

    tx = decode_transaction(payload)
    message = tx.message
    keys = list(message.account_keys)
    assert keys[0] == Pubkey.from_string(SPONSOR_FEE_PAYER)
    assert message.header.num_required_signatures == 2

    payer = solana_wallet.keypair.pubkey()
    payer_index = keys.index(payer)
    assert payer_index < message.header.num_required_signatures

    signatures = list(tx.signatures)
    assert signatures[0] == Signature.default()
    assert str(signatures[payer_index]) == payload.signature
    assert signatures[payer_index].verify(payer, bytes([0x80]) + bytes(message))
    assert solana_connection.blockhash_calls == 1


@pytest.mark.asyncio
async def test_transfer_checked_instruction(solana_connection, solana_wallet, merchant):
    builder = SolanaPaymentBuilder(solana_connection)
    payload = await builder.build(30_000, merchant, solana_wallet)

    message = decode_transaction(payload).message
    keys = list(message.account_keys)
    programs = [keys[ix.program_id_index] for ix in message.instructions]
    assert programs == [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID, TOKEN_PROGRAM_ID]

    limit_ix, price_ix, transfer_ix = message.instructions
    assert bytes(limit_ix.data) == bytes([2]) + (40_000).to_bytes(4, "little")
    assert bytes(price_ix.data) == bytes([3]) + (1).to_bytes(8, "little")
    assert bytes(transfer_ix.data) == bytes([12]) + (30_000).to_bytes(8, "little") + bytes([6])

    mint = Pubkey.from_string(SOLANA_USDC_MINT)
    accounts = [keys[i] for i in bytes(transfer_ix.accounts)]
    assert accounts == [
        derive_associated_token_account(solana_wallet.keypair.pubkey(), mint),
        mint,
        derive_associated_token_account(Pubkey.from_string(merchant), mint),
        solana_wallet.keypair.pubkey(),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -1])
async def test_rejects_non_positive_amount(solana_connection, solana_wallet, merchant, amount):
    with pytest.raises(PaymentConstructionError):
        await SolanaPaymentBuilder(solana_connection).build(amount, merchant, solana_wallet)
    assert solana_connection.blockhash_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("recipient", ["not-a-key", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", ""])
async def test_rejects_invalid_recipient(solana_connection, solana_wallet, recipient):
    with pytest.raises(PaymentConstructionError):
        await SolanaPaymentBuilder(solana_connection).build(10_000, recipient, solana_wallet)
    assert solana_connection.blockhash_calls == 0


@pytest.mark.asyncio
async def test_blockhash_failure_is_a_network_error(solana_wallet, merchant):
    from solana.exceptions import SolanaRpcException

    class FailingConnection:
        async def get_latest_blockhash(self, commitment=None):
            raise SolanaRpcException("connection refused")

    with pytest.raises(NetworkError):
        await SolanaPaymentBuilder(FailingConnection()).build(10_000, merchant, solana_wallet)


def test_associated_token_account_is_deterministic():
    owner = Keypair().pubkey()
    mint = Pubkey.from_string(SOLANA_USDC_MINT)
    assert derive_associated_token_account(owner, mint) == derive_associated_token_account(owner, mint)
    assert derive_associated_token_account(owner, mint) != owner
