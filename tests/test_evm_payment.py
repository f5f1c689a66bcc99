from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from conftest import StubBalanceReader
from paycall.errors import PaymentConstructionError
from paycall.evm_payment import (
    AUTHORIZATION_VALIDITY_SECONDS,
    EvmAuthorizationBuilder,
    Web3BalanceReader,
    build_typed_data,
)
from paycall.networks import get_evm_network


def recover_signer(payload, network="base"):
    auth = payload.authorization
    typed_data = build_typed_data(
        get_evm_network(network),
        from_address=auth.from_address,
        to_address=auth.to,
        value=int(auth.value),
        valid_after=int(auth.valid_after),
        valid_before=int(auth.valid_before),
        nonce=bytes.fromhex(auth.nonce[2:]),
    )
    return Account.recover_message(
        encode_typed_data(full_message=typed_data), signature=payload.signature
    )


@pytest.mark.asyncio
async def test_signs_transfer_authorization(evm_wallet, evm_merchant, balance_reader):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader, clock=lambda: 1_700_000_000)
    result = await builder.build(20_000, evm_merchant, evm_wallet, "base")

    auth = result.payload.authorization
    assert auth.from_address == evm_wallet.address
    assert auth.to == evm_merchant
    assert auth.value == "20000"
    assert auth.valid_after == "1700000000"
    assert int(auth.valid_before) - int(auth.valid_after) == AUTHORIZATION_VALIDITY_SECONDS == 300
    assert auth.nonce.startswith("0x") and len(auth.nonce) == 66
    assert result.payload.signature.startswith("0x")
    assert recover_signer(result.payload) == evm_wallet.address

    assert result.balance_atomic == 5_000_000
    assert balance_reader.calls == [(evm_wallet.address, "base")]


@pytest.mark.asyncio
async def test_nonce_is_fresh_per_authorization(evm_wallet, evm_merchant, balance_reader):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader)
    first = await builder.build(10_000, evm_merchant, evm_wallet, "base")
    second = await builder.build(10_000, evm_merchant, evm_wallet, "base")
    assert first.payload.authorization.nonce != second.payload.authorization.nonce


@pytest.mark.asyncio
async def test_signature_is_bound_to_the_chain(evm_wallet, evm_merchant, balance_reader):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader)
    result = await builder.build(10_000, evm_merchant, evm_wallet, "polygon")
    assert recover_signer(result.payload, "polygon") == evm_wallet.address
    assert recover_signer(result.payload, "base") != evm_wallet.address


@pytest.mark.asyncio
async def test_balance_failure_does_not_block_signing(evm_wallet, evm_merchant):
    reader = StubBalanceReader(error=ConnectionError("rpc down"))
    result = await EvmAuthorizationBuilder(balance_reader=reader).build(
        10_000, evm_merchant, evm_wallet, "base"
    )
    assert result.balance_atomic is None
    assert recover_signer(result.payload) == evm_wallet.address


@pytest.mark.asyncio
async def test_low_balance_still_signs(evm_wallet, evm_merchant):
    reader = StubBalanceReader(balance=1)
    result = await EvmAuthorizationBuilder(balance_reader=reader).build(
        10_000, evm_merchant, evm_wallet, "base"
    )
    assert result.balance_atomic == 1
    assert result.payload.authorization.value == "10000"


@pytest.mark.asyncio
async def test_balance_check_can_be_disabled(evm_wallet, evm_merchant, balance_reader):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader, check_balance=False)
    result = await builder.build(10_000, evm_merchant, evm_wallet, "base")
    assert result.balance_atomic is None
    assert balance_reader.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount, recipient, network",
    [
        (0, None, "base"),
        (10_000, "not-an-address", "base"),
        (10_000, "", "base"),
        (10_000, None, "optimism"),
    ],
)
async def test_rejects_bad_inputs(evm_wallet, evm_merchant, balance_reader, amount, recipient, network):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader)
    with pytest.raises(PaymentConstructionError):
        await builder.build(amount, recipient if recipient is not None else evm_merchant, evm_wallet, network)
    assert balance_reader.calls == []


@pytest.mark.asyncio
async def test_get_usdc_balance_in_whole_units(balance_reader):
    builder = EvmAuthorizationBuilder(balance_reader=balance_reader)
    assert await builder.get_usdc_balance("0x" + "11" * 20) == Decimal("5")


@pytest.mark.asyncio
async def test_web3_reader_reuses_and_disconnects_providers():
    reader = Web3BalanceReader()
    base = get_evm_network("base")
    w3 = reader.web3_for(base)
    assert reader.web3_for(base) is w3
    assert reader.web3_for(get_evm_network("polygon")) is not w3

    disconnected = []
    for client in (w3, reader.web3_for(get_evm_network("polygon"))):
        async def disconnect(provider=client.provider):
            disconnected.append(provider)

        client.provider.disconnect = disconnect

    await EvmAuthorizationBuilder(balance_reader=reader).aclose()
    assert len(disconnected) == 2
    assert reader.web3_for(base) is not w3


@pytest.mark.asyncio
async def test_aclose_leaves_custom_readers_alone(balance_reader):
    await EvmAuthorizationBuilder(balance_reader=balance_reader).aclose()
    assert balance_reader.calls == []
