import json
from types import SimpleNamespace

import httpx
import pytest
from eth_account import Account
from solders.hash import Hash
from solders.keypair import Keypair

from paycall.evm_payment import EvmAuthorizationBuilder
from paycall.negotiator import PaymentNegotiator
from paycall.solana_payment import SolanaPaymentBuilder
from paycall.wallets import EvmWallet, SolanaWallet, WalletResolver


class StubSolanaConnection:
    """Stands in for solana-py's AsyncClient; only serves blockhashes."""

    def __init__(self):
        self.blockhash_calls = 0

    async def get_latest_blockhash(self, commitment=None):
        self.blockhash_calls += 1
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))



class ClosableConnection(StubSolanaConnection):
    """Stands in for a solana-py AsyncClient the code under test opens itself."""

    opened = []

    def __init__(self, endpoint=None):
        super().__init__()
        self.endpoint = endpoint
        self.closed = False
        ClosableConnection.opened.append(self)

    async def close(self):
        self.closed = True

class StubBalanceReader:
    def __init__(self, balance=5_000_000, error=None):
        self.balance = balance
        self.error = error
        self.calls = []

    async def __call__(self, address, network):
        self.calls.append((address, network.name))
        if self.error is not None:
            raise self.error
        return self.balance


class RecordingHandler:
    """httpx.MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        return self.responses.pop(0)

    def json_body(self, index):
        return json.loads(self.requests[index].content.decode())


@pytest.fixture
def solana_wallet():
    return SolanaWallet(Keypair())


@pytest.fixture
def merchant():
    return str(Keypair().pubkey())


@pytest.fixture
def evm_wallet():
    return EvmWallet(Account.create().key.hex())


@pytest.fixture
def evm_merchant():
    return Account.create().address


@pytest.fixture
def solana_connection():
    return StubSolanaConnection()


@pytest.fixture
def balance_reader():
    return StubBalanceReader()


@pytest.fixture
def isolated_resolver(tmp_path):
    return WalletResolver(environ={}, home=tmp_path)


@pytest.fixture
def make_negotiator(solana_connection, balance_reader, isolated_resolver):
    def factory(handler, resolver=None, events=None):
        return PaymentNegotiator(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            resolver=resolver or isolated_resolver,
            solana_builder=SolanaPaymentBuilder(solana_connection),
            evm_builder=EvmAuthorizationBuilder(balance_reader=balance_reader),
            events=events,
        )

    return factory
