from paycall.amounts import normalize_amount
from paycall.client import AgentClient
from paycall.envelope import decode_envelope, encode_envelope
from paycall.errors import (
    ConfigurationError,
    NetworkError,
    PaycallError,
    PaymentConstructionError,
    ProtocolError,
)
from paycall.events import (
    LoguruEventSink,
    MemoryEventSink,
    NegotiationEvent,
    NegotiationState,
    NullEventSink,
)
from paycall.evm_payment import EvmAuthorizationBuilder
from paycall.negotiator import (
    NegotiationResult,
    PaymentNegotiator,
    reconcile_receipt,
    resolve_retry_url,
)
from paycall.networks import ChainFamily, classify_network
from paycall.schemas import (
    AgentInfo,
    InteractionResult,
    PaymentEnvelope,
    Quote,
    Receipt,
    ReceiptSource,
    StatusCheckResult,
)
from paycall.solana_payment import SolanaPaymentBuilder
from paycall.wallets import (
    EvmWallet,
    SolanaWallet,
    WalletResolver,
    load_evm_wallet,
    load_solana_wallet,
    parse_solana_keypair,
    wallet_from_secret,
)

__all__ = [
    "AgentClient",
    "AgentInfo",
    "ChainFamily",
    "ConfigurationError",
    "EvmAuthorizationBuilder",
    "EvmWallet",
    "InteractionResult",
    "LoguruEventSink",
    "MemoryEventSink",
    "NegotiationEvent",
    "NegotiationResult",
    "NegotiationState",
    "NetworkError",
    "NullEventSink",
    "PaycallError",
    "PaymentConstructionError",
    "PaymentEnvelope",
    "PaymentNegotiator",
    "ProtocolError",
    "Quote",
    "Receipt",
    "ReceiptSource",
    "SolanaPaymentBuilder",
    "SolanaWallet",
    "StatusCheckResult",
    "WalletResolver",
    "classify_network",
    "decode_envelope",
    "encode_envelope",
    "load_evm_wallet",
    "load_solana_wallet",
    "normalize_amount",
    "parse_solana_keypair",
    "reconcile_receipt",
    "resolve_retry_url",
    "wallet_from_secret",
]
