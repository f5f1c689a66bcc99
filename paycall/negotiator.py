"""
The x402 pay-per-call negotiation.

One call to :meth:`PaymentNegotiator.request` walks the whole exchange:

1. POST the payload without payment. A 2xx answer ends the negotiation.
2. A ``402 Payment Required`` answer carries a quote. The amount is
   normalized and a wallet matching the quote's chain is resolved.
3. The chain-specific payment artifact is built, wrapped in an envelope and
   sent back in the ``X-PAYMENT`` header with the identical payload.
4. The paid response's receipt is reconciled against the quote.

Nothing is retried automatically.
"""

from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
from solana.rpc.async_api import AsyncClient as SolanaClient

from paycall import config
from paycall.amounts import ATOMIC_UNITS_PER_USDC, normalize_amount
from paycall.envelope import PAYMENT_HEADER, encode_envelope
from paycall.errors import ConfigurationError, NetworkError, PaycallError, ProtocolError
from paycall.events import (
    EventSink,
    NegotiationEvent,
    NegotiationEventType,
    NegotiationState,
    NullEventSink,
)
from paycall.evm_payment import EvmAuthorizationBuilder
from paycall.networks import SPONSOR_FEE_PAYER, ChainFamily, classify_network
from paycall.schemas import (
    PaymentEnvelope,
    PaymentPayload,
    Quote,
    Receipt,
    ReceiptSource,
)
from paycall.solana_payment import SolanaPaymentBuilder
from paycall.wallets import ResolvedWallet, SigningWallet, WalletResolver

_DOUBLED_SEGMENT_RE = re.compile(r"^(/[^/]+)\1(?=/|$)")


@dataclass
class NegotiationResult:
    status_code: int
    body: Any
    paid: bool
    state: NegotiationState
    url: str
    quote: Optional[Quote] = None
    amount_atomic: Optional[int] = None
    receipt: Optional[Receipt] = None
    payment_header: Optional[str] = None
    wallet: Optional[ResolvedWallet] = None
    balance_atomic: Optional[int] = None


# ============================================
# Retry URL resolution
# ============================================


def _collapse_doubled_segment(path: str) -> str:
    return _DOUBLED_SEGMENT_RE.sub(r"\1", path)


def _is_absolute(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def resolve_retry_url(
    request_url: str,
    resource: Optional[str],
    *,
    structured: bool = False,
    base_url: Optional[str] = None,
) -> str:
    """
    Decide where the paid retry is sent.

    - No ``resource`` in the quote: the original request URL.
    - A duplicated leading path segment (``/x402/x402/...``) is collapsed.
    - Structured (command) requests, or requests whose path extends the
      resource's path, keep the original request path on the resource's origin.
      Servers often answer a command endpoint with the agent's base endpoint.
    - Otherwise an absolute resource is used as-is. A relative one is joined to
      ``base_url`` (dropping a base path the resource repeats) or to the
      request's origin.

    Args:
        request_url: URL of the unpaid request.
        resource: The quote's ``resource`` field.
        structured: Whether the request targeted a structured command endpoint.
        base_url: API base URL the request URL was built from, if any.

    Returns:
        str: Absolute URL for the paid request.
    """
    if not resource:
        return request_url

    request_parts = urlsplit(request_url)
    res_parts = urlsplit(resource)
    res_path = _collapse_doubled_segment(res_parts.path)

    if _is_absolute(resource):
        origin_scheme, origin_netloc = res_parts.scheme, res_parts.netloc
    else:
        origin_scheme, origin_netloc = request_parts.scheme, request_parts.netloc

    request_path = request_parts.path.rstrip("/")
    resource_prefix = res_path.rstrip("/")
    extends_resource = bool(resource_prefix) and request_path.startswith(
        resource_prefix + "/"
    )
    if structured or extends_resource:
        return urlunsplit(
            (origin_scheme, origin_netloc, request_parts.path, request_parts.query, "")
        )

    if _is_absolute(resource):
        return urlunsplit(
            (res_parts.scheme, res_parts.netloc, res_path, res_parts.query, res_parts.fragment)
        )

    if base_url:
        base = base_url.rstrip("/")
        base_path = urlsplit(base).path.rstrip("/")
        path = res_path
        if base_path and (path == base_path or path.startswith(base_path + "/")):
            path = path[len(base_path):]
        if not path.startswith("/"):
            path = "/" + path
        query = f"?{res_parts.query}" if res_parts.query else ""
        return f"{base}{path}{query}"

    relative = res_path + (f"?{res_parts.query}" if res_parts.query else "")
    return urljoin(request_url, relative)


# ============================================
# Receipt reconciliation
# ============================================


def _positive_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def _atomic_from_receipt(server_receipt: Dict[str, Any], fallback: int) -> int:
    micro = _positive_decimal(server_receipt.get("amountPaidMicroUsdc"))
    if micro is not None:
        return int(micro)
    usdc = _positive_decimal(server_receipt.get("amountPaidUsdc"))
    if usdc is not None:
        return int(usdc * ATOMIC_UNITS_PER_USDC)
    return fallback


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def reconcile_receipt(
    body: Any,
    quote: Quote,
    amount_atomic: int,
    payer: Optional[str] = None,
    payment_header: Optional[str] = None,
) -> Receipt:
    """
    Build the receipt for a paid call.

    The server's ``x402Receipt`` wins when present; any field it leaves out is
    filled from the quote. Without one, a receipt is synthesized from the quote
    and marked :attr:`ReceiptSource.ESTIMATE`.
    """
    data = body if isinstance(body, dict) else {}
    server_receipt = data.get("x402Receipt")
    tx_from_body = data.get("transactionSignature") or data.get("transaction_signature")

    if isinstance(server_receipt, dict):
        return Receipt(
            amount_paid_atomic=_atomic_from_receipt(server_receipt, amount_atomic),
            pay_to=server_receipt.get("payTo") or quote.pay_to,
            tx_reference=server_receipt.get("transactionSignature")
            or tx_from_body
            or payment_header,
            payer=server_receipt.get("payer") or payer,
            merchant=server_receipt.get("merchant") or quote.pay_to,
            timestamp=server_receipt.get("timestamp") or _now_iso(),
            source=ReceiptSource.SERVER,
        )

    return Receipt(
        amount_paid_atomic=amount_atomic,
        pay_to=quote.pay_to,
        tx_reference=tx_from_body or payment_header,
        payer=payer,
        merchant=quote.pay_to,
        timestamp=_now_iso(),
        source=ReceiptSource.ESTIMATE,
    )


# ============================================
# Negotiator
# ============================================


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text


def _error_detail(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value)
        return None
    if isinstance(body, str) and body:
        return body
    return None


class PaymentNegotiator:
    """
    Drives one x402 negotiation per :meth:`request` call.

    The negotiator holds only configuration, so concurrent ``request`` calls
    are independent.

    **Args:**
        http_client (Optional[httpx.AsyncClient]): Client to borrow for HTTP
            calls. It is never closed here. When omitted, a client is opened per
            request with ``timeout``.
        resolver (Optional[WalletResolver]): Picks the wallet for the quote's chain.
        solana_builder (Optional[SolanaPaymentBuilder]): Builder for Solana quotes.
            Created on first use against the configured Solana RPC when omitted.
        evm_builder (Optional[EvmAuthorizationBuilder]): Builder for EVM quotes.
        events (Optional[EventSink]): Receives progress events. Default: no-op.
        timeout (float): HTTP timeout in seconds for owned clients.
        user_agent (str): ``User-Agent`` header value.

    **Example:**
        ```python
        negotiator = PaymentNegotiator(events=LoguruEventSink(verbose=True))
        result = await negotiator.request(
            "https://agents.memeputer.com/x402/solana/pfpputer",
            {"message": "hello"},
            SolanaWallet(keypair),
        )
        print(result.body, result.receipt.amount_paid_usdc)
        ```
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        resolver: Optional[WalletResolver] = None,
        solana_builder: Optional[SolanaPaymentBuilder] = None,
        evm_builder: Optional[EvmAuthorizationBuilder] = None,
        events: Optional[EventSink] = None,
        timeout: float = config.PAYCALL_TIMEOUT,
        user_agent: str = config.USER_AGENT,
        solana_rpc_url: Optional[str] = None,
    ):
        self.http_client = http_client
        self.resolver = resolver or WalletResolver()
        self.solana_builder = solana_builder
        self.evm_builder = evm_builder or EvmAuthorizationBuilder()
        self._owns_evm_builder = evm_builder is None
        self._solana_connection: Optional[SolanaClient] = None
        self.events = events or NullEventSink()
        self.timeout = timeout
        self.user_agent = user_agent
        self.solana_rpc_url = solana_rpc_url

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def solana_connection(self) -> SolanaClient:
        """RPC connection of the Solana builder, opening one on first use."""
        return self._solana().connection

    def _solana(self) -> SolanaPaymentBuilder:
        if self.solana_builder is None:
            rpc_url = self.solana_rpc_url or config.resolve_solana_rpc_url()
            self._solana_connection = SolanaClient(rpc_url)
            self.solana_builder = SolanaPaymentBuilder(self._solana_connection)
        return self.solana_builder

    async def aclose(self) -> None:
        """Close connections this negotiator opened. Injected ones are left open."""
        if self._solana_connection is not None:
            connection, self._solana_connection = self._solana_connection, None
            self.solana_builder = None
            await connection.close()
        if self._owns_evm_builder:
            await self.evm_builder.aclose()

    def _headers(self, payment_header: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
        if payment_header:
            headers[PAYMENT_HEADER] = payment_header
        return headers

    async def _emit(
        self,
        event_type: NegotiationEventType,
        state: NegotiationState,
        url: str,
        message: str,
        **data: Any,
    ) -> None:
        await self.events.emit(
            NegotiationEvent(
                event_type=event_type,
                state=state,
                url=url,
                message=message,
                data=data,
            )
        )

    def _transport_error(self, error: httpx.HTTPError, url: str, operation: str) -> NetworkError:
        if isinstance(error, httpx.ReadTimeout):
            message = (
                f"{operation} to {url} timed out after {self.timeout}s. "
                "If a payment was attached it may still settle; check the chain "
                "before paying again."
            )
            error_type = "Timeout"
        elif isinstance(error, httpx.ConnectTimeout):
            message = f"Connection to {url} timed out during {operation}."
            error_type = "Connection timeout"
        elif isinstance(error, httpx.ConnectError):
            message = f"Failed to connect to {url} during {operation}. The service may be down or unreachable."
            error_type = "Connection error"
        else:
            message = f"{operation} to {url} failed: {error}"
            error_type = type(error).__name__
        return NetworkError(message, error_detail=str(error), error_type=error_type)

    def _status_error(self, response: httpx.Response, body: Any, operation: str) -> NetworkError:
        status_code = response.status_code
        if 400 <= status_code < 500:
            error_type = {
                400: "Invalid request",
                401: "Authentication error",
                403: "Authorization error",
                404: "Not found",
            }.get(status_code, "Client error")
        elif status_code >= 500:
            error_type = "Server error"
        else:
            error_type = "HTTP error"
        detail = _error_detail(body) or response.reason_phrase
        return NetworkError(
            f"{operation} failed (HTTP {status_code}): {detail}",
            status_code=status_code,
            error_detail=detail,
            error_type=error_type,
            response_body=body,
        )

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Any,
        operation: str,
        payment_header: Optional[str] = None,
    ) -> Tuple[httpx.Response, Any]:
        try:
            response = await client.post(
                url, json=payload, headers=self._headers(payment_header)
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e, url, operation) from e
        return response, _parse_body(response)

    async def _build_artifact(
        self, quote: Quote, amount: int, wallet: SigningWallet
    ) -> Tuple[PaymentPayload, Optional[int]]:
        family = classify_network(quote.network)
        if wallet.family is not family:
            raise ConfigurationError(
                f"Quote requires a {family.value} wallet but a {wallet.family.value} wallet was resolved",
                error_type="Wallet mismatch",
            )
        if family is ChainFamily.EVM:
            result = await self.evm_builder.build(amount, quote.pay_to, wallet, quote.network)
            return result.payload, result.balance_atomic
        payload = await self._solana().build(amount, quote.pay_to, wallet)
        return payload, None

    async def request(
        self,
        url: str,
        payload: Any,
        wallet: Optional[SigningWallet] = None,
        *,
        structured: bool = False,
        base_url: Optional[str] = None,
    ) -> NegotiationResult:
        """
        Call ``url``, paying for it if the server demands payment.

        Args:
            url: Endpoint to POST to.
            payload: JSON body, sent unchanged on the unpaid and paid attempt.
            wallet: Caller's wallet. A wallet of the other chain family is
                replaced by auto-discovery; ``None`` always discovers.
            structured: The URL is a structured command endpoint whose path
                must survive the retry.
            base_url: API base URL, used to resolve relative ``resource`` URLs.

        Returns:
            NegotiationResult: Final status, body, receipt and negotiation details.

        Raises:
            ConfigurationError: No signing key for the quote's chain.
            PaymentConstructionError: The payment could not be built.
            ProtocolError: Unusable 402 body or the payment was rejected.
            NetworkError: Transport failure or an unexpected HTTP status.
        """
        state = NegotiationState.UNPAID_REQUEST
        current_url = url
        try:
            async with self._client() as client:
                await self._emit(
                    NegotiationEventType.REQUEST_SENT, state, url, f"POST {url}", payload=payload
                )
                response, body = await self._post(client, url, payload, "Request")

                if response.is_success:
                    state = NegotiationState.DONE
                    await self._emit(
                        NegotiationEventType.COMPLETED,
                        state,
                        url,
                        f"Completed without payment (HTTP {response.status_code})",
                    )
                    return NegotiationResult(
                        status_code=response.status_code,
                        body=body,
                        paid=False,
                        state=state,
                        url=url,
                    )
                if response.status_code != 402:
                    raise self._status_error(response, body, "Request")

                quote = Quote.from_payment_required(body)
                amount = normalize_amount(quote.amount_raw)
                state = NegotiationState.QUOTE_RECEIVED
                await self._emit(
                    NegotiationEventType.QUOTE_RECEIVED,
                    state,
                    url,
                    f"Payment required: {amount} atomic units on {quote.network} to {quote.pay_to}",
                    amount_atomic=amount,
                    amount_raw=quote.amount_raw,
                    network=quote.network,
                    pay_to=quote.pay_to,
                    resource=quote.resource,
                )

                resolved = self.resolver.resolve(quote.network, wallet)
                state = NegotiationState.WALLET_RESOLVED
                if resolved.substituted:
                    await self._emit(
                        NegotiationEventType.WALLET_SUBSTITUTED,
                        state,
                        url,
                        f"Quote requires {quote.network}; paying with {resolved.wallet.family.value} "
                        f"wallet {resolved.wallet.address} from {resolved.source}",
                        network=quote.network,
                        source=resolved.source,
                    )
                await self._emit(
                    NegotiationEventType.WALLET_RESOLVED,
                    state,
                    url,
                    f"Signing with {resolved.wallet.address}",
                    payer=resolved.wallet.address,
                    source=resolved.source,
                )

                artifact, balance_atomic = await self._build_artifact(
                    quote, amount, resolved.wallet
                )
                envelope = PaymentEnvelope(
                    x402_version=quote.x402_version,
                    scheme=quote.scheme,
                    network=quote.network,
                    payload=artifact,
                )
                payment_header = encode_envelope(envelope)
                state = NegotiationState.ARTIFACT_SIGNED
                await self._emit(
                    NegotiationEventType.ARTIFACT_SIGNED,
                    state,
                    url,
                    f"Signed {amount} atomic unit payment on {quote.network}",
                    amount_atomic=amount,
                    balance_atomic=balance_atomic,
                    quote_fee_payer=quote.fee_payer,
                    sponsor_fee_payer=SPONSOR_FEE_PAYER,
                )

                current_url = resolve_retry_url(
                    url, quote.resource, structured=structured, base_url=base_url
                )
                state = NegotiationState.PAID_REQUEST
                await self._emit(
                    NegotiationEventType.PAID_REQUEST_SENT,
                    state,
                    current_url,
                    f"Retrying with payment: POST {current_url}",
                    resource=quote.resource,
                )
                paid_response, paid_body = await self._post(
                    client, current_url, payload, "Paid request", payment_header
                )

                if paid_response.status_code == 402:
                    detail = _error_detail(paid_body) or "Payment was rejected"
                    raise ProtocolError(
                        f"Payment rejected: {detail}",
                        status_code=402,
                        error_detail=detail,
                        error_type="Payment rejected",
                        response_body=paid_body,
                    )
                if not paid_response.is_success:
                    raise self._status_error(paid_response, paid_body, "Paid request")

                receipt = reconcile_receipt(
                    paid_body,
                    quote,
                    amount,
                    payer=resolved.wallet.address,
                    payment_header=payment_header,
                )
                if receipt.estimated:
                    await self._emit(
                        NegotiationEventType.RECEIPT_ESTIMATED,
                        state,
                        current_url,
                        "Server returned no receipt; using the quoted amount",
                        amount_atomic=receipt.amount_paid_atomic,
                    )

                state = NegotiationState.DONE
                await self._emit(
                    NegotiationEventType.COMPLETED,
                    state,
                    current_url,
                    f"Paid {receipt.amount_paid_atomic} atomic units (HTTP {paid_response.status_code})",
                    tx_reference=receipt.tx_reference,
                )
                return NegotiationResult(
                    status_code=paid_response.status_code,
                    body=paid_body,
                    paid=True,
                    state=state,
                    url=current_url,
                    quote=quote,
                    amount_atomic=amount,
                    receipt=receipt,
                    payment_header=payment_header,
                    wallet=resolved,
                    balance_atomic=balance_atomic,
                )
        except PaycallError as e:
            await self._emit(
                NegotiationEventType.FAILED,
                NegotiationState.FAILED,
                current_url,
                f"Negotiation failed in state {state.value}: {e}",
                error=e.to_dict(),
            )
            raise
