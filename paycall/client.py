"""
paycall client: user-facing API for pay-per-call agents.

This module provides :class:`AgentClient`, a high-level client for:

1. **Prompting agents**: send a natural-language message (or a ``/command``)
   to ``{api_url}/{chain}/{agent_id}``, paying with USDC when the agent answers
   ``402 Payment Required``.
2. **Running commands**: simple commands are sent in CLI form
   (``/pfp generate --style anime``); commands that need structured JSON go to
   ``{api_url}/{chain}/{agent_id}/{command}``.
3. **Discovery and async jobs**: list agents from the resources endpoint and
   poll status URLs returned by long-running agents.

Payment itself is negotiated by :class:`paycall.negotiator.PaymentNegotiator`.

**See also**

- :class:`paycall.negotiator.PaymentNegotiator`: the x402 negotiation on its own,
  for arbitrary endpoints.
- :class:`paycall.wallets.WalletResolver`: wallet auto-discovery.
"""

from __future__ import annotations

import asyncio
import json
import re
import traceback
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

import httpx
from loguru import logger

from paycall import config
from paycall.amounts import atomic_to_usdc, normalize_amount
from paycall.errors import NetworkError, PaycallError, ProtocolError
from paycall.events import EventSink, LoguruEventSink
from paycall.evm_payment import EvmAuthorizationBuilder
from paycall.negotiator import NegotiationResult, PaymentNegotiator
from paycall.networks import is_evm_network
from paycall.schemas import AgentInfo, InteractionResult, QuoteSummary, StatusCheckResult
from paycall.solana_payment import SolanaPaymentBuilder
from paycall.solana_payment import get_usdc_balance as get_solana_usdc_balance
from paycall.wallets import EvmWallet, SigningWallet, WalletResolver

# Commands whose handlers expect a JSON body even with simple params.
JSON_PAYLOAD_COMMANDS = frozenset(
    {
        "describe_image",
        "generate_captions",
        "post_telegram",
        "discover_trends",
        "enhance_prompt",
        "keywords",
        "select_best_trend",
    }
)

_CAMEL_BOUNDARY_RE = re.compile(r"[A-Z]")

Params = Union[Sequence[Any], Dict[str, Any]]
ProgressCallback = Callable[[int, StatusCheckResult], Any]


# ============================================
# Request body helpers
# ============================================


def build_message_body(message: Optional[str]) -> Dict[str, Any]:
    """
    Build the request body for an agent's base endpoint.

    - empty message: ``{}``
    - JSON with only a ``command`` key, or ``/cmd`` without arguments:
      ``{"command": "cmd"}``
    - anything else (prompts, commands with arguments): ``{"message": message}``
    """
    if not message or not message.strip():
        return {}

    try:
        parsed = json.loads(message)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        command = parsed.get("command")
        if command and all(k == "command" for k in parsed):
            return {"command": command}
        return {"message": message}

    if message.startswith("/"):
        parts = message[1:].strip().split()
        if len(parts) == 1:
            return {"command": parts[0]}
    return {"message": message}


def _cli_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def params_to_cli_args(params: Dict[str, Any]) -> List[str]:
    """
    Convert named params to CLI arguments.

    Keys become ``--kebab-case`` flags, list values are spread after their
    flag, and ``_args`` (or ``args``) supplies leading positional arguments.
    ``None`` values are skipped.

    Example:
        ```python
        params_to_cli_args({"_args": ["generate"], "refImages": ["a", "b"]})
        # ['generate', '--ref-images', 'a', 'b']
        ```
    """
    positional: List[str] = []
    if isinstance(params.get("_args"), (list, tuple)):
        positional = [_cli_value(v) for v in params["_args"]]
    elif isinstance(params.get("args"), (list, tuple)):
        positional = [_cli_value(v) for v in params["args"]]

    flags: List[str] = []
    for key, value in params.items():
        if key in ("_args", "args") or value is None:
            continue
        flag = "--" + _CAMEL_BOUNDARY_RE.sub(lambda m: "-" + m.group(0).lower(), key)
        if isinstance(value, (list, tuple)):
            flags.append(flag)
            flags.extend(_cli_value(v) for v in value)
        else:
            flags.extend([flag, _cli_value(value)])
    return positional + flags


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def has_complex_params(params: Optional[Dict[str, Any]]) -> bool:
    """True when any value is a dict or a list holding non-primitive items."""
    if not params:
        return False
    for value in params.values():
        if isinstance(value, (list, tuple)):
            if not all(_is_primitive(item) for item in value):
                return True
        elif not _is_primitive(value):
            return True
    return False


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


class AgentClient:
    """
    User-facing client for pay-per-call agents.

    The Solana connection is opened lazily and closed by :meth:`aclose`.
    Without an explicit wallet, each payment discovers one for the chain the
    quote demands (see :class:`paycall.wallets.WalletResolver`), and a quote
    for the other chain family switches to a discovered wallet of that family.

    **Example Usage:**

        ```python
        from paycall import AgentClient

        client = AgentClient(verbose=True)

        # Natural-language prompt
        result = await client.prompt("memeputer", "Hello, how are you?")
        print(result.response)
        print(result.receipt.amount_paid_usdc)

        # Command with named params, sent as "/pfp generate --style anime"
        result = await client.command("pfpputer", "pfp", {"_args": ["generate"], "style": "anime"})

        # Long-running job
        if result.status_url:
            status = await client.poll_status(result.status_url)
        ```

    **Attributes:**
        api_url (str): Base URL of the agents API (trailing slashes removed).
        chain (str): Chain used in endpoint paths and for wallet discovery.
        verbose (bool): Log protocol detail and tracebacks.
        negotiator (PaymentNegotiator): Performs the x402 exchange.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        chain: Optional[str] = None,
        wallet: Optional[SigningWallet] = None,
        solana_rpc_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        resolver: Optional[WalletResolver] = None,
        solana_builder: Optional[SolanaPaymentBuilder] = None,
        evm_builder: Optional[EvmAuthorizationBuilder] = None,
        events: Optional[EventSink] = None,
        timeout: Optional[float] = None,
        verbose: bool = False,
    ):
        """
        Initialize the agent client.

        Args:
            api_url: Agents API base URL. Default: ``PAYCALL_API_URL`` env var,
                rc file ``apiUrl``, or ``https://agents.memeputer.com/x402``.
            chain: Chain for endpoint paths (``solana`` or ``base``). Default:
                ``PAYCALL_CHAIN``, rc file ``chain``, or ``solana``.
            wallet: Wallet to pay with. When omitted, each payment discovers
                a wallet for the quote's chain.
            solana_rpc_url: Solana RPC for blockhashes and balances.
            http_client: Shared ``httpx.AsyncClient``; never closed by this client.
            resolver: Wallet resolver used for discovery and chain switching.
            solana_builder: Overrides the Solana payment builder.
            evm_builder: Overrides the EVM authorization builder.
            events: Event sink for negotiation progress. Default: loguru.
            timeout: HTTP timeout in seconds. Default: ``PAYCALL_TIMEOUT`` or 120.
            verbose: If True, logs protocol detail and full tracebacks.
        """
        self.api_url = (api_url or config.resolve_api_url()).rstrip("/")
        self.chain = chain or config.resolve_chain()
        self.wallet = wallet
        self.solana_rpc_url = solana_rpc_url
        self.http_client = http_client
        self.resolver = resolver or WalletResolver()
        self.timeout = timeout if timeout is not None else config.PAYCALL_TIMEOUT
        self.verbose = verbose

        self.negotiator = PaymentNegotiator(
            http_client=http_client,
            resolver=self.resolver,
            solana_builder=solana_builder,
            evm_builder=evm_builder,
            events=events or LoguruEventSink(verbose=verbose),
            timeout=self.timeout,
            solana_rpc_url=solana_rpc_url,
        )
        self.evm_builder = self.negotiator.evm_builder

        if self.verbose:
            logger.info(f"AgentClient initialized with api_url={self.api_url}, chain={self.chain}")

    async def __aenter__(self) -> "AgentClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the RPC connections opened on this client's behalf."""
        await self.negotiator.aclose()

    # ------------------------------------------------------------------
    # Lazy initialization
    # ------------------------------------------------------------------

    def _ensure_wallet(self, wallet: Optional[SigningWallet] = None) -> SigningWallet:
        if wallet is not None:
            return wallet
        if self.wallet is None:
            resolved = self.resolver.resolve(self.chain, None)
            self.wallet = resolved.wallet
            if self.verbose:
                logger.info(f"Using {self.wallet.family.value} wallet {self.wallet.address} from {resolved.source}")
        return self.wallet

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def agent_url(self, agent_id: str, command: Optional[str] = None) -> str:
        url = f"{self.api_url}/{self.chain}/{agent_id}"
        if command:
            url = f"{url}/{command}"
        return url

    # ------------------------------------------------------------------
    # Agent calls
    # ------------------------------------------------------------------

    def _to_result(self, result: NegotiationResult, agent_id: str) -> InteractionResult:
        body = result.body
        if not isinstance(body, dict):
            raise ProtocolError(
                f"Empty or non-JSON response from {result.url} (HTTP {result.status_code})",
                status_code=result.status_code,
                response_body=body,
            )

        response = _first(body, "response", "message") or ""
        if not isinstance(response, str):
            response = json.dumps(response)

        quote_summary = None
        if result.paid and result.amount_atomic is not None:
            quote_summary = QuoteSummary(
                amount_quoted_atomic=result.amount_atomic,
                amount_quoted_usdc=atomic_to_usdc(result.amount_atomic),
                max_amount_required=result.quote.amount_raw if result.quote else None,
            )

        tx_signature = _first(body, "transactionSignature", "transaction_signature")
        if tx_signature is None and result.receipt is not None:
            tx_signature = result.receipt.tx_reference

        return InteractionResult(
            success=bool(body.get("success", True)),
            response=response,
            format=body.get("format") or "text",
            media_url=_first(body, "mediaUrl", "media_url"),
            status_url=_first(body, "statusUrl", "status_url"),
            image_url=_first(body, "imageUrl", "image_url"),
            eta_seconds=_first(body, "etaSeconds", "eta_seconds"),
            transaction_signature=tx_signature,
            agent_id=body.get("agentId") or agent_id,
            receipt=result.receipt,
            quote=quote_summary,
            paid=result.paid,
        )

    async def _interact(
        self,
        agent_id: str,
        url: str,
        body: Dict[str, Any],
        wallet: Optional[SigningWallet],
        structured: bool = False,
    ) -> InteractionResult:
        if self.verbose:
            logger.debug(f"POST {url} body={json.dumps(body)}")
        try:
            # resolved per quote by the negotiator when None
            result = await self.negotiator.request(
                url,
                body,
                wallet or self.wallet,
                structured=structured,
                base_url=self.api_url,
            )
            interaction = self._to_result(result, agent_id)
            if self.verbose:
                logger.info(f"Agent {agent_id} responded (paid={interaction.paid}, format={interaction.format})")
            return interaction
        except Exception as e:
            if self.verbose:
                logger.error(f"Error calling agent {agent_id} at {url}: {e}\n{traceback.format_exc()}")
            else:
                logger.error(f"Error calling agent {agent_id} at {url}: {e}")
            raise

    async def prompt(
        self,
        agent_id: str,
        message: str,
        wallet: Optional[SigningWallet] = None,
    ) -> InteractionResult:
        """
        Prompt an agent with a message.

        Args:
            agent_id: Agent identifier, e.g. ``"memeputer"``.
            message: Natural-language prompt, ``/command args`` string, or a
                JSON command string such as ``'{"command": "ping"}'``.
            wallet: Wallet for this call. Default: the client's wallet.

        Returns:
            InteractionResult: Agent response plus receipt and quote details.

        Raises:
            PaycallError: Any negotiation failure (see :mod:`paycall.errors`).

        Example:
            ```python
            result = await client.prompt("memeputer", "Hello!")
            print(result.response)
            ```
        """
        return await self._interact(
            agent_id,
            self.agent_url(agent_id),
            build_message_body(message),
            wallet,
        )

    async def command(
        self,
        agent_id: str,
        command: str,
        params: Optional[Params] = None,
        wallet: Optional[SigningWallet] = None,
    ) -> InteractionResult:
        """
        Run a command on an agent.

        Commands listed in :data:`JSON_PAYLOAD_COMMANDS`, or called with
        complex params (nested dicts, lists of objects), are sent to the
        structured endpoint ``.../{agent_id}/{command}`` with ``params`` as the
        JSON body. Everything else is sent as ``/{command} args...`` to the
        agent's base endpoint.

        Args:
            agent_id: Agent identifier.
            command: Command name without the leading slash.
            params: Positional args (list) or named params (dict).
            wallet: Wallet for this call. Default: the client's wallet.

        Returns:
            InteractionResult: Agent response plus receipt and quote details.

        Example:
            ```python
            await client.command("memeputer", "ping")
            await client.command("pfpputer", "pfp", ["generate", "a cat"])
            await client.command("trendputer", "discover_trends", {"limit": 5})
            ```
        """
        command = command.lstrip("/")
        named = params if isinstance(params, dict) else None

        if named and (command in JSON_PAYLOAD_COMMANDS or has_complex_params(named)):
            return await self._interact(
                agent_id,
                self.agent_url(agent_id, command),
                dict(named),
                wallet,
                structured=True,
            )

        if named is not None:
            args = params_to_cli_args(named)
        elif isinstance(params, str):
            args = [params]
        elif params:
            args = [_cli_value(p) for p in params]
        else:
            args = []
        message = f"/{command} {' '.join(args)}" if args else f"/{command}"
        return await self.prompt(agent_id, message, wallet)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_agents(self) -> List[AgentInfo]:
        """
        List agents from ``{api_url}/{chain}/resources``.

        Returns:
            List[AgentInfo]: One entry per ``accepts`` item.
        """
        url = f"{self.api_url}/{self.chain}/resources"
        try:
            async with self._client() as client:
                try:
                    response = await client.get(url, headers={"User-Agent": config.USER_AGENT})
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    raise NetworkError(
                        f"Listing agents failed (HTTP {e.response.status_code})",
                        status_code=e.response.status_code,
                        error_detail=e.response.text,
                        response_body=e.response.text,
                    ) from e
                except httpx.HTTPError as e:
                    raise NetworkError(f"Listing agents failed: {e}", error_detail=str(e)) from e
            try:
                data = response.json()
            except ValueError as e:
                raise ProtocolError(
                    "Resources listing is not JSON", response_body=response.text
                ) from e

            accepts = data.get("accepts") if isinstance(data, dict) else None
            agents = [self._agent_info(a) for a in accepts or [] if isinstance(a, dict)]
            if self.verbose:
                logger.info(f"Found {len(agents)} agents on {self.chain}")
            return agents
        except PaycallError as e:
            if self.verbose:
                logger.error(f"Error listing agents: {e}\n{traceback.format_exc()}")
            else:
                logger.error(f"Error listing agents: {e}")
            raise

    @staticmethod
    def _agent_info(accept: Dict[str, Any]) -> AgentInfo:
        extra = accept.get("extra") if isinstance(accept.get("extra"), dict) else {}
        pricing = extra.get("pricing") if isinstance(extra.get("pricing"), dict) else {}
        price = pricing.get("amount")
        if not isinstance(price, (int, float)) or isinstance(price, bool):
            price = float(atomic_to_usdc(normalize_amount(accept.get("maxAmountRequired"))))
        return AgentInfo(
            id=extra.get("agentId") or accept.get("agentId") or "unknown",
            name=extra.get("agentName") or accept.get("name") or "Unknown Agent",
            description=accept.get("description") or "AI agent",
            price=price,
            category=extra.get("category") or "General AI",
            example_prompts=list(extra.get("examplePrompts") or []),
            pay_to=accept.get("payTo") or "",
        )

    # ------------------------------------------------------------------
    # Async jobs
    # ------------------------------------------------------------------

    async def check_status(self, status_url: str) -> StatusCheckResult:
        """
        Fetch the status of an asynchronous job.

        An error response with a body is reported as ``status="failed"``
        rather than raised. Transport failures raise :class:`NetworkError`.
        """
        async with self._client() as client:
            try:
                response = await client.get(status_url, headers={"User-Agent": config.USER_AGENT})
            except httpx.HTTPError as e:
                logger.error(f"Status check failed for {status_url}: {e}")
                raise NetworkError(
                    f"Status check failed: {e}", error_detail=str(e)
                ) from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            error = payload.get("error") if isinstance(payload, dict) else None
            return StatusCheckResult(status="failed", error=error or "Status check failed")

        if not isinstance(payload, dict):
            return StatusCheckResult(status="pending")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        return StatusCheckResult(
            status=data.get("status") or "pending",
            message=data.get("message"),
            image_url=_first(data, "imageUrl", "image_url"),
            media_url=_first(data, "mediaUrl", "media_url"),
            error=data.get("error"),
        )

    async def poll_status(
        self,
        status_url: str,
        max_attempts: int = 60,
        interval: float = 5.0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StatusCheckResult:
        """
        Poll a status URL until the job completes, fails, or attempts run out.

        Args:
            status_url: URL from :attr:`InteractionResult.status_url`.
            max_attempts: Maximum number of checks. Default: 60.
            interval: Seconds between checks. Default: 5.0.
            on_progress: Called with ``(attempt, status)`` after each check.

        Returns:
            StatusCheckResult: The final status, or ``failed`` with a timeout
            error when attempts are exhausted.
        """
        for attempt in range(1, max_attempts + 1):
            status = await self.check_status(status_url)
            if on_progress is not None:
                outcome = on_progress(attempt, status)
                if asyncio.iscoroutine(outcome):
                    await outcome
            if status.finished:
                return status
            if attempt < max_attempts:
                await asyncio.sleep(interval)

        return StatusCheckResult(status="failed", error="Timeout waiting for completion")

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_usdc_balance(self, wallet: Optional[SigningWallet] = None) -> Decimal:
        """
        Return the wallet's USDC balance in whole USDC.

        Solana wallets are read from their associated token account; EVM
        wallets from the USDC contract on the client's chain (Base unless the
        chain is another EVM network).
        """
        signing_wallet = self._ensure_wallet(wallet)
        try:
            if isinstance(signing_wallet, EvmWallet):
                network = self.chain if is_evm_network(self.chain) else "base"
                return await self.evm_builder.get_usdc_balance(signing_wallet.address, network)
            return await get_solana_usdc_balance(self.negotiator.solana_connection(), signing_wallet.address)
        except Exception as e:
            if self.verbose:
                logger.error(f"Error reading USDC balance: {e}\n{traceback.format_exc()}")
            else:
                logger.error(f"Error reading USDC balance: {e}")
            raise
