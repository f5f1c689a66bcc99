from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from paycall.amounts import atomic_to_usdc
from paycall.errors import ProtocolError


class Quote(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pay_to: str = Field(
        alias="payTo",
        description="Address that must receive the payment.",
    )
    amount_raw: Any = Field(
        default=None,
        alias="maxAmountRequired",
        description="Amount exactly as sent by the server. May be decimal USDC or atomic units, as a number or a string.",
    )
    scheme: str = Field(
        default="exact",
        description="x402 payment scheme.",
    )
    network: str = Field(
        default="solana",
        description="Network the payment must be made on, e.g. 'solana', 'base' or 'eip155:8453'. May carry a '-mainnet' suffix.",
    )
    resource: Optional[str] = Field(
        default=None,
        description="URL (absolute or relative) to retry the paid request against.",
    )
    asset: Optional[str] = Field(
        default=None,
        description="Token mint or contract address the server expects.",
    )
    description: Optional[str] = Field(
        default=None,
        description="Human-readable description of the paid resource.",
    )
    extra: Dict[str, Any] = Field(
        default_factory=dict,
        description="Scheme-specific extras, e.g. the facilitator's feePayer.",
    )
    x402_version: int = Field(
        default=1,
        alias="x402Version",
        description="Protocol version from the 402 body.",
    )

    @field_validator("scheme", "network", mode="before")
    @classmethod
    def _default_when_null(cls, value: Any, info) -> Any:
        if value in (None, ""):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("extra", mode="before")
    @classmethod
    def _extra_as_dict(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @property
    def fee_payer(self) -> Optional[str]:
        fee_payer = self.extra.get("feePayer")
        return fee_payer if isinstance(fee_payer, str) else None

    @classmethod
    def from_payment_required(cls, body: Any) -> "Quote":
        """
        Parse the first ``accepts`` entry of a 402 response body.

        Args:
            body: Decoded JSON body of the 402 response.

        Returns:
            Quote: The payment terms the server demands.

        Raises:
            ProtocolError: If the body is not an object, ``accepts`` is missing
                or empty, or the entry lacks ``payTo``.
        """
        if not isinstance(body, dict):
            raise ProtocolError(
                "402 response body is not a JSON object",
                status_code=402,
                response_body=body,
            )
        accepts = body.get("accepts")
        if not isinstance(accepts, list) or not accepts:
            raise ProtocolError(
                "402 response has no payment options in 'accepts'",
                status_code=402,
                response_body=body,
            )
        entry = accepts[0]
        if not isinstance(entry, dict) or not entry.get("payTo"):
            raise ProtocolError(
                "402 response payment option is missing 'payTo'",
                status_code=402,
                response_body=body,
            )

        data = dict(entry)
        if "x402Version" in body and "x402Version" not in data:
            data["x402Version"] = body["x402Version"]
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(
                "402 response payment option is malformed",
                status_code=402,
                error_detail=str(e),
                response_body=body,
            ) from e


class SolanaPaymentPayload(BaseModel):
    transaction: str = Field(
        description="Base64 serialized v0 transaction, signed by the payer only.",
    )
    signature: str = Field(
        description="Base58 payer signature.",
    )


class EvmAuthorization(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="from")
    to: str
    value: str = Field(description="Atomic USDC units as a decimal string.")
    valid_after: str = Field(alias="validAfter", description="Unix seconds, decimal string.")
    valid_before: str = Field(alias="validBefore", description="Unix seconds, decimal string.")
    nonce: str = Field(description="0x-prefixed 32-byte hex nonce.")


class EvmPaymentPayload(BaseModel):
    signature: str = Field(
        description="0x-prefixed EIP-712 signature over the authorization.",
    )
    authorization: EvmAuthorization


PaymentPayload = Union[SolanaPaymentPayload, EvmPaymentPayload]


class PaymentEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    x402_version: int = Field(default=1, alias="x402Version")
    scheme: str = Field(default="exact")
    network: str
    payload: PaymentPayload

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ReceiptSource(str, Enum):
    SERVER = "server"
    ESTIMATE = "estimate"


class Receipt(BaseModel):
    amount_paid_atomic: int = Field(
        description="Amount paid in atomic USDC units (6 decimals).",
    )
    pay_to: Optional[str] = Field(default=None, description="Recipient of the payment.")
    tx_reference: Optional[str] = Field(
        default=None,
        description="Transaction signature or hash reported by the server, or the payment header when estimated.",
    )
    payer: Optional[str] = Field(default=None, description="Address that signed the payment.")
    merchant: Optional[str] = Field(default=None)
    timestamp: Optional[str] = Field(default=None, description="ISO-8601 timestamp.")
    source: ReceiptSource = Field(
        description="Whether the receipt came from the server or was synthesized from the quote.",
    )

    @property
    def estimated(self) -> bool:
        return self.source is ReceiptSource.ESTIMATE

    @property
    def amount_paid_usdc(self) -> Decimal:
        return atomic_to_usdc(self.amount_paid_atomic)


class QuoteSummary(BaseModel):
    amount_quoted_atomic: int
    amount_quoted_usdc: Decimal
    max_amount_required: Any = None


class InteractionResult(BaseModel):
    success: bool = True
    response: str = ""
    format: str = Field(default="text", description="One of text, image, video or audio.")
    media_url: Optional[str] = None
    status_url: Optional[str] = Field(
        default=None,
        description="URL to poll when the agent finishes the job asynchronously.",
    )
    image_url: Optional[str] = None
    eta_seconds: Optional[float] = None
    transaction_signature: Optional[str] = None
    agent_id: Optional[str] = None
    receipt: Optional[Receipt] = None
    quote: Optional[QuoteSummary] = None
    paid: bool = False


class AgentInfo(BaseModel):
    id: str = Field(default="unknown")
    name: str = Field(default="Unknown Agent")
    description: str = Field(default="AI agent")
    price: float = Field(default=0.01, description="Price per call in USDC.")
    category: str = Field(default="General AI")
    example_prompts: List[str] = Field(default_factory=list)
    pay_to: str = Field(default="")


class StatusCheckResult(BaseModel):
    status: str = Field(
        default="pending",
        description="One of pending, processing, completed or failed.",
    )
    message: Optional[str] = None
    image_url: Optional[str] = None
    media_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")
