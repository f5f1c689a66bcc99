"""Encoding of the ``X-PAYMENT`` header."""

from __future__ import annotations

import base64
import binascii
import json

from pydantic import ValidationError

from paycall.errors import ProtocolError
from paycall.schemas import PaymentEnvelope

PAYMENT_HEADER = "X-PAYMENT"


def encode_envelope(envelope: PaymentEnvelope) -> str:
    """Serialize an envelope as compact JSON and base64 encode it."""
    raw = json.dumps(envelope.to_wire(), separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_envelope(header: str) -> PaymentEnvelope:
    """
    Decode an ``X-PAYMENT`` header value back into a :class:`PaymentEnvelope`.

    Raises:
        ProtocolError: If the value is not base64, not JSON, or not an envelope.
    """
    try:
        raw = base64.b64decode(header, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ProtocolError(
            "Payment header is not base64-encoded JSON",
            error_detail=str(e),
        ) from e

    try:
        return PaymentEnvelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(
            "Payment header does not contain a payment envelope",
            error_detail=str(e),
            response_body=data,
        ) from e
