"""
Exceptions raised by the paycall negotiation client.

Every error carries structured details so callers can surface them in their own
responses:

- :class:`ConfigurationError`: no usable signing key for the chain a quote
  requires. The message always names the environment variable or file to set.
- :class:`PaymentConstructionError`: the payment could not be built (invalid
  recipient, non-positive amount, unsupported network).
- :class:`ProtocolError`: the server broke the x402 contract (unusable 402
  body, rejected payment, undecodable envelope).
- :class:`NetworkError`: transport failures and unexpected HTTP statuses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PaycallError(Exception):
    """
    Base class for paycall errors.

    **Attributes:**
        status_code (Optional[int]): HTTP status code, when the error came from a response.
        error_detail (Optional[str]): Detailed error message (server-provided when available).
        error_type (Optional[str]): Short category, e.g. "Timeout" or "Payment rejected".
        response_body (Optional[Any]): Parsed response body, or raw text when not JSON.
    """

    default_error_type = "Payment error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_detail: Optional[str] = None,
        error_type: Optional[str] = None,
        response_body: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_detail = error_detail
        self.error_type = error_type or self.default_error_type
        self.response_body = response_body

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the error to a dictionary for API responses.

        Returns:
            Dict with keys "error", "message" and, when present, "detail" and
            "status_code".
        """
        result: Dict[str, Any] = {
            "error": self.error_type,
            "message": str(self),
        }
        if self.error_detail:
            result["detail"] = self.error_detail
        if self.status_code:
            result["status_code"] = self.status_code
        return result


class ConfigurationError(PaycallError):
    """No usable signing key material for the required chain."""

    default_error_type = "Configuration error"


class PaymentConstructionError(PaycallError):
    """Raised before any payment network call when the payment cannot be built."""

    default_error_type = "Invalid payment"


class ProtocolError(PaycallError):
    default_error_type = "Protocol error"


class NetworkError(PaycallError):
    default_error_type = "Network error"
