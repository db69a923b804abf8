"""
Paystack gateway client — authoritative transaction lookups for the verify path.

"Gateway unreachable" and "payment failed" are different answers: transport
errors, timeouts and non-success API envelopes raise GatewayError, while a
transaction the gateway reports as failed comes back as a normal
GatewayResult with status "failed".
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
import structlog

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """The gateway could not give an answer (network, HTTP or envelope failure)."""


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer within the configured timeout."""


@dataclass
class GatewayResult:
    status: str
    amount_minor_units: int
    reference: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    paid_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def normalize_metadata(metadata: Any) -> Dict[str, Any]:
    """Paystack echoes metadata as an object, a JSON string, or an empty string."""
    if isinstance(metadata, dict):
        return metadata
    if isinstance(metadata, str) and metadata.strip():
        try:
            decoded = json.loads(metadata)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


class PaystackClient:
    """
    Minimal Paystack REST client.

    Only transaction verification is needed by the settlement engine; the
    initialize/transfer endpoints belong to the checkout and payout flows.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.secret_key = (secret_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def verify_transaction(self, reference: str) -> GatewayResult:
        """Fetch the gateway's view of a transaction.

        Args:
            reference: Gateway transaction reference.

        Returns:
            GatewayResult with the amount in minor units (kobo).

        Raises:
            GatewayTimeoutError: The call exceeded the timeout.
            GatewayError: Any other transport, HTTP or envelope failure.
        """
        if not self.secret_key:
            raise GatewayError("Gateway secret key is not configured")

        url = f"{self.base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.Timeout as e:
            logger.error("gateway_timeout", reference=reference, timeout=self.timeout)
            raise GatewayTimeoutError(f"Gateway timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            logger.error("gateway_unreachable", reference=reference, error=str(e))
            raise GatewayError(f"Gateway request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            logger.error("gateway_invalid_response", reference=reference, http_status=response.status_code)
            raise GatewayError("Gateway returned a non-JSON response") from e

        if not response.ok or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error(
                "gateway_verification_rejected",
                reference=reference,
                http_status=response.status_code,
                message=message,
            )
            raise GatewayError(f"Gateway verification failed: {message}")

        data = body.get("data") or {}
        return GatewayResult(
            status=str(data.get("status") or "").lower(),
            amount_minor_units=int(data.get("amount") or 0),
            reference=data.get("reference") or reference,
            metadata=normalize_metadata(data.get("metadata")),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            raw=data,
        )
