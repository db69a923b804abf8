"""
Signature Verifier — proves a webhook body came from the payment gateway.

The gateway signs the exact bytes it sends with HMAC-SHA512 keyed by the
account secret. Verification must run on the raw, unparsed body: parsing and
re-serialising JSON can reorder keys or change whitespace and break the match.
"""
import hashlib
import hmac
from enum import Enum
from typing import Optional


class SignatureCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    MISSING_SECRET = "missing_secret"


class SignatureVerifier:
    """Constant-time HMAC-SHA512 check of webhook bodies."""

    def __init__(self, secret: Optional[str]):
        self._secret = secret or ""

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def sign(self, raw_body: bytes) -> str:
        """Hex HMAC-SHA512 of the body under the server secret."""
        return hmac.new(self._secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()

    def verify(self, raw_body: bytes, signature: Optional[str]) -> SignatureCheck:
        """Check `signature` (the vendor header value) against the raw body.

        Args:
            raw_body: Request body exactly as received.
            signature: Hex digest from the signature header, or None if absent.

        Returns:
            SignatureCheck.VALID, INVALID, or MISSING_SECRET when the server
            has no secret configured.
        """
        if not self._secret:
            return SignatureCheck.MISSING_SECRET
        if not signature:
            return SignatureCheck.INVALID

        try:
            provided = signature.strip().lower().encode("ascii")
        except UnicodeEncodeError:
            return SignatureCheck.INVALID

        expected = self.sign(raw_body)
        if hmac.compare_digest(expected.encode("ascii"), provided):
            return SignatureCheck.VALID
        return SignatureCheck.INVALID
