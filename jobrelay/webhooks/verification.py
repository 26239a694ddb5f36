"""Callback authentication: HMAC-SHA256 signature or shared secret.

Security contract:
- ``X-Signature: sha256=<hex>`` is verified against HMAC-SHA256 of the exact
  raw body, compared with hmac.compare_digest() over equal-length bytes
- Digests of the wrong length are rejected before any comparison
- Any other scheme or malformed hex -> "invalid signature format" (401)
- Verification failure -> 401 immediately, no payload processing
- Without the header, the body's ``shared_secret`` field is compared to the
  configured secret. This fallback is LOWER ASSURANCE (plain equality, and
  the secret travels in the body where it can end up in logs); prefer
  signatures for every caller that can compute them
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from jobrelay.errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
SIGNATURE_SCHEME = "sha256"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body``; what a worker puts after ``sha256=``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """Authenticates inbound callbacks against one shared secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("shared secret must not be empty")
        self._secret = secret

    def verify(self, body: bytes, headers: dict[str, str]) -> str:
        """Authenticate a callback request.

        Args:
            body: Raw request body bytes
            headers: Request headers (lowercase keys)

        Returns:
            The authentication mode used: "signature" or "shared_secret"

        Raises:
            AuthenticationError: on any failure
        """
        signature_header = headers.get(SIGNATURE_HEADER, "")
        if signature_header:
            self.verify_signature(body, signature_header)
            return "signature"
        self.verify_shared_secret(body)
        return "shared_secret"

    def verify_signature(self, body: bytes, signature_header: str) -> None:
        parts = signature_header.split("=")
        if len(parts) != 2 or parts[0] != SIGNATURE_SCHEME:
            raise AuthenticationError("invalid signature format")
        try:
            provided = bytes.fromhex(parts[1])
        except ValueError:
            raise AuthenticationError("invalid signature format") from None

        expected = hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).digest()
        if len(provided) != len(expected):
            raise AuthenticationError("invalid signature")
        if not hmac.compare_digest(provided, expected):
            raise AuthenticationError("invalid signature")

    def verify_shared_secret(self, body: bytes) -> None:
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise AuthenticationError("invalid shared_secret") from None

        provided = payload.get("shared_secret") if isinstance(payload, dict) else None
        if not provided or provided != self._secret:
            raise AuthenticationError("invalid shared_secret")
        logger.warning("Callback authenticated with in-body shared_secret (no X-Signature header)")
