"""HMAC-SHA512 signing and constant-time verification over canonical strings."""

import hashlib
import hmac

from payment_gateway.errors import ConfigurationError


class SignatureEngine:
    """
    Signs and verifies canonical strings with the merchant's shared secret.

    The secret is injected once at construction and never exposed: not in
    repr, not in logs, not in exception messages.
    """

    algorithm = "HmacSHA512"

    def __init__(self, secret_key: str):
        if not secret_key or not secret_key.strip():
            raise ConfigurationError("HMAC secret key is not configured")
        self._key = secret_key.encode("utf-8")

    def __repr__(self) -> str:
        return f"SignatureEngine(algorithm={self.algorithm!r})"

    def sign(self, canonical: str) -> str:
        """Return the lowercase hex HMAC-SHA512 digest of a canonical string."""
        return hmac.new(self._key, canonical.encode("utf-8"), hashlib.sha512).hexdigest()

    def verify(self, canonical: str, claimed_hex: str) -> bool:
        """Recompute the digest and compare it to the claimed one in constant time."""
        if not claimed_hex:
            return False
        expected = self.sign(canonical).encode("ascii")
        return hmac.compare_digest(expected, claimed_hex.encode("utf-8"))
