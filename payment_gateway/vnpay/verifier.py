"""
Inbound callback authentication.

A callback is trusted only if the HMAC over its canonicalized fields
(hash fields removed) matches the vnp_SecureHash it carries. This module
knows nothing about orders; it answers one question: did a holder of the
shared secret produce these exact parameters?
"""

import logging

from payment_gateway.errors import DuplicateKeyError
from payment_gateway.models.enums import VerificationFailure
from payment_gateway.signing.canonical import canonicalize
from payment_gateway.signing.signature import SignatureEngine
from payment_gateway.vnpay.fields import REQUIRED_CALLBACK_FIELDS
from payment_gateway.vnpay.schemas import ReturnCallback, VerificationResult

logger = logging.getLogger("payment_gateway.vnpay.verifier")


class ReturnVerifier:
    def __init__(self, signer: SignatureEngine):
        self._signer = signer

    def verify(self, callback: ReturnCallback) -> VerificationResult:
        # Correlating fields are checked before any HMAC work.
        missing = [f.value for f in REQUIRED_CALLBACK_FIELDS if not (callback.get(f) or "").strip()]
        if missing:
            logger.warning("Callback missing required fields: %s", ", ".join(missing))
            return VerificationResult.invalid(VerificationFailure.MISSING_FIELDS)

        try:
            canonical = canonicalize(callback.pairs)
        except DuplicateKeyError as e:
            logger.warning("Callback for %s repeats field %s", callback.txn_ref, e.key)
            return VerificationResult.invalid(VerificationFailure.DUPLICATE_FIELDS)

        if not self._signer.verify(canonical, callback.secure_hash or ""):
            logger.warning("Signature mismatch for callback txnRef=%s", callback.txn_ref)
            return VerificationResult.invalid(VerificationFailure.SIGNATURE_MISMATCH)

        return VerificationResult.ok()
