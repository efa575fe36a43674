"""Payment proof verification.

All authenticity checks for payment proofs live here. A proof is valid
only if its HMAC-SHA256 signature over ``provider_order_id|provider_payment_id``
matches, it belongs to the expected intent, and (when the proof reports
one) the paid amount equals the expected amount.

The verifier is stateless: verifying the same proof twice yields the
same ``VerifiedPayment`` and changes nothing, so the client redirect and
the gateway webhook may both deliver a proof without coordination.
"""

import hashlib
import hmac

import structlog

from storefront.application.results import VerificationResult
from storefront.domain.exceptions import (
    AmountMismatchError,
    DomainError,
    IntentMismatchError,
    SignatureMismatchError,
)
from storefront.domain.value_objects import Money, PaymentProof, VerifiedPayment

logger = structlog.get_logger()


class PaymentVerifier:
    """Verifies payment proofs against their expected intent and amount."""

    def __init__(self, secret: str) -> None:
        """Initialize verifier.

        Args:
            secret: Gateway key secret used to sign proofs.
        """
        self._secret = secret.encode()

    def expected_signature(self, provider_order_id: str, provider_payment_id: str) -> str:
        """Compute the signature a genuine proof must carry."""
        message = f"{provider_order_id}|{provider_payment_id}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(
        self,
        proof: PaymentProof,
        expected_intent_id: str,
        expected_amount: Money,
    ) -> VerificationResult:
        """Verify a payment proof.

        Args:
            proof: Proof delivered by the client or webhook.
            expected_intent_id: Intent opened for this checkout attempt.
            expected_amount: Draft subtotal the intent was opened for.

        Returns:
            VerificationResult with the VerifiedPayment, or one of
            SignatureMismatchError, IntentMismatchError, AmountMismatchError.
        """
        try:
            verified = self._verify(proof, expected_intent_id, expected_amount)
        except DomainError as e:
            # Signature values are never logged
            logger.warning(
                "Payment proof rejected",
                provider_order_id=proof.provider_order_id,
                provider_payment_id=proof.provider_payment_id,
                error_code=e.error_code,
            )
            return VerificationResult(error=e)

        logger.info(
            "Payment proof verified",
            provider_order_id=verified.provider_order_id,
            provider_payment_id=verified.provider_payment_id,
        )
        return VerificationResult(verified=verified)

    def _verify(
        self,
        proof: PaymentProof,
        expected_intent_id: str,
        expected_amount: Money,
    ) -> VerifiedPayment:
        computed = self.expected_signature(proof.provider_order_id, proof.provider_payment_id)
        if not hmac.compare_digest(computed.encode(), proof.signature.encode()):
            raise SignatureMismatchError(proof.provider_order_id)

        # A signature valid for another intent must not pay for this one
        if proof.provider_order_id != expected_intent_id:
            raise IntentMismatchError(expected_intent_id, proof.provider_order_id)

        if proof.amount_minor is not None and proof.amount_minor != expected_amount.amount_minor:
            raise AmountMismatchError(
                expected=expected_amount.amount_minor,
                actual=proof.amount_minor,
                currency=expected_amount.currency,
            )

        return VerifiedPayment(
            provider_order_id=proof.provider_order_id,
            provider_payment_id=proof.provider_payment_id,
            amount=expected_amount,
            method=proof.method or "online",
        )
