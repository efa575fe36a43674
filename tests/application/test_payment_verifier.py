"""Tests for PaymentVerifier."""

from dataclasses import replace

from storefront.application.payment_verifier import PaymentVerifier
from storefront.domain.exceptions import (
    AmountMismatchError,
    IntentMismatchError,
    SignatureMismatchError,
)
from storefront.domain.value_objects import Money, PaymentProof
from tests.factories import tamper


def signed_proof(verifier: PaymentVerifier, intent_id: str = "order_abc", payment_id: str = "pay_123", **kwargs) -> PaymentProof:
    return PaymentProof(
        provider_order_id=intent_id,
        provider_payment_id=payment_id,
        signature=verifier.expected_signature(intent_id, payment_id),
        **kwargs,
    )


class TestPaymentVerifier:
    """Tests for proof verification."""

    def test_valid_proof(self, verifier: PaymentVerifier) -> None:
        result = verifier.verify(signed_proof(verifier, method="upi"), "order_abc", Money(1000))

        assert result.success
        assert result.verified.provider_payment_id == "pay_123"
        assert result.verified.amount == Money(1000)
        assert result.verified.method == "upi"

    def test_verification_is_idempotent(self, verifier: PaymentVerifier) -> None:
        proof = signed_proof(verifier)
        first = verifier.verify(proof, "order_abc", Money(1000))
        second = verifier.verify(proof, "order_abc", Money(1000))
        assert first.verified == second.verified

    def test_method_defaults_to_online(self, verifier: PaymentVerifier) -> None:
        result = verifier.verify(signed_proof(verifier), "order_abc", Money(1000))
        assert result.verified.method == "online"

    def test_one_changed_character_fails(self, verifier: PaymentVerifier) -> None:
        proof = signed_proof(verifier)
        tampered = replace(proof, signature=tamper(proof.signature))

        result = verifier.verify(tampered, "order_abc", Money(1000))

        assert isinstance(result.error, SignatureMismatchError)
        assert result.error_code == "SIGNATURE_MISMATCH"

    def test_signature_from_another_secret_fails(self, verifier: PaymentVerifier) -> None:
        proof = signed_proof(PaymentVerifier("some-other-secret"))
        result = verifier.verify(proof, "order_abc", Money(1000))
        assert isinstance(result.error, SignatureMismatchError)

    def test_swapped_payment_id_fails(self, verifier: PaymentVerifier) -> None:
        proof = replace(signed_proof(verifier), provider_payment_id="pay_other")
        result = verifier.verify(proof, "order_abc", Money(1000))
        assert isinstance(result.error, SignatureMismatchError)

    def test_proof_for_another_intent_fails(self, verifier: PaymentVerifier) -> None:
        proof = signed_proof(verifier, intent_id="order_other")

        result = verifier.verify(proof, "order_abc", Money(1000))

        assert isinstance(result.error, IntentMismatchError)

    def test_reported_amount_must_match(self, verifier: PaymentVerifier) -> None:
        proof = signed_proof(verifier, amount_minor=999)

        result = verifier.verify(proof, "order_abc", Money(1000))

        assert isinstance(result.error, AmountMismatchError)
        assert result.error.details == {"expected": 1000, "actual": 999, "currency": "INR"}

    def test_matching_reported_amount(self, verifier: PaymentVerifier) -> None:
        result = verifier.verify(signed_proof(verifier, amount_minor=1000), "order_abc", Money(1000))
        assert result.success
