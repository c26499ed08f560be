"""Unit tests for Stripe webhook signature validation.

Tests the HMAC-SHA256 signature validation logic to ensure only authentic,
fresh requests from Stripe are processed.
"""

import time

import pytest
from conftest import sign_stripe_payload

from renzo.services.payments.stripe_signature import validate_stripe_signature


class TestStripeSignatureValidation:
    """Test suite for HMAC signature validation."""

    @pytest.fixture
    def secret(self) -> str:
        """Endpoint signing secret for tests."""
        return "whsec_unit_test_secret"

    @pytest.fixture
    def sample_payload(self) -> bytes:
        """Sample webhook payload as raw bytes."""
        return b'{"id":"evt_001","type":"checkout.session.completed","data":{"object":{}}}'

    @pytest.fixture
    def valid_signature(self, sample_payload: bytes, secret: str) -> str:
        """Generate valid Stripe-Signature header for sample payload."""
        return sign_stripe_payload(sample_payload, secret=secret)

    def test_valid_signature_acceptance(
        self, sample_payload: bytes, valid_signature: str, secret: str
    ):
        """Test that valid signatures are accepted."""
        # Act
        result = validate_stripe_signature(sample_payload, valid_signature, secret)

        # Assert
        assert result is True, "Valid signature should be accepted"

    def test_invalid_signature_rejection(self, sample_payload: bytes, secret: str):
        """Test that invalid signatures are rejected."""
        # Arrange
        invalid_signature = f"t={int(time.time())},v1={'0' * 64}"

        # Act
        result = validate_stripe_signature(sample_payload, invalid_signature, secret)

        # Assert
        assert result is False, "Invalid signature should be rejected"

    def test_tampered_payload_rejection(
        self, sample_payload: bytes, valid_signature: str, secret: str
    ):
        """Test that tampered payloads are rejected even with original signature."""
        # Arrange - modify payload after signature was generated
        tampered_payload = sample_payload.replace(b"evt_001", b"evt_999")

        # Act
        result = validate_stripe_signature(tampered_payload, valid_signature, secret)

        # Assert
        assert result is False, "Tampered payload should be rejected"

    def test_wrong_secret_rejection(self, sample_payload: bytes, valid_signature: str):
        """Test that requests signed with another endpoint's secret are rejected."""
        result = validate_stripe_signature(sample_payload, valid_signature, "whsec_different")

        assert result is False, "Signature from wrong secret should be rejected"

    def test_empty_signature_rejection(self, sample_payload: bytes, secret: str):
        """Test that empty signatures are rejected."""
        result = validate_stripe_signature(sample_payload, "", secret)

        assert result is False, "Empty signature should be rejected"

    def test_unconfigured_secret_rejection(self, sample_payload: bytes, valid_signature: str):
        """Test that nothing verifies when no secret is configured."""
        result = validate_stripe_signature(sample_payload, valid_signature, "")

        assert result is False

    def test_malformed_header_rejection(self, sample_payload: bytes, secret: str):
        """Test that headers without t= and v1= parts are rejected."""
        result = validate_stripe_signature(sample_payload, "not_a_stripe_header", secret)

        assert result is False, "Malformed header should be rejected"

    def test_expired_timestamp_rejection(self, sample_payload: bytes, secret: str):
        """Test that correctly signed but stale deliveries are rejected (replay protection)."""
        # Arrange - signed ten minutes ago, tolerance is five
        stale = sign_stripe_payload(sample_payload, secret=secret, timestamp=int(time.time()) - 600)

        # Act
        result = validate_stripe_signature(sample_payload, stale, secret, tolerance=300)

        # Assert
        assert result is False, "Stale signature should be rejected"

    def test_one_matching_signature_among_several(self, sample_payload: bytes, secret: str):
        """Test that rotated secrets (several v1 entries) verify if any entry matches."""
        valid = sign_stripe_payload(sample_payload, secret=secret)
        rotated = f"{valid},v1={'f' * 64}"

        result = validate_stripe_signature(sample_payload, rotated, secret)

        assert result is True

    def test_unicode_payload_handling(self, secret: str):
        """Test that unicode payloads are correctly handled as UTF-8 bytes."""
        # Arrange - payload with non-ASCII characters
        unicode_payload = '{"description":"Appartement à Montréal"}'.encode("utf-8")
        valid_signature = sign_stripe_payload(unicode_payload, secret=secret)

        # Act
        result = validate_stripe_signature(unicode_payload, valid_signature, secret)

        # Assert
        assert result is True, "Unicode payload should be handled correctly"

    def test_non_utf8_payload_rejection(self, secret: str):
        """Test that bodies that are not UTF-8 are rejected instead of raising."""
        result = validate_stripe_signature(
            b"\xff\xfe\x00bad", f"t={int(time.time())},v1={'0' * 64}", secret
        )

        assert result is False
