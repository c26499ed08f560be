"""Signature validation for Stripe webhooks.

Stripe signs ``"{timestamp}.{raw_body}"`` with HMAC-SHA256 and sends the
result in the Stripe-Signature header (``t=...,v1=...``). Verification is
delegated to the Stripe SDK, which compares in constant time and rejects
timestamps outside the tolerance window.

Security Note:
    validate_stripe_signature MUST be called before the payload is parsed.
    Nothing in an unverified payload may be trusted or stored.
"""

import stripe


def validate_stripe_signature(
    raw_body: bytes, signature: str, secret: str, tolerance: int = 300
) -> bool:
    """Validate a Stripe-Signature header against the raw request body.

    Args:
        raw_body: Raw request body bytes (NOT parsed JSON). Must be the exact
            bytes received from the request.
        signature: Value of the Stripe-Signature header.
        secret: Endpoint signing secret (whsec_...).
        tolerance: Maximum age of the signed timestamp in seconds.

    Returns:
        True if the signature is valid and fresh, False otherwise.

    Example:
        >>> if not validate_stripe_signature(body, header, secret):
        ...     raise HTTPException(status_code=400, detail="Invalid signature")
    """
    if not signature or not secret:
        return False

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        return False

    try:
        return bool(stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance))
    except stripe.SignatureVerificationError:
        return False
