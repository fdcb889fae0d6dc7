"""Stripe webhook signature verification.

Stripe signs ``"{timestamp}.{raw_body}"`` with HMAC-SHA256 and sends the
result in the ``Stripe-Signature`` header::

    Stripe-Signature: t=1704067200,v1=5257a869e7ecebeda32affa62cdca3fa51cad7e77a0e56ff536d0ce8e108d8bd

Verification works on the exact request bytes. Digests are compared as raw
bytes with ``hmac.compare_digest``; the body is only parsed after the
signature has been accepted.
"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Any

from payhook.models.errors import SignatureVerificationError, VerificationFailure

SIGNATURE_HEADER = "Stripe-Signature"
SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE_SECONDS = 300
DIGEST_SIZE = hashlib.sha256().digest_size


@dataclass(frozen=True)
class ParsedSignatureHeader:
    timestamp: int
    signatures: list[str] = field(default_factory=list)


def parse_signature_header(header: str) -> ParsedSignatureHeader:
    """Split a ``t=...,v1=...`` header into its timestamp and v1 signatures.

    Unknown schemes (e.g. ``v0``) are ignored. Several ``v1`` entries are
    allowed; Stripe sends one per active secret while a secret is rolled.

    Raises:
        SignatureVerificationError: If the header is not well formed.
    """
    timestamp: int | None = None
    signatures: list[str] = []

    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep or not value:
            raise SignatureVerificationError(
                VerificationFailure.MALFORMED_HEADER, "header element is not key=value"
            )
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationError(
                    VerificationFailure.MALFORMED_HEADER, "timestamp is not an integer"
                ) from None
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise SignatureVerificationError(
            VerificationFailure.MALFORMED_HEADER,
            f"header needs t= and {SIGNATURE_SCHEME}= elements",
        )

    return ParsedSignatureHeader(timestamp=timestamp, signatures=signatures)


def compute_signature(secret: str, timestamp: int, payload: bytes) -> bytes:
    """Compute the raw HMAC-SHA256 digest for a timestamp and body."""
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).digest()


def sign_payload(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for ``payload``.

    Used by tests and local tooling to produce deliveries the verifier accepts.
    """
    if timestamp is None:
        timestamp = int(time.time())
    digest = compute_signature(secret, timestamp, payload)
    return f"t={timestamp},{SIGNATURE_SCHEME}={digest.hex()}"


def _decode_hex(signature: str) -> bytes | None:
    try:
        return bytes.fromhex(signature)
    except ValueError:
        return None


def verify_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """Verify a Stripe webhook delivery and return the decoded JSON body.

    Args:
        payload: Raw request body, exactly as received.
        header: Value of the Stripe-Signature header.
        secret: Webhook signing secret (whsec_...).
        tolerance: Maximum allowed |now - t| in seconds.
        now: Injectable current time for testing. Uses time.time() if None.

    Returns:
        The parsed JSON body.

    Raises:
        SignatureVerificationError: With the failure reason. Callers log the
            reason but must not reveal it to the sender.
    """
    parsed = parse_signature_header(header)

    current_time = time.time() if now is None else now
    age = abs(current_time - parsed.timestamp)
    if age > tolerance:
        raise SignatureVerificationError(
            VerificationFailure.TIMESTAMP_OUTSIDE_TOLERANCE,
            f"timestamp is {age:.0f}s from now (max {tolerance}s)",
        )

    expected = compute_signature(secret, parsed.timestamp, payload)

    matched = False
    for candidate in parsed.signatures:
        received = _decode_hex(candidate)
        # Length is fixed by the scheme, so this check reveals nothing about the secret.
        if received is None or len(received) != DIGEST_SIZE:
            continue
        matched |= hmac.compare_digest(expected, received)

    if not matched:
        raise SignatureVerificationError(
            VerificationFailure.SIGNATURE_MISMATCH,
            "no v1 signature matches the expected digest",
        )

    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise SignatureVerificationError(
            VerificationFailure.INVALID_PAYLOAD, f"body is not valid JSON: {e}"
        ) from e

    if not isinstance(event, dict):
        raise SignatureVerificationError(
            VerificationFailure.INVALID_PAYLOAD, "body is not a JSON object"
        )

    return event
