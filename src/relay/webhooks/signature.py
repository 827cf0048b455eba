"""HMAC-SHA256 signing and verification of webhook payloads.

The signature is the hex digest of HMAC-SHA256 over the canonical JSON
encoding of the payload, keyed with the webhook's secret. The same
canonical bytes are used as the HTTP body, so subscribers can verify
against the raw request body.

Example:
    ```python
    signer = SignatureService()
    signature = signer.sign({"event": "invoice.paid"}, webhook.secret)
    assert signer.verify({"event": "invoice.paid"}, signature, webhook.secret)
    ```
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from collections.abc import Iterable
from typing import Any

from relay.exceptions import ConfigurationError

SECRET_BYTES = 32

Payload = dict[str, Any] | str | bytes


def generate_secret() -> str:
    """Generate a 256-bit signing secret, hex-encoded."""
    return secrets.token_hex(SECRET_BYTES)


def canonical_json(payload: Payload) -> bytes:
    """Encode a payload to the exact bytes that are sent and signed.

    Dicts are serialised with sorted keys and no insignificant whitespace.
    Strings and bytes are taken as an already-encoded body.
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_signature(payload: Payload, secret: str) -> str:
    """Compute the hex HMAC-SHA256 signature of a payload.

    Raises:
        ConfigurationError: If the secret is missing or empty.
    """
    if not secret or not isinstance(secret, str):
        raise ConfigurationError("Webhook secret is missing; cannot sign payload")
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=canonical_json(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(payload: Payload, signature: str, secret: str) -> bool:
    """Check a signature in constant time.

    Never raises: a malformed signature, a payload that cannot be encoded
    or a missing secret all yield False.
    """
    try:
        expected = compute_signature(payload, secret)
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))
    except Exception:
        return False


class SignatureService:
    """Signs outbound payloads and verifies received signatures."""

    def sign(self, payload: Payload, secret: str) -> str:
        return compute_signature(payload, secret)

    def verify(self, payload: Payload, signature: str, secret: str) -> bool:
        return verify_signature(payload, signature, secret)

    def verify_any(self, payload: Payload, signature: str, secrets: Iterable[str]) -> bool:
        """Verify against several candidate secrets (rotation grace window).

        Every candidate is checked so the time taken does not reveal which
        secret matched.
        """
        matched = False
        for secret in secrets:
            matched |= self.verify(payload, signature, secret)
        return matched


__all__ = [
    "SECRET_BYTES",
    "SignatureService",
    "canonical_json",
    "compute_signature",
    "generate_secret",
    "verify_signature",
]
