"""Tests for payload signing and verification."""

import hashlib
import hmac
import json

import pytest

from relay.exceptions import ConfigurationError
from relay.webhooks.signature import (
    SignatureService,
    canonical_json,
    compute_signature,
    generate_secret,
    verify_signature,
)

PAYLOAD = {
    "event": "invoice.paid",
    "timestamp": "2024-01-15T12:00:00Z",
    "data": {"invoiceId": "X", "amount": 1999},
    "tenantId": "tnt_1",
}
SECRET = "5f" * 32


class TestGenerateSecret:
    """Tests for secret generation."""

    def test_secret_is_256_bit_hex(self):
        secret = generate_secret()
        assert len(secret) == 64
        int(secret, 16)

    def test_secrets_are_unique(self):
        assert len({generate_secret() for _ in range(50)}) == 50


class TestCanonicalJson:
    """Tests for the canonical encoding."""

    def test_sorted_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_key_order_irrelevant(self):
        reordered = dict(reversed(list(PAYLOAD.items())))
        assert canonical_json(reordered) == canonical_json(PAYLOAD)

    def test_non_ascii_kept_as_utf8(self):
        assert canonical_json({"name": "Zoë"}) == '{"name":"Zoë"}'.encode()

    def test_bytes_and_str_passthrough(self):
        assert canonical_json(b"raw") == b"raw"
        assert canonical_json("raw") == b"raw"

    def test_round_trips_as_json(self):
        assert json.loads(canonical_json(PAYLOAD)) == PAYLOAD


class TestComputeSignature:
    """Tests for signature computation."""

    def test_matches_plain_hmac_sha256(self):
        expected = hmac.new(SECRET.encode(), canonical_json(PAYLOAD), hashlib.sha256).hexdigest()
        assert compute_signature(PAYLOAD, SECRET) == expected

    def test_hex_without_prefix(self):
        signature = compute_signature(PAYLOAD, SECRET)
        assert len(signature) == 64
        assert not signature.startswith("sha256=")

    def test_dict_and_body_bytes_agree(self):
        """Signing the dict equals signing the bytes sent on the wire."""
        assert compute_signature(PAYLOAD, SECRET) == compute_signature(
            canonical_json(PAYLOAD), SECRET
        )

    @pytest.mark.parametrize("secret", ["", None])
    def test_missing_secret_is_configuration_error(self, secret):
        with pytest.raises(ConfigurationError):
            compute_signature(PAYLOAD, secret)


class TestVerifySignature:
    """Tests for constant-time verification."""

    def test_valid_signature(self):
        assert verify_signature(PAYLOAD, compute_signature(PAYLOAD, SECRET), SECRET)

    def test_tampered_payload(self):
        signature = compute_signature(PAYLOAD, SECRET)
        tampered = {**PAYLOAD, "data": {"invoiceId": "Y", "amount": 1999}}
        assert not verify_signature(tampered, signature, SECRET)

    def test_wrong_secret(self):
        signature = compute_signature(PAYLOAD, SECRET)
        assert not verify_signature(PAYLOAD, signature, generate_secret())

    @pytest.mark.parametrize(
        "signature",
        ["", "abc", "z" * 64, "é" * 64, None, 12345],
    )
    def test_malformed_signature_never_raises(self, signature):
        assert verify_signature(PAYLOAD, signature, SECRET) is False

    def test_missing_secret_never_raises(self):
        assert verify_signature(PAYLOAD, "ab" * 32, "") is False


class TestSignatureService:
    """Tests for the service wrapper."""

    def test_sign_and_verify(self):
        signer = SignatureService()
        assert signer.verify(PAYLOAD, signer.sign(PAYLOAD, SECRET), SECRET)

    def test_verify_any_accepts_any_candidate(self):
        signer = SignatureService()
        old = generate_secret()
        signature = signer.sign(PAYLOAD, old)
        assert signer.verify_any(PAYLOAD, signature, [SECRET, old])
        assert not signer.verify_any(PAYLOAD, signature, [SECRET])

    def test_verify_any_with_no_candidates(self):
        assert not SignatureService().verify_any(PAYLOAD, "ab" * 32, [])
