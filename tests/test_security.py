"""Unit tests for webhook signature handling."""

import hashlib
import hmac

import pytest

from services.task_tracker.security import sign_payload, verify_signature

SECRET = "it's-a-secret"
BODY = b'{"ref":"refs/heads/web","commits":[]}'


class TestSignPayload:
    """Test cases for sign_payload."""

    def test_matches_github_format(self):
        expected = "sha256=" + hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert sign_payload(BODY, SECRET) == expected

    def test_accepts_str_body(self):
        assert sign_payload(BODY.decode(), SECRET) == sign_payload(BODY, SECRET)


class TestVerifySignature:
    """Test cases for verify_signature."""

    def test_valid_signature(self):
        assert verify_signature(BODY, sign_payload(BODY, SECRET), SECRET) is True

    def test_wrong_secret(self):
        assert verify_signature(BODY, sign_payload(BODY, "other"), SECRET) is False

    def test_body_must_be_byte_identical(self):
        reserialized = b'{"ref": "refs/heads/web", "commits": []}'
        assert verify_signature(reserialized, sign_payload(BODY, SECRET), SECRET) is False

    @pytest.mark.parametrize("signature", [None, "", "sha256=", "deadbeef", "sha1=abc"])
    def test_missing_or_malformed_signature(self, signature):
        assert verify_signature(BODY, signature, SECRET) is False

    def test_digest_without_prefix_is_rejected(self):
        digest = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert verify_signature(BODY, digest, SECRET) is False

    @pytest.mark.parametrize("secret", [None, ""])
    def test_fails_closed_without_secret(self, secret):
        # An unsigned-looking header must not pass when no secret is configured
        assert verify_signature(BODY, sign_payload(BODY, "x"), secret) is False
        assert verify_signature(BODY, "sha256=", secret) is False

    def test_non_ascii_signature_is_rejected(self):
        assert verify_signature(BODY, "sha256=é", SECRET) is False
