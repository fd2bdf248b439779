"""Tests for webhook HMAC signing and verification."""

import pytest

from mentor_meter.common.exceptions import WebhookAuthError
from mentor_meter.webhooks.signing import (
    build_signature_header,
    compute_signature,
    parse_signature_header,
    verify_signature,
)

SECRET = "whsec-test"
BODY = b'{"conversation_id":"c1","event_type":"system.shutdown"}'
NOW = 1_760_000_000


class TestSignatureHeader:
    def test_header_format(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        parts = parse_signature_header(header)
        assert parts["t"] == str(NOW)
        assert parts["n"] == "abc"
        assert parts["v1"] == compute_signature(BODY, SECRET, NOW, "abc")

    def test_random_nonce_per_header(self):
        first = parse_signature_header(build_signature_header(BODY, SECRET))
        second = parse_signature_header(build_signature_header(BODY, SECRET))
        assert first["n"] != second["n"]

    def test_parse_tolerates_spaces(self):
        assert parse_signature_header("t=1, n=x , v1=y") == {"t": "1", "n": "x", "v1": "y"}


class TestVerifySignature:
    def test_valid(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        verified = verify_signature(BODY, header, SECRET, 300, now=NOW + 10)
        assert verified.nonce == "abc"
        assert int(verified.signed_at.timestamp()) == NOW

    def test_missing_header(self):
        with pytest.raises(WebhookAuthError, match="Missing"):
            verify_signature(BODY, "", SECRET, 300, now=NOW)

    @pytest.mark.parametrize("header", ["garbage", "t=1,v1=abc", "t=abc,n=x,v1=y"])
    def test_malformed_header(self, header):
        with pytest.raises(WebhookAuthError, match="Malformed"):
            verify_signature(BODY, header, SECRET, 300, now=NOW)

    def test_tampered_body(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        with pytest.raises(WebhookAuthError, match="Invalid"):
            verify_signature(BODY + b" ", header, SECRET, 300, now=NOW)

    def test_wrong_secret(self):
        header = build_signature_header(BODY, "other", timestamp=NOW, nonce="abc")
        with pytest.raises(WebhookAuthError, match="Invalid"):
            verify_signature(BODY, header, SECRET, 300, now=NOW)

    def test_nonce_is_signed(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        forged = header.replace("n=abc", "n=xyz")
        with pytest.raises(WebhookAuthError):
            verify_signature(BODY, forged, SECRET, 300, now=NOW)

    @pytest.mark.parametrize("skew", [301, -301])
    def test_outside_tolerance(self, skew):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        with pytest.raises(WebhookAuthError, match="tolerance"):
            verify_signature(BODY, header, SECRET, 300, now=NOW + skew)

    def test_tolerance_boundary_accepted(self):
        header = build_signature_header(BODY, SECRET, timestamp=NOW, nonce="abc")
        verify_signature(BODY, header, SECRET, 300, now=NOW + 300)

    def test_auth_error_is_401(self):
        with pytest.raises(WebhookAuthError) as exc_info:
            verify_signature(BODY, "", SECRET, 300)
        assert exc_info.value.status_code == 401
