"""Unit tests for webhook and OAuth signature verification."""

import base64
import hashlib
import hmac

from shopsync.services.hmac_verifier import WebhookVerifier, body_sha256, verify_oauth_query

SECRET = "hush"
BODY = b'{"id":820982911946154508,"email":"jon@example.com"}'


def _sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def test_valid_signature_accepted():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, _sign(BODY)) is True


def test_compute_matches_reference_digest():
    assert WebhookVerifier(SECRET).compute(BODY) == _sign(BODY)


def test_wrong_secret_rejected():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, _sign(BODY, secret="other")) is False


def test_modified_body_rejected():
    """A single changed byte invalidates the signature."""
    verifier = WebhookVerifier(SECRET)
    signature = _sign(BODY)
    tampered = BODY.replace(b"jon", b"jan")
    assert verifier.verify(tampered, signature) is False


def test_reserialized_json_rejected():
    """Signatures cover raw bytes; whitespace changes break them."""
    verifier = WebhookVerifier(SECRET)
    spaced = b'{"id": 820982911946154508, "email": "jon@example.com"}'
    assert verifier.verify(spaced, _sign(BODY)) is False


def test_missing_signature_rejected():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, None) is False
    assert verifier.verify(BODY, "") is False


def test_length_mismatch_rejected_without_error():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, "abc") is False


def test_non_ascii_signature_rejected_without_error():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, "é" * 44) is False


def test_unconfigured_secret_rejects_everything():
    verifier = WebhookVerifier("")
    assert verifier.verify(BODY, _sign(BODY, secret="")) is False


def test_bypass_allows_missing_header_only():
    verifier = WebhookVerifier(SECRET, bypass=True)
    assert verifier.verify(BODY, None) is True
    # A present but wrong header is still rejected
    assert verifier.verify(BODY, _sign(BODY, secret="other")) is False
    assert verifier.verify(BODY, _sign(BODY)) is True


def test_body_sha256_is_hex_digest():
    assert body_sha256(b"") == hashlib.sha256(b"").hexdigest()
    assert len(body_sha256(BODY)) == 64


# ============================================================================
# OAuth query signatures
# ============================================================================

def _oauth_params(secret: str = SECRET, **overrides):
    params = {
        "code": "0907a61c0c8d55e99db179b68161bc00",
        "shop": "some-shop.myshopify.com",
        "state": "0.6784241404160823",
        "timestamp": "1337178173",
    }
    params.update(overrides)
    message = "&".join(f"{k}={params[k]}" for k in sorted(params))
    params["hmac"] = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return params


def test_oauth_query_valid():
    assert verify_oauth_query(_oauth_params(), SECRET) is True


def test_oauth_query_ignores_signature_param():
    params = _oauth_params()
    params["signature"] = "legacy"
    assert verify_oauth_query(params, SECRET) is True


def test_oauth_query_tampered_param_rejected():
    params = _oauth_params()
    params["shop"] = "evil.myshopify.com"
    assert verify_oauth_query(params, SECRET) is False


def test_oauth_query_missing_hmac_or_secret_rejected():
    params = _oauth_params()
    assert verify_oauth_query(params, "") is False
    params.pop("hmac")
    assert verify_oauth_query(params, SECRET) is False
