"""Shopify signature verification.

WHAT:
    - Webhook signatures: base64 HMAC-SHA256 of the raw request body
      (X-Shopify-Hmac-Sha256 header)
    - OAuth callback signatures: hex HMAC-SHA256 of the sorted query string

WHY:
    Prevent unauthorized webhook and install callbacks from malicious actors.
    The digest is always computed over the exact bytes received; re-serializing
    the JSON would change whitespace/key order and break valid signatures.

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https#step-5-verify-the-webhook
    - https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
"""

import base64
import hashlib
import hmac
import logging
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


def body_sha256(raw_body: bytes) -> str:
    """Hex sha256 of a raw payload (ledger key material and forensic logging)."""
    return hashlib.sha256(raw_body).hexdigest()


class WebhookVerifier:
    """Validates webhook signatures with the app's shared secret.

    Usage:
        verifier = WebhookVerifier(settings.SHOPIFY_API_SECRET, bypass=settings.WEBHOOK_HMAC_BYPASS)
        if not verifier.verify(body, request.headers.get("X-Shopify-Hmac-Sha256")):
            ...
    """

    def __init__(self, secret: str, bypass: bool = False):
        self.secret = secret or ""
        self.bypass = bypass

    def compute(self, raw_body: bytes) -> str:
        return base64.b64encode(
            hmac.new(self.secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        ).decode("utf-8")

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Return True when `signature` matches the body. Never raises.

        With bypass enabled a missing header is let through with a warning;
        a header that IS present is still checked.
        """
        if not signature:
            if self.bypass:
                logger.warning("[WEBHOOK] Missing HMAC header accepted (WEBHOOK_HMAC_BYPASS enabled)")
                return True
            return False

        if not self.secret:
            logger.error("[WEBHOOK] SHOPIFY_API_SECRET not configured")
            return False

        computed = self.compute(raw_body).encode("utf-8")
        try:
            provided = signature.encode("utf-8")
        except UnicodeEncodeError:
            return False

        if len(computed) != len(provided):
            return False

        # Constant-time comparison to prevent timing attacks
        return hmac.compare_digest(computed, provided)


def verify_oauth_query(params: Mapping[str, str], secret: str) -> bool:
    """Verify the `hmac` parameter Shopify appends to OAuth redirects.

    WHAT: hex HMAC-SHA256 over `k=v` pairs sorted by key, joined with `&`,
          excluding `hmac` and `signature`
    """
    provided = params.get("hmac")
    if not provided or not secret:
        return False

    message = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in ("hmac", "signature")
    )
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest.encode("utf-8"), provided.lower().encode("utf-8"))
