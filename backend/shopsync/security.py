"""Symmetric encryption for Shopify access tokens.

WHAT:
    Fernet wrapper used whenever a shop's Admin API token is written to or
    read from `shop_connections.access_token_enc`.

WHY:
    Keeps storefront credentials out of plaintext storage and logs.

REFERENCES:
    - shopsync/routers/shopify_oauth.py (encrypts after token exchange)
    - shopsync/services/sync_orchestrator.py (decrypts before fetching)
"""

import base64
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

from shopsync.utils.env import load_env_file, require_env


logger = logging.getLogger(__name__)


if not os.getenv("TOKEN_ENCRYPTION_KEY"):
    # Attempt to load from local .env if running in dev
    load_env_file()

TOKEN_ENCRYPTION_KEY = require_env("TOKEN_ENCRYPTION_KEY")

try:
    # Validate key length by decoding without storing plaintext material.
    base64.urlsafe_b64decode(TOKEN_ENCRYPTION_KEY.encode("utf-8"))
    _cipher = Fernet(TOKEN_ENCRYPTION_KEY)
except (ValueError, TypeError) as exc:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
        "Generate with: python generate_keys.py"
    ) from exc


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a shop credential before persisting.

    Args:
        plaintext: Raw secret to encrypt (Shopify Admin API access token).
        context:   Friendly label for logs (shop domain).

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.info("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Decrypt a shop credential for API calls.

    Raises:
        ValueError: If the stored value cannot be decrypted.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        logger.debug("[TOKEN_DECRYPT] Secret decrypted for %s", context)
        return plaintext
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored token.") from exc
