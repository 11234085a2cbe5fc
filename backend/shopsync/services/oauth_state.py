"""OAuth install state: issue, expire, consume.

WHAT:
    - OAuthStateStore: capability interface injected into the OAuth router
    - InMemoryOAuthStateStore: single-process store with per-entry TTL
    - RedisOAuthStateStore: shared store for multi-instance deployments
    - validate_callback(): full state + HMAC check of Shopify's redirect

WHY:
    The install redirect and the callback can land on different API
    instances, so pending state cannot live in a module-global dict. Each
    state is single-use, bound to one shop and one tenant, and expires after
    OAUTH_STATE_TTL_SECONDS (10 minutes by default).

REFERENCES:
    - https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
    - shopsync/routers/shopify_oauth.py
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from redis.asyncio import Redis

from shopsync.exceptions import OAuthStateError
from shopsync.services.hmac_verifier import verify_oauth_query

logger = logging.getLogger(__name__)

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]{1,98}[a-z0-9]\.myshopify\.com$")


def normalize_shop_domain(shop: str) -> str:
    """Lowercase and strip scheme/path: "https://MyStore.myshopify.com/" -> "mystore.myshopify.com"."""
    shop = (shop or "").strip().lower()
    shop = shop.replace("https://", "").replace("http://", "")
    return shop.split("/")[0]


def validate_shop_domain(shop: str) -> bool:
    """Only *.myshopify.com hosts are valid install targets."""
    return bool(SHOP_DOMAIN_PATTERN.match(shop))


def generate_state() -> str:
    return secrets.token_hex(16)


@dataclass
class PendingInstall:
    tenant_id: str
    shop_domain: str


# =============================================================================
# STORES
# =============================================================================

class OAuthStateStore(ABC):
    """Pending-install store. Implementations enforce expiry and single use."""

    @abstractmethod
    async def issue(self, tenant_id: str, shop_domain: str) -> str:
        """Create and remember a new state for this tenant/shop."""

    @abstractmethod
    async def consume(self, state: str, shop_domain: str) -> Optional[PendingInstall]:
        """Pop the state. None when unknown, expired, or issued for another shop."""


class InMemoryOAuthStateStore(OAuthStateStore):
    """Process-local store. Expired entries are pruned on every access."""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[PendingInstall, float]] = {}

    def __len__(self) -> int:
        self._prune()
        return len(self._entries)

    async def issue(self, tenant_id: str, shop_domain: str) -> str:
        self._prune()
        state = generate_state()
        self._entries[state] = (PendingInstall(str(tenant_id), shop_domain), self._clock())
        return state

    async def consume(self, state: str, shop_domain: str) -> Optional[PendingInstall]:
        self._prune()
        entry = self._entries.pop(state, None)
        if entry is None:
            return None
        pending = entry[0]
        if pending.shop_domain.lower() != shop_domain.lower():
            return None
        return pending

    def _prune(self) -> None:
        now = self._clock()
        expired = [key for key, (_, created) in self._entries.items() if now - created > self.ttl_seconds]
        for key in expired:
            del self._entries[key]


class RedisOAuthStateStore(OAuthStateStore):
    """Redis-backed store; TTL via SET EX, single use via GETDEL."""

    KEY_PREFIX = "shopsync:oauth_state:"

    def __init__(self, redis: Redis, ttl_seconds: int = 600):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def issue(self, tenant_id: str, shop_domain: str) -> str:
        state = generate_state()
        value = json.dumps({"tenant_id": str(tenant_id), "shop_domain": shop_domain})
        await self.redis.set(self.KEY_PREFIX + state, value, ex=self.ttl_seconds)
        return state

    async def consume(self, state: str, shop_domain: str) -> Optional[PendingInstall]:
        raw = await self.redis.getdel(self.KEY_PREFIX + state)
        if raw is None:
            return None
        data = json.loads(raw)
        if str(data.get("shop_domain", "")).lower() != shop_domain.lower():
            return None
        return PendingInstall(tenant_id=data["tenant_id"], shop_domain=data["shop_domain"])


# =============================================================================
# CALLBACK VALIDATION
# =============================================================================

async def validate_callback(
    params: Mapping[str, str],
    store: OAuthStateStore,
    secret: str,
) -> PendingInstall:
    """Validate Shopify's OAuth redirect and consume its state.

    Order matters: the HMAC is checked before the state is consumed, so a
    forged callback cannot burn a legitimate pending install.

    Raises:
        OAuthStateError: 400 for missing params / bad shop / bad state,
                         401 for a bad HMAC
    """
    missing = [name for name in ("code", "hmac", "state", "shop") if not params.get(name)]
    if missing:
        raise OAuthStateError(f"Missing parameters: {', '.join(missing)}")

    shop_domain = normalize_shop_domain(params["shop"])
    if not validate_shop_domain(shop_domain):
        raise OAuthStateError("Invalid shop domain")

    if not verify_oauth_query(params, secret):
        logger.warning("[OAUTH] Bad callback HMAC for %s", shop_domain)
        raise OAuthStateError("Bad HMAC", status_code=401)

    pending = await store.consume(params["state"], shop_domain)
    if pending is None:
        logger.warning("[OAUTH] Invalid or expired state for %s", shop_domain)
        raise OAuthStateError("Invalid or expired state")

    return pending
