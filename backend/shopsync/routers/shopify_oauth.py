"""Shopify OAuth install flow.

WHAT:
    - POST /oauth/shopify/install: issue a pending-install state for a
      tenant/shop and return the authorize URL
    - GET /oauth/shopify/callback: validate Shopify's redirect, exchange the
      code, store the encrypted token, activate the shop connection

WHY:
    Activation is the only way a shop becomes routable: webhooks and full
    sync both resolve tenants through the ShopConnection row written here.

REFERENCES:
    - https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
    - shopsync/services/oauth_state.py
"""

import logging
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import Settings, get_oauth_state_store, get_settings, require_internal_token
from shopsync.exceptions import OAuthStateError
from shopsync.models import InstallStateEnum, ShopConnection, Tenant, utcnow
from shopsync.security import encrypt_secret
from shopsync.services.oauth_state import (
    OAuthStateStore,
    normalize_shop_domain,
    validate_callback,
    validate_shop_domain,
)
from shopsync.services.shopify_client import ShopifyAPIError, ShopifyClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth/shopify", tags=["Shopify OAuth"])

DEV_FAKE_TOKEN = "dev_fake_token"


class InstallRequest(BaseModel):
    tenant_id: UUID
    shop: str = Field(description="Shop domain, e.g. 'mystore.myshopify.com'")


class InstallResponse(BaseModel):
    install_url: str
    state: str


class CallbackResponse(BaseModel):
    tenant_id: UUID
    shop_domain: str
    install_state: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/install", response_model=InstallResponse, dependencies=[Depends(require_internal_token)])
async def start_install(
    body: InstallRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    store: OAuthStateStore = Depends(get_oauth_state_store),
):
    """Issue a state and build the Shopify authorize URL."""
    shop_domain = normalize_shop_domain(body.shop)
    if not validate_shop_domain(shop_domain):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid Shopify store domain: {shop_domain}. Expected format: mystore.myshopify.com",
        )

    if db.get(Tenant, body.tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")

    state = await store.issue(str(body.tenant_id), shop_domain)
    params = {
        "client_id": settings.SHOPIFY_API_KEY,
        "scope": settings.SHOPIFY_SCOPES,
        "redirect_uri": settings.SHOPIFY_REDIRECT_URI,
        "state": state,
    }
    install_url = f"https://{shop_domain}/admin/oauth/authorize?{urlencode(params)}"

    logger.info(f"[SHOPIFY_OAUTH] Install started for {shop_domain} (tenant={body.tenant_id})")
    return InstallResponse(install_url=install_url, state=state)


@router.get("/callback", response_model=CallbackResponse)
async def oauth_callback(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    store: OAuthStateStore = Depends(get_oauth_state_store),
):
    """Complete the install started by /install.

    Responses:
        200 connection active
        400 missing params, bad shop, unknown/expired state
        401 bad HMAC
        409 shop already connected to another tenant
        502 token exchange failed
    """
    params = dict(request.query_params)
    try:
        pending = await validate_callback(params, store, settings.SHOPIFY_API_SECRET)
    except OAuthStateError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    tenant_id = UUID(pending.tenant_id)
    shop_domain = pending.shop_domain

    if settings.DEV_FAKE_SHOPIFY:
        logger.warning(f"[SHOPIFY_OAUTH] DEV_FAKE_SHOPIFY set, skipping token exchange for {shop_domain}")
        access_token = DEV_FAKE_TOKEN
    else:
        client = ShopifyClient(shop_domain, access_token="", api_version=settings.SHOPIFY_API_VERSION)
        try:
            access_token = await client.exchange_code_for_token(
                settings.SHOPIFY_API_KEY, settings.SHOPIFY_API_SECRET, params["code"]
            )
        except ShopifyAPIError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    connection = db.query(ShopConnection).filter(ShopConnection.shop_domain == shop_domain).first()
    if connection is not None and connection.tenant_id != tenant_id:
        logger.error(f"[SHOPIFY_OAUTH] {shop_domain} already belongs to tenant {connection.tenant_id}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Shop is connected to another tenant")

    if connection is None:
        connection = ShopConnection(tenant_id=tenant_id, shop_domain=shop_domain)
        db.add(connection)

    connection.access_token_enc = encrypt_secret(access_token, context=f"shopify:{shop_domain}")
    connection.scopes = settings.SHOPIFY_SCOPES
    connection.install_state = InstallStateEnum.active
    connection.updated_at = utcnow()
    db.commit()

    logger.info(f"[SHOPIFY_OAUTH] {shop_domain} active for tenant {tenant_id}")
    return CallbackResponse(
        tenant_id=tenant_id,
        shop_domain=shop_domain,
        install_state=InstallStateEnum.active.value,
    )
