"""
Subscription Webhook Router

Receives commerce platform subscription events:
- signature verification over the raw body (HMAC-SHA256, base64)
- topic dispatch to lifecycle handlers
- 200 on handled or ignored, 401 on bad signature, 400 on malformed body, 500 on handler failure
"""
import logging

from fastapi import APIRouter, Depends, Request

from core.config import Settings
from core.factory import LifecycleServices
from core.responses import AuthenticationException, success_response
from core.signature import verify_signature
from routers.dependencies import get_services, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks", "subscription"])


@router.get("/subscription")
async def subscription_webhook_get():
    return success_response(data={"ok": True}, message="subscription webhook alive")


@router.post("/subscription")
async def subscription_webhook(
    request: Request,
    config: Settings = Depends(get_settings),
    services: LifecycleServices = Depends(get_services),
):
    raw = await request.body()
    signature = request.headers.get(config.WEBHOOK_SIGNATURE_HEADER)
    logger.info(
        "[WEBHOOK] received: len=%s, has_signature=%s",
        len(raw),
        bool(signature),
    )

    # Verification must run on the untouched body, before any parsing.
    if not verify_signature(raw, signature, config.SHOPIFY_WEBHOOK_SECRET):
        logger.error(
            "[WEBHOOK] invalid signature: has_signature=%s, has_secret=%s, len=%s",
            bool(signature),
            bool(config.SHOPIFY_WEBHOOK_SECRET),
            len(raw),
        )
        raise AuthenticationException("Invalid webhook signature", error_code="INVALID_SIGNATURE")

    return await services.processor.process(raw)
