"""Webhook endpoints for external services."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from petprint.api.deps import get_webhook_processor
from petprint.logging_config import get_logger
from petprint.payments.stripe_service import WebhookProcessor, verify_webhook_signature
from petprint.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, processor: WebhookProcessor = Depends(get_webhook_processor)):
    """Handle Stripe webhook events.

    Verifies the signature, completes the paid order and records its
    commission or credit. Duplicate deliveries are acknowledged without
    side effects.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.warning("stripe_webhook_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    # Blocking database work runs off the event loop
    return await run_in_threadpool(processor.handle_event, event)
