import json
import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from jobbyai.core.logging_config import sanitize_log_data
from jobbyai.db.session import get_db
from jobbyai.services import billing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    logger.debug(f"Stripe webhook received: {sanitize_log_data(dict(request.headers))}")

    try:
        billing_service.construct_webhook_event(payload, stripe_signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook verification failed"
        )

    # Signature verified; handle the raw JSON so handlers work with plain dicts
    event = json.loads(payload)

    try:
        subscription = billing_service.handle_event(db, event)
    except ValueError as e:
        logger.error(f"Webhook event {event.get('id')} could not be applied: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "status": "success",
        "handled": subscription is not None,
    }
