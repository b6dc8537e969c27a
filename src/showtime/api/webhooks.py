"""
Stripe webhook endpoint

Receives the raw request body; the signature is computed over the exact
bytes Stripe sent, so the body must not be parsed before verification.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.core.database import get_db
from showtime.core.dependencies import get_reconciler, get_webhook_secret
from showtime.services.errors import AuthenticityError
from showtime.services.payment_reconciler import PaymentReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    webhook_secret: str = Depends(get_webhook_secret),
):
    """
    - 400 when the signature does not verify (Stripe stops retrying)
    - 500 on transient failures while applying (Stripe retries)
    - 200 once the event has a final outcome, including ignored and failed ones
    """
    payload = await request.body()

    try:
        event = reconciler.verify(payload, stripe_signature, webhook_secret)
    except AuthenticityError as e:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")
    except Exception as e:
        logger.error(f"Webhook verification error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")

    try:
        outcome = await reconciler.apply(db, event)
    except Exception:
        logger.exception(f"Webhook processing error for event {event.get('id')}")
        raise HTTPException(status_code=500, detail="Internal Server Error")

    return {
        "received": True,
        "outcome": outcome.result.value,
        "booking_id": outcome.booking_id,
        "reason": outcome.reason or None,
    }
