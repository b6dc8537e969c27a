"""
Stripe Checkout gateway

The stripe SDK is synchronous; calls run in a worker thread so the event
loop keeps serving requests while Stripe answers.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Mapping, Optional

import stripe

from showtime.core.config import settings
from showtime.models import Booking
from showtime.services.errors import ExternalLookupError

logger = logging.getLogger(__name__)

BOOKING_METADATA_KEY = "bookingId"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class StripeGateway:
    """Creates checkout sessions and looks them up by payment intent"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        currency: Optional[str] = None,
        frontend_url: Optional[str] = None,
    ):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.currency = currency or settings.STRIPE_CURRENCY
        self.frontend_url = frontend_url or settings.FRONTEND_URL

    async def create_checkout_session(self, booking: Booking, description: str) -> CheckoutSession:
        """Checkout session whose metadata carries the booking id"""
        unit_amount = int((Decimal(booking.amount) * 100).quantize(Decimal("1")))
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                mode="payment",
                success_url=f"{self.frontend_url}/loading/my-bookings",
                cancel_url=f"{self.frontend_url}/my-bookings",
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": description},
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }],
                metadata={BOOKING_METADATA_KEY: booking.id},
                payment_intent_data={"metadata": {BOOKING_METADATA_KEY: booking.id}},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed: {e}", extra={'booking_id': booking.id})
            raise ExternalLookupError(f"Payment gateway error: {e.user_message or e}") from e

        return CheckoutSession(id=session["id"], url=session["url"])

    async def list_sessions_for_payment_intent(self, payment_intent_id: str) -> List[Mapping[str, Any]]:
        """All checkout sessions tied to a payment intent (zero, one or many)"""
        try:
            sessions = await asyncio.to_thread(
                stripe.checkout.Session.list,
                api_key=self.api_key,
                payment_intent=payment_intent_id,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {payment_intent_id}: {e}")
            raise ExternalLookupError(f"Payment gateway error: {e}") from e

        # Plain dicts, so callers can treat sessions as ordinary mappings
        return [json.loads(str(session)) for session in sessions["data"]]
