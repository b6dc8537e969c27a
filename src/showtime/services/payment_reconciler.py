"""
Payment reconciliation - turns Stripe webhook events into booking transitions

Stripe delivers events at least once and in any order. Two guards make
replays harmless:
  1. processed event ids are stored in `processed_webhook_events`, so a
     redelivered event returns before any session lookup;
  2. mark_paid is a no-op on a PAID booking, so a checkout.session.completed
     and a payment_intent.succeeded for the same purchase pay it once.
Transient failures (database, Stripe API) are raised so the endpoint
answers 5xx and Stripe retries; the event id is only recorded once an
event has a final outcome.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.core.metrics import webhook_events_total, webhook_signature_failures_total
from showtime.models import ProcessedWebhookEvent
from showtime.services.booking_state_machine import BookingStateMachine
from showtime.services.errors import (
    AuthenticityError,
    BookingNotFoundError,
    InternalFailure,
    InvalidTransitionError,
)
from showtime.services.payment_gateway import BOOKING_METADATA_KEY
from showtime.services.stores import atomic

logger = logging.getLogger(__name__)

PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


def _event_object(event: Mapping[str, Any]) -> Mapping[str, Any]:
    data = event.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    return obj if isinstance(obj, Mapping) else {}


def _booking_id_of(session: Any) -> Tuple[Optional[str], str]:
    """bookingId from a checkout session's metadata, or the reason it is unusable"""
    if not isinstance(session, Mapping):
        return None, "checkout session is not an object"
    metadata = session.get("metadata")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, Mapping):
        return None, "session metadata is not an object"
    booking_id = metadata.get(BOOKING_METADATA_KEY)
    if booking_id is None or booking_id == "":
        return None, f"no {BOOKING_METADATA_KEY} in session metadata"
    if not isinstance(booking_id, str):
        return None, f"{BOOKING_METADATA_KEY} in session metadata is not a string"
    return booking_id, ""


class ReconcileResult(str, Enum):
    APPLIED = "APPLIED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReconcileOutcome:
    result: ReconcileResult
    event_id: Optional[str]
    event_type: Optional[str]
    booking_id: Optional[str] = None
    reason: str = ""


class SessionLookup(Protocol):
    async def list_sessions_for_payment_intent(self, payment_intent_id: str) -> List[Mapping[str, Any]]:
        ...


class PaymentReconciler:
    """Verifies and applies payment gateway events"""

    def __init__(
        self,
        gateway: SessionLookup,
        state_machine: Optional[BookingStateMachine] = None,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self.gateway = gateway
        self.state_machine = state_machine or BookingStateMachine()
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature_header: Optional[str], secret: str) -> Dict[str, Any]:
        """Check the signature over the raw body before anything is parsed"""
        if not secret:
            raise InternalFailure("Webhook secret not configured")
        if not signature_header:
            webhook_signature_failures_total.inc()
            logger.warning("Webhook rejected: missing Stripe-Signature header")
            raise AuthenticityError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(body, signature_header, secret, self.tolerance)
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            webhook_signature_failures_total.inc()
            logger.warning(f"Webhook signature verification failed: {e}")
            raise AuthenticityError(str(e)) from e
        except ValueError as e:
            logger.warning(f"Webhook payload is not valid JSON: {e}")
            raise AuthenticityError(f"Invalid payload: {e}") from e

        if not isinstance(event, dict):
            raise AuthenticityError("Invalid payload: expected a JSON object")
        return event

    async def apply(self, db: AsyncSession, event: Mapping[str, Any]) -> ReconcileOutcome:
        """Apply one verified event; safe to call again with the same event"""
        event_id = event.get("id")
        event_type = event.get("type")

        if not (isinstance(event_id, str) and event_id and isinstance(event_type, str) and event_type):
            outcome = ReconcileOutcome(
                ReconcileResult.FAILED,
                event_id if isinstance(event_id, str) else None,
                event_type if isinstance(event_type, str) else None,
                reason="event id or type missing",
            )
            self._report(outcome)
            return outcome

        if await self._already_processed(db, event_id):
            webhook_events_total.labels(event_type=event_type, outcome="DUPLICATE").inc()
            logger.info(f"Event {event_id} already processed, skipping", extra={'event_id': event_id})
            return ReconcileOutcome(ReconcileResult.IGNORED, event_id, event_type, reason="duplicate delivery")

        if event_type == PAYMENT_INTENT_SUCCEEDED:
            outcome = await self._on_payment_intent_succeeded(db, event)
        elif event_type == CHECKOUT_SESSION_COMPLETED:
            outcome = await self._on_checkout_session_completed(db, event)
        else:
            outcome = ReconcileOutcome(ReconcileResult.IGNORED, event_id, event_type, reason="unhandled event type")

        self._report(outcome)
        await self._record(db, outcome)
        return outcome

    async def apply_all(self, db: AsyncSession, events: Iterable[Mapping[str, Any]]) -> List[ReconcileOutcome]:
        """Apply events in order; one broken event never stops the rest"""
        outcomes = []
        for event in events:
            try:
                outcomes.append(await self.apply(db, event))
            except Exception as e:
                await db.rollback()
                logger.exception(f"Event {event.get('id')} could not be applied")
                outcomes.append(ReconcileOutcome(
                    ReconcileResult.FAILED, event.get("id"), event.get("type"), reason=str(e),
                ))
        return outcomes

    async def _on_payment_intent_succeeded(self, db: AsyncSession, event: Mapping[str, Any]) -> ReconcileOutcome:
        intent = _event_object(event)
        intent_id = intent.get("id")
        if not intent_id or not isinstance(intent_id, str):
            return self._failed(event, reason="payment intent id missing")

        sessions = await self.gateway.list_sessions_for_payment_intent(intent_id)
        if not sessions:
            return self._failed(event, reason=f"no checkout session for payment intent {intent_id}")

        # First session that pays a booking wins; later ones are not applied
        failure = None
        problem = f"no {BOOKING_METADATA_KEY} in session metadata"
        for session in sessions:
            booking_id, reason = _booking_id_of(session)
            if booking_id is None:
                logger.warning(f"Skipping checkout session for payment intent {intent_id}: {reason}")
                problem = reason
                continue
            outcome = await self._mark_paid(db, event, booking_id)
            if outcome.result is ReconcileResult.APPLIED:
                return outcome
            failure = outcome

        return failure or self._failed(event, reason=problem)

    async def _on_checkout_session_completed(self, db: AsyncSession, event: Mapping[str, Any]) -> ReconcileOutcome:
        data = event.get("data")
        if not isinstance(data, Mapping) or not isinstance(data.get("object"), Mapping):
            return self._failed(event, reason="event data.object is not an object")
        booking_id, reason = _booking_id_of(data["object"])
        if booking_id is None:
            return self._failed(event, reason=reason)
        return await self._mark_paid(db, event, booking_id)

    async def _mark_paid(self, db: AsyncSession, event: Mapping[str, Any], booking_id: str) -> ReconcileOutcome:
        try:
            await self.state_machine.mark_paid(db, booking_id)
        except BookingNotFoundError as e:
            return self._failed(event, booking_id, str(e))
        except InvalidTransitionError as e:
            # e.g. payment landed after the reservation expired; needs a refund decision
            return self._failed(event, booking_id, str(e))
        return ReconcileOutcome(ReconcileResult.APPLIED, event["id"], event["type"], booking_id)

    @staticmethod
    def _failed(event: Mapping[str, Any], booking_id: Optional[str] = None, reason: str = "") -> ReconcileOutcome:
        return ReconcileOutcome(ReconcileResult.FAILED, event.get("id"), event.get("type"), booking_id, reason)

    @staticmethod
    def _report(outcome: ReconcileOutcome):
        webhook_events_total.labels(event_type=outcome.event_type or "unknown", outcome=outcome.result.value).inc()
        extra = {'event_id': outcome.event_id, 'event_type': outcome.event_type, 'booking_id': outcome.booking_id}
        if outcome.result is ReconcileResult.FAILED:
            logger.error(f"Webhook event failed: {outcome.reason}", extra=extra)
        elif outcome.result is ReconcileResult.IGNORED:
            logger.info(f"Webhook event ignored: {outcome.reason}", extra=extra)
        else:
            logger.info(f"Booking {outcome.booking_id} marked paid", extra=extra)

    @staticmethod
    async def _already_processed(db: AsyncSession, event_id: str) -> bool:
        result = await db.execute(
            select(ProcessedWebhookEvent.event_id).where(ProcessedWebhookEvent.event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def _record(db: AsyncSession, outcome: ReconcileOutcome):
        try:
            async with atomic(db):
                db.add(ProcessedWebhookEvent(
                    event_id=outcome.event_id,
                    event_type=outcome.event_type,
                    outcome=outcome.result.value,
                    detail=outcome.reason or None,
                ))
        except IntegrityError:
            # Same event delivered twice in parallel; the other delivery logged it
            logger.info(f"Event {outcome.event_id} recorded concurrently", extra={'event_id': outcome.event_id})
