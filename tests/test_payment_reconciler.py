"""
Payment reconciliation tests: signature checks, redelivery, ordering
"""
import json

import pytest
from sqlalchemy import select

from showtime.models import BookingStatus, ProcessedWebhookEvent
from showtime.services.errors import AuthenticityError, ExternalLookupError, InternalFailure
from showtime.services.payment_reconciler import PaymentReconciler, ReconcileResult
from tests.conftest import (
    WEBHOOK_SECRET,
    intent_succeeded_event,
    read_booking,
    read_show,
    session_completed_event,
    sign_payload,
)


@pytest.fixture
def reconciler(gateway, state_machine):
    return PaymentReconciler(gateway, state_machine)


@pytest.fixture
def booking_factory(db, state_machine, show):
    async def _create(seats=("A1", "A2"), user_id="user-1"):
        booking = await state_machine.create(db, user_id, show.id, list(seats))
        return await state_machine.initiate_payment(db, booking.id, "cs_test_1")
    return _create


# ============================================================================
# verify
# ============================================================================

def test_verify_accepts_a_valid_signature(reconciler):
    payload = json.dumps(session_completed_event("evt_1", "booking-1")).encode()

    event = reconciler.verify(payload, sign_payload(payload), WEBHOOK_SECRET)

    assert event["id"] == "evt_1"
    assert event["data"]["object"]["metadata"] == {"bookingId": "booking-1"}


def test_verify_rejects_a_tampered_payload(reconciler):
    payload = json.dumps(session_completed_event("evt_1", "booking-1")).encode()
    header = sign_payload(payload)
    tampered = payload.replace(b"booking-1", b"booking-2")

    with pytest.raises(AuthenticityError):
        reconciler.verify(tampered, header, WEBHOOK_SECRET)


def test_verify_rejects_the_wrong_secret(reconciler):
    payload = json.dumps(session_completed_event("evt_1", "booking-1")).encode()
    with pytest.raises(AuthenticityError):
        reconciler.verify(payload, sign_payload(payload, secret="whsec_other"), WEBHOOK_SECRET)


def test_verify_rejects_a_stale_timestamp(reconciler):
    payload = json.dumps(session_completed_event("evt_1", "booking-1")).encode()
    with pytest.raises(AuthenticityError):
        reconciler.verify(payload, sign_payload(payload, timestamp=1_000_000), WEBHOOK_SECRET)


def test_verify_requires_header_and_secret(reconciler):
    payload = b"{}"
    with pytest.raises(AuthenticityError):
        reconciler.verify(payload, None, WEBHOOK_SECRET)
    with pytest.raises(InternalFailure):
        reconciler.verify(payload, sign_payload(payload), "")


# ============================================================================
# apply
# ============================================================================

@pytest.mark.asyncio
async def test_session_completed_marks_booking_paid(db, session_factory, reconciler, booking_factory, show):
    booking = await booking_factory()

    outcome = await reconciler.apply(db, session_completed_event("evt_1", booking.id))

    assert outcome.result is ReconcileResult.APPLIED
    assert outcome.booking_id == booking.id
    assert (await read_booking(session_factory, booking.id)).status == BookingStatus.PAID
    assert (await read_show(session_factory, show.id)).occupancy == {"A1": "SOLD", "A2": "SOLD"}


@pytest.mark.asyncio
async def test_replayed_event_applies_once(db, session_factory, reconciler, booking_factory, show):
    booking = await booking_factory()
    event = session_completed_event("evt_1", booking.id)

    first = await reconciler.apply(db, event)
    version_after_sale = (await read_show(session_factory, show.id)).version
    replays = [await reconciler.apply(db, event) for _ in range(3)]

    assert first.result is ReconcileResult.APPLIED
    assert all(r.result is ReconcileResult.IGNORED for r in replays)
    assert all(r.reason == "duplicate delivery" for r in replays)
    assert (await read_show(session_factory, show.id)).version == version_after_sale


@pytest.mark.asyncio
async def test_redelivery_skips_gateway_lookup(db, reconciler, gateway, booking_factory):
    booking = await booking_factory()
    gateway.sessions["pi_1"] = [{"id": "cs_test_1", "metadata": {"bookingId": booking.id}}]
    event = intent_succeeded_event("evt_pi", "pi_1")

    await reconciler.apply(db, event)
    await reconciler.apply(db, event)

    assert gateway.lookups == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("session_first", [True, False])
async def test_both_event_kinds_pay_once(
    db, session_factory, reconciler, gateway, booking_factory, show, session_first,
):
    booking = await booking_factory()
    gateway.sessions["pi_1"] = [{"id": "cs_test_1", "metadata": {"bookingId": booking.id}}]
    events = [session_completed_event("evt_cs", booking.id), intent_succeeded_event("evt_pi", "pi_1")]
    if not session_first:
        events.reverse()

    first = await reconciler.apply(db, events[0])
    version_after_sale = (await read_show(session_factory, show.id)).version
    second = await reconciler.apply(db, events[1])

    assert first.result is ReconcileResult.APPLIED
    assert second.result is ReconcileResult.APPLIED
    assert (await read_booking(session_factory, booking.id)).status == BookingStatus.PAID
    stored = await read_show(session_factory, show.id)
    assert stored.version == version_after_sale
    assert stored.occupancy == {"A1": "SOLD", "A2": "SOLD"}


@pytest.mark.asyncio
async def test_first_matching_session_wins(db, session_factory, reconciler, gateway, booking_factory):
    booking = await booking_factory()
    gateway.sessions["pi_1"] = [
        {"id": "cs_a", "metadata": {}},
        {"id": "cs_b", "metadata": {"bookingId": "no-such-booking"}},
        {"id": "cs_c", "metadata": {"bookingId": booking.id}},
    ]

    outcome = await reconciler.apply(db, intent_succeeded_event("evt_pi", "pi_1"))

    assert outcome.result is ReconcileResult.APPLIED
    assert outcome.booking_id == booking.id


@pytest.mark.asyncio
async def test_intent_without_sessions_fails(db, reconciler):
    outcome = await reconciler.apply(db, intent_succeeded_event("evt_pi", "pi_unknown"))
    assert outcome.result is ReconcileResult.FAILED
    assert "pi_unknown" in outcome.reason


@pytest.mark.asyncio
async def test_missing_booking_id_fails_without_blocking_the_next_event(
    db, session_factory, reconciler, booking_factory,
):
    booking = await booking_factory()

    outcomes = await reconciler.apply_all(db, [
        session_completed_event("evt_bad"),
        session_completed_event("evt_good", booking.id),
    ])

    assert [o.result for o in outcomes] == [ReconcileResult.FAILED, ReconcileResult.APPLIED]
    assert "bookingId" in outcomes[0].reason
    assert (await read_booking(session_factory, booking.id)).status == BookingStatus.PAID


def _with_object(event_id, obj):
    return {"id": event_id, "type": "checkout.session.completed", "data": {"object": obj}}


@pytest.mark.asyncio
@pytest.mark.parametrize("event, reason", [
    (_with_object("evt_m1", {"id": "cs_1", "metadata": "bookingId=abc"}), "metadata is not an object"),
    (_with_object("evt_m2", {"id": "cs_1", "metadata": {"bookingId": ["x"]}}), "not a string"),
    (_with_object("evt_m3", {"id": "cs_1", "metadata": {"bookingId": 42}}), "not a string"),
    (_with_object("evt_m4", "cs_1"), "data.object"),
    ({"id": "evt_m5", "type": "checkout.session.completed"}, "data.object"),
])
async def test_malformed_session_metadata_fails(db, reconciler, event, reason):
    outcome = await reconciler.apply(db, event)

    assert outcome.result is ReconcileResult.FAILED
    assert reason in outcome.reason
    result = await db.execute(
        select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.event_id == event["id"])
    )
    assert result.scalar_one().outcome == "FAILED"


@pytest.mark.asyncio
async def test_malformed_gateway_session_is_skipped(db, reconciler, gateway, booking_factory):
    booking = await booking_factory()
    gateway.sessions["pi_1"] = [
        "cs_not_an_object",
        {"id": "cs_a", "metadata": "bookingId=abc"},
        {"id": "cs_b", "metadata": {"bookingId": 7}},
        {"id": "cs_c", "metadata": {"bookingId": booking.id}},
    ]

    outcome = await reconciler.apply(db, intent_succeeded_event("evt_pi", "pi_1"))

    assert outcome.result is ReconcileResult.APPLIED
    assert outcome.booking_id == booking.id


@pytest.mark.asyncio
async def test_only_malformed_gateway_sessions_fail(db, reconciler, gateway):
    gateway.sessions["pi_1"] = [{"id": "cs_a", "metadata": {"bookingId": 7}}]

    outcome = await reconciler.apply(db, intent_succeeded_event("evt_pi", "pi_1"))

    assert outcome.result is ReconcileResult.FAILED
    assert "not a string" in outcome.reason


@pytest.mark.asyncio
async def test_event_with_non_string_id_fails(db, reconciler):
    outcome = await reconciler.apply(db, {"id": 12, "type": "checkout.session.completed"})
    assert outcome.result is ReconcileResult.FAILED
    assert outcome.event_id is None


@pytest.mark.asyncio
async def test_apply_all_isolates_gateway_failures(db, reconciler, gateway, booking_factory):
    booking = await booking_factory()
    gateway.fail_lookup = True

    outcomes = await reconciler.apply_all(db, [
        intent_succeeded_event("evt_pi", "pi_1"),
        session_completed_event("evt_cs", booking.id),
    ])

    assert [o.result for o in outcomes] == [ReconcileResult.FAILED, ReconcileResult.APPLIED]


@pytest.mark.asyncio
async def test_transient_failure_is_not_recorded(db, reconciler, gateway, booking_factory):
    booking = await booking_factory()
    gateway.sessions["pi_1"] = [{"id": "cs_test_1", "metadata": {"bookingId": booking.id}}]
    event = intent_succeeded_event("evt_pi", "pi_1")

    gateway.fail_lookup = True
    with pytest.raises(ExternalLookupError):
        await reconciler.apply(db, event)

    gateway.fail_lookup = False
    outcome = await reconciler.apply(db, event)
    assert outcome.result is ReconcileResult.APPLIED


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored_and_recorded(db, reconciler):
    event = {"id": "evt_refund", "type": "charge.refunded", "data": {"object": {}}}

    outcome = await reconciler.apply(db, event)

    assert outcome.result is ReconcileResult.IGNORED
    result = await db.execute(select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.event_id == "evt_refund"))
    record = result.scalar_one()
    assert record.outcome == "IGNORED"


@pytest.mark.asyncio
async def test_payment_after_expiry_fails(db, reconciler, clock, booking_factory):
    booking = await booking_factory()
    clock.advance(minutes=11)
    assert await reconciler.state_machine.expire_overdue(db) == [booking.id]

    outcome = await reconciler.apply(db, session_completed_event("evt_late", booking.id))

    assert outcome.result is ReconcileResult.FAILED
    assert "EXPIRED" in outcome.reason


@pytest.mark.asyncio
async def test_event_without_id_fails(db, reconciler):
    outcome = await reconciler.apply(db, {"type": "checkout.session.completed"})
    assert outcome.result is ReconcileResult.FAILED
