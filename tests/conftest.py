"""
Shared fixtures: a file-backed SQLite database per test, fakes for the
payment gateway and movie catalog, a controllable clock and an HTTP client
bound to the app with its dependencies overridden.
"""
import hashlib
import hmac
import os
import time
from datetime import datetime, timedelta
from decimal import Decimal

# Settings are read at import time
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ["ADMIN_API_KEY"] = "operator-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from showtime.core.database import build_engine, build_session_factory, get_db, init_db
from showtime.core.dependencies import get_catalog, get_gateway, get_state_machine, get_webhook_secret
from showtime.main import app
from showtime.models import Booking, Movie, Show
from showtime.services.booking_state_machine import BookingStateMachine
from showtime.services.errors import ExternalLookupError
from showtime.services.payment_gateway import CheckoutSession
from showtime.services.seat_ledger import SeatLedger
from showtime.services.stores import BookingStore, ShowStore

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_KEY = "operator-secret"

FIGHT_CLUB = {
    "id": "550",
    "title": "Fight Club",
    "overview": "An insomniac office worker and a soap maker form an underground fight club.",
    "poster_path": "/poster.jpg",
    "backdrop_path": "/backdrop.jpg",
    "genres": [{"id": 18, "name": "Drama"}],
    "casts": [{"name": "Edward Norton"}, {"name": "Brad Pitt"}],
    "release_date": "1999-10-15",
    "original_language": "en",
    "tagline": "Mischief. Mayhem. Soap.",
    "vote_average": 8.4,
    "runtime": 139,
}


class FrozenClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGateway:
    """In-memory stand-in for StripeGateway"""

    def __init__(self):
        self.sessions = {}  # payment intent id -> checkout sessions
        self.lookups = 0
        self.created = []
        self.fail_lookup = False

    async def list_sessions_for_payment_intent(self, payment_intent_id):
        self.lookups += 1
        if self.fail_lookup:
            raise ExternalLookupError("Payment gateway error: connection reset")
        return list(self.sessions.get(payment_intent_id, []))

    async def create_checkout_session(self, booking, description):
        self.created.append((booking.id, description))
        session_id = f"cs_test_{len(self.created)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/pay/{session_id}")


class FakeCatalog:
    """In-memory stand-in for TMDBCatalog"""

    def __init__(self, movies=None):
        self.movies = movies if movies is not None else {"550": FIGHT_CLUB}
        self.calls = []
        self.error = None

    async def fetch_movie(self, movie_id):
        self.calls.append(movie_id)
        if self.error:
            raise self.error
        if movie_id not in self.movies:
            raise ExternalLookupError(f"Movie not found in catalog: /movie/{movie_id}", status_code=404)
        return dict(self.movies[movie_id])


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header value for `payload`"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def session_completed_event(event_id: str, booking_id: str = None, session_id: str = "cs_test_1") -> dict:
    metadata = {"bookingId": booking_id} if booking_id else {}
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "object": "checkout.session", "metadata": metadata}},
    }


def intent_succeeded_event(event_id: str, intent_id: str = "pi_test_1") -> dict:
    return {
        "id": event_id,
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "object": "payment_intent"}},
    }


async def read_show(session_factory, show_id: int) -> Show:
    async with session_factory() as session:
        return await ShowStore.get(session, show_id)


async def read_booking(session_factory, booking_id: str) -> Booking:
    async with session_factory() as session:
        return await BookingStore.get(session, booking_id)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'showtime.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(datetime(2030, 1, 1, 12, 0, 0))


@pytest.fixture
def state_machine(clock):
    return BookingStateMachine(SeatLedger(max_retries=10), timeout_minutes=10, clock=clock, max_retries=5)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest_asyncio.fixture
async def make_show(session_factory):
    """Factory for a show of the cached Fight Club movie with the given seats"""
    async def _make_show(seat_labels=("A1", "A2", "A3"), price="12.50") -> Show:
        async with session_factory() as session:
            if await session.get(Movie, FIGHT_CLUB["id"]) is None:
                session.add(Movie(**FIGHT_CLUB))
            show = Show(
                movie_id=FIGHT_CLUB["id"],
                show_datetime=datetime(2030, 1, 2, 18, 30),
                show_price=Decimal(price),
                seat_labels=list(seat_labels),
                occupied_seats={},
                version=0,
            )
            session.add(show)
            await session.commit()
            return show

    return _make_show


@pytest_asyncio.fixture
async def show(make_show):
    return await make_show()


@pytest_asyncio.fixture
async def client(session_factory, state_machine, gateway, catalog):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_machine] = lambda: state_machine
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
