import copy
import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app import create_app
from booking_lifecycle import BookingLifecycleController
from booking_schemas import BookingData, Vehicle
from config import Settings
from errors import NotificationError, SessionNotFound
from notifications.mailer import EmailNotifier
from payments.checkout import StripeGateway
from persistence.db import Database
from pricing import PricingRules

WEBHOOK_SECRET = "whsec_test_secret"

TEST_SEDAN = Vehicle(id="test-sedan", category="standard", name="Test Sedan", base_price=Decimal("45"))

# no tax and a one-car fleet, so a booking for the test sedan is exactly 45.00
FLAT_RULES = PricingRules(tax_rate=Decimal("0"), vehicles=(TEST_SEDAN,))

BOOKING_PAYLOAD = {
    "serviceType": "cityToCity",
    "pickup": {"address": "Hotel Arts, Carrer de la Marina 19", "lat": 41.386, "lng": 2.196},
    "dropoff": {"address": "Sitges Train Station", "lat": 41.237, "lng": 1.806},
    "distance": 38.5,
    "duration": 41.6,
    "dateTime": {"date": "2026-11-20", "time": "09:30"},
    "passengers": {"count": 2, "luggage": 2, "childSeats": 0},
    "selectedVehicle": {
        "id": "test-sedan",
        "category": "standard",
        "name": "Test Sedan",
        "basePrice": 1,
    },
    "passengerDetails": {
        "firstName": "Ana",
        "lastName": "Garcia",
        "email": "ana@example.com",
        "phone": "600123123",
        "countryCode": "+34",
        "flightNumber": "VY1234",
    },
    "extras": {"meetAndGreet": False, "waitingTime": 0, "additionalStops": []},
    "pricing": {"total": 1},
}


def booking_payload(**overrides):
    payload = copy.deepcopy(BOOKING_PAYLOAD)
    payload.update(overrides)
    return payload


def booking_data(**overrides) -> BookingData:
    return BookingData.model_validate(booking_payload(**overrides))


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict) -> bytes:
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


class FakeGateway(StripeGateway):
    """Real signature verification, canned checkout sessions."""

    def __init__(self):
        super().__init__("sk_test_fake")
        self.sessions = {}
        self.created = []
        self.retrieved = []

    def create_checkout_session(self, booking_id, booking_data, pricing, locale, base_url):
        session_id = f"cs_test_{len(self.created) + 1}"
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.com/c/pay/{session_id}",
            "payment_status": "unpaid",
            "metadata": {"bookingId": booking_id},
            "success_url": f"{base_url}/{locale}/book/success?session_id={{CHECKOUT_SESSION_ID}}",
            "amount_total": int(pricing.total * 100),
        }
        self.created.append(session)
        self.sessions[session_id] = session
        return session

    def retrieve_session(self, session_id):
        self.retrieved.append(session_id)
        if session_id not in self.sessions:
            raise SessionNotFound("Session not found or expired")
        return self.sessions[session_id]


class RecordingNotifier(EmailNotifier):
    def __init__(self, fail=False):
        super().__init__("re_test_key", "info@example.com", "Royal Transfers BCN", "admin@example.com")
        self.fail = fail
        self.sent = []

    def _deliver(self, to_email, subject, html_content, reply_to=None):
        self.sent.append({"to": to_email, "subject": subject})
        if self.fail:
            raise NotificationError("smtp down")
        return {"id": f"email_{len(self.sent)}"}


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        environment="test",
        stripe_secret_key="sk_test_fake",
        stripe_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def controller(settings, database, gateway, notifier):
    return BookingLifecycleController(settings, database, gateway, notifier, FLAT_RULES)


@pytest.fixture
def make_client(database, gateway, notifier):
    clients = []

    def _make(settings):
        client = TestClient(create_app(settings, database, gateway, notifier, FLAT_RULES))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, settings):
    return make_client(settings)
