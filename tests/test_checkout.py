from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from conftest import FLAT_RULES, WEBHOOK_SECRET, booking_data, sign, stripe_event
from errors import ConfigurationError, SessionNotFound, SignatureInvalid, UpstreamError
from payments.checkout import (
    StripeGateway,
    build_product_name,
    euros_to_cents,
    is_session_id,
    map_locale_to_stripe,
)
from pricing import calculate_price


def test_is_session_id():
    assert is_session_id("cs_test_a1B2")
    assert not is_session_id("pi_123")
    assert not is_session_id("")
    assert not is_session_id(None)


def test_euros_to_cents():
    assert euros_to_cents(Decimal("45.00")) == 4500
    assert euros_to_cents(Decimal("52.03")) == 5203
    assert euros_to_cents(19.99) == 1999


def test_locale_mapping():
    assert map_locale_to_stripe("de") == "de"
    assert map_locale_to_stripe("ca") == "auto"


def test_product_name():
    assert build_product_name(booking_data()) == (
        "Transfer Service: Hotel Arts, Carrer de la Marina 19 → Sitges Train Station"
    )
    assert build_product_name(booking_data(serviceType="hourly", dropoff=None)).startswith("Hourly Service: ")


def test_rejects_publishable_key():
    with pytest.raises(ConfigurationError):
        StripeGateway("pk_test_123")


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        StripeGateway(None).retrieve_session("cs_test_1")


def test_verify_webhook_signature():
    gateway = StripeGateway("sk_test_fake")
    payload = stripe_event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "paid"})

    event = gateway.verify_webhook_signature(payload, sign(payload), WEBHOOK_SECRET)
    assert event["type"] == "checkout.session.completed"
    assert event["data"]["object"]["id"] == "cs_test_1"

    with pytest.raises(SignatureInvalid):
        gateway.verify_webhook_signature(payload + b" ", sign(payload), WEBHOOK_SECRET)
    with pytest.raises(SignatureInvalid):
        gateway.verify_webhook_signature(payload, sign(payload, "whsec_other"), WEBHOOK_SECRET)
    with pytest.raises(SignatureInvalid):
        gateway.verify_webhook_signature(payload, None, WEBHOOK_SECRET)


def test_stale_signature_is_rejected():
    gateway = StripeGateway("sk_test_fake")
    payload = stripe_event("checkout.session.completed", {"id": "cs_test_1"})
    with pytest.raises(SignatureInvalid):
        gateway.verify_webhook_signature(payload, sign(payload, timestamp=1_000_000_000), WEBHOOK_SECRET)


def test_retrieve_missing_session(monkeypatch):
    def missing(session_id, **kwargs):
        raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id",
                                         code="resource_missing")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", missing)
    with pytest.raises(SessionNotFound, match="Session not found or expired"):
        StripeGateway("sk_test_fake").retrieve_session("cs_test_gone")


def test_retrieve_other_stripe_failure(monkeypatch):
    def down(session_id, **kwargs):
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", down)
    with pytest.raises(UpstreamError, match="Failed to verify session"):
        StripeGateway("sk_test_fake").retrieve_session("cs_test_1")


def test_create_checkout_session_sends_cents_and_metadata(monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="cs_test_new", url="https://checkout.stripe.com/c/pay/cs_test_new")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    data = booking_data()
    pricing = calculate_price(data, data.distance, FLAT_RULES)

    session = StripeGateway("sk_test_fake", environment="test").create_checkout_session(
        "RT-TEST-0000001", data, pricing, "es", "https://royaltransfersbcn.com"
    )

    assert session.id == "cs_test_new"
    params = calls[0]
    assert params["api_key"] == "sk_test_fake"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 4500
    assert params["locale"] == "es"
    assert params["customer_email"] == "ana@example.com"
    assert params["success_url"] == (
        "https://royaltransfersbcn.com/es/book/success?session_id={CHECKOUT_SESSION_ID}"
    )
    assert params["metadata"]["bookingId"] == "RT-TEST-0000001"
    assert params["metadata"]["customerPhone"] == "+34600123123"
    assert params["metadata"]["environment"] == "test"


def test_create_checkout_session_failure_is_upstream_error(monkeypatch):
    def create(**kwargs):
        raise stripe.AuthenticationError("bad key")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    data = booking_data()
    with pytest.raises(UpstreamError):
        StripeGateway("sk_test_fake").create_checkout_session(
            "RT-1", data, calculate_price(data, data.distance, FLAT_RULES), "en", "http://localhost:3000"
        )
