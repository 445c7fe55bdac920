import json
import logging
import time
from decimal import Decimal
from typing import Dict, Optional

import stripe

from booking_schemas import BookingData, PriceBreakdown
from errors import ConfigurationError, SessionNotFound, SignatureInvalid, UpstreamError

logger = logging.getLogger(__name__)

SESSION_ID_PREFIX = "cs_"

WEBHOOK_EVENTS = {
    "CHECKOUT_COMPLETED": "checkout.session.completed",
    "CHECKOUT_EXPIRED": "checkout.session.expired",
    "PAYMENT_SUCCEEDED": "payment_intent.succeeded",
    "PAYMENT_FAILED": "payment_intent.payment_failed",
}

STRIPE_LOCALES = {"en", "es", "de", "it", "fr", "pt", "nl"}


def euros_to_cents(euros) -> int:
    return int((Decimal(str(euros)) * 100).to_integral_value())


def is_session_id(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(SESSION_ID_PREFIX)


def map_locale_to_stripe(locale: str) -> str:
    return locale if locale in STRIPE_LOCALES else "auto"


def build_product_name(booking_data: BookingData) -> str:
    pickup = booking_data.pickup.address or "Pickup"
    if booking_data.service_type == "hourly":
        return f"Hourly Service: {pickup}"
    dropoff = booking_data.dropoff.address if booking_data.dropoff and booking_data.dropoff.address else "Dropoff"
    return f"Transfer Service: {pickup} → {dropoff}"


def build_service_description(booking_data: BookingData) -> str:
    parts = []
    if booking_data.selected_vehicle:
        parts.append(f"Vehicle: {booking_data.selected_vehicle.name}")
    parts.append(f"Date: {booking_data.date_time.date} at {booking_data.date_time.time}")
    parts.append(f"Passengers: {booking_data.passengers.count}")
    if booking_data.passengers.luggage > 0:
        parts.append(f"Luggage: {booking_data.passengers.luggage}")
    if booking_data.distance is not None:
        parts.append(f"Distance: {booking_data.distance:.1f} km")
    if booking_data.passenger_details.flight_number:
        parts.append(f"Flight: {booking_data.passenger_details.flight_number}")
    return " | ".join(parts)


def build_metadata(booking_data: BookingData, booking_id: str, pricing: PriceBreakdown,
                   environment: str) -> Dict[str, str]:
    # embed the booking id so the session can be traced back from the dashboard
    details = booking_data.passenger_details
    dropoff = booking_data.dropoff.address if booking_data.dropoff and booking_data.dropoff.address else ""
    return {
        "bookingId": booking_id,
        "customerName": f"{details.first_name} {details.last_name}",
        "customerEmail": details.email or "",
        "customerPhone": f"{details.country_code}{details.phone}",
        "serviceType": booking_data.service_type or "airport",
        "pickupAddress": booking_data.pickup.address or "",
        "dropoffAddress": dropoff,
        "pickupDate": booking_data.date_time.date or "",
        "pickupTime": booking_data.date_time.time or "",
        "vehicleName": booking_data.selected_vehicle.name if booking_data.selected_vehicle else "Unknown",
        "passengers": str(booking_data.passengers.count),
        "luggage": str(booking_data.passengers.luggage),
        "flightNumber": details.flight_number or "",
        "totalPrice": str(pricing.total),
        "currency": pricing.currency,
        "environment": environment,
    }


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK. Holds the API key instead of setting the
    global `stripe.api_key`, so one process-wide instance can be injected.
    """

    def __init__(self, api_key: Optional[str], currency: str = "eur", expires_after: int = 30 * 60,
                 environment: str = "development"):
        if api_key and not api_key.startswith("sk_"):
            raise ConfigurationError(
                'Invalid STRIPE_SECRET_KEY format. Secret keys should start with "sk_test_" or "sk_live_"'
            )
        self.api_key = api_key
        self.currency = currency
        self.expires_after = expires_after
        self.environment = environment

    @property
    def is_test_mode(self) -> bool:
        return bool(self.api_key) and self.api_key.startswith("sk_test_")

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        return self.api_key

    def create_checkout_session(self, booking_id: str, booking_data: BookingData, pricing: PriceBreakdown,
                                locale: str, base_url: str):
        """
        Create a Stripe Checkout Session for a booking.
        Returns the session object (client can redirect to session.url).
        """
        api_key = self._require_key()
        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                payment_method_types=["card"],
                mode="payment",
                currency=self.currency,
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": build_product_name(booking_data),
                            "description": build_service_description(booking_data),
                        },
                        # Stripe expects unit_amount in cents
                        "unit_amount": euros_to_cents(pricing.total),
                    },
                    "quantity": 1,
                }],
                success_url=f"{base_url}/{locale}/book/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{base_url}/{locale}/book?step=3&cancelled=true",
                customer_email=booking_data.passenger_details.email,
                billing_address_collection="auto",
                customer_creation="if_required",
                locale=map_locale_to_stripe(locale),
                expires_at=int(time.time()) + self.expires_after,
                metadata=build_metadata(booking_data, booking_id, pricing, self.environment),
                phone_number_collection={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error("Error creating Stripe checkout session for %s: %s", booking_id, e)
            raise UpstreamError("Failed to create checkout session") from e
        logger.info("Stripe session created: %s", session.id)
        return session

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], secret: str):
        """
        Authenticate a webhook delivery and return the event as a plain dict.
        `raw_body` must be the bytes exactly as received; a re-serialized JSON
        body will not verify.
        """
        if not signature:
            raise SignatureInvalid("No signature found")
        try:
            stripe.Webhook.construct_event(raw_body, signature, secret)
            return json.loads(raw_body)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise SignatureInvalid(f"Webhook Error: {e}") from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", e)
            raise SignatureInvalid("Webhook Error: invalid payload") from e

    def retrieve_session(self, session_id: str):
        api_key = self._require_key()
        try:
            return stripe.checkout.Session.retrieve(session_id, api_key=api_key, expand=["payment_intent"])
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or "No such checkout.session" in str(e):
                raise SessionNotFound("Session not found or expired") from e
            logger.error("Stripe rejected session lookup %s: %s", session_id, e)
            raise UpstreamError("Failed to verify session") from e
        except stripe.StripeError as e:
            logger.error("Error retrieving Stripe session %s: %s", session_id, e)
            raise UpstreamError("Failed to verify session") from e
