import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from sqlalchemy.exc import SQLAlchemyError

from booking_schemas import BookingData, BookingDetails, BookingRecord, BookingSummary, PriceBreakdown
from config import Settings
from errors import (
    ConfigurationError,
    InvalidPricing,
    InvalidTransition,
    NotFound,
    PersistenceError,
    SignatureInvalid,
    ValidationError,
)
from notifications.mailer import EmailNotifier, NotificationResult
from payments.checkout import WEBHOOK_EVENTS, StripeGateway, is_session_id
from persistence import crud
from persistence.db import Database
from pricing import PRICING_RULES, PricingRules, calculate_price, find_vehicle, generate_booking_id

logger = logging.getLogger(__name__)

LOCALES = ("en", "de", "es", "it")
DEFAULT_LOCALE = "en"
SERVICE_TYPES = ("airport", "cityToCity", "hourly", "distance")
ROUTE_SERVICE_TYPES = ("distance", "cityToCity")
PAID_SESSION_STATUSES = ("paid", "no_payment_required")
FALLBACK_BASE_URL = "http://localhost:3000"
_HOST_RE = re.compile(r"^[A-Za-z0-9.\-]+(:\d{1,5})?$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


@dataclass(frozen=True)
class CashBooking:
    booking_id: str
    redirect_url: str
    booking: BookingRecord


@dataclass(frozen=True)
class CardCheckout:
    booking_id: str
    session_id: str
    url: str


@dataclass(frozen=True)
class SessionVerification:
    payment_status: str
    booking_details: BookingDetails


def safe_locale(locale: Optional[str]) -> str:
    return locale if locale in LOCALES else DEFAULT_LOCALE


def validate_booking_data(booking_data: BookingData) -> None:
    """Raise ValidationError naming the first missing or malformed field."""
    details = booking_data.passenger_details
    if booking_data.selected_vehicle is None:
        raise ValidationError("No vehicle selected")
    if not booking_data.pickup.address:
        raise ValidationError("Pickup address is required")
    if booking_data.service_type in ROUTE_SERVICE_TYPES:
        if booking_data.dropoff is None or not booking_data.dropoff.address:
            raise ValidationError("Pickup and dropoff addresses are required")
    if not booking_data.date_time.date or not booking_data.date_time.time:
        raise ValidationError("Date and time are required")
    try:
        date.fromisoformat(booking_data.date_time.date)
    except ValueError:
        raise ValidationError("Invalid pickup date") from None
    if not details.first_name or not details.last_name:
        raise ValidationError("Passenger name is required")
    if not details.email:
        raise ValidationError("Email is required")
    if not details.phone:
        raise ValidationError("Phone number is required")
    if booking_data.passengers.count < 1:
        raise ValidationError("At least one passenger is required")

    if booking_data.service_type is not None and booking_data.service_type not in SERVICE_TYPES:
        raise ValidationError("Invalid service type")
    if not _TIME_RE.match(booking_data.date_time.time):
        raise ValidationError("Invalid pickup time")
    for value in (booking_data.distance, booking_data.duration, booking_data.hourly_duration):
        if value is not None and (not math.isfinite(value) or value < 0):
            raise ValidationError("Invalid distance or duration")
    if booking_data.passengers.luggage < 0 or booking_data.passengers.child_seats < 0:
        raise ValidationError("Invalid luggage or child seat count")
    for value, limit, message in (
        (details.first_name, 128, "Passenger name is too long"),
        (details.last_name, 128, "Passenger name is too long"),
        (details.email, 255, "Email is too long"),
        (details.phone, 32, "Phone number is too long"),
        (details.country_code, 8, "Country code is too long"),
        (details.flight_number, 16, "Flight number is too long"),
    ):
        if value and len(value) > limit:
            raise ValidationError(message)


def resolve_base_url(settings: Settings, origin: Optional[str], host: Optional[str]) -> str:
    """
    Origin used for redirect URLs. Order: configured APP_URL, then the
    request Origin header if it is https or localhost, then the Host header.
    """
    if settings.app_url:
        parsed = urlsplit(settings.app_url)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
        logger.warning("Ignoring malformed APP_URL: %s", settings.app_url)

    if origin:
        parsed = urlsplit(origin)
        local = parsed.hostname in ("localhost", "127.0.0.1")
        if parsed.netloc and (parsed.scheme == "https" or (parsed.scheme == "http" and local)):
            return f"{parsed.scheme}://{parsed.netloc}"

    if host and _HOST_RE.match(host):
        scheme = "http" if settings.is_development else "https"
        return f"{scheme}://{host}"

    return FALLBACK_BASE_URL


def map_session_status(provider_status: Optional[str]) -> str:
    if provider_status in PAID_SESSION_STATUSES:
        return "paid"
    if provider_status == "unpaid":
        return "unpaid"
    return "processing"


def _payment_intent_id(session) -> Optional[str]:
    payment_intent = session.get("payment_intent")
    if payment_intent is None or isinstance(payment_intent, str):
        return payment_intent
    return payment_intent.get("id")


def _run_now(func, *args):
    func(*args)


class BookingLifecycleController:
    """
    Owns a booking's payment lifecycle: creation (cash or card), webhook
    reconciliation and read-only status polling.

    payment_status only ever moves pending -> paid here; the store refuses
    any transition out of a terminal state. Notifications are scheduled
    through `schedule` (FastAPI background tasks in the app) and are never
    allowed to fail the operation that triggered them.
    """

    def __init__(self, settings: Settings, database: Database, gateway: StripeGateway,
                 notifier: EmailNotifier, rules: PricingRules = PRICING_RULES):
        self.settings = settings
        self.database = database
        self.gateway = gateway
        self.notifier = notifier
        self.rules = rules

    # -- helpers -----------------------------------------------------------

    def price(self, booking_data: BookingData) -> PriceBreakdown:
        try:
            return calculate_price(booking_data, booking_data.distance, self.rules)
        except InvalidPricing as e:
            logger.warning("Rejected booking with invalid pricing: %s", e.message)
            raise InvalidPricing("Invalid pricing calculation") from e

    def _with_fleet_vehicle(self, booking_data: BookingData) -> BookingData:
        # stored and shown vehicle details come from the fleet, like the rates
        vehicle = find_vehicle(booking_data.selected_vehicle.id, self.rules.vehicles)
        return booking_data.model_copy(update={"selected_vehicle": vehicle})

    def _save(self, booking_id: str, payment_method: str, session_id: Optional[str],
              booking_data: BookingData, pricing: PriceBreakdown) -> BookingRecord:
        try:
            with self.database.session() as db:
                return crud.save_booking(
                    db, booking_id, payment_method, "pending", session_id, booking_data, pricing
                )
        except SQLAlchemyError as e:
            logger.exception("Error committing booking %s", booking_id)
            raise PersistenceError("Failed to save booking") from e

    def notify_booking(self, booking: BookingRecord) -> List[NotificationResult]:
        """Send customer and admin emails. Best effort: never raises."""
        results = []
        for send in (self.notifier.send_booking_confirmation, self.notifier.send_admin_notification):
            try:
                result = send(booking)
            except Exception as e:
                logger.exception("Notification crashed for booking %s", booking.booking_id)
                result = NotificationResult(send.__name__, "", "failed", str(e))
            results.append(result)
        for result in results:
            if result.status == "failed":
                logger.warning("Failed to send %s email for %s: %s", result.kind, booking.booking_id, result.error)
            else:
                logger.info("%s email for %s: %s", result.kind, booking.booking_id, result.status)
        return results

    # -- (a) cash bookings ---------------------------------------------------

    def create_cash_booking(self, booking_data: BookingData, locale: Optional[str] = None,
                            origin: Optional[str] = None, host: Optional[str] = None,
                            schedule: Optional[Callable] = None) -> CashBooking:
        validate_booking_data(booking_data)
        pricing = self.price(booking_data)
        booking_data = self._with_fleet_vehicle(booking_data)
        booking_id = generate_booking_id()

        # no Stripe session for cash: the customer pays the driver
        booking = self._save(booking_id, "cash", None, booking_data, pricing)
        logger.info("Cash booking saved to database: %s", booking_id)

        (schedule or _run_now)(self.notify_booking, booking)

        base_url = resolve_base_url(self.settings, origin, host)
        redirect_url = f"{base_url}/{safe_locale(locale)}/book/success?payment=cash&booking_id={booking_id}"
        return CashBooking(booking_id, redirect_url, booking)

    # -- card checkout -------------------------------------------------------

    def create_card_checkout(self, booking_data: BookingData, locale: Optional[str] = None,
                             origin: Optional[str] = None, host: Optional[str] = None) -> CardCheckout:
        validate_booking_data(booking_data)
        pricing = self.price(booking_data)
        booking_data = self._with_fleet_vehicle(booking_data)
        booking_id = generate_booking_id()
        locale = safe_locale(locale)
        base_url = resolve_base_url(self.settings, origin, host)

        session = self.gateway.create_checkout_session(booking_id, booking_data, pricing, locale, base_url)
        self._save(booking_id, "card", session["id"], booking_data, pricing)
        logger.info("Card booking %s linked to session %s", booking_id, session["id"])
        return CardCheckout(booking_id, session["id"], session["url"])

    # -- (b) webhook reconciliation -----------------------------------------

    def handle_webhook(self, raw_body: bytes, signature: Optional[str],
                       schedule: Optional[Callable] = None) -> str:
        """
        Authenticate and dispatch one Stripe event. Returns a short outcome
        label. Raises only for an unauthenticated request, missing config or
        a database failure; every authenticated event is otherwise acknowledged.
        """
        if not signature:
            logger.error("No Stripe signature found")
            raise SignatureInvalid("No signature found")
        secret = self.settings.stripe_webhook_secret
        if not secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            raise ConfigurationError("Webhook secret not configured")

        event = self.gateway.verify_webhook_signature(raw_body, signature, secret)
        event_type = event["type"]
        obj = event["data"]["object"]
        logger.info("Webhook signature verified: %s", event_type)

        if event_type == WEBHOOK_EVENTS["CHECKOUT_COMPLETED"]:
            return self._handle_checkout_completed(obj, schedule or _run_now)
        if event_type == WEBHOOK_EVENTS["CHECKOUT_EXPIRED"]:
            return self._handle_checkout_expired(obj)
        if event_type == WEBHOOK_EVENTS["PAYMENT_SUCCEEDED"]:
            # checkout.session.completed does the reconciliation
            logger.info("Payment succeeded: %s", obj.get("id"))
            return "logged"
        if event_type == WEBHOOK_EVENTS["PAYMENT_FAILED"]:
            error = obj.get("last_payment_error") or {}
            logger.warning("Payment failed: %s (%s)", obj.get("id"), error.get("message"))
            return "logged"

        logger.info("Unhandled event type: %s", event_type)
        return "ignored"

    def _handle_checkout_completed(self, session, schedule: Callable) -> str:
        session_id = session.get("id")
        payment_status = session.get("payment_status")
        logger.info("Checkout completed: %s (%s)", session_id, payment_status)

        try:
            with self.database.session() as db:
                booking = crud.get_booking_by_session_id(db, session_id)
                if booking is None:
                    logger.error("Booking not found for session: %s", session_id)
                    return "booking_not_found"

                if payment_status not in PAID_SESSION_STATUSES:
                    logger.warning("Checkout completed but payment not marked as paid: %s", payment_status)
                    return "not_paid"

                change = crud.update_payment_status(
                    db, booking.booking_id, "paid", _payment_intent_id(session)
                )
        except InvalidTransition as e:
            logger.warning("Ignoring completed checkout %s: %s", session_id, e.message)
            return "invalid_transition"
        except SQLAlchemyError as e:
            logger.exception("Error handling checkout completed for %s", session_id)
            raise PersistenceError("Webhook handler failed") from e

        if not change.changed:
            logger.info("Booking %s already paid; duplicate delivery", change.booking.booking_id)
            return "already_paid"

        logger.info("Booking updated to paid: %s", change.booking.booking_id)
        schedule(self.notify_booking, change.booking)
        return "paid"

    def _handle_checkout_expired(self, session) -> str:
        session_id = session.get("id")
        logger.info("Checkout session expired: %s", session_id)
        try:
            with self.database.session() as db:
                booking = crud.get_booking_by_session_id(db, session_id)
        except SQLAlchemyError:
            logger.exception("Error handling checkout expired for %s", session_id)
            return "logged"
        # cancellation is left to an operator
        if booking is not None and booking.payment_status == "pending":
            logger.warning("Booking still pending for expired session: %s", booking.booking_id)
        return "logged"

    # -- (c) polling ---------------------------------------------------------

    def verify_session(self, session_id: Optional[str]) -> SessionVerification:
        """
        Report a checkout session's payment status with its booking. Read-only:
        the webhook alone writes payment_status, so a freshly paid session may
        still report "processing" until it lands.
        """
        if not session_id:
            raise ValidationError("No session_id provided")
        if not is_session_id(session_id):
            raise ValidationError("Invalid session_id format")

        session = self.gateway.retrieve_session(session_id)

        with self.database.session() as db:
            booking = crud.get_booking_by_session_id(db, session_id)
        if booking is None:
            raise NotFound("Booking not found in database")

        return SessionVerification(
            payment_status=map_session_status(session["payment_status"]),
            booking_details=BookingDetails.from_record(booking),
        )

    # -- lookups -------------------------------------------------------------

    def get_booking_details(self, booking_id: Optional[str]) -> BookingDetails:
        if not booking_id:
            raise ValidationError("No booking_id provided")
        with self.database.session() as db:
            booking = crud.get_booking_by_id(db, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return BookingDetails.from_record(booking)

    def recent_bookings(self, limit: int = 5) -> List[BookingSummary]:
        with self.database.session() as db:
            bookings = crud.list_recent_bookings(db, limit)
        return [
            BookingSummary(
                booking_id=b.booking_id,
                payment_method=b.payment_method,
                payment_status=b.payment_status,
                customer_email=b.customer_email,
                total_price=float(b.total_price),
                created_at=b.created_at,
            )
            for b in bookings
        ]

    def database_status(self) -> dict:
        self.database.ping()
        with self.database.session() as db:
            total = crud.count_bookings(db)
        return {"currentTime": datetime.now().isoformat(timespec="seconds"), "totalBookings": total}
