import logging
import re
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional

import resend

from booking_schemas import BookingRecord
from errors import NotificationError

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of one best-effort email. Never raised, only logged by the caller."""

    kind: str
    recipient: str
    status: str
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SENT


def _html_to_text(html_content: str) -> str:
    text = re.sub(r"<[^>]+>", "", html_content)
    return re.sub(r"\s+", " ", text).strip()


def _trip_rows(booking: BookingRecord):
    rows = [
        ("Booking ID", booking.booking_id),
        ("Service", booking.service_type),
        ("Pickup", booking.pickup_address),
    ]
    if booking.dropoff_address:
        rows.append(("Dropoff", booking.dropoff_address))
    rows += [
        ("Date", booking.pickup_date.isoformat()),
        ("Time", booking.pickup_time),
        ("Vehicle", booking.vehicle_name),
        ("Passengers", str(booking.passengers_count)),
        ("Luggage", str(booking.luggage_count)),
    ]
    if booking.child_seats_count:
        rows.append(("Child seats", str(booking.child_seats_count)))
    if booking.flight_number:
        rows.append(("Flight", booking.flight_number))
    rows.append(("Total", f"{booking.total_price} {booking.currency}"))
    return rows


def _payment_line(booking: BookingRecord) -> str:
    if booking.payment_method == "card":
        return "Paid by card" if booking.payment_status == "paid" else "Card payment pending"
    return "Pay the driver in cash"


def render_booking_email(booking: BookingRecord, heading: str, intro: str) -> str:
    rows = "".join(
        f"<tr><td><strong>{escape(label)}</strong></td><td>{escape(value)}</td></tr>"
        for label, value in _trip_rows(booking)
    )
    return (
        f"<div><h1>{escape(heading)}</h1><p>{escape(intro)}</p>"
        f"<table>{rows}</table>"
        f"<p>{escape(_payment_line(booking))}</p></div>"
    )


class EmailNotifier:
    """
    Sends booking emails through Resend.

    Every public method returns a NotificationResult; a provider failure is
    logged and reported as FAILED, never raised into the booking flow.
    """

    def __init__(self, api_key: Optional[str], from_email: str, from_name: str, admin_email: str):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.admin_email = admin_email
        if api_key:
            resend.api_key = api_key
        else:
            logger.warning("RESEND_API_KEY not configured; booking emails will be skipped")

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    def _deliver(self, to_email: str, subject: str, html_content: str, reply_to: Optional[str] = None):
        email_data = {
            "from": self.sender,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
            "text": _html_to_text(html_content),
            "reply_to": reply_to or self.from_email,
        }
        try:
            return resend.Emails.send(email_data)
        except Exception as e:
            raise NotificationError(f"Email sending failed: {e}") from e

    def send(self, kind: str, to_email: str, subject: str, html_content: str,
             reply_to: Optional[str] = None) -> NotificationResult:
        if not self.api_key:
            return NotificationResult(kind, to_email, SKIPPED, "email not configured")
        if not to_email:
            return NotificationResult(kind, "", SKIPPED, "no recipient")
        try:
            response = self._deliver(to_email, subject, html_content, reply_to)
        except NotificationError as e:
            logger.error("Failed to send %s email to %s: %s", kind, to_email, e.message)
            return NotificationResult(kind, to_email, FAILED, e.message)
        logger.info("Email sent to %s - Subject: %s (id=%s)", to_email, subject,
                    response.get("id") if isinstance(response, dict) else None)
        return NotificationResult(kind, to_email, SENT)

    def send_booking_confirmation(self, booking: BookingRecord) -> NotificationResult:
        html_content = render_booking_email(
            booking,
            heading="Booking Confirmed",
            intro=f"Thank you {booking.customer_first_name}, your transfer is booked.",
        )
        return self.send(
            "confirmation",
            booking.customer_email,
            f"Booking Confirmed - {booking.booking_id}",
            html_content,
        )

    def send_admin_notification(self, booking: BookingRecord) -> NotificationResult:
        html_content = render_booking_email(
            booking,
            heading="New Booking",
            intro=(
                f"{booking.customer_first_name} {booking.customer_last_name} "
                f"({booking.customer_email}, {booking.customer_country_code} {booking.customer_phone})"
            ),
        )
        return self.send(
            "admin",
            self.admin_email,
            f"New Booking - {booking.booking_id} ({booking.payment_method.upper()})",
            html_content,
            reply_to=booking.customer_email,
        )

    def send_test_email(self) -> NotificationResult:
        html_content = (
            "<h1>Email Test Successful!</h1>"
            "<p>Your email configuration is working correctly.</p>"
            f"<p>From: {escape(self.from_email)}</p><p>To: {escape(self.admin_email)}</p>"
            f"<p>Time: {datetime.now().isoformat(timespec='seconds')}</p>"
        )
        return self.send("test", self.admin_email, f"Test Email from {self.from_name}", html_content)
