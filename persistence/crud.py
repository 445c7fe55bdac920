import logging
from collections import namedtuple
from datetime import date
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_schemas import BookingData, BookingRecord, PriceBreakdown
from errors import InvalidTransition, NotFound, PersistenceError

from .models import BookingModel

logger = logging.getLogger(__name__)

# payment_status -> statuses it may be reached from. Re-applying the current
# status is always allowed and changes nothing.
PAYMENT_TRANSITIONS = {
    "pending": (),
    "paid": ("pending",),
    "cancelled": ("pending",),
    "refunded": ("pending",),
}

StatusChange = namedtuple("StatusChange", ["booking", "changed"])


def model_to_record(model: BookingModel) -> BookingRecord:
    return BookingRecord.model_validate(model)


def save_booking(db: Session, booking_id: str, payment_method: str, payment_status: str,
                 stripe_session_id: Optional[str], booking_data: BookingData,
                 pricing: PriceBreakdown) -> BookingRecord:
    """
    Insert a new booking row. Prices come from `pricing` only; whatever the
    client put in booking_data.pricing is ignored.
    """
    details = booking_data.passenger_details
    pickup = booking_data.pickup
    dropoff = booking_data.dropoff
    vehicle = booking_data.selected_vehicle

    model = BookingModel(
        booking_id=booking_id,
        payment_method=payment_method,
        payment_status=payment_status,
        stripe_session_id=stripe_session_id or None,
        customer_first_name=details.first_name,
        customer_last_name=details.last_name,
        customer_email=details.email,
        customer_phone=details.phone,
        customer_country_code=details.country_code,
        service_type=booking_data.service_type or "airport",
        pickup_address=pickup.address,
        dropoff_address=dropoff.address if dropoff and dropoff.address else "",
        pickup_date=date.fromisoformat(booking_data.date_time.date),
        pickup_time=booking_data.date_time.time,
        pickup_lat=pickup.lat,
        pickup_lng=pickup.lng,
        dropoff_lat=dropoff.lat if dropoff else None,
        dropoff_lng=dropoff.lng if dropoff else None,
        distance_km=booking_data.distance,
        duration_minutes=round(booking_data.duration) if booking_data.duration else None,
        hourly_duration=booking_data.hourly_duration,
        vehicle_name=vehicle.name if vehicle else "Unknown",
        vehicle_category=vehicle.category if vehicle else "standard",
        passengers_count=booking_data.passengers.count,
        luggage_count=booking_data.passengers.luggage,
        child_seats_count=booking_data.passengers.child_seats,
        base_price=pricing.base_price,
        distance_charge=pricing.distance_charge,
        time_charge=pricing.time_charge,
        extra_stops_charge=pricing.extra_stops_charge,
        meet_and_greet_charge=pricing.meet_and_greet_charge,
        airport_fee=pricing.airport_fee,
        child_seats_charge=pricing.child_seats_charge,
        tax=pricing.tax,
        total_price=pricing.total,
        currency=pricing.currency,
        flight_number=details.flight_number or None,
        special_requests=details.special_requests or booking_data.extras.special_requests or None,
        booking_status="confirmed",
    )
    try:
        db.add(model)
        db.flush()
        db.refresh(model)
    except SQLAlchemyError as e:
        logger.error("Error saving booking %s: %s", booking_id, e)
        raise PersistenceError("Failed to save booking") from e
    if model.id is None:
        raise PersistenceError("Failed to save booking - no rows returned")
    logger.info("Booking saved to database: %s", booking_id)
    return model_to_record(model)


def _get_model(db: Session, booking_id: str) -> Optional[BookingModel]:
    return db.execute(
        select(BookingModel).where(BookingModel.booking_id == booking_id).limit(1)
    ).scalar_one_or_none()


def get_booking_by_id(db: Session, booking_id: str) -> Optional[BookingRecord]:
    model = _get_model(db, booking_id)
    return model_to_record(model) if model else None


def get_booking_by_session_id(db: Session, session_id: str) -> Optional[BookingRecord]:
    model = db.execute(
        select(BookingModel).where(BookingModel.stripe_session_id == session_id).limit(1)
    ).scalar_one_or_none()
    return model_to_record(model) if model else None


def update_payment_status(db: Session, booking_id: str, payment_status: str,
                          payment_intent_id: Optional[str] = None) -> StatusChange:
    """
    Move a booking to `payment_status` in one conditional UPDATE.

    The WHERE clause only matches rows whose current status may legally
    reach the new one, so concurrent deliveries cannot interleave. When
    nothing matched, the row is read back to tell apart an unknown booking
    (NotFound), a repeat of the same transition (no-op) and a forbidden
    one (InvalidTransition).
    """
    if payment_status not in PAYMENT_TRANSITIONS:
        raise InvalidTransition(f"Unknown payment status: {payment_status}")

    values = {"payment_status": payment_status, "updated_at": func.now()}
    if payment_intent_id:
        values["stripe_payment_intent_id"] = payment_intent_id

    result = db.execute(
        update(BookingModel)
        .where(BookingModel.booking_id == booking_id)
        .where(BookingModel.payment_status.in_(PAYMENT_TRANSITIONS[payment_status]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    changed = result.rowcount == 1

    db.expire_all()
    model = _get_model(db, booking_id)
    if model is None:
        raise NotFound(f"Booking not found: {booking_id}")
    if not changed and model.payment_status != payment_status:
        raise InvalidTransition(
            f"Cannot change payment status of {booking_id} from {model.payment_status} to {payment_status}"
        )

    if changed:
        logger.info("Updated booking %s payment status to: %s", booking_id, payment_status)
    return StatusChange(model_to_record(model), changed)


def update_booking_status(db: Session, booking_id: str, booking_status: str) -> BookingRecord:
    result = db.execute(
        update(BookingModel)
        .where(BookingModel.booking_id == booking_id)
        .values(booking_status=booking_status, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound(f"Booking not found: {booking_id}")
    db.expire_all()
    logger.info("Updated booking %s status to: %s", booking_id, booking_status)
    return model_to_record(_get_model(db, booking_id))


def list_bookings(db: Session) -> List[BookingRecord]:
    rows = db.execute(
        select(BookingModel).order_by(BookingModel.pickup_date.desc(), BookingModel.pickup_time.desc())
    ).scalars()
    return [model_to_record(m) for m in rows]


def list_todays_bookings(db: Session, today: Optional[date] = None) -> List[BookingRecord]:
    rows = db.execute(
        select(BookingModel)
        .where(BookingModel.pickup_date == (today or date.today()))
        .order_by(BookingModel.pickup_time.asc())
    ).scalars()
    return [model_to_record(m) for m in rows]


def list_bookings_by_email(db: Session, email: str) -> List[BookingRecord]:
    rows = db.execute(
        select(BookingModel)
        .where(BookingModel.customer_email == email)
        .order_by(BookingModel.pickup_date.desc(), BookingModel.pickup_time.desc())
    ).scalars()
    return [model_to_record(m) for m in rows]


def list_recent_bookings(db: Session, limit: int = 5) -> List[BookingRecord]:
    rows = db.execute(
        select(BookingModel).order_by(BookingModel.created_at.desc(), BookingModel.id.desc()).limit(limit)
    ).scalars()
    return [model_to_record(m) for m in rows]


def count_bookings(db: Session) -> int:
    return db.execute(select(func.count()).select_from(BookingModel)).scalar_one()
