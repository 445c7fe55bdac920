from sqlalchemy import Column, Date, DateTime, Float, Integer, Numeric, String, Text, func

from .db import Base

PAYMENT_STATUSES = ("pending", "paid", "cancelled", "refunded")
BOOKING_STATUSES = ("confirmed", "in_progress", "completed", "cancelled")


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(64), unique=True, index=True, nullable=False)

    payment_method = Column(String(16), nullable=False)
    payment_status = Column(String(16), nullable=False, default="pending")
    stripe_session_id = Column(String(255), unique=True, index=True, nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)

    customer_first_name = Column(String(128), nullable=False)
    customer_last_name = Column(String(128), nullable=False)
    customer_email = Column(String(255), index=True, nullable=False)
    customer_phone = Column(String(32), nullable=False)
    customer_country_code = Column(String(8), default="")

    service_type = Column(String(32), nullable=False, default="airport")
    pickup_address = Column(Text, nullable=False)
    dropoff_address = Column(Text, default="")
    pickup_date = Column(Date, index=True, nullable=False)
    pickup_time = Column(String(8), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    hourly_duration = Column(Float, nullable=True)

    vehicle_name = Column(String(128), nullable=False, default="Unknown")
    vehicle_category = Column(String(64), nullable=False, default="standard")
    passengers_count = Column(Integer, nullable=False)
    luggage_count = Column(Integer, default=0)
    child_seats_count = Column(Integer, default=0)

    base_price = Column(Numeric(10, 2), nullable=False)
    distance_charge = Column(Numeric(10, 2), nullable=False, default=0)
    time_charge = Column(Numeric(10, 2), nullable=False, default=0)
    extra_stops_charge = Column(Numeric(10, 2), nullable=False, default=0)
    meet_and_greet_charge = Column(Numeric(10, 2), nullable=False, default=0)
    airport_fee = Column(Numeric(10, 2), nullable=False, default=0)
    child_seats_charge = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="EUR")

    flight_number = Column(String(16), nullable=True)
    special_requests = Column(Text, nullable=True)

    booking_status = Column(String(16), nullable=False, default="confirmed")

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
