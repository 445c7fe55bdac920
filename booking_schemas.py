from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["card", "cash"]
PaymentStatus = Literal["pending", "paid", "cancelled", "refunded"]
BookingStatus = Literal["confirmed", "in_progress", "completed", "cancelled"]
SessionPaymentStatus = Literal["paid", "unpaid", "processing"]


class CamelModel(BaseModel):
    # the booking wizard posts camelCase JSON
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(CamelModel):
    address: Optional[str] = None
    place_id: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    type: Optional[str] = None      # airport | hotel | cruise | address | poi
    city: Optional[str] = None
    country: Optional[str] = None


class PickupDateTime(CamelModel):
    date: Optional[str] = None      # YYYY-MM-DD
    time: Optional[str] = None      # HH:MM, 24h
    timezone: Optional[str] = None


class PassengerInfo(CamelModel):
    count: int = 0
    luggage: int = 0
    child_seats: int = 0


class VehicleCapacity(CamelModel):
    passengers: int
    luggage: int


class Vehicle(CamelModel):
    id: Optional[str] = None
    category: str = "standard"
    name: str = "Unknown"
    description: str = ""
    image: str = ""
    capacity: Optional[VehicleCapacity] = None
    features: List[str] = Field(default_factory=list)
    base_price: Decimal = Decimal("0")
    price_per_km: Optional[Decimal] = None
    price_per_hour: Optional[Decimal] = None


class PassengerDetails(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country_code: str = ""
    flight_number: Optional[str] = None
    airline: Optional[str] = None
    special_requests: Optional[str] = None


class AdditionalStop(CamelModel):
    address: str
    place_id: Optional[str] = None
    duration: int = 0               # minutes


class Extras(CamelModel):
    meet_and_greet: bool = False
    waiting_time: int = 0
    additional_stops: List[AdditionalStop] = Field(default_factory=list)
    special_requests: Optional[str] = None


class PriceBreakdown(CamelModel):
    base_price: Decimal
    distance_charge: Decimal
    time_charge: Decimal
    extra_stops_charge: Decimal
    meet_and_greet_charge: Decimal
    child_seats_charge: Decimal
    airport_fee: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    currency: str = "EUR"


class BookingData(CamelModel):
    service_type: Optional[str] = None   # airport | cityToCity | hourly | distance
    pickup: Location = Field(default_factory=Location)
    dropoff: Optional[Location] = None
    distance: Optional[float] = None     # km
    duration: Optional[float] = None     # minutes
    hourly_duration: Optional[float] = None
    date_time: PickupDateTime = Field(default_factory=PickupDateTime)
    passengers: PassengerInfo = Field(default_factory=PassengerInfo)
    selected_vehicle: Optional[Vehicle] = None
    passenger_details: PassengerDetails = Field(default_factory=PassengerDetails)
    extras: Extras = Field(default_factory=Extras)
    # whatever the client computed; kept for shape compatibility, never read
    pricing: Optional[dict] = None


class BookingRequest(CamelModel):
    booking_data: BookingData
    locale: str = "en"


class BookingRecord(BaseModel):
    """A persisted booking row, detached from its database session."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    customer_first_name: str
    customer_last_name: str
    customer_email: str
    customer_phone: str
    customer_country_code: str = ""
    service_type: str
    pickup_address: str
    dropoff_address: str = ""
    pickup_date: date
    pickup_time: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[int] = None
    hourly_duration: Optional[float] = None
    vehicle_name: str
    vehicle_category: str
    passengers_count: int
    luggage_count: int = 0
    child_seats_count: int = 0
    base_price: Decimal
    distance_charge: Decimal
    time_charge: Decimal
    extra_stops_charge: Decimal
    meet_and_greet_charge: Decimal
    airport_fee: Decimal
    child_seats_charge: Decimal
    tax: Decimal
    total_price: Decimal
    currency: str
    flight_number: Optional[str] = None
    special_requests: Optional[str] = None
    booking_status: BookingStatus
    created_at: datetime
    updated_at: datetime


class BookingSummary(CamelModel):
    booking_id: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    customer_email: str
    total_price: float
    created_at: datetime


class BookingDetails(CamelModel):
    booking_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    service_type: str
    pickup_address: str
    dropoff_address: str
    pickup_date: str
    pickup_time: str
    vehicle_name: str
    passengers: int
    luggage: int
    flight_number: Optional[str] = None
    total_price: float
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus

    @classmethod
    def from_record(cls, booking: BookingRecord) -> "BookingDetails":
        return cls(
            booking_id=booking.booking_id,
            customer_name=f"{booking.customer_first_name} {booking.customer_last_name}",
            customer_email=booking.customer_email,
            customer_phone=f"{booking.customer_country_code} {booking.customer_phone}".strip(),
            service_type=booking.service_type,
            pickup_address=booking.pickup_address,
            dropoff_address=booking.dropoff_address,
            pickup_date=booking.pickup_date.isoformat(),
            pickup_time=booking.pickup_time,
            vehicle_name=booking.vehicle_name,
            passengers=booking.passengers_count,
            luggage=booking.luggage_count,
            flight_number=booking.flight_number or None,
            total_price=float(booking.total_price),
            currency=booking.currency,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
        )
