import math
import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from booking_schemas import BookingData, Location, PriceBreakdown, Vehicle, VehicleCapacity
from errors import InvalidPricing

CENT = Decimal("0.01")
CURRENCY = "EUR"
DEFAULT_HOURLY_DURATION = 4
AIRPORT_MARKERS = ("airport", "bcn", "el prat")


def _vehicle(id, category, name, passengers, luggage, base, per_km, per_hour):
    return Vehicle(
        id=id,
        category=category,
        name=name,
        capacity=VehicleCapacity(passengers=passengers, luggage=luggage),
        base_price=Decimal(base),
        price_per_km=Decimal(per_km),
        price_per_hour=Decimal(per_hour),
    )


VEHICLES: List[Vehicle] = [
    _vehicle("tesla-model-3", "standard", "Tesla Model 3", 3, 2, "35", "1.2", "45"),
    _vehicle("toyota-prius", "standard", "Toyota Prius+", 4, 3, "33", "1.0", "40"),
    _vehicle("mercedes-e-class", "luxury-sedan", "Mercedes E-Class", 3, 2, "55", "1.8", "70"),
    _vehicle("bmw-5-series", "luxury-sedan", "BMW 5 Series", 3, 2, "55", "1.8", "70"),
    _vehicle("mercedes-s-class", "luxury-sedan", "Mercedes S-Class", 3, 2, "103", "2.5", "120"),
    _vehicle("mercedes-vito", "8-seater-van", "Mercedes Vito", 8, 8, "75", "1.5", "85"),
    _vehicle("ford-tourneo", "8-seater-van", "Ford Tourneo Custom", 8, 7, "73", "1.4", "82"),
    _vehicle("mercedes-v-class", "luxury-van", "Mercedes V-Class", 7, 7, "95", "2.0", "110"),
]


@dataclass(frozen=True)
class PricingRules:
    airport_fee: Decimal = Decimal("5")
    meet_and_greet_fee: Decimal = Decimal("15")
    child_seat_fee: Decimal = Decimal("5")          # per seat
    additional_stop_fee: Decimal = Decimal("10")    # per stop
    tax_rate: Decimal = Decimal("21")               # percent, Spanish VAT
    currency: str = CURRENCY
    # the only vehicles that can be priced; client-sent rates are never used
    vehicles: Tuple[Vehicle, ...] = tuple(VEHICLES)


PRICING_RULES = PricingRules()


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def find_vehicle(vehicle_id: Optional[str], vehicles=VEHICLES) -> Optional[Vehicle]:
    for vehicle in vehicles:
        if vehicle.id == vehicle_id:
            return vehicle
    return None


def filter_available_vehicles(passengers: int, luggage: int, vehicles: List[Vehicle] = VEHICLES) -> List[Vehicle]:
    return [
        v for v in vehicles
        if v.capacity and v.capacity.passengers >= passengers and v.capacity.luggage >= luggage
    ]


def recommended_vehicle(passengers: int, luggage: int, vehicles: List[Vehicle] = VEHICLES) -> Optional[Vehicle]:
    """Cheapest vehicle that fits the party, or None."""
    available = filter_available_vehicles(passengers, luggage, vehicles)
    if not available:
        return None
    return min(available, key=lambda v: v.base_price)


def is_airport_location(location: Optional[Location]) -> bool:
    if location is None or not location.address:
        return False
    if location.type == "airport":
        return True
    address = location.address.lower()
    return any(marker in address for marker in AIRPORT_MARKERS)


def haversine_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Straight-line distance between two coordinates, rounded to 0.1 km.
    Only an estimate; quoted prices use the driving distance the client sends.
    """
    radius = 6371
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(radius * c, 1)


def _quantity(value: Optional[float], name: str) -> Optional[Decimal]:
    if value is None:
        return None
    if not math.isfinite(value) or value < 0:
        raise InvalidPricing(f"Invalid {name}: {value}")
    return Decimal(str(value))


def calculate_price(booking_data: BookingData, distance: Optional[float] = None,
                    rules: PricingRules = PRICING_RULES) -> PriceBreakdown:
    """
    Compute the authoritative price for a booking.

    Rates always come from `rules.vehicles`; only the submitted vehicle id is
    read. Every component is rounded to cents before summing, which keeps
    total == subtotal + tax and subtotal == sum(components) exact.

    Raises InvalidPricing when no known vehicle is selected, a distance or
    duration is negative or not finite, or the total is not positive.
    """
    submitted = booking_data.selected_vehicle
    if submitted is None:
        raise InvalidPricing("No vehicle selected")
    vehicle = find_vehicle(submitted.id, rules.vehicles)
    if vehicle is None:
        raise InvalidPricing(f"Unknown vehicle: {submitted.id}")

    base_price = money(vehicle.base_price)
    distance_charge = money(0)
    time_charge = money(0)

    if booking_data.service_type == "hourly":
        hours = _quantity(booking_data.hourly_duration, "hourly duration") or DEFAULT_HOURLY_DURATION
        if vehicle.price_per_hour:
            time_charge = money(vehicle.price_per_hour * hours)
    else:
        km = _quantity(distance, "distance")
        if km and vehicle.price_per_km:
            distance_charge = money(vehicle.price_per_km * km)

    airport_fee = money(0)
    if is_airport_location(booking_data.pickup) or is_airport_location(booking_data.dropoff):
        airport_fee = money(rules.airport_fee)

    meet_and_greet_charge = money(rules.meet_and_greet_fee if booking_data.extras.meet_and_greet else 0)
    child_seats_charge = money(rules.child_seat_fee * max(booking_data.passengers.child_seats, 0))
    extra_stops_charge = money(rules.additional_stop_fee * len(booking_data.extras.additional_stops))

    subtotal = (
        base_price
        + distance_charge
        + time_charge
        + extra_stops_charge
        + meet_and_greet_charge
        + child_seats_charge
        + airport_fee
    )
    components = (
        base_price, distance_charge, time_charge, extra_stops_charge,
        meet_and_greet_charge, child_seats_charge, airport_fee,
    )
    if any(c < 0 for c in components):
        raise InvalidPricing("Negative price component")

    tax = money(subtotal * rules.tax_rate / 100)
    total = subtotal + tax

    if total <= 0:
        raise InvalidPricing("Invalid pricing calculation")

    return PriceBreakdown(
        base_price=base_price,
        distance_charge=distance_charge,
        time_charge=time_charge,
        extra_stops_charge=extra_stops_charge,
        meet_and_greet_charge=meet_and_greet_charge,
        child_seats_charge=child_seats_charge,
        airport_fee=airport_fee,
        subtotal=subtotal,
        tax=tax,
        total=total,
        currency=rules.currency,
    )


_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_booking_id() -> str:
    """RT-<base36 millis>-<7 random base36 chars>, e.g. RT-MG3K2P1A-X8Q2L0Z."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"RT-{timestamp}-{suffix}"
