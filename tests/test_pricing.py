import re
from decimal import Decimal

import pytest

from conftest import FLAT_RULES, booking_data
from errors import InvalidPricing
from pricing import (
    PRICING_RULES,
    PricingRules,
    calculate_price,
    filter_available_vehicles,
    find_vehicle,
    generate_booking_id,
    haversine_distance_km,
    is_airport_location,
    recommended_vehicle,
)
from booking_schemas import Location, Vehicle


def test_fleet_vehicle_rates_override_client_rates():
    data = booking_data(selectedVehicle={"id": "toyota-prius", "name": "Toyota Prius+", "basePrice": 1,
                                         "pricePerKm": 0.01})
    price = calculate_price(data, 10)
    assert price.base_price == Decimal("33.00")
    assert price.distance_charge == Decimal("10.00")
    assert price.subtotal == Decimal("43.00")
    assert price.tax == Decimal("9.03")
    assert price.total == Decimal("52.03")


def test_components_sum_to_total():
    data = booking_data(
        pickup={"address": "Barcelona Airport (BCN) Terminal 1"},
        passengers={"count": 3, "luggage": 2, "childSeats": 2},
        extras={"meetAndGreet": True, "additionalStops": [{"address": "Placa Catalunya"}]},
        selectedVehicle={"id": "mercedes-e-class"},
    )
    price = calculate_price(data, 17.3)
    components = (
        price.base_price + price.distance_charge + price.time_charge + price.extra_stops_charge
        + price.meet_and_greet_charge + price.child_seats_charge + price.airport_fee
    )
    assert price.airport_fee == Decimal("5.00")
    assert price.child_seats_charge == Decimal("10.00")
    assert price.meet_and_greet_charge == Decimal("15.00")
    assert price.extra_stops_charge == Decimal("10.00")
    assert components == price.subtotal
    assert price.subtotal + price.tax == price.total


def test_hourly_service_charges_time_not_distance():
    data = booking_data(serviceType="hourly", hourlyDuration=6, dropoff=None,
                        selectedVehicle={"id": "mercedes-vito"})
    price = calculate_price(data, 50)
    assert price.distance_charge == Decimal("0.00")
    assert price.time_charge == Decimal("510.00")


def test_hourly_defaults_to_four_hours():
    data = booking_data(serviceType="hourly", selectedVehicle={"id": "tesla-model-3"})
    assert calculate_price(data).time_charge == Decimal("180.00")


def test_missing_vehicle_is_invalid():
    with pytest.raises(InvalidPricing):
        calculate_price(booking_data(selectedVehicle=None), 10)


def test_zero_total_is_invalid():
    rules = PricingRules(tax_rate=Decimal("0"), vehicles=(Vehicle(id="free-ride"),))
    data = booking_data(selectedVehicle={"id": "free-ride"})
    with pytest.raises(InvalidPricing):
        calculate_price(data, None, rules)


def test_unknown_vehicle_is_never_priced_from_client_rates():
    data = booking_data(selectedVehicle={"id": "made-up", "basePrice": "0.01", "pricePerKm": "0"})
    with pytest.raises(InvalidPricing):
        calculate_price(data, 10)
    with pytest.raises(InvalidPricing):
        calculate_price(data, 10, FLAT_RULES)


def test_injected_fleet_ignores_client_base_price():
    assert calculate_price(booking_data(), 38.5, FLAT_RULES).total == Decimal("45.00")


@pytest.mark.parametrize("overrides, distance", [
    ({"selectedVehicle": {"id": "mercedes-s-class"}}, -40),
    ({"selectedVehicle": {"id": "mercedes-s-class"}}, float("nan")),
    ({"selectedVehicle": {"id": "mercedes-s-class"}}, float("inf")),
    ({"serviceType": "hourly", "hourlyDuration": -0.7, "selectedVehicle": {"id": "mercedes-s-class"}}, None),
    ({"serviceType": "hourly", "hourlyDuration": float("nan"), "selectedVehicle": {"id": "tesla-model-3"}}, None),
])
def test_negative_or_non_finite_quantities_are_invalid(overrides, distance):
    with pytest.raises(InvalidPricing):
        calculate_price(booking_data(**overrides), distance)


def test_negative_child_seats_cannot_discount():
    data = booking_data(passengers={"count": 1, "childSeats": -5}, selectedVehicle={"id": "tesla-model-3"})
    assert calculate_price(data, None).child_seats_charge == Decimal("0.00")


def test_deterministic():
    data = booking_data(selectedVehicle={"id": "bmw-5-series"})
    assert calculate_price(data, 22.4) == calculate_price(data, 22.4)


def test_default_rules_include_vat():
    assert PRICING_RULES.tax_rate == Decimal("21")
    price = calculate_price(booking_data(selectedVehicle={"id": "tesla-model-3"}), None)
    assert price.tax == Decimal("7.35")
    assert price.total == Decimal("42.35")


@pytest.mark.parametrize("location, expected", [
    (Location(address="Aeropuerto El Prat T2"), True),
    (Location(address="Some street", type="airport"), True),
    (Location(address="BCN terminal"), True),
    (Location(address="Sagrada Familia"), False),
    (Location(), False),
    (None, False),
])
def test_is_airport_location(location, expected):
    assert is_airport_location(location) is expected


def test_vehicle_lookups():
    assert find_vehicle("mercedes-v-class").name == "Mercedes V-Class"
    assert find_vehicle("nope") is None
    vans = filter_available_vehicles(passengers=6, luggage=6)
    assert {v.id for v in vans} == {"mercedes-vito", "ford-tourneo", "mercedes-v-class"}
    assert recommended_vehicle(passengers=2, luggage=1).id == "toyota-prius"
    assert recommended_vehicle(passengers=12, luggage=0) is None


def test_haversine_distance():
    # Barcelona airport to Placa Catalunya, roughly 12 km as the crow flies
    assert 11 < haversine_distance_km(41.2974, 2.0833, 41.3870, 2.1701) < 13


def test_generate_booking_id_format():
    first, second = generate_booking_id(), generate_booking_id()
    assert re.match(r"^RT-[0-9A-Z]+-[0-9A-Z]{7}$", first)
    assert first != second
