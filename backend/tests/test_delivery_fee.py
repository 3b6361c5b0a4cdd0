"""
Delivery fee calculation tests.
"""

import pytest
from decimal import Decimal

import httpx

from backend.app.core.exceptions import DistanceLookupError
from backend.app.domain.pricing.delivery import DeliveryFeeCalculator
from backend.app.models.car import Car
from backend.app.models.location import Location
from backend.app.schemas.pricing import DeliveryErrorKind
from backend.app.services.distance import (
    FixedDistanceProvider,
    GeocodingDistanceProvider,
    haversine_distance,
)

ADDRESS = "72 Le Thanh Ton, District 1, Ho Chi Minh City"


def make_car(**overrides) -> Car:
    fields = dict(
        id=1,
        owner_id=1,
        model="Vios",
        hourly_rate=Decimal("50000"),
        daily_rate=Decimal("400000"),
        is_delivery_available=True,
        delivery_fee_per_km=Decimal("10000"),
        max_delivery_distance_km=20,
    )
    fields.update(overrides)
    return Car(**fields)


def make_location() -> Location:
    return Location(id=1, name="Hub", latitude=Decimal("10.77258000"), longitude=Decimal("106.69805000"))


class FailingDistanceProvider(FixedDistanceProvider):
    async def distance_km(self, origin, destination_address):
        raise DistanceLookupError("Geocoding service unavailable")


@pytest.mark.asyncio
async def test_not_requested_is_free_and_not_allowed():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("5")))

    block = await calculator.calculate(False, ADDRESS, make_location(), make_car())

    assert block.requested is False
    assert block.allowed is False
    assert block.fee == Decimal("0.00")
    assert block.error_kind is None


@pytest.mark.asyncio
async def test_car_without_delivery_is_refused_before_distance(mocker):
    """Delivery on a car that does not offer it is refused whatever the distance."""
    provider = FixedDistanceProvider(Decimal("1"))
    spy = mocker.spy(provider, "distance_km")
    calculator = DeliveryFeeCalculator(provider)

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car(is_delivery_available=False))

    assert block.allowed is False
    assert block.fee == Decimal("0.00")
    assert block.error_kind == DeliveryErrorKind.DELIVERY_NOT_OFFERED
    assert block.error_message == "This car does not offer delivery service."
    spy.assert_not_called()


@pytest.mark.asyncio
async def test_missing_rate_is_refused():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("5")))

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car(delivery_fee_per_km=None))

    assert block.allowed is False
    assert block.error_kind == DeliveryErrorKind.DELIVERY_RATE_MISSING


@pytest.mark.asyncio
@pytest.mark.parametrize("address", [None, ""])
async def test_missing_address_is_refused(address):
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("5")))

    block = await calculator.calculate(True, address, make_location(), make_car())

    assert block.allowed is False
    assert block.error_kind == DeliveryErrorKind.DELIVERY_ADDRESS_MISSING


@pytest.mark.asyncio
async def test_distance_lookup_failure_is_reported_not_raised():
    calculator = DeliveryFeeCalculator(FailingDistanceProvider())

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car())

    assert block.allowed is False
    assert block.fee == Decimal("0.00")
    assert block.error_kind == DeliveryErrorKind.DISTANCE_UNAVAILABLE


@pytest.mark.asyncio
async def test_distance_over_maximum_still_reports_distance():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("25.5")))

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car())

    assert block.allowed is False
    assert block.fee == Decimal("0.00")
    assert block.distance_km == Decimal("25.50")
    assert block.error_kind == DeliveryErrorKind.DISTANCE_EXCEEDED
    assert block.error_message == "Delivery distance (25.50km) exceeds maximum allowed (20km)."


@pytest.mark.asyncio
async def test_distance_at_maximum_is_allowed():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("20")))

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car())

    assert block.allowed is True
    assert block.fee == Decimal("200000.00")


@pytest.mark.asyncio
async def test_fee_is_distance_times_rate():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("7.35")))

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car())

    assert block.requested is True
    assert block.allowed is True
    assert block.distance_km == Decimal("7.35")
    assert block.fee_per_km == Decimal("10000.00")
    assert block.fee == Decimal("73500.00")
    assert block.error_kind is None


@pytest.mark.asyncio
async def test_no_maximum_means_any_distance():
    calculator = DeliveryFeeCalculator(FixedDistanceProvider(Decimal("150")))

    block = await calculator.calculate(True, ADDRESS, make_location(), make_car(max_delivery_distance_km=None))

    assert block.allowed is True
    assert block.fee == Decimal("1500000.00")


# Distance providers

def test_haversine_same_point_is_zero():
    assert haversine_distance(10.77, 106.69, 10.77, 106.69) == 0


def test_haversine_one_degree_of_latitude():
    """One degree of latitude is roughly 111km."""
    assert 110 < haversine_distance(10.0, 106.0, 11.0, 106.0) < 112


@pytest.mark.asyncio
async def test_geocoding_provider_measures_from_pickup_location():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == ADDRESS
        assert request.url.params["format"] == "json"
        assert "User-Agent" in request.headers
        return httpx.Response(200, json=[{"lat": "10.78258000", "lon": "106.69805000"}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        provider = GeocodingDistanceProvider(client=http)
        km = await provider.distance_km(make_location(), ADDRESS)

    # 0.01 degree of latitude
    assert Decimal("1.10") <= km <= Decimal("1.12")


@pytest.mark.asyncio
async def test_geocoding_provider_unknown_address_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))

    async with httpx.AsyncClient(transport=transport) as http:
        provider = GeocodingDistanceProvider(client=http)
        with pytest.raises(DistanceLookupError):
            await provider.distance_km(make_location(), "nowhere")


@pytest.mark.asyncio
async def test_geocoding_provider_http_error_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async with httpx.AsyncClient(transport=transport) as http:
        provider = GeocodingDistanceProvider(client=http)
        with pytest.raises(DistanceLookupError):
            await provider.distance_km(make_location(), ADDRESS)


@pytest.mark.asyncio
async def test_geocoding_provider_needs_coordinates():
    provider = GeocodingDistanceProvider()

    with pytest.raises(DistanceLookupError):
        await provider.distance_km(Location(id=2, name="No coords"), ADDRESS)


@pytest.mark.asyncio
async def test_geocoding_html_page_degrades_delivery_block():
    """A rate-limit page served with HTTP 200 is an unavailable distance, not a crash."""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>rate limited</html>"))

    async with httpx.AsyncClient(transport=transport) as http:
        calculator = DeliveryFeeCalculator(GeocodingDistanceProvider(client=http))
        block = await calculator.calculate(True, ADDRESS, make_location(), make_car())

    assert block.allowed is False
    assert block.fee == Decimal("0.00")
    assert block.error_kind == DeliveryErrorKind.DISTANCE_UNAVAILABLE
