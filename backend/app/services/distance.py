"""
Delivery distance providers.

Estimate the road-independent distance between a car's pickup location and
a customer's delivery address. Providers raise DistanceLookupError when no
estimate can be produced; pricing treats that as an unpriceable delivery.
"""

import logging
import math
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Tuple

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import DistanceLookupError
from backend.app.domain.pricing.money import to_money
from backend.app.models.location import Location

logger = logging.getLogger(__name__)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    # Radius of Earth in kilometers
    R = 6371.0

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


class DistanceProvider(ABC):
    @abstractmethod
    async def distance_km(self, origin: Location, destination_address: str) -> Decimal:
        """Distance in km from origin to the address, rounded to 2 places."""


class FixedDistanceProvider(DistanceProvider):
    """Returns the same distance for every address. Used offline and in tests."""

    def __init__(self, distance_km: Optional[Decimal] = None):
        self._distance_km = to_money(
            distance_km if distance_km is not None else settings.fixed_delivery_distance_km
        )

    async def distance_km(self, origin: Location, destination_address: str) -> Decimal:
        return self._distance_km


class GeocodingDistanceProvider(DistanceProvider):
    """Geocodes the address with a Nominatim-compatible API and measures the haversine distance."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.geocoding_api_url
        self._client = client

    async def distance_km(self, origin: Location, destination_address: str) -> Decimal:
        if origin is None or origin.latitude is None or origin.longitude is None:
            raise DistanceLookupError(
                "Pickup location has no coordinates",
                details={"location_id": getattr(origin, "id", None)},
            )

        lat, lng = await self.geocode(destination_address)
        km = haversine_distance(float(origin.latitude), float(origin.longitude), lat, lng)
        return to_money(km)

    async def geocode(self, address: str) -> Tuple[float, float]:
        params = {"q": address, "format": "json", "limit": 1}
        headers = {"User-Agent": settings.geocoding_user_agent}

        try:
            if self._client is not None:
                resp = await self._client.get(self.base_url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.geocoding_timeout_seconds) as client:
                    resp = await client.get(self.base_url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Geocoding request failed for %r: %s", address, exc)
            raise DistanceLookupError("Geocoding service unavailable", details={"address": address}) from exc

        if resp.status_code != 200:
            logger.warning("Geocoding returned HTTP %s for %r", resp.status_code, address)
            raise DistanceLookupError(
                "Geocoding service returned an error",
                details={"address": address, "status_code": resp.status_code},
            )

        try:
            results = resp.json()
        except ValueError as exc:
            logger.warning("Geocoding returned a non-JSON body for %r", address)
            raise DistanceLookupError("Unusable geocoding response", details={"address": address}) from exc

        if not results:
            raise DistanceLookupError("Address could not be located", details={"address": address})

        try:
            return float(results[0]["lat"]), float(results[0]["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DistanceLookupError("Unusable geocoding response", details={"address": address}) from exc


def get_distance_provider() -> DistanceProvider:
    """Provider selected by DISTANCE_PROVIDER (geocoding | fixed)."""
    if settings.distance_provider == "fixed":
        return FixedDistanceProvider()
    return GeocodingDistanceProvider()
