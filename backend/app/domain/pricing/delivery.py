"""
Delivery fee calculation.

Rules are checked in order and the first failing rule short-circuits with
allowed=False and a zero fee. Ineligibility is reported in the returned
block, never raised.
"""

import logging
from decimal import Decimal
from typing import Optional

from backend.app.core.exceptions import DistanceLookupError
from backend.app.domain.pricing.money import to_decimal, to_money
from backend.app.models.car import Car
from backend.app.models.location import Location
from backend.app.schemas.pricing import DeliveryBlock, DeliveryErrorKind
from backend.app.services.distance import DistanceProvider

logger = logging.getLogger(__name__)


class DeliveryFeeCalculator:
    """Validates delivery eligibility and prices it per km."""

    def __init__(self, distance_provider: DistanceProvider):
        self.distance_provider = distance_provider

    async def calculate(
        self,
        requested: bool,
        address: Optional[str],
        pickup_location: Optional[Location],
        car: Car,
    ) -> DeliveryBlock:
        """
        Price delivery of `car` from its pickup location to `address`.

        Args:
            requested: Whether the customer asked for delivery
            address: Delivery address
            pickup_location: Location the car is delivered from
            car: Car being rented

        Returns:
            DeliveryBlock; `distance_km` is still reported when the distance
            exceeds the car's maximum
        """
        if not requested:
            return DeliveryBlock(requested=False)

        if not car.is_delivery_available:
            return _refused(DeliveryErrorKind.DELIVERY_NOT_OFFERED, "This car does not offer delivery service.")

        if car.delivery_fee_per_km is None:
            return _refused(DeliveryErrorKind.DELIVERY_RATE_MISSING, "Delivery rate not configured for this car.")

        fee_per_km = to_money(car.delivery_fee_per_km)

        if not address:
            return _refused(
                DeliveryErrorKind.DELIVERY_ADDRESS_MISSING,
                "A delivery address is required.",
                fee_per_km=fee_per_km,
            )

        try:
            distance_km = await self.distance_provider.distance_km(pickup_location, address)
        except DistanceLookupError as exc:
            logger.warning("Delivery distance unavailable for car %s: %s", car.id, exc.message)
            return _refused(
                DeliveryErrorKind.DISTANCE_UNAVAILABLE,
                "Delivery distance could not be determined.",
                fee_per_km=fee_per_km,
            )

        distance_km = to_money(distance_km)

        if car.max_delivery_distance_km is not None and distance_km > to_decimal(car.max_delivery_distance_km):
            return _refused(
                DeliveryErrorKind.DISTANCE_EXCEEDED,
                f"Delivery distance ({distance_km}km) exceeds maximum allowed ({car.max_delivery_distance_km}km).",
                distance_km=distance_km,
                fee_per_km=fee_per_km,
            )

        return DeliveryBlock(
            requested=True,
            allowed=True,
            fee=to_money(distance_km * fee_per_km),
            distance_km=distance_km,
            fee_per_km=fee_per_km,
        )


def _refused(
    kind: DeliveryErrorKind,
    message: str,
    distance_km: Optional[Decimal] = None,
    fee_per_km: Optional[Decimal] = None,
) -> DeliveryBlock:
    return DeliveryBlock(
        requested=True,
        allowed=False,
        distance_km=distance_km,
        fee_per_km=fee_per_km,
        error_kind=kind,
        error_message=message,
    )
