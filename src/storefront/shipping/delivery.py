"""Local delivery eligibility predicates.

The rate engine takes any callable matching ``DeliveryRadiusPredicate``;
the default compares great-circle distance between coordinates and
treats addresses without coordinates as out of range.
"""

from __future__ import annotations

from collections.abc import Callable
import math

from storefront.pricing.models import Address

DeliveryRadiusPredicate = Callable[[Address | None, Address, float], bool]

EARTH_RADIUS_KM = 6371.0088


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def is_within_delivery_radius(
    origin: Address | None, destination: Address, radius_km: float
) -> bool:
    if origin is None or not origin.has_coordinates or not destination.has_coordinates:
        return False
    distance = haversine_km(
        origin.latitude,  # type: ignore[arg-type]
        origin.longitude,  # type: ignore[arg-type]
        destination.latitude,  # type: ignore[arg-type]
        destination.longitude,  # type: ignore[arg-type]
    )
    return distance <= radius_km


def same_city(origin: Address | None, destination: Address, radius_km: float) -> bool:
    """Coarse fallback for deployments without geocoded addresses."""
    if origin is None or not origin.city or not destination.city:
        return False
    return (
        origin.country == destination.country
        and origin.city.strip().casefold() == destination.city.strip().casefold()
    )
