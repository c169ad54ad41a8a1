import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

EARTH_RADIUS_KM = 6371.0

@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

class AddressNotFound(Exception):
    """The resolver has no location for the given address"""

class AddressResolver(ABC):
    """Turns a free-text address into coordinates."""

    @abstractmethod
    async def resolve(self, address: str) -> GeoPoint:
        """Return the location of ``address`` or raise AddressNotFound"""

class NullAddressResolver(AddressResolver):
    """Resolver used when no geocoding provider is configured"""

    async def resolve(self, address: str) -> GeoPoint:
        raise AddressNotFound(address)

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))

def get_address_resolver(request: Request) -> AddressResolver:
    return request.app.state.address_resolver
