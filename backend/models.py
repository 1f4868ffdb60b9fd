"""
Value types shared by the fire-aware routing services.

All coordinates are WGS84 decimal degrees. GeoJSON order is [lon, lat];
the dataclasses below always name their fields explicitly to avoid mixing
the two orders up.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass(frozen=True)
class Coordinate:
    """Immutable latitude/longitude pair"""
    lat: float
    lon: float

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lon': self.lon}


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned lat/lon box.

    Invariant: min_lat <= max_lat and min_lon <= max_lon.
    """
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def expanded(self, buffer_degrees: float) -> 'BoundingBox':
        """Grow every edge outward by buffer_degrees."""
        return type(self)(
            min_lat=self.min_lat - buffer_degrees,
            min_lon=self.min_lon - buffer_degrees,
            max_lat=self.max_lat + buffer_degrees,
            max_lon=self.max_lon + buffer_degrees,
        )

    def cache_key(self, prefix: str) -> str:
        """
        Stable cache key, rounded to 3 decimals (~110 m) so that nearby
        queries share a perimeter cache entry.
        """
        return (
            f"{prefix}-{self.min_lat:.3f}-{self.min_lon:.3f}"
            f"-{self.max_lat:.3f}-{self.max_lon:.3f}"
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            'minLat': self.min_lat,
            'minLon': self.min_lon,
            'maxLat': self.max_lat,
            'maxLon': self.max_lon,
        }


@dataclass(frozen=True)
class AvoidRectangle(BoundingBox):
    """
    Box a routing provider is told to route around.

    str() gives the canonical "minLon,minLat,maxLon,maxLat" label used in
    responses, logs and route-link ids.
    """

    def __str__(self) -> str:
        return f"{self.min_lon},{self.min_lat},{self.max_lon},{self.max_lat}"

    def to_route_param(self) -> str:
        # Azure Maps avoidAreas syntax: "minLat,minLon:maxLat,maxLon"
        return f"{self.min_lat},{self.min_lon}:{self.max_lat},{self.max_lon}"

    @classmethod
    def parse(cls, label: str) -> 'AvoidRectangle':
        """Inverse of str(); raises ValueError on malformed labels."""
        parts = [p.strip() for p in label.split(',')]
        if len(parts) != 4:
            raise ValueError(f"Avoid rectangle label needs 4 numbers: {label!r}")
        min_lon, min_lat, max_lon, max_lat = (float(p) for p in parts)
        return cls(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


@dataclass(frozen=True)
class FireZoneInfo:
    """Result of a point-in-fire-perimeter check. Never cached."""
    is_in_fire_zone: bool = False
    fire_zone_name: str = ''
    incident_name: str = ''
    containment_percent: Optional[float] = None
    acres_burned: Optional[float] = None
    last_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isInFireZone': self.is_in_fire_zone,
            'fireZoneName': self.fire_zone_name,
            'incidentName': self.incident_name,
            'containmentPercent': self.containment_percent,
            'acresBurned': self.acres_burned,
            'lastUpdate': _iso_utc(self.last_update),
        }


@dataclass(frozen=True)
class RouteLinkRecord:
    """Handle to a stored, shareable route-link artifact."""
    id: str
    url: str
    created_at: datetime
    expires_at: Optional[datetime]
    reused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'url': self.url,
            'createdAt': _iso_utc(self.created_at),
            'expiresAt': _iso_utc(self.expires_at),
            'reused': self.reused,
        }


LOOKUP_OK = 'ok'
LOOKUP_NOT_FOUND = 'not_found'
LOOKUP_EXPIRED = 'expired'


@dataclass(frozen=True)
class RouteLinkLookup:
    """Outcome of resolving a public route link by id."""
    status: str
    link_id: str
    payload: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None

    @property
    def found(self) -> bool:
        return self.status == LOOKUP_OK


@dataclass(frozen=True)
class GeocodingResult:
    address: str
    coordinates: Coordinate
    formatted_address: str = ''
    confidence: str = 'Unknown'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'coordinates': self.coordinates.to_dict(),
            'formattedAddress': self.formatted_address,
            'confidence': self.confidence,
        }
