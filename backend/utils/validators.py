"""
Validation utilities for fire-aware routing requests.

Provides centralized validation logic for:
- Coordinate ranges (latitude/longitude)
- Avoid-buffer distances and departure times
- Share-link TTLs and route-link ids
- RouteSpec documents posted to the route-link endpoint

Every validator returns plain booleans or (is_valid, error_message) tuples;
nothing here raises on bad user input.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from utils.geo import MAX_BUFFER_KM, MIN_BUFFER_KM, is_valid_buffer_km, is_valid_coordinates


class CoordinateValidator:
    """Validator for geographic coordinates."""

    @staticmethod
    def validate_coordinates(lat: float, lon: float) -> bool:
        """
        Validate latitude and longitude ranges.

        Examples:
            >>> CoordinateValidator.validate_coordinates(34.0522, -118.2437)
            True
            >>> CoordinateValidator.validate_coordinates(91, 0)  # Invalid latitude
            False
            >>> CoordinateValidator.validate_coordinates(0, 181)  # Invalid longitude
            False
        """
        return is_valid_coordinates(lat, lon)

    @staticmethod
    def validate_coordinate_dict(coord: Dict[str, float]) -> bool:
        """
        Validate coordinate dictionary with 'lat' and 'lon' keys.

        Examples:
            >>> CoordinateValidator.validate_coordinate_dict({'lat': 34.0522, 'lon': -118.2437})
            True
            >>> CoordinateValidator.validate_coordinate_dict({'invalid': 'keys'})
            False
        """
        try:
            return CoordinateValidator.validate_coordinates(coord['lat'], coord['lon'])
        except (KeyError, TypeError):
            return False


class RoutingRequestValidator:
    """Validator for the optional knobs of a fire-aware routing request."""

    DEFAULT_AVOID_BUFFER_METERS = 2000.0

    # Share links live between one minute and thirty days
    MIN_SHARE_LINK_TTL_MINUTES = 1
    MAX_SHARE_LINK_TTL_MINUTES = 30 * 24 * 60

    MAX_ADDRESS_LENGTH = 500

    @staticmethod
    def parse_buffer_km(avoid_buffer_meters: Optional[Any]) -> Tuple[Optional[float], Optional[str]]:
        """
        Convert an optional buffer in meters to kilometers and range-check it.

        Returns:
            (buffer_km, None) when valid, (None, error_message) otherwise

        Examples:
            >>> RoutingRequestValidator.parse_buffer_km(None)
            (2.0, None)
            >>> RoutingRequestValidator.parse_buffer_km(500)
            (0.5, None)
            >>> RoutingRequestValidator.parse_buffer_km(150000)
            (None, 'Buffer distance must be between 0 and 100 km')
        """
        if avoid_buffer_meters is None:
            avoid_buffer_meters = RoutingRequestValidator.DEFAULT_AVOID_BUFFER_METERS

        if isinstance(avoid_buffer_meters, bool):
            return None, 'avoidBufferMeters must be a number'

        try:
            buffer_km = float(avoid_buffer_meters) / 1000.0
        except (TypeError, ValueError):
            return None, 'avoidBufferMeters must be a number'

        if not is_valid_buffer_km(buffer_km):
            return None, f'Buffer distance must be between {MIN_BUFFER_KM:g} and {MAX_BUFFER_KM:g} km'

        return buffer_km, None

    @staticmethod
    def parse_depart_at(depart_at_iso_utc: Optional[str]) -> Tuple[Optional[datetime], Optional[str]]:
        """
        Parse an optional ISO-8601 departure time, normalizing to UTC.

        Naive timestamps are taken as UTC.

        Examples:
            >>> RoutingRequestValidator.parse_depart_at(None)
            (None, None)
            >>> RoutingRequestValidator.parse_depart_at('not-a-date')
            (None, 'Invalid departAtIsoUtc format')
        """
        if depart_at_iso_utc is None or depart_at_iso_utc == '':
            return None, None

        if not isinstance(depart_at_iso_utc, str):
            return None, 'Invalid departAtIsoUtc format'

        try:
            parsed = datetime.fromisoformat(depart_at_iso_utc.strip().replace('Z', '+00:00'))
        except ValueError:
            return None, 'Invalid departAtIsoUtc format'

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc), None

    @staticmethod
    def parse_share_link_ttl(ttl_minutes: Optional[Any]) -> Tuple[Optional[int], Optional[str]]:
        """
        Validate an optional share-link TTL in minutes.

        None or a non-positive value means "use the default TTL".
        """
        if ttl_minutes is None or isinstance(ttl_minutes, bool):
            return None, None

        try:
            value = int(ttl_minutes)
        except (TypeError, ValueError):
            return None, 'shareLinkTtlMinutes must be an integer'

        if value <= 0:
            return None, None

        if value > RoutingRequestValidator.MAX_SHARE_LINK_TTL_MINUTES:
            return None, (
                f'shareLinkTtlMinutes must be at most '
                f'{RoutingRequestValidator.MAX_SHARE_LINK_TTL_MINUTES}'
            )

        return value, None

    @staticmethod
    def validate_address(address: Any, field_name: str = 'address') -> Tuple[bool, Optional[str]]:
        """Check that a free-text address is present and of sane length."""
        if not isinstance(address, str) or not address.strip():
            return False, f'{field_name} is required'
        if len(address) > RoutingRequestValidator.MAX_ADDRESS_LENGTH:
            return False, f'{field_name} is too long (max {RoutingRequestValidator.MAX_ADDRESS_LENGTH} characters)'
        return True, None


class RouteLinkValidator:
    """Validator for route-link ids and posted RouteSpec documents."""

    LINK_ID_PATTERN = re.compile(r'^[0-9a-f]{12}$')

    @staticmethod
    def validate_link_id(link_id: Any) -> bool:
        """
        Route-link ids are exactly 12 lowercase hex characters.

        Examples:
            >>> RouteLinkValidator.validate_link_id('0a1b2c3d4e5f')
            True
            >>> RouteLinkValidator.validate_link_id('../secret')
            False
        """
        return isinstance(link_id, str) and bool(RouteLinkValidator.LINK_ID_PATTERN.match(link_id))

    @staticmethod
    def validate_route_spec(spec: Any) -> Tuple[bool, Optional[str]]:
        """
        Validate a RouteSpec: a FeatureCollection of at least two Point
        features (origin first, destination last) with valid [lon, lat]
        coordinates, plus an optional avoidAreas MultiPolygon.
        """
        if not isinstance(spec, dict):
            return False, 'Invalid route specification'

        features = spec.get('features')
        if not isinstance(features, list) or len(features) < 2:
            return False, 'Route specification needs at least two point features'

        for index, feature in enumerate(features):
            geometry = feature.get('geometry') if isinstance(feature, dict) else None
            if not isinstance(geometry, dict) or geometry.get('type') != 'Point':
                return False, f'Feature {index} must have Point geometry'

            coordinates = geometry.get('coordinates')
            if not isinstance(coordinates, list) or len(coordinates) < 2:
                return False, f'Feature {index} has invalid coordinates'

            lon, lat = coordinates[0], coordinates[1]
            if not is_valid_coordinates(lat, lon):
                return False, f'Feature {index} coordinates are out of range'

        avoid_areas = spec.get('avoidAreas')
        if avoid_areas is not None:
            if not isinstance(avoid_areas, dict) or avoid_areas.get('type') != 'MultiPolygon':
                return False, 'avoidAreas must be a MultiPolygon'
            if not isinstance(avoid_areas.get('coordinates'), list):
                return False, 'avoidAreas must have coordinates'

        ttl = spec.get('ttlMinutes')
        if ttl is not None:
            _, error = RoutingRequestValidator.parse_share_link_ttl(ttl)
            if error:
                return False, error

        return True, None
