"""
Geospatial utilities for fire-aware routing.
Includes coordinate validation and the km-to-degree buffer approximation.
"""
import math

# Fixed ratio used for every buffer: 1 degree ~= 111 km on both axes.
# Longitude convergence toward the poles is deliberately not corrected.
KM_PER_DEGREE = 111.0

# Allowed avoid-buffer range for routing requests
MIN_BUFFER_KM = 0.0
MAX_BUFFER_KM = 100.0


def km_to_degrees(distance_km: float) -> float:
    """
    Convert a buffer distance to degrees using the flat 111 km/degree ratio.

    Args:
        distance_km: Buffer distance in kilometers

    Returns:
        Buffer distance in decimal degrees

    Examples:
        >>> km_to_degrees(111.0)
        1.0
        >>> km_to_degrees(0)
        0.0
    """
    return distance_km / KM_PER_DEGREE


def is_valid_coordinates(latitude: float, longitude: float) -> bool:
    """
    Validate geographic coordinates, including edge cases at equator and prime meridian.

    Edge Cases Handled:
        - Equator (latitude = 0): Valid
        - Prime Meridian (longitude = 0): Valid
        - Poles (latitude = ±90): Valid endpoints
        - Antimeridian (longitude = ±180): Valid endpoints
        - NaN / infinity: Invalid

    Args:
        latitude: Latitude value (-90 to 90)
        longitude: Longitude value (-180 to 180)

    Returns:
        True if coordinates are valid, False otherwise

    Examples:
        >>> is_valid_coordinates(0, 0)
        True
        >>> is_valid_coordinates(39.7596, -121.6219)  # Paradise, CA
        True
        >>> is_valid_coordinates(91, 0)
        False
        >>> is_valid_coordinates(0, 181)
        False
    """
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        return False

    try:
        lat = float(latitude)
        lon = float(longitude)

        if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
            return False

        return -90 <= lat <= 90 and -180 <= lon <= 180
    except (TypeError, ValueError):
        return False


def is_valid_buffer_km(buffer_km: float) -> bool:
    """
    Check an avoid-buffer distance against the allowed 0-100 km range.

    Examples:
        >>> is_valid_buffer_km(2.0)
        True
        >>> is_valid_buffer_km(-1)
        False
        >>> is_valid_buffer_km(100.5)
        False
    """
    try:
        value = float(buffer_km)
    except (TypeError, ValueError):
        return False
    if math.isnan(value):
        return False
    return MIN_BUFFER_KM <= value <= MAX_BUFFER_KM
