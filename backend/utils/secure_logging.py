"""
Secure logging utilities with PII redaction.

Origins, destinations and addresses in routing requests identify where a
person lives or is going, so they are redacted before they reach the logs.

Usage:
    from utils.secure_logging import redact_pii, redact_coordinates

    logger.info(redact_pii(f"Geocoding {address}"))
    lat_s, lon_s = redact_coordinates(lat, lon)
    logger.info(f"Fire zone check at ({lat_s}, {lon_s})")
"""

import re
from typing import Optional


def redact_pii(text: str) -> str:
    """
    Redact personally identifiable information from log messages.

    Redacts:
    - Email addresses → [EMAIL_REDACTED]
    - Precise coordinates (4+ decimal places) → [COORD_REDACTED]
    - IP addresses → [IP_REDACTED]
    - Phone numbers → [PHONE_REDACTED]
    - API keys passed as query parameters → subscription-key=[KEY_REDACTED]

    Examples:
        >>> redact_pii("User john@example.com requested a route")
        'User [EMAIL_REDACTED] requested a route'

        >>> redact_pii("Origin: 34.0522, -118.2437")
        'Origin: [COORD_REDACTED], [COORD_REDACTED]'
    """
    if not text:
        return text

    # Redact provider API keys in logged request URLs
    text = re.sub(
        r'(subscription-key|api[_-]?key)=[^&\s]+',
        r'\1=[KEY_REDACTED]',
        text,
        flags=re.IGNORECASE
    )

    # Redact email addresses
    text = re.sub(
        r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b',
        '[EMAIL_REDACTED]',
        text
    )

    # Redact precise coordinates (4+ decimals, roughly 11 m)
    # Keep rough coordinates (1-3 decimals = city-level) for debugging
    text = re.sub(
        r'-?\d{1,3}\.\d{4,}',
        '[COORD_REDACTED]',
        text
    )

    # Redact IPv4 addresses
    text = re.sub(
        r'\b(?:\d{1,3}\.){3}\d{1,3}\b',
        '[IP_REDACTED]',
        text
    )

    # Redact US phone numbers
    text = re.sub(
        r'\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b',
        '[PHONE_REDACTED]',
        text
    )

    return text


def redact_coordinates(lat: Optional[float], lon: Optional[float], precision: int = 2) -> tuple[str, str]:
    """
    Round coordinates to a safe precision level for logging.

    Precision levels:
    - 1 decimal: ~11 km (city level)
    - 2 decimals: ~1.1 km (neighborhood level) **RECOMMENDED**
    - 4+ decimals: ~11 m (building level) **TOO PRECISE FOR LOGS**

    Examples:
        >>> redact_coordinates(39.7596, -121.6219)
        ('39.76', '-121.62')

        >>> redact_coordinates(None, None)
        ('[REDACTED]', '[REDACTED]')
    """
    if lat is None or lon is None:
        return ('[REDACTED]', '[REDACTED]')

    return (
        f"{lat:.{precision}f}",
        f"{lon:.{precision}f}"
    )
