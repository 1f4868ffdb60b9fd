"""
Geocoding Service - Forward Geocoding with Azure Maps Search

Converts free-text US addresses to coordinates for the address-based
fire-zone check and fire-aware routing.

Features:
- Azure Maps Search Address API (api-version 2023-06-01, US only, best match)
- Match score mapped to a coarse confidence label
- Addresses are PII: they are redacted before logging
"""

import logging
import os
import uuid
from typing import Any, Dict, Optional

import requests

from models import Coordinate, GeocodingResult
from utils.geo import is_valid_coordinates
from utils.secure_logging import redact_coordinates, redact_pii

logger = logging.getLogger(__name__)


class GeocodingService:
    """
    Forward geocoding service using Azure Maps

    Usage:
        service = GeocodingService()
        result = service.geocode_address("1 Dr Carlton B Goodlett Pl, San Francisco, CA")
        # GeocodingResult(coordinates=Coordinate(lat=37.7793, lon=-122.4193), confidence='High', ...)
    """

    DEFAULT_BASE_URL = "https://atlas.microsoft.com"
    SEARCH_PATH = "/search/address/json"
    API_VERSION = "2023-06-01"
    TIMEOUT_SECONDS = 10

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session=None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize geocoding service

        Args:
            api_key: Azure Maps subscription key. If None, reads AZURE_MAPS_KEY
            base_url: API host. If None, reads AZURE_MAPS_BASE_URL
            session: Optional requests.Session (defaults to the requests module)
            logger: Optional logger

        Raises:
            ValueError: If no subscription key is configured
        """
        self.logger = logger or logging.getLogger(__name__)
        self.api_key = api_key or os.getenv('AZURE_MAPS_KEY')
        if not self.api_key:
            raise ValueError("AZURE_MAPS_KEY is required for geocoding")

        self.base_url = (base_url or os.getenv('AZURE_MAPS_BASE_URL') or self.DEFAULT_BASE_URL).rstrip('/')
        self.http = session or requests

    def geocode_address(self, address: str) -> GeocodingResult:
        """
        Geocode a free-text address to its best match

        Args:
            address: Address text, e.g. "5550 Skyway, Paradise, CA"

        Returns:
            GeocodingResult

        Raises:
            ValueError: If address is empty or the response is malformed
            LookupError: If Azure Maps finds no match
            requests.exceptions.RequestException: If the API request fails
        """
        request_id = uuid.uuid4().hex[:8]

        if not address or not address.strip():
            raise ValueError("Address cannot be empty")

        self.logger.info(f"Geocoding address {redact_pii(address)!r}, requestId={request_id}")

        params = {
            'api-version': self.API_VERSION,
            'subscription-key': self.api_key,
            'query': address.strip(),
            'limit': 1,
            'countrySet': 'US',
        }

        try:
            response = self.http.get(
                f"{self.base_url}{self.SEARCH_PATH}",
                params=params,
                timeout=self.TIMEOUT_SECONDS
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Geocoding request failed: {type(e).__name__}, requestId={request_id}")
            raise

        result = self._parse_search_response(response.json(), address, request_id)

        lat_s, lon_s = redact_coordinates(result.coordinates.lat, result.coordinates.lon)
        self.logger.info(
            f"Geocoding completed: ({lat_s}, {lon_s}), confidence={result.confidence}, requestId={request_id}"
        )
        return result

    @staticmethod
    def map_confidence(score: Optional[float]) -> str:
        """
        Map an Azure Maps match score (0-1) to a confidence label

        Examples:
            >>> GeocodingService.map_confidence(0.95)
            'High'
            >>> GeocodingService.map_confidence(0.4)
            'VeryLow'
        """
        if score is None:
            return 'Unknown'
        if score >= 0.9:
            return 'High'
        if score >= 0.7:
            return 'Medium'
        if score >= 0.5:
            return 'Low'
        return 'VeryLow'

    def _parse_search_response(self, data: Dict[str, Any], address: str, request_id: str) -> GeocodingResult:
        results = data.get('results') if isinstance(data, dict) else None
        if not results:
            self.logger.warning(f"No geocoding results found, requestId={request_id}")
            raise LookupError("No geocoding results found for the specified address")

        first = results[0]
        try:
            lat = float(first['position']['lat'])
            lon = float(first['position']['lon'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed geocoding result: {e}") from e

        if not is_valid_coordinates(lat, lon):
            raise ValueError("Geocoding result has out-of-range coordinates")

        formatted = (first.get('address') or {}).get('freeformAddress') or address
        score = first.get('score')

        return GeocodingResult(
            address=address,
            coordinates=Coordinate(lat=lat, lon=lon),
            formatted_address=formatted,
            confidence=self.map_confidence(score if isinstance(score, (int, float)) else None),
        )
