"""
Azure Maps Routing Service for Fire-Aware Navigation

Calculates driving routes with the Azure Maps Route Directions API, asking
it to route around axis-aligned avoid rectangles (buffered fire perimeters
and road closures).

Features:
- Fastest car route with turn-by-turn text instructions
- Up to 10 avoid rectangles per request (Azure Maps limit)
- Optional departure time for traffic-aware routing
- POST-style request body (waypoints + avoidAreas MultiPolygon) that can
  be stored with a share link and replayed by the map viewer
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from shapely.geometry import MultiPolygon, box

from models import AvoidRectangle, Coordinate

# Configure logging
logger = logging.getLogger(__name__)


class RoutingService:
    """
    Service for calculating routes with Azure Maps Route Directions v1.0.
    """

    # Azure Maps API Configuration
    DEFAULT_BASE_URL = "https://atlas.microsoft.com"
    ROUTE_PATH = "/route/directions/json"
    API_VERSION = "1.0"
    TIMEOUT_SECONDS = 30

    # Azure Maps accepts at most 10 avoid areas per request
    MAX_AVOID_AREAS = 10

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session=None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the routing service.

        Args:
            api_key: Azure Maps subscription key. If None, reads AZURE_MAPS_KEY
            base_url: API host. If None, reads AZURE_MAPS_BASE_URL or uses atlas.microsoft.com
            session: Optional requests.Session (defaults to the requests module)
            logger: Optional logger

        Raises:
            ValueError: If no subscription key is configured
        """
        self.logger = logger or logging.getLogger(__name__)
        self.api_key = api_key or os.getenv('AZURE_MAPS_KEY')
        if not self.api_key:
            raise ValueError("AZURE_MAPS_KEY is required for routing")

        self.base_url = (base_url or os.getenv('AZURE_MAPS_BASE_URL') or self.DEFAULT_BASE_URL).rstrip('/')
        self.http = session or requests

        # Never log the key itself
        self.logger.info(f"Azure Maps routing initialized with base {self.base_url}")

    def build_request_params(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_rectangles: Sequence[AvoidRectangle],
        depart_at: Optional[datetime] = None
    ) -> Dict[str, str]:
        """
        Build query parameters for the Route Directions request.

        The avoid parameters are only present when there is something to avoid.
        """
        params = {
            'api-version': self.API_VERSION,
            'subscription-key': self.api_key,
            'query': f"{origin.lat},{origin.lon}:{destination.lat},{destination.lon}",
            'routeType': 'fastest',
            'travelMode': 'car',
            'instructionsType': 'text',
        }

        areas = list(avoid_rectangles)[:self.MAX_AVOID_AREAS]
        if areas:
            params['avoid'] = 'avoidAreas'
            params['avoidAreas'] = '|'.join(rect.to_route_param() for rect in areas)
            if len(avoid_rectangles) > self.MAX_AVOID_AREAS:
                self.logger.warning(
                    f"Truncated avoid areas from {len(avoid_rectangles)} to {self.MAX_AVOID_AREAS} "
                    f"due to Azure Maps limit"
                )

        if depart_at is not None:
            if depart_at.tzinfo is None:
                depart_at = depart_at.replace(tzinfo=timezone.utc)
            params['departAt'] = depart_at.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

        return params

    def build_request_data(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_rectangles: Sequence[AvoidRectangle]
    ) -> Dict[str, Any]:
        """
        Build the POST-style request body for this route.

        Waypoints are GeoJSON points ([lon, lat]); avoid rectangles become a
        MultiPolygon of closed boxes.
        """
        areas = list(avoid_rectangles)[:self.MAX_AVOID_AREAS]

        data: Dict[str, Any] = {
            'type': 'FeatureCollection',
            'features': [
                {
                    'type': 'Feature',
                    'geometry': {'type': 'Point', 'coordinates': [origin.lon, origin.lat]},
                    'properties': {'pointIndex': 0, 'pointType': 'waypoint'},
                },
                {
                    'type': 'Feature',
                    'geometry': {'type': 'Point', 'coordinates': [destination.lon, destination.lat]},
                    'properties': {'pointIndex': 1, 'pointType': 'waypoint'},
                },
            ],
            'routeOutputOptions': ['routePath', 'itinerary'],
            'travelMode': 'driving',
        }

        if areas:
            boxes = MultiPolygon([
                box(rect.min_lon, rect.min_lat, rect.max_lon, rect.max_lat) for rect in areas
            ])
            data['avoidAreas'] = {
                'type': 'MultiPolygon',
                'coordinates': [
                    [[list(coord) for coord in polygon.exterior.coords]]
                    for polygon in boxes.geoms
                ],
            }

        return data

    def get_route(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_rectangles: Sequence[AvoidRectangle],
        depart_at: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Calculate a route avoiding the given rectangles.

        Returns:
            {'distanceMeters', 'travelTimeSeconds', 'geometry' (GeoJSON
            LineString), 'drivingDirections' (list of steps)}

        Raises:
            requests.exceptions.RequestException: If the API request fails
            ValueError: If the response has no usable route
        """
        request_id = uuid.uuid4().hex[:8]
        params = self.build_request_params(origin, destination, avoid_rectangles, depart_at)
        url = f"{self.base_url}{self.ROUTE_PATH}"

        self.logger.debug(
            f"Requesting Azure Maps route with {len(avoid_rectangles)} avoid areas, requestId={request_id}"
        )

        try:
            response = self.http.get(url, params=params, timeout=self.TIMEOUT_SECONDS)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            self.logger.error(f"Azure Maps route request timed out, requestId={request_id}")
            raise
        except requests.exceptions.RequestException as e:
            status = getattr(getattr(e, 'response', None), 'status_code', None)
            self.logger.error(f"Azure Maps route request failed (status {status}): {type(e).__name__}, requestId={request_id}")
            raise

        try:
            route = self.parse_route_response(response.json())
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Failed to parse Azure Maps response: {e}, requestId={request_id}")
            raise ValueError(f"Invalid response from Azure Maps: {e}") from e

        self.logger.info(
            f"Route calculated: distance={route['distanceMeters']}m, "
            f"time={route['travelTimeSeconds']}s, requestId={request_id}"
        )
        return route

    def get_route_with_request_data(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_rectangles: Sequence[AvoidRectangle],
        depart_at: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Route plus the request body that reproduces it (for share links)."""
        return {
            'route': self.get_route(origin, destination, avoid_rectangles, depart_at),
            'request_data': self.build_request_data(origin, destination, avoid_rectangles),
        }

    def parse_route_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse an Azure Maps Route Directions response.

        Raises:
            ValueError: If there is no route or no summary
        """
        routes = data.get('routes') if isinstance(data, dict) else None
        if not routes:
            raise ValueError("No routes found in Azure Maps response")

        first_route = routes[0]
        summary = first_route.get('summary')
        if not summary:
            raise ValueError("No summary found in route response")

        points: List[List[float]] = []
        for leg in first_route.get('legs') or []:
            for point in leg.get('points') or []:
                points.append([point['longitude'], point['latitude']])

        return {
            'distanceMeters': int(summary['lengthInMeters']),
            'travelTimeSeconds': int(summary['travelTimeInSeconds']),
            'geometry': {'type': 'LineString', 'coordinates': points},
            'drivingDirections': self._parse_instructions(first_route.get('guidance') or {}),
        }

    def _parse_instructions(self, guidance: Dict[str, Any]) -> List[Dict[str, Any]]:
        directions = []
        for instruction in guidance.get('instructions') or []:
            message = instruction.get('message') or instruction.get('combinedMessage')
            if not message:
                continue

            point = instruction.get('point') or {}
            directions.append({
                'instruction': message,
                'distanceMeters': instruction.get('routeOffsetInMeters', 0),
                'travelTimeSeconds': instruction.get('travelTimeInSeconds', 0),
                'point': {
                    'lat': point.get('latitude'),
                    'lon': point.get('longitude'),
                },
            })
        return directions
