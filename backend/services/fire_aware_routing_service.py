"""
Fire-Aware Routing Service

Composes the perimeter cache, geometry service, routing provider and route
link store into the four user-facing operations:
- fire-aware route between coordinates
- fire-aware route between addresses
- fire zone check for coordinates
- fire zone check for an address

Pipeline for a route:
    bbox -> cached perimeter fetch -> avoid rectangles (+ closures, max 10)
         -> routing call -> optional share link

Input problems come back as responses with envelope.status == "error" and
error.type == "validation"; provider failures use error.type == "upstream"
and a missing routing/geocoding provider uses "unavailable". A failed share
link never fails the route.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from models import AvoidRectangle, Coordinate, FireZoneInfo, GeocodingResult
from utils.secure_logging import redact_coordinates, redact_pii
from utils.validators import CoordinateValidator, RoutingRequestValidator

logger = logging.getLogger(__name__)

TOOL_VERSION = '1.1.0'

ERROR_VALIDATION = 'validation'
ERROR_UPSTREAM = 'upstream'
ERROR_UNAVAILABLE = 'unavailable'


class FireAwareRoutingError(Exception):
    """Raised inside the pipeline; turned into an error response at the edge"""

    def __init__(self, error_type: str, message: str):
        super().__init__(message)
        self.error_type = error_type
        self.message = message


class FireAwareRoutingService:
    """
    Orchestrates fire-aware routing and fire zone checks.

    Collaborators are injected so tests can swap any of them for mocks.
    """

    PERIMETER_CACHE_PREFIX = 'fire-perimeters'
    DEFAULT_PERIMETER_TTL_MINUTES = 10
    DEFAULT_MAX_AVOID_AREAS = 10

    # Perimeter lookup radius around a single point
    POINT_CHECK_BUFFER_KM = 5.0
    PERIMETER_SINCE_MINUTES = 60

    def __init__(
        self,
        geometry,
        perimeter_cache,
        perimeter_service,
        router=None,
        link_service=None,
        geocoder=None,
        logger: Optional[logging.Logger] = None,
        perimeter_ttl_minutes: int = DEFAULT_PERIMETER_TTL_MINUTES,
        max_avoid_areas: int = DEFAULT_MAX_AVOID_AREAS,
        default_avoid_buffer_meters: float = RoutingRequestValidator.DEFAULT_AVOID_BUFFER_METERS,
        default_share_link_ttl_minutes: Optional[int] = None
    ):
        """
        Args:
            geometry: GeometryService
            perimeter_cache: GeoJsonCache for perimeter GeoJSON
            perimeter_service: FirePerimeterService (perimeters and closures)
            router: RoutingService, or None when routing is not configured
            link_service: RouteLinkService, or None to disable share links
            geocoder: GeocodingService, or None when geocoding is not configured
            logger: Optional logger
            perimeter_ttl_minutes: Freshness window for cached perimeters
            max_avoid_areas: Cap on rectangles sent to the routing provider
            default_avoid_buffer_meters: Buffer used when a request gives none
            default_share_link_ttl_minutes: Share link TTL when a request gives
                none (None defers to the link service default)
        """
        self.geometry = geometry
        self.perimeter_cache = perimeter_cache
        self.perimeter_service = perimeter_service
        self.router = router
        self.link_service = link_service
        self.geocoder = geocoder
        self.logger = logger or logging.getLogger(__name__)
        self.perimeter_ttl = timedelta(minutes=perimeter_ttl_minutes)
        self.max_avoid_areas = max_avoid_areas
        self.default_avoid_buffer_meters = default_avoid_buffer_meters
        self.default_share_link_ttl_minutes = default_share_link_ttl_minutes

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route_coordinates(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        avoid_buffer_meters: Optional[float] = None,
        depart_at_iso_utc: Optional[str] = None,
        persist_share_link: Optional[bool] = None,
        share_link_ttl_minutes: Optional[int] = None,
        request_base_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Compute the fastest route that avoids fire perimeters and closures.

        Args:
            origin_lat, origin_lon: Route start
            dest_lat, dest_lon: Route end
            avoid_buffer_meters: Buffer around each perimeter (default 2000 m, max 100 km)
            depart_at_iso_utc: Optional ISO-8601 departure time
            persist_share_link: Create a share link (default True)
            share_link_ttl_minutes: Share link lifetime (non-positive means default)
            request_base_url: Fallback base for share link URLs

        Returns:
            Response dict with route, appliedAvoids, shareLink, traceId and envelope
        """
        trace_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()

        try:
            origin = self._coordinate(origin_lat, origin_lon, 'origin')
            destination = self._coordinate(dest_lat, dest_lon, 'destination')
            return self._route(
                origin, destination, avoid_buffer_meters, depart_at_iso_utc,
                persist_share_link, share_link_ttl_minutes, request_base_url,
                trace_id, started
            )
        except FireAwareRoutingError as e:
            return self._route_error(e, trace_id, started)

    def route_addresses(
        self,
        origin_address: str,
        destination_address: str,
        avoid_buffer_meters: Optional[float] = None,
        depart_at_iso_utc: Optional[str] = None,
        persist_share_link: Optional[bool] = None,
        share_link_ttl_minutes: Optional[int] = None,
        request_base_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Geocode both addresses, then route between them like route_coordinates."""
        trace_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()

        try:
            origin_geo = self._geocode(origin_address, 'originAddress', trace_id)
            destination_geo = self._geocode(destination_address, 'destinationAddress', trace_id)

            response = self._route(
                origin_geo.coordinates, destination_geo.coordinates,
                avoid_buffer_meters, depart_at_iso_utc, persist_share_link,
                share_link_ttl_minutes, request_base_url, trace_id, started
            )
        except FireAwareRoutingError as e:
            return self._route_error(e, trace_id, started)

        response['originGeocoding'] = origin_geo.to_dict()
        response['destinationGeocoding'] = destination_geo.to_dict()
        return response

    def _route(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_buffer_meters: Optional[float],
        depart_at_iso_utc: Optional[str],
        persist_share_link: Optional[bool],
        share_link_ttl_minutes: Optional[int],
        request_base_url: Optional[str],
        trace_id: str,
        started: float
    ) -> Dict[str, Any]:
        if avoid_buffer_meters is None:
            avoid_buffer_meters = self.default_avoid_buffer_meters

        buffer_km, error = RoutingRequestValidator.parse_buffer_km(avoid_buffer_meters)
        if error:
            raise FireAwareRoutingError(ERROR_VALIDATION, error)

        depart_at, error = RoutingRequestValidator.parse_depart_at(depart_at_iso_utc)
        if error:
            raise FireAwareRoutingError(ERROR_VALIDATION, error)

        ttl_minutes, error = RoutingRequestValidator.parse_share_link_ttl(share_link_ttl_minutes)
        if error:
            raise FireAwareRoutingError(ERROR_VALIDATION, error)

        if self.router is None:
            raise FireAwareRoutingError(ERROR_UNAVAILABLE, 'Routing provider is not configured')

        o_lat, o_lon = redact_coordinates(origin.lat, origin.lon)
        d_lat, d_lon = redact_coordinates(destination.lat, destination.lon)
        self.logger.info(
            f"Fire-aware route requested: ({o_lat}, {o_lon}) -> ({d_lat}, {d_lon}), "
            f"buffer={buffer_km}km, traceId={trace_id}"
        )

        bbox = self.geometry.compute_bbox(origin, destination, buffer_km)
        fire_geojson = self._load_perimeters(bbox.cache_key(self.PERIMETER_CACHE_PREFIX), bbox)

        avoid_rectangles = self.geometry.build_avoid_rectangles_from_geojson(
            fire_geojson, buffer_km, self.max_avoid_areas
        )
        avoid_rectangles.extend(self._closure_rectangles(bbox, len(avoid_rectangles), trace_id))
        applied_avoids = [str(rect) for rect in avoid_rectangles]

        try:
            route_with_data = self.router.get_route_with_request_data(
                origin, destination, avoid_rectangles, depart_at
            )
        except (requests.exceptions.RequestException, ValueError) as e:
            self.logger.error(f"Routing provider failed: {type(e).__name__}: {redact_pii(str(e))}, traceId={trace_id}")
            raise FireAwareRoutingError(ERROR_UPSTREAM, f'Route calculation failed: {redact_pii(str(e))}') from e

        share_link = None
        if persist_share_link is not False:
            share_link = self._create_share_link(
                origin, destination, applied_avoids, route_with_data['request_data'],
                ttl_minutes or self.default_share_link_ttl_minutes, request_base_url, trace_id
            )

        route = route_with_data['route']
        response = {
            'route': route,
            'appliedAvoids': applied_avoids,
            'shareLink': share_link,
            'traceId': trace_id,
            'envelope': self._envelope('ok', started),
        }

        self.logger.info(
            f"Fire-aware route complete: distance={route.get('distanceMeters')}m, "
            f"time={route.get('travelTimeSeconds')}s, avoids={len(applied_avoids)}, "
            f"latency={response['envelope']['latencyMs']}ms, traceId={trace_id}"
        )
        return response

    def _closure_rectangles(self, bbox, used: int, trace_id: str) -> List[AvoidRectangle]:
        slots = max(0, self.max_avoid_areas - used)
        if slots == 0:
            return []

        closures = self.perimeter_service.try_fetch_closure_rectangles(bbox) or []
        selected = list(closures)[:slots]
        if closures:
            self.logger.info(f"Added {len(selected)} of {len(closures)} closure rectangles, traceId={trace_id}")
        return selected

    def _create_share_link(
        self,
        origin: Coordinate,
        destination: Coordinate,
        applied_avoids: List[str],
        request_data: Dict[str, Any],
        ttl_minutes: Optional[int],
        request_base_url: Optional[str],
        trace_id: str
    ) -> Optional[Dict[str, Any]]:
        if self.link_service is None:
            return None

        ttl = timedelta(minutes=ttl_minutes) if ttl_minutes else None
        try:
            record = self.link_service.create(
                origin, destination, applied_avoids, lambda: request_data,
                ttl=ttl, request_base_url=request_base_url
            )
        except Exception as e:
            self.logger.warning(f"Failed to create share link, continuing without it: {e}, traceId={trace_id}")
            return None

        return record.to_dict()

    # ------------------------------------------------------------------
    # Fire zone checks
    # ------------------------------------------------------------------

    def check_coordinate_fire_zone(self, lat: float, lon: float) -> Dict[str, Any]:
        """
        Check whether a point lies inside an active fire perimeter.

        Returns:
            {'coordinates', 'fireZone', 'traceId', 'envelope'} (+ 'error' on failure)
        """
        trace_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()

        try:
            point = self._coordinate(lat, lon, 'point')
        except FireAwareRoutingError as e:
            return self._fire_zone_error(e, trace_id, started)

        fire_zone = self._check_point(point, trace_id)
        return {
            'coordinates': point.to_dict(),
            'fireZone': fire_zone.to_dict(),
            'traceId': trace_id,
            'envelope': self._envelope('ok', started),
        }

    def check_address_fire_zone(self, address: str) -> Dict[str, Any]:
        """Geocode an address, then run the coordinate fire zone check."""
        trace_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()

        try:
            geocoded = self._geocode(address, 'address', trace_id)
        except FireAwareRoutingError as e:
            return self._fire_zone_error(e, trace_id, started)

        fire_zone = self._check_point(geocoded.coordinates, trace_id)
        return {
            'address': address,
            'geocoding': geocoded.to_dict(),
            'coordinates': geocoded.coordinates.to_dict(),
            'fireZone': fire_zone.to_dict(),
            'traceId': trace_id,
            'envelope': self._envelope('ok', started),
        }

    def _check_point(self, point: Coordinate, trace_id: str) -> FireZoneInfo:
        bbox = self.geometry.compute_bbox(point, point, self.POINT_CHECK_BUFFER_KM)
        cache_key = f"{self.PERIMETER_CACHE_PREFIX}-point-{point.lat:.3f}-{point.lon:.3f}"

        fire_geojson = self._load_perimeters(cache_key, bbox)
        fire_zone = self.geometry.check_point_in_fire_zones(fire_geojson, point)

        lat_s, lon_s = redact_coordinates(point.lat, point.lon)
        self.logger.info(
            f"Fire zone check at ({lat_s}, {lon_s}): inFireZone={fire_zone.is_in_fire_zone}, "
            f"incident={fire_zone.incident_name!r}, traceId={trace_id}"
        )
        return fire_zone

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_perimeters(self, cache_key: str, bbox) -> str:
        return self.perimeter_cache.load_or_refresh(
            cache_key,
            self.perimeter_ttl,
            lambda: self.perimeter_service.fetch_perimeters_geojson(bbox, self.PERIMETER_SINCE_MINUTES)
        )

    @staticmethod
    def _coordinate(lat: Any, lon: Any, label: str) -> Coordinate:
        if not CoordinateValidator.validate_coordinates(lat, lon):
            raise FireAwareRoutingError(ERROR_VALIDATION, f'Invalid {label} coordinates')
        return Coordinate(lat=float(lat), lon=float(lon))

    def _geocode(self, address: Any, field_name: str, trace_id: str) -> GeocodingResult:
        is_valid, error = RoutingRequestValidator.validate_address(address, field_name)
        if not is_valid:
            raise FireAwareRoutingError(ERROR_VALIDATION, error)

        if self.geocoder is None:
            raise FireAwareRoutingError(ERROR_UNAVAILABLE, 'Geocoding provider is not configured')

        try:
            return self.geocoder.geocode_address(address)
        except LookupError as e:
            self.logger.warning(f"No geocoding match for {field_name}, traceId={trace_id}")
            raise FireAwareRoutingError(ERROR_VALIDATION, f'Could not geocode {field_name}') from e
        except (requests.exceptions.RequestException, ValueError) as e:
            self.logger.error(f"Geocoding failed for {field_name}: {type(e).__name__}, traceId={trace_id}")
            raise FireAwareRoutingError(ERROR_UPSTREAM, f'Geocoding failed for {field_name}') from e

    @staticmethod
    def _envelope(status: str, started: float) -> Dict[str, Any]:
        return {
            'toolVersion': TOOL_VERSION,
            'generatedAtUtc': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'latencyMs': int((time.perf_counter() - started) * 1000),
            'status': status,
        }

    def _route_error(self, error: FireAwareRoutingError, trace_id: str, started: float) -> Dict[str, Any]:
        self.logger.warning(f"Fire-aware route rejected ({error.error_type}): {error.message}, traceId={trace_id}")
        return {
            'route': None,
            'appliedAvoids': [],
            'shareLink': None,
            'traceId': trace_id,
            'error': {'type': error.error_type, 'message': error.message},
            'envelope': self._envelope('error', started),
        }

    def _fire_zone_error(
        self,
        error: FireAwareRoutingError,
        trace_id: str,
        started: float
    ) -> Dict[str, Any]:
        self.logger.warning(f"Fire zone check rejected ({error.error_type}): {error.message}, traceId={trace_id}")
        return {
            'coordinates': None,
            'fireZone': None,
            'traceId': trace_id,
            'error': {'type': error.error_type, 'message': error.message},
            'envelope': self._envelope('error', started),
        }
