"""
Geometry Service for Fire-Aware Routing

Turns wildfire perimeter GeoJSON into the two things the routing tools need:
- axis-aligned avoid rectangles (buffered feature bounding boxes) that the
  routing provider is told to route around
- point-in-fire-zone classification using ray casting against each
  perimeter's outer ring

All buffers use the flat 111 km per degree approximation on both axes.
The service is pure and synchronous; malformed input never raises, it
degrades to "no rectangle" / "not in a fire zone".
"""

import json
import logging
import math
import uuid
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from models import AvoidRectangle, BoundingBox, Coordinate, FireZoneInfo
from utils.geo import km_to_degrees

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false are not coordinates
    if not isinstance(value, Real) or isinstance(value, bool):
        return False
    # JSON integers can be too large for a float
    try:
        return math.isfinite(float(value))
    except OverflowError:
        return False


def _first_present(properties: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = properties.get(key)
        if value not in (None, ''):
            return value
    return None


class GeometryService:
    """
    Computational geometry for fire perimeters.

    Provides methods to:
    - Compute a buffered bounding box around an origin/destination pair
    - Extract the bounding box of any GeoJSON geometry, whatever its nesting
    - Build capped lists of avoid rectangles from a FeatureCollection
    - Classify a point against fire perimeter polygons
    """

    # Property spellings used by the perimeter feeds we consume
    # (NIFC WFIGS first, then CAL FIRE, then generic names)
    INCIDENT_NAME_KEYS = ('poly_IncidentName', 'attr_IncidentName', 'IncidentName',
                          'FIRE_NAME', 'INCIDENT_NAME', 'name')
    FIRE_ZONE_NAME_KEYS = ('poly_FeatureCategory', 'FeatureCategory')
    CONTAINMENT_KEYS = ('attr_PercentContained', 'PercentContained',
                        'PERCENT_CONTAINED', 'CONTAINMENT')
    ACRES_KEYS = ('poly_GISAcres', 'attr_IncidentSize', 'GISAcres',
                  'GIS_ACRES', 'ACRES')
    LAST_UPDATE_KEYS = ('poly_DateCurrent', 'attr_ModifiedOnDateTime_dt',
                        'DateCurrent', 'attr_ModifiedOnDateTime', 'ALARM_DATE')

    DEFAULT_MAX_RECTS = 10

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Bounding boxes
    # ------------------------------------------------------------------

    def compute_bbox(self, origin: Coordinate, destination: Coordinate, buffer_km: float) -> BoundingBox:
        """
        Envelope of two points, grown by buffer_km on every edge.

        Args:
            origin: Route start
            destination: Route end (may equal origin)
            buffer_km: Buffer in kilometers; 0 gives the raw envelope

        Returns:
            BoundingBox with min/max lat/lon
        """
        buffer_degrees = km_to_degrees(buffer_km)

        envelope = BoundingBox(
            min_lat=min(origin.lat, destination.lat),
            min_lon=min(origin.lon, destination.lon),
            max_lat=max(origin.lat, destination.lat),
            max_lon=max(origin.lon, destination.lon),
        )
        bbox = envelope.expanded(buffer_degrees)

        self.logger.debug(
            f"Computed bbox with {buffer_km}km buffer ({buffer_degrees:.5f} deg): "
            f"[{bbox.min_lat:.3f},{bbox.min_lon:.3f}] to [{bbox.max_lat:.3f},{bbox.max_lon:.3f}]"
        )
        return bbox

    @staticmethod
    def extract_coordinate_pairs(coordinates: Any) -> List[Tuple[float, float]]:
        """
        Collect every [lon, lat] leaf from an arbitrarily nested coordinate array.

        A node is a leaf pair when its first element is a number; any other
        list/tuple is a container that gets descended into. Traversal uses an
        explicit stack so adversarially deep input cannot exhaust the
        interpreter's recursion limit. Document order is preserved.

        Args:
            coordinates: The "coordinates" member of a GeoJSON geometry

        Returns:
            List of (lon, lat) tuples; empty if nothing usable was found
        """
        pairs: List[Tuple[float, float]] = []
        stack: List[Any] = [coordinates]

        while stack:
            node = stack.pop()
            if not isinstance(node, (list, tuple)) or not node:
                continue

            if _is_number(node[0]):
                if len(node) >= 2 and _is_number(node[1]):
                    pairs.append((float(node[0]), float(node[1])))
                continue

            # Reversed so children pop in document order
            stack.extend(reversed(node))

        return pairs

    def extract_bounding_box(self, geometry: Any) -> Optional[BoundingBox]:
        """
        Bounding box of a GeoJSON geometry of any type.

        Handles Point, LineString, MultiPoint, Polygon, MultiLineString and
        MultiPolygon alike by collecting all leaf coordinate pairs. A
        GeometryCollection is handled through its member geometries.

        Returns:
            BoundingBox, or None for malformed/empty geometry (never raises)
        """
        if not isinstance(geometry, dict):
            return None

        if geometry.get('type') == 'GeometryCollection':
            pairs: List[Tuple[float, float]] = []
            for member in geometry.get('geometries') or []:
                if isinstance(member, dict):
                    pairs.extend(self.extract_coordinate_pairs(member.get('coordinates')))
        else:
            pairs = self.extract_coordinate_pairs(geometry.get('coordinates'))

        if not pairs:
            return None

        lons = [pair[0] for pair in pairs]
        lats = [pair[1] for pair in pairs]
        return BoundingBox(min_lat=min(lats), min_lon=min(lons), max_lat=max(lats), max_lon=max(lons))

    # ------------------------------------------------------------------
    # Avoid rectangles
    # ------------------------------------------------------------------

    def build_avoid_rectangles_from_geojson(
        self,
        geojson: Union[str, bytes, Dict[str, Any]],
        buffer_km: float,
        max_rects: int = DEFAULT_MAX_RECTS
    ) -> List[AvoidRectangle]:
        """
        Buffered bounding boxes of the features of a FeatureCollection.

        Features are processed in document order and processing stops once
        max_rects rectangles exist, so later features are dropped. Features
        without usable geometry are skipped.

        Args:
            geojson: FeatureCollection as JSON text or parsed dict
            buffer_km: Buffer added to every edge of each feature box
            max_rects: Cap on the number of rectangles (routing provider limit)

        Returns:
            List of AvoidRectangle; [] for unparseable documents (never raises)
        """
        request_id = uuid.uuid4().hex[:8]
        rectangles: List[AvoidRectangle] = []

        if max_rects <= 0:
            return rectangles

        document = self._parse_document(geojson, request_id)
        if document is None:
            return rectangles

        features = document.get('features')
        if not isinstance(features, list):
            self.logger.warning(f"Invalid GeoJSON: missing or invalid features array, requestId={request_id}")
            return rectangles

        buffer_degrees = km_to_degrees(buffer_km)

        for index, feature in enumerate(features):
            if len(rectangles) >= max_rects:
                self.logger.info(
                    f"Reached maximum rectangle limit {max_rects}; dropped "
                    f"{len(features) - index} remaining features, requestId={request_id}"
                )
                break

            geometry = feature.get('geometry') if isinstance(feature, dict) else None
            bbox = self.extract_bounding_box(geometry)
            if bbox is None:
                self.logger.debug(f"Skipping feature {index}: no usable geometry, requestId={request_id}")
                continue

            rect = AvoidRectangle(
                min_lat=bbox.min_lat - buffer_degrees,
                min_lon=bbox.min_lon - buffer_degrees,
                max_lat=bbox.max_lat + buffer_degrees,
                max_lon=bbox.max_lon + buffer_degrees,
            )
            rectangles.append(rect)
            self.logger.debug(f"Added avoid rectangle #{len(rectangles)}: {rect}, requestId={request_id}")

        self.logger.info(
            f"Built {len(rectangles)} avoid rectangles from {len(features)} features "
            f"with {buffer_km}km buffer, requestId={request_id}"
        )
        return rectangles

    # ------------------------------------------------------------------
    # Point in fire zone
    # ------------------------------------------------------------------

    @staticmethod
    def point_in_polygon(test_lat: float, test_lon: float, ring: Sequence[Tuple[float, float]]) -> bool:
        """
        Ray casting point-in-polygon test.

        Casts a horizontal ray from the test point and counts edge crossings;
        an odd count means inside. The ring is implicitly closed.

        Args:
            test_lat: Latitude of the point
            test_lon: Longitude of the point
            ring: Vertices as (lon, lat) pairs, GeoJSON order

        Returns:
            True if the point is inside; rings with fewer than 3 vertices never contain
        """
        vertices = list(ring)
        if len(vertices) > 1 and vertices[0] == vertices[-1]:
            vertices = vertices[:-1]

        n = len(vertices)
        if n < 3:
            return False

        inside = False
        j = n - 1
        for i in range(n):
            i_lon, i_lat = vertices[i]
            j_lon, j_lat = vertices[j]

            if (i_lat > test_lat) != (j_lat > test_lat):
                x_intersect = (j_lon - i_lon) * (test_lat - i_lat) / (j_lat - i_lat) + i_lon
                if test_lon < x_intersect:
                    inside = not inside
            j = i

        return inside

    def check_point_in_fire_zones(
        self,
        geojson: Union[str, bytes, Dict[str, Any]],
        point: Coordinate
    ) -> FireZoneInfo:
        """
        Find the first perimeter feature whose outer ring contains point.

        Polygon features test coordinates[0]; MultiPolygon features test the
        outer ring of each member polygon. The first containing feature's
        properties populate the result.

        Returns:
            FireZoneInfo; is_in_fire_zone=False when nothing contains the
            point or the document is malformed (never raises)
        """
        request_id = uuid.uuid4().hex[:8]
        document = self._parse_document(geojson, request_id)
        if document is None:
            return FireZoneInfo()

        features = document.get('features')
        if not isinstance(features, list):
            self.logger.warning(f"Invalid GeoJSON: missing or invalid features array, requestId={request_id}")
            return FireZoneInfo()

        for index, feature in enumerate(features):
            if not isinstance(feature, dict):
                continue

            for ring in self._outer_rings(feature.get('geometry')):
                if self.point_in_polygon(point.lat, point.lon, ring):
                    properties = feature.get('properties')
                    info = self._fire_zone_from_properties(properties if isinstance(properties, dict) else {})
                    self.logger.info(
                        f"Point is inside fire perimeter (feature {index}, "
                        f"incident={info.incident_name!r}), requestId={request_id}"
                    )
                    return info

        self.logger.debug(f"Point not inside any of {len(features)} perimeters, requestId={request_id}")
        return FireZoneInfo()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_document(self, geojson: Any, request_id: str) -> Optional[Dict[str, Any]]:
        if isinstance(geojson, dict):
            return geojson

        try:
            document = json.loads(geojson)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Failed to parse GeoJSON: {e}, requestId={request_id}")
            return None

        if not isinstance(document, dict):
            self.logger.warning(f"GeoJSON root is not an object, requestId={request_id}")
            return None
        return document

    def _outer_rings(self, geometry: Any) -> List[List[Tuple[float, float]]]:
        """Outer rings of a Polygon/MultiPolygon; [] for anything else."""
        if not isinstance(geometry, dict):
            return []

        geom_type = geometry.get('type')
        coordinates = geometry.get('coordinates')
        if not isinstance(coordinates, list) or not coordinates:
            return []

        if geom_type == 'Polygon':
            polygons = [coordinates]
        elif geom_type == 'MultiPolygon':
            polygons = coordinates
        else:
            return []

        rings = []
        for polygon in polygons:
            if not isinstance(polygon, list) or not polygon or not isinstance(polygon[0], list):
                continue
            rings.append([
                (float(vertex[0]), float(vertex[1]))
                for vertex in polygon[0]
                if isinstance(vertex, (list, tuple)) and len(vertex) >= 2
                and _is_number(vertex[0]) and _is_number(vertex[1])
            ])
        return rings

    def _fire_zone_from_properties(self, properties: Dict[str, Any]) -> FireZoneInfo:
        incident_name = _first_present(properties, self.INCIDENT_NAME_KEYS)
        incident_name = str(incident_name).strip() if incident_name is not None else ''

        zone_name = _first_present(properties, self.FIRE_ZONE_NAME_KEYS)
        if zone_name is not None:
            zone_name = str(zone_name).strip()
        else:
            zone_name = f"{incident_name} perimeter" if incident_name else 'Fire perimeter'

        return FireZoneInfo(
            is_in_fire_zone=True,
            fire_zone_name=zone_name,
            incident_name=incident_name,
            containment_percent=self._safe_float(_first_present(properties, self.CONTAINMENT_KEYS)),
            acres_burned=self._safe_float(_first_present(properties, self.ACRES_KEYS)),
            last_update=self._parse_timestamp(_first_present(properties, self.LAST_UPDATE_KEYS)),
        )

    @staticmethod
    def _safe_float(value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def _parse_timestamp(self, value: Any) -> Optional[datetime]:
        """ArcGIS dates arrive as epoch milliseconds or ISO/date strings."""
        if value is None or isinstance(value, bool):
            return None

        try:
            if isinstance(value, (int, float)):
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

            if isinstance(value, str):
                text = value.strip()
                try:
                    parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
                except ValueError:
                    parsed = None
                    for fmt in ('%Y/%m/%d', '%m/%d/%Y', '%Y-%m-%d %H:%M:%S'):
                        try:
                            parsed = datetime.strptime(text, fmt)
                            break
                        except ValueError:
                            continue
                if parsed is None:
                    return None
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.astimezone(timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            self.logger.warning(f"Could not parse perimeter timestamp {value!r}: {e}")

        return None
