"""
Wildfire Perimeter ArcGIS Integration
Fetches fire perimeter polygons from the NIFC WFIGS "Wildland Fire Perimeters
To Date" FeatureServer as raw GeoJSON text.
Documentation: https://data-nifc.opendata.arcgis.com/datasets/nifc::wfigs-2025-interagency-fire-perimeters-to-date
"""
import json
import logging
import os
from typing import List, Optional

import requests

from models import AvoidRectangle, BoundingBox

logger = logging.getLogger(__name__)

EMPTY_FEATURE_COLLECTION = json.dumps({'type': 'FeatureCollection', 'features': []})


class FirePerimeterService:
    """Service to fetch wildfire perimeter GeoJSON for a bounding box"""

    # WFIGS ArcGIS REST API endpoint
    BASE_URL = (
        "https://services3.arcgis.com/T4QMspbfLg3qTGWY/arcgis/rest/services/"
        "WFIGS_Wildland_Fire_Perimeters_ToDate/FeatureServer/0/query"
    )
    TIMEOUT_SECONDS = 30

    def __init__(self, feature_url: Optional[str] = None, session=None, logger: Optional[logging.Logger] = None):
        """
        Initialize the perimeter service

        Args:
            feature_url: FeatureServer query URL. If None, reads ARCGIS_FEATURE_URL
                or falls back to the WFIGS endpoint
            session: Optional requests.Session (defaults to the requests module)
            logger: Optional logger
        """
        self.feature_url = feature_url or os.getenv('ARCGIS_FEATURE_URL') or self.BASE_URL
        self.http = session or requests
        self.logger = logger or logging.getLogger(__name__)

    def build_query_params(self, bbox: BoundingBox) -> dict:
        """
        ArcGIS envelope query for every perimeter intersecting bbox.

        The envelope is "minLon,minLat,maxLon,maxLat" in WGS84.
        """
        return {
            'where': '1=1',
            'geometry': f"{bbox.min_lon},{bbox.min_lat},{bbox.max_lon},{bbox.max_lat}",
            'geometryType': 'esriGeometryEnvelope',
            'inSR': '4326',
            'spatialRel': 'esriSpatialRelIntersects',
            'outFields': '*',
            'outSR': '4326',
            'returnGeometry': 'true',
            'f': 'geojson',
        }

    def fetch_perimeters_geojson(self, bbox: BoundingBox, since_mins: int = 60) -> str:
        """
        Fetch fire perimeters intersecting bbox

        Args:
            bbox: Query envelope
            since_mins: Accepted for interface compatibility; the WFIGS
                "to date" layer is already limited to current-year fires

        Returns:
            str: GeoJSON FeatureCollection text; an empty collection on any failure
        """
        params = self.build_query_params(bbox)

        try:
            self.logger.info(
                f"Fire perimeters: querying ArcGIS for envelope {params['geometry']} "
                f"(since {since_mins} min)"
            )
            response = self.http.get(self.feature_url, params=params, timeout=self.TIMEOUT_SECONDS)
            self.logger.info(f"Fire perimeters: Status code: {response.status_code}")
            response.raise_for_status()

            geojson_text = response.text
            self.logger.info(f"Fire perimeters: received {len(geojson_text)} chars of GeoJSON")
            return geojson_text

        except requests.exceptions.RequestException as e:
            self.logger.error(f"Fire perimeters ERROR: Request exception: {e}", exc_info=True)
            return EMPTY_FEATURE_COLLECTION

    def try_fetch_closure_rectangles(self, bbox: BoundingBox) -> List[AvoidRectangle]:
        """
        Road closure rectangles inside bbox.

        No closure feed is wired up yet, so this always returns an empty list.
        """
        self.logger.info("Fire perimeters: no road closure feed configured, returning no closures")
        return []
