"""
Tests for the fire-aware routing orchestrator.

Geometry, cache and link storage are real (in-memory); perimeter, routing
and geocoding providers are mocked at the HTTP session or service boundary.
"""
import json
from datetime import timedelta
from unittest.mock import MagicMock, Mock

import pytest
import requests

from models import AvoidRectangle, Coordinate, GeocodingResult
from services.blob_store import InMemoryBlobStore, StorageError
from services.fire_aware_routing_service import (ERROR_UNAVAILABLE, ERROR_UPSTREAM, ERROR_VALIDATION,
                                                 TOOL_VERSION, FireAwareRoutingService)
from services.fire_perimeter_service import EMPTY_FEATURE_COLLECTION, FirePerimeterService
from services.geojson_cache import GeoJsonCache
from services.geometry_service import GeometryService
from services.route_link_service import RouteLinkService
from services.routing_service import RoutingService

LA_ORIGIN = (34.0522, -118.2437)
LA_DESTINATION = (34.1625, -118.1331)
PARADISE = (39.7596, -121.6219)


def _square_feature(min_lon, min_lat, max_lon, max_lat, properties=None):
    return {
        'type': 'Feature',
        'geometry': {
            'type': 'Polygon',
            'coordinates': [[
                [min_lon, min_lat], [max_lon, min_lat], [max_lon, max_lat],
                [min_lon, max_lat], [min_lon, min_lat],
            ]]
        },
        'properties': properties or {}
    }


def _collection_text(*features):
    return json.dumps({'type': 'FeatureCollection', 'features': list(features)})


CAMP_FIRE = _square_feature(-121.75, 39.70, -121.50, 39.85, {
    'poly_IncidentName': 'Camp',
    'attr_PercentContained': 100,
    'poly_GISAcres': 153336,
    'poly_DateCurrent': 1543622400000,
})

EAGLE_ROCK_FIRE = _square_feature(-118.20, 34.08, -118.18, 34.10, {'poly_IncidentName': 'Eagle Rock'})


def _azure_response():
    return {
        'routes': [{
            'summary': {'lengthInMeters': 17342, 'travelTimeInSeconds': 1260},
            'legs': [{'points': [
                {'latitude': 34.0522, 'longitude': -118.2437},
                {'latitude': 34.1625, 'longitude': -118.1331},
            ]}],
            'guidance': {'instructions': [{
                'message': 'Head north on N Spring St',
                'routeOffsetInMeters': 0,
                'travelTimeInSeconds': 0,
                'point': {'latitude': 34.0522, 'longitude': -118.2437},
            }]},
        }]
    }


@pytest.fixture
def perimeter_service():
    service = Mock()
    service.fetch_perimeters_geojson.return_value = EMPTY_FEATURE_COLLECTION
    service.try_fetch_closure_rectangles.return_value = []
    return service


@pytest.fixture
def router():
    router = Mock()
    router.get_route_with_request_data.return_value = {
        'route': {'distanceMeters': 17342, 'travelTimeSeconds': 1260,
                  'geometry': {'type': 'LineString', 'coordinates': []}, 'drivingDirections': []},
        'request_data': {'type': 'FeatureCollection', 'features': []},
    }
    return router


@pytest.fixture
def link_service():
    return RouteLinkService(InMemoryBlobStore(), base_url='https://maps.example.org')


@pytest.fixture
def geocoder():
    geocoder = Mock()
    geocoder.geocode_address.side_effect = lambda address: GeocodingResult(
        address=address,
        coordinates=Coordinate(*PARADISE) if 'Paradise' in address else Coordinate(*LA_DESTINATION),
        formatted_address=address,
        confidence='High',
    )
    return geocoder


@pytest.fixture
def service(perimeter_service, router, link_service, geocoder):
    return FireAwareRoutingService(
        geometry=GeometryService(),
        perimeter_cache=GeoJsonCache(InMemoryBlobStore()),
        perimeter_service=perimeter_service,
        router=router,
        link_service=link_service,
        geocoder=geocoder,
    )


class TestEndToEnd:
    """Full pipeline with real clients over mocked HTTP sessions"""

    @pytest.fixture
    def arcgis_session(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, text=EMPTY_FEATURE_COLLECTION)
        return session

    @pytest.fixture
    def azure_session(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value=_azure_response()))
        return session

    @pytest.fixture
    def e2e_service(self, arcgis_session, azure_session, link_service):
        return FireAwareRoutingService(
            geometry=GeometryService(),
            perimeter_cache=GeoJsonCache(InMemoryBlobStore()),
            perimeter_service=FirePerimeterService(feature_url='https://gis.example.org/query', session=arcgis_session),
            router=RoutingService(api_key='test-key', session=azure_session),
            link_service=link_service,
        )

    def test_no_fires_means_no_avoid_areas(self, e2e_service, arcgis_session, azure_session):
        result = e2e_service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION, avoid_buffer_meters=2000)

        assert result['envelope']['status'] == 'ok'
        assert result['appliedAvoids'] == []
        assert result['route']['distanceMeters'] == 17342
        assert result['route']['drivingDirections'][0]['instruction'] == 'Head north on N Spring St'

        params = azure_session.get.call_args.kwargs['params']
        assert 'avoid' not in params
        assert 'avoidAreas' not in params

        envelope = arcgis_session.get.call_args.kwargs['params']['geometry']
        min_lon, min_lat, max_lon, max_lat = (float(v) for v in envelope.split(','))
        assert min_lat == pytest.approx(34.0522 - 2.0 / 111.0)
        assert max_lon == pytest.approx(-118.1331 + 2.0 / 111.0)

    def test_fire_in_corridor_is_avoided(self, e2e_service, arcgis_session, azure_session):
        arcgis_session.get.return_value = Mock(status_code=200, text=_collection_text(EAGLE_ROCK_FIRE))

        result = e2e_service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert len(result['appliedAvoids']) == 1
        rect = AvoidRectangle.parse(result['appliedAvoids'][0])
        assert rect.min_lon == pytest.approx(-118.20 - 2.0 / 111.0)
        assert rect.max_lat == pytest.approx(34.10 + 2.0 / 111.0)

        params = azure_session.get.call_args.kwargs['params']
        assert params['avoid'] == 'avoidAreas'
        assert params['avoidAreas'] == rect.to_route_param()

    def test_share_link_resolves_to_request_body(self, e2e_service, link_service):
        result = e2e_service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        share_link = result['shareLink']
        assert share_link['url'] == f"https://maps.example.org/view?id={share_link['id']}"
        assert share_link['reused'] is False

        lookup = link_service.resolve(share_link['id'])
        assert lookup.found
        assert lookup.payload['routeRequest']['features'][0]['geometry']['coordinates'] == [-118.2437, 34.0522]

    def test_arcgis_outage_still_routes(self, e2e_service, arcgis_session):
        arcgis_session.get.side_effect = requests.exceptions.ConnectionError('unreachable')

        result = e2e_service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert result['envelope']['status'] == 'ok'
        assert result['appliedAvoids'] == []


class TestRouteCoordinates:
    """Test suite for FireAwareRoutingService.route_coordinates"""

    def test_success_envelope(self, service):
        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        envelope = result['envelope']
        assert envelope['toolVersion'] == TOOL_VERSION
        assert envelope['status'] == 'ok'
        assert envelope['generatedAtUtc'].endswith('Z')
        assert envelope['latencyMs'] >= 0
        assert len(result['traceId']) == 8
        assert 'error' not in result

    def test_perimeters_are_cached_between_requests(self, service, perimeter_service):
        service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)
        service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert perimeter_service.fetch_perimeters_geojson.call_count == 1
        bbox, since = perimeter_service.fetch_perimeters_geojson.call_args.args
        assert since == 60
        assert bbox.min_lat < 34.0522 < bbox.max_lat

    def test_closures_fill_remaining_slots(self, service, perimeter_service, router):
        perimeter_service.fetch_perimeters_geojson.return_value = _collection_text(EAGLE_ROCK_FIRE)
        closures = [AvoidRectangle(min_lat=34.1, min_lon=-118.2 + i / 100, max_lat=34.11, max_lon=-118.19 + i / 100)
                    for i in range(12)]
        perimeter_service.try_fetch_closure_rectangles.return_value = closures

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert len(result['appliedAvoids']) == 10
        assert result['appliedAvoids'][1:] == [str(rect) for rect in closures[:9]]
        sent = router.get_route_with_request_data.call_args.args[2]
        assert len(sent) == 10

    def test_full_perimeter_list_skips_closures(self, service, perimeter_service):
        fires = [_square_feature(-118.2 + i / 100, 34.08, -118.19 + i / 100, 34.09) for i in range(12)]
        perimeter_service.fetch_perimeters_geojson.return_value = _collection_text(*fires)

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert len(result['appliedAvoids']) == 10
        perimeter_service.try_fetch_closure_rectangles.assert_not_called()

    def test_depart_at_is_forwarded(self, service, router):
        service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION, depart_at_iso_utc='2025-08-01T08:30:00-07:00')

        depart_at = router.get_route_with_request_data.call_args.args[3]
        assert depart_at.isoformat() == '2025-08-01T15:30:00+00:00'

    @pytest.mark.parametrize('kwargs,message', [
        ({'origin_lat': 91}, 'Invalid origin coordinates'),
        ({'dest_lon': 'west'}, 'Invalid destination coordinates'),
        ({'avoid_buffer_meters': 150000}, 'Buffer distance must be between 0 and 100 km'),
        ({'depart_at_iso_utc': 'tomorrow'}, 'Invalid departAtIsoUtc format'),
        ({'share_link_ttl_minutes': 'forever'}, 'shareLinkTtlMinutes must be an integer'),
    ])
    def test_validation_errors(self, service, router, perimeter_service, kwargs, message):
        args = {'origin_lat': LA_ORIGIN[0], 'origin_lon': LA_ORIGIN[1],
                'dest_lat': LA_DESTINATION[0], 'dest_lon': LA_DESTINATION[1]}
        args.update(kwargs)

        result = service.route_coordinates(**args)

        assert result['error'] == {'type': ERROR_VALIDATION, 'message': message}
        assert result['envelope']['status'] == 'error'
        assert result['route'] is None
        assert result['appliedAvoids'] == []
        assert result['shareLink'] is None
        router.get_route_with_request_data.assert_not_called()
        perimeter_service.fetch_perimeters_geojson.assert_not_called()

    def test_missing_router_is_unavailable(self, perimeter_service):
        service = FireAwareRoutingService(GeometryService(), GeoJsonCache(InMemoryBlobStore()), perimeter_service)

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert result['error']['type'] == ERROR_UNAVAILABLE
        perimeter_service.fetch_perimeters_geojson.assert_not_called()

    @pytest.mark.parametrize('failure', [
        requests.exceptions.Timeout('timed out'),
        requests.exceptions.HTTPError('500 Server Error'),
        ValueError('No routes found in Azure Maps response'),
    ])
    def test_router_failures_are_upstream_errors(self, service, router, failure):
        router.get_route_with_request_data.side_effect = failure

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert result['error']['type'] == ERROR_UPSTREAM
        assert result['error']['message'].startswith('Route calculation failed')
        assert result['route'] is None

    def test_share_link_failure_keeps_route(self, perimeter_service, router):
        link_service = Mock()
        link_service.create.side_effect = StorageError('links container unavailable')
        service = FireAwareRoutingService(GeometryService(), GeoJsonCache(InMemoryBlobStore()), perimeter_service,
                                          router=router, link_service=link_service)

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert result['envelope']['status'] == 'ok'
        assert result['route']['distanceMeters'] == 17342
        assert result['shareLink'] is None

    def test_share_link_can_be_disabled(self, perimeter_service, router):
        link_service = Mock()
        service = FireAwareRoutingService(GeometryService(), GeoJsonCache(InMemoryBlobStore()), perimeter_service,
                                          router=router, link_service=link_service)

        result = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION, persist_share_link=False)

        assert result['shareLink'] is None
        link_service.create.assert_not_called()

    def test_share_link_ttl(self, perimeter_service, router):
        link_service = MagicMock()
        service = FireAwareRoutingService(GeometryService(), GeoJsonCache(InMemoryBlobStore()), perimeter_service,
                                          router=router, link_service=link_service,
                                          default_share_link_ttl_minutes=1440)

        service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION, share_link_ttl_minutes=90,
                                  request_base_url='http://localhost:5001/')
        kwargs = link_service.create.call_args.kwargs
        assert kwargs['ttl'] == timedelta(minutes=90)
        assert kwargs['request_base_url'] == 'http://localhost:5001/'

        service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION, share_link_ttl_minutes=0)
        assert link_service.create.call_args.kwargs['ttl'] == timedelta(minutes=1440)

    def test_same_request_reuses_share_link(self, service):
        first = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)
        second = service.route_coordinates(*LA_ORIGIN, *LA_DESTINATION)

        assert first['shareLink']['id'] == second['shareLink']['id']
        assert second['shareLink']['reused'] is True


class TestRouteAddresses:
    """Test suite for FireAwareRoutingService.route_addresses"""

    def test_geocodes_both_ends(self, service, router):
        result = service.route_addresses('5550 Skyway, Paradise, CA', '1 Colorado Blvd, Pasadena, CA')

        assert result['envelope']['status'] == 'ok'
        assert result['originGeocoding']['coordinates'] == {'lat': PARADISE[0], 'lon': PARADISE[1]}
        assert result['destinationGeocoding']['confidence'] == 'High'
        origin, destination = router.get_route_with_request_data.call_args.args[:2]
        assert origin == Coordinate(*PARADISE)
        assert destination == Coordinate(*LA_DESTINATION)

    def test_empty_address(self, service, geocoder):
        result = service.route_addresses('', 'Pasadena, CA')

        assert result['error'] == {'type': ERROR_VALIDATION, 'message': 'originAddress is required'}
        geocoder.geocode_address.assert_not_called()

    def test_no_geocoding_match(self, service, geocoder, router):
        geocoder.geocode_address.side_effect = LookupError('No geocoding results found')

        result = service.route_addresses('Paradise, CA', 'Atlantis')

        assert result['error'] == {'type': ERROR_VALIDATION, 'message': 'Could not geocode originAddress'}
        router.get_route_with_request_data.assert_not_called()

    def test_geocoder_outage(self, service, geocoder):
        geocoder.geocode_address.side_effect = requests.exceptions.ConnectionError('dns failure')

        result = service.route_addresses('Paradise, CA', 'Pasadena, CA')

        assert result['error']['type'] == ERROR_UPSTREAM
        assert 'originGeocoding' not in result

    def test_missing_geocoder_is_unavailable(self, perimeter_service, router):
        service = FireAwareRoutingService(GeometryService(), GeoJsonCache(InMemoryBlobStore()), perimeter_service,
                                          router=router)

        result = service.route_addresses('Paradise, CA', 'Pasadena, CA')

        assert result['error']['type'] == ERROR_UNAVAILABLE


class TestFireZoneChecks:
    """Test suite for coordinate and address fire zone checks"""

    def test_point_inside_perimeter(self, service, perimeter_service):
        perimeter_service.fetch_perimeters_geojson.return_value = _collection_text(CAMP_FIRE)

        result = service.check_coordinate_fire_zone(*PARADISE)

        assert result['envelope']['status'] == 'ok'
        assert result['coordinates'] == {'lat': PARADISE[0], 'lon': PARADISE[1]}
        zone = result['fireZone']
        assert zone['isInFireZone'] is True
        assert zone['incidentName'] == 'Camp'
        assert zone['fireZoneName'] == 'Camp perimeter'
        assert zone['containmentPercent'] == 100.0
        assert zone['acresBurned'] == 153336.0
        assert zone['lastUpdate'] == '2018-12-01T00:00:00Z'

    def test_point_outside_perimeter(self, service, perimeter_service):
        perimeter_service.fetch_perimeters_geojson.return_value = _collection_text(CAMP_FIRE)

        zone = service.check_coordinate_fire_zone(*LA_ORIGIN)['fireZone']

        assert zone['isInFireZone'] is False
        assert zone['incidentName'] == ''
        assert zone['lastUpdate'] is None

    def test_lookup_uses_five_km_box(self, service, perimeter_service):
        service.check_coordinate_fire_zone(*PARADISE)

        bbox = perimeter_service.fetch_perimeters_geojson.call_args.args[0]
        assert bbox.max_lat - bbox.min_lat == pytest.approx(2 * 5.0 / 111.0)

    def test_invalid_coordinates(self, service, perimeter_service):
        result = service.check_coordinate_fire_zone(120, 0)

        assert result['error'] == {'type': ERROR_VALIDATION, 'message': 'Invalid point coordinates'}
        assert result['fireZone'] is None
        assert result['envelope']['status'] == 'error'
        perimeter_service.fetch_perimeters_geojson.assert_not_called()

    def test_address_check(self, service, perimeter_service):
        perimeter_service.fetch_perimeters_geojson.return_value = _collection_text(CAMP_FIRE)

        result = service.check_address_fire_zone('5550 Skyway, Paradise, CA')

        assert result['address'] == '5550 Skyway, Paradise, CA'
        assert result['geocoding']['formattedAddress'] == '5550 Skyway, Paradise, CA'
        assert result['fireZone']['isInFireZone'] is True

    def test_address_check_without_match(self, service, geocoder):
        geocoder.geocode_address.side_effect = LookupError('none')

        result = service.check_address_fire_zone('Atlantis')

        assert result['error'] == {'type': ERROR_VALIDATION, 'message': 'Could not geocode address'}
        assert result['coordinates'] is None
