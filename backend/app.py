from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import os
import logging
from datetime import timedelta
from dotenv import load_dotenv
from config import config
from models import LOOKUP_EXPIRED, AvoidRectangle, Coordinate
from services.blob_store import FirebaseBlobStore, InMemoryBlobStore, StorageError
from services.fire_aware_routing_service import (ERROR_UNAVAILABLE, ERROR_UPSTREAM,
                                                 ERROR_VALIDATION, FireAwareRoutingService)
from services.fire_perimeter_service import FirePerimeterService
from services.geocoding_service import GeocodingService
from services.geojson_cache import GeoJsonCache
from services.geometry_service import GeometryService
from services.route_link_service import RouteLinkService
from services.routing_service import RoutingService
from utils.url_validator import extract_allowed_hosts, is_allowed_referer
from utils.validators import RouteLinkValidator, RoutingRequestValidator

load_dotenv()

logger = logging.getLogger(__name__)

SERVICE_NAME = 'fire-aware-routing-api'

# Orchestrator error type -> HTTP status
ERROR_STATUS_CODES = {
    ERROR_VALIDATION: 400,
    ERROR_UPSTREAM: 502,
    ERROR_UNAVAILABLE: 503,
}


def build_services(app_config):
    """
    Wire storage, provider clients and the orchestrator from configuration.

    Routing and geocoding are optional: without AZURE_MAPS_KEY they are left
    out and the routing endpoints answer 503.

    Returns:
        dict with 'routing' (FireAwareRoutingService), 'links'
        (RouteLinkService) and 'geometry' (GeometryService)
    """
    backend = app_config.get('STORAGE_BACKEND', 'memory')
    if backend == 'firebase':
        from firebase_setup import initialize_firebase
        initialize_firebase(app_config.get('FIREBASE_DATABASE_URL'))
        cache_store = FirebaseBlobStore(app_config['CACHE_CONTAINER'])
        link_store = FirebaseBlobStore(app_config['LINKS_CONTAINER'])
    elif backend == 'memory':
        cache_store = InMemoryBlobStore()
        link_store = InMemoryBlobStore()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    logger.info(f"Using {backend} storage backend")

    api_key = app_config.get('AZURE_MAPS_KEY')
    base_url = app_config.get('AZURE_MAPS_BASE_URL')

    router = None
    geocoder = None
    try:
        router = RoutingService(api_key=api_key, base_url=base_url)
        geocoder = GeocodingService(api_key=api_key, base_url=base_url)
    except ValueError as e:
        logger.warning(f"Routing and geocoding not initialized: {e}")

    geometry = GeometryService()
    link_service = RouteLinkService(
        link_store,
        base_url=app_config.get('ROUTE_LINKS_BASE_URL'),
        default_ttl=timedelta(minutes=app_config.get('SHARE_LINK_TTL_MINUTES', 1440)),
    )

    routing = FireAwareRoutingService(
        geometry=geometry,
        perimeter_cache=GeoJsonCache(cache_store),
        perimeter_service=FirePerimeterService(feature_url=app_config.get('ARCGIS_FEATURE_URL')),
        router=router,
        link_service=link_service,
        geocoder=geocoder,
        perimeter_ttl_minutes=app_config.get('PERIMETER_CACHE_TTL_MINUTES', 10),
        max_avoid_areas=app_config.get('MAX_AVOID_AREAS', 10),
        default_avoid_buffer_meters=app_config.get('DEFAULT_AVOID_BUFFER_METERS', 2000.0),
    )

    return {'routing': routing, 'links': link_service, 'geometry': geometry}


def _status_for(result):
    error = result.get('error')
    if not error:
        return 200
    return ERROR_STATUS_CODES.get(error.get('type'), 500)


def _optional_bool(data, key):
    """(value, error) for an optional JSON boolean."""
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return value, None
    return None, f'{key} must be a boolean'


def create_app(config_name=None, services=None):
    """
    Application factory.

    Args:
        config_name: Key into config.config (defaults to FLASK_ENV or 'default')
        services: Optional pre-built services dict (see build_services), used by tests

    Returns:
        Flask app
    """
    app = Flask(__name__)
    config_name = config_name or os.getenv('FLASK_ENV', 'default')
    app.config.from_object(config.get(config_name, config['default']))

    logging.basicConfig(
        level=getattr(logging, app.config['LOG_LEVEL'], logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # CORS Configuration - Environment-aware origin restriction
    allowed_origins = [origin for origin in app.config['CORS_ORIGINS'] if origin]
    if config_name == 'production' and not allowed_origins:
        raise ValueError("CORS_ORIGINS must be set in production environment")
    CORS(app, origins=allowed_origins)

    # Rate Limiting Configuration
    # Set REDIS_URL to share limits across multiple servers
    limiter = Limiter(
        get_remote_address,
        app=app,
        default_limits=[limit.strip() for limit in app.config['RATELIMIT_DEFAULT'].split(';') if limit.strip()],
        storage_uri=app.config['RATELIMIT_STORAGE_URI']
    )

    services = services or build_services(app.config)
    routing_service = services['routing']
    link_service = services['links']
    geometry_service = services['geometry']

    allowed_referer_hosts = extract_allowed_hosts(app.config.get('ROUTE_LINKS_BASE_URL'))

    # Security Headers Middleware
    @app.after_request
    def set_security_headers(response):
        """
        Add security headers to all responses.

        - HSTS: Forces HTTPS for 1 year (only in production)
        - X-Frame-Options: Prevents clickjacking
        - X-Content-Type-Options: Prevents MIME sniffing
        - Referrer-Policy: Controls referrer information leakage
        """
        if config_name == 'production':
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains; preload'

        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        return response

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'service': SERVICE_NAME,
            'storage': app.config['STORAGE_BACKEND'],
            'routingConfigured': routing_service.router is not None,
        })

    # ===== FIRE ZONE CHECKS =====

    @app.route('/api/fire-zone/coordinates', methods=['GET'])
    @limiter.limit("120 per hour")
    def check_coordinate_fire_zone():
        """
        Check whether a point lies inside an active fire perimeter.

        Query Parameters:
            lat (float): Latitude
            lon (float): Longitude

        Returns:
            200: {coordinates, fireZone, traceId, envelope}
            400: Missing or invalid coordinates
        """
        lat = request.args.get('lat', type=float)
        lon = request.args.get('lon', type=float)
        if lat is None or lon is None:
            return jsonify({'error': 'lat and lon query parameters are required numbers'}), 400

        result = routing_service.check_coordinate_fire_zone(lat, lon)
        return jsonify(result), _status_for(result)

    @app.route('/api/fire-zone/address', methods=['GET'])
    @limiter.limit("60 per hour")
    def check_address_fire_zone():
        """
        Geocode an address and check it against active fire perimeters.

        Query Parameters:
            address (str): US street address

        Returns:
            200: {address, geocoding, coordinates, fireZone, traceId, envelope}
            400: Missing address or no geocoding match
            502: Geocoding provider failed
            503: Geocoding not configured
        """
        address = request.args.get('address', '')
        result = routing_service.check_address_fire_zone(address)
        return jsonify(result), _status_for(result)

    # ===== FIRE-AWARE ROUTING =====

    def _routing_options(data):
        persist, error = _optional_bool(data, 'persistShareLink')
        if error:
            return None, error
        return {
            'avoid_buffer_meters': data.get('avoidBufferMeters'),
            'depart_at_iso_utc': data.get('departAtIsoUtc'),
            'persist_share_link': persist,
            'share_link_ttl_minutes': data.get('shareLinkTtlMinutes'),
            'request_base_url': request.host_url,
        }, None

    @app.route('/api/routes/fire-aware', methods=['POST'])
    @limiter.limit("40 per hour")
    @limiter.limit("10 per minute")
    def route_fire_aware_coordinates():
        """
        Calculate the fastest route that avoids fire perimeters.

        Request Body:
            originLat, originLon (float): Route start
            destinationLat, destinationLon (float): Route end
            avoidBufferMeters (float, optional): Buffer around perimeters (default 2000)
            departAtIsoUtc (str, optional): Departure time
            persistShareLink (bool, optional): Create a share link (default true)
            shareLinkTtlMinutes (int, optional): Share link lifetime

        Returns:
            200: {route, appliedAvoids, shareLink, traceId, envelope}
            400: Invalid parameters
            502: Routing provider failed
            503: Routing not configured
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body is required'}), 400

        required = ('originLat', 'originLon', 'destinationLat', 'destinationLon')
        missing = [key for key in required if data.get(key) is None]
        if missing:
            return jsonify({'error': f"Missing required fields: {', '.join(missing)}"}), 400

        options, error = _routing_options(data)
        if error:
            return jsonify({'error': error}), 400

        result = routing_service.route_coordinates(
            data['originLat'], data['originLon'],
            data['destinationLat'], data['destinationLon'],
            **options
        )
        return jsonify(result), _status_for(result)

    @app.route('/api/routes/fire-aware/address', methods=['POST'])
    @limiter.limit("40 per hour")
    @limiter.limit("10 per minute")
    def route_fire_aware_addresses():
        """
        Geocode two addresses and route between them avoiding fire perimeters.

        Request Body:
            originAddress, destinationAddress (str)
            plus the optional fields of /api/routes/fire-aware

        Returns:
            200: {route, appliedAvoids, shareLink, originGeocoding, destinationGeocoding, traceId, envelope}
            400 / 502 / 503 as for /api/routes/fire-aware
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body is required'}), 400

        options, error = _routing_options(data)
        if error:
            return jsonify({'error': error}), 400

        result = routing_service.route_addresses(
            data.get('originAddress'), data.get('destinationAddress'), **options
        )
        return jsonify(result), _status_for(result)

    # ===== ROUTE LINKS =====

    @app.route('/api/routeLinks', methods=['POST'])
    @limiter.limit("30 per hour")
    def create_route_link():
        """
        Store a RouteSpec as a content-addressed share link.

        Request Body (RouteSpec):
            type: "FeatureCollection"
            features: >= 2 Point features, origin first, destination last
            avoidAreas (MultiPolygon, optional)
            ttlMinutes (int, optional)

        Returns:
            201: New link {id, url, createdAt, expiresAt, reused}
            200: Existing link for identical inputs today
            400: Invalid route specification
            503: Storage unavailable
        """
        spec = request.get_json(silent=True)
        if spec is None:
            return jsonify({'error': 'Request body is required'}), 400

        is_valid, error_message = RouteLinkValidator.validate_route_spec(spec)
        if not is_valid:
            return jsonify({'error': error_message}), 400

        features = spec['features']
        first = features[0]['geometry']['coordinates']
        last = features[-1]['geometry']['coordinates']
        origin = Coordinate(lat=float(first[1]), lon=float(first[0]))
        destination = Coordinate(lat=float(last[1]), lon=float(last[0]))

        avoid_labels = []
        for polygon in (spec.get('avoidAreas') or {}).get('coordinates', []):
            bbox = geometry_service.extract_bounding_box({'type': 'Polygon', 'coordinates': polygon})
            if bbox is not None:
                avoid_labels.append(str(AvoidRectangle(
                    min_lat=bbox.min_lat, min_lon=bbox.min_lon,
                    max_lat=bbox.max_lat, max_lon=bbox.max_lon
                )))

        ttl_minutes, _ = RoutingRequestValidator.parse_share_link_ttl(spec.get('ttlMinutes'))
        ttl = timedelta(minutes=ttl_minutes) if ttl_minutes else None

        try:
            record = link_service.create(
                origin, destination, avoid_labels, lambda: spec,
                ttl=ttl, request_base_url=request.host_url
            )
        except StorageError as e:
            logger.error(f"Failed to create route link: {e}")
            return jsonify({'error': 'Route link storage unavailable'}), 503

        return jsonify(record.to_dict()), 200 if record.reused else 201

    @app.route('/api/public/routeLinks/<link_id>', methods=['GET'])
    @limiter.limit("300 per hour")
    def get_public_route_link(link_id):
        """
        Public read of a stored route link (used by the map viewer).

        Returns:
            200: Stored RouteSpec document
            403: Referer host not allowed
            404: Unknown link id
            410: Link expired
            503: Storage unavailable
        """
        referer = request.headers.get('Referer')
        if not is_allowed_referer(referer, allowed_referer_hosts):
            logger.warning(f"Rejected route link read for {link_id}: referer host not allowed")
            return jsonify({'error': 'Access not allowed from this origin'}), 403

        try:
            lookup = link_service.resolve(link_id)
        except StorageError as e:
            logger.error(f"Failed to read route link {link_id}: {e}")
            return jsonify({'error': 'Route link storage unavailable'}), 503

        if lookup.status == LOOKUP_EXPIRED:
            return jsonify({
                'error': 'Route link has expired',
                'expiresAt': lookup.expires_at.isoformat().replace('+00:00', 'Z')
            }), 410
        if not lookup.found:
            return jsonify({'error': 'Route link not found'}), 404

        return jsonify(lookup.payload), 200

    # ===== ERROR HANDLERS =====

    @app.errorhandler(413)
    def request_entity_too_large(error):
        """Handle requests that exceed MAX_CONTENT_LENGTH."""
        return jsonify({
            'error': 'Request payload too large',
            'max_size': '1 MB'
        }), 413

    @app.errorhandler(400)
    def bad_request(error):
        """Handle malformed requests."""
        return jsonify({
            'error': 'Bad request',
            'message': str(error)
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({
            'error': 'Too many requests',
            'message': str(error.description)
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled server error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


app = create_app()


if __name__ == '__main__':
    # Use environment variable to control debug mode (defaults to False for production)
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(debug=debug_mode, host='0.0.0.0', port=int(os.getenv('PORT', '5001')))
