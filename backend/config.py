"""
Configuration file for the Fire-Aware Routing backend.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = _env_bool('DEBUG', 'True')
    TESTING = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Requests carry coordinates and small RouteSpec documents only
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1 MB

    # Storage: 'memory' (single process, non-persistent) or 'firebase'
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'memory').lower()
    FIREBASE_DATABASE_URL = os.getenv('FIREBASE_DATABASE_URL')
    CACHE_CONTAINER = os.getenv('CACHE_CONTAINER', 'routing-cache')
    LINKS_CONTAINER = os.getenv('LINKS_CONTAINER', 'links')

    # Azure Maps (routing + geocoding)
    AZURE_MAPS_KEY = os.getenv('AZURE_MAPS_KEY')
    AZURE_MAPS_BASE_URL = os.getenv('AZURE_MAPS_BASE_URL', 'https://atlas.microsoft.com')

    # Fire perimeters
    ARCGIS_FEATURE_URL = os.getenv('ARCGIS_FEATURE_URL')
    PERIMETER_CACHE_TTL_MINUTES = int(os.getenv('PERIMETER_CACHE_TTL_MINUTES', '10'))

    # Routing
    DEFAULT_AVOID_BUFFER_METERS = float(os.getenv('DEFAULT_AVOID_BUFFER_METERS', '2000'))
    MAX_AVOID_AREAS = int(os.getenv('MAX_AVOID_AREAS', '10'))

    # Share links
    ROUTE_LINKS_BASE_URL = os.getenv('ROUTE_LINKS_BASE_URL')
    SHARE_LINK_TTL_MINUTES = int(os.getenv('SHARE_LINK_TTL_MINUTES', '1440'))

    # CORS
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000').split(',')
        if origin.strip()
    ]

    # Rate Limiting
    RATELIMIT_ENABLED = _env_bool('RATE_LIMIT_ENABLED', 'True')
    RATELIMIT_STORAGE_URI = os.getenv('REDIS_URL', 'memory://')
    RATELIMIT_DEFAULT = os.getenv('RATE_LIMIT_DEFAULT', '200 per day;50 per hour')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Test configuration: in-memory storage, no rate limits, no provider key"""
    TESTING = True
    DEBUG = False
    STORAGE_BACKEND = 'memory'
    RATELIMIT_ENABLED = False
    AZURE_MAPS_KEY = None
    ROUTE_LINKS_BASE_URL = 'https://maps.example.org'
    CORS_ORIGINS = ['http://localhost:3000']


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
