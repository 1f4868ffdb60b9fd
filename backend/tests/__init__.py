"""
Test suite for the fire-aware routing backend.

This package contains:
- test_geometry_service.py: Bounding boxes, avoid rectangles, point-in-polygon
- test_blob_store.py: In-memory and Firebase blob stores
- test_geojson_cache.py: Perimeter TTL cache
- test_route_link_service.py: Content-addressed share links
- test_fire_aware_routing_service.py: Orchestrator, including end-to-end routing
- test_app.py: Flask API endpoints

Run tests:
    pip install -e ".[test]"
    python -m pytest
"""
