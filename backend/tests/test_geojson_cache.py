"""
Tests for the read-through TTL cache of fire perimeter GeoJSON.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock

import pytest

from services.blob_store import InMemoryBlobStore, StorageError
from services.geojson_cache import GeoJsonCache

EMPTY = '{"type":"FeatureCollection","features":[]}'
KEY = 'fire-perimeters-33.994--118.262-34.181--118.115'


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryBlobStore(clock=clock)


@pytest.fixture
def cache(store, clock):
    return GeoJsonCache(store, clock=clock)


class TestLoadOrRefresh:
    """Test suite for GeoJsonCache.load_or_refresh"""

    def test_miss_calls_refresher_and_stores(self, cache, store):
        refresher = Mock(return_value=EMPTY)

        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == EMPTY
        refresher.assert_called_once_with()
        assert store.get(f"{KEY}.json")[0] == EMPTY.encode('utf-8')

    def test_second_call_within_ttl_is_a_hit(self, cache, clock):
        refresher = Mock(return_value=EMPTY)

        cache.load_or_refresh(KEY, timedelta(minutes=10), refresher)
        clock.advance(minutes=9, seconds=59)
        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == EMPTY

        assert refresher.call_count == 1

    def test_refreshes_after_ttl_elapses(self, cache, clock):
        refresher = Mock(side_effect=['first', 'second'])

        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == 'first'
        clock.advance(minutes=10)
        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == 'second'
        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == 'second'

        assert refresher.call_count == 2

    def test_ttl_is_judged_at_read_time(self, cache, clock):
        """The same entry is fresh for a long TTL and stale for a short one"""
        refresher = Mock(side_effect=['v1', 'v2'])
        cache.load_or_refresh(KEY, timedelta(minutes=10), refresher)
        clock.advance(minutes=5)

        assert cache.load_or_refresh(KEY, timedelta(minutes=30), refresher) == 'v1'
        assert cache.load_or_refresh(KEY, timedelta(minutes=1), refresher) == 'v2'

    def test_entry_from_the_future_is_stale(self, cache, clock):
        refresher = Mock(side_effect=['v1', 'v2'])
        cache.load_or_refresh(KEY, timedelta(minutes=10), refresher)
        clock.advance(minutes=-5)

        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == 'v2'
        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == 'v2'
        assert refresher.call_count == 2

    def test_ttl_in_minutes(self, cache, clock):
        refresher = Mock(return_value=EMPTY)
        cache.load_or_refresh(KEY, 10, refresher)
        clock.advance(minutes=5)
        cache.load_or_refresh(KEY, 10, refresher)

        assert refresher.call_count == 1

    def test_keys_are_independent(self, cache):
        refresher = Mock(side_effect=['a', 'b'])

        assert cache.load_or_refresh('cell-a', timedelta(minutes=10), refresher) == 'a'
        assert cache.load_or_refresh('cell-b', timedelta(minutes=10), refresher) == 'b'


class TestStoreFailures:
    """Store faults fall back to the refresher; refresher faults propagate"""

    def test_read_failure_falls_back_to_refresher(self):
        store = MagicMock()
        store.exists.side_effect = StorageError('backend unavailable')
        refresher = Mock(return_value=EMPTY)
        cache = GeoJsonCache(store)

        assert cache.load_or_refresh(KEY, timedelta(minutes=10), refresher) == EMPTY
        refresher.assert_called_once_with()
        store.put.assert_not_called()

    def test_unexpected_read_error_also_falls_back(self):
        store = MagicMock()
        store.exists.return_value = True
        store.get.side_effect = ConnectionError('reset by peer')
        refresher = Mock(return_value=EMPTY)

        assert GeoJsonCache(store).load_or_refresh(KEY, timedelta(minutes=10), refresher) == EMPTY

    def test_corrupt_entry_falls_back(self, clock):
        store = MagicMock()
        store.exists.return_value = True
        store.get.return_value = (b'\xff\xfe\x00', clock.now)
        refresher = Mock(return_value=EMPTY)

        assert GeoJsonCache(store, clock=clock).load_or_refresh(KEY, timedelta(minutes=10), refresher) == EMPTY
        refresher.assert_called_once_with()

    def test_write_failure_returns_payload_without_second_refresh(self):
        store = MagicMock()
        store.exists.return_value = False
        store.put.side_effect = StorageError('read-only')
        refresher = Mock(return_value=EMPTY)
        logger = Mock()

        result = GeoJsonCache(store, logger=logger).load_or_refresh(KEY, timedelta(minutes=10), refresher)

        assert result == EMPTY
        refresher.assert_called_once_with()
        logger.error.assert_called_once()

    def test_refresher_failure_propagates(self, cache):
        refresher = Mock(side_effect=RuntimeError('ArcGIS down'))

        with pytest.raises(RuntimeError, match='ArcGIS down'):
            cache.load_or_refresh(KEY, timedelta(minutes=10), refresher)

    def test_refresher_failure_after_store_failure_propagates(self):
        store = MagicMock()
        store.exists.side_effect = StorageError('backend unavailable')
        refresher = Mock(side_effect=RuntimeError('ArcGIS down'))

        with pytest.raises(RuntimeError):
            GeoJsonCache(store).load_or_refresh(KEY, timedelta(minutes=10), refresher)
