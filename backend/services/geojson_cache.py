"""
Read-through TTL cache for fire perimeter GeoJSON.

Perimeter feeds are slow and rate limited, so each geographic cell is
fetched at most once per TTL window. Freshness comes from the blob's
last-modified timestamp and is judged at read time; nothing is evicted.
A broken store never fails a request, the refresher is called directly
instead.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from services.blob_store import BlobNotFoundError, BlobStore, StorageError

logger = logging.getLogger(__name__)

Refresher = Callable[[], str]


class GeoJsonCache:
    """TTL cache over a BlobStore, keyed by caller-built cell keys"""

    def __init__(
        self,
        store: BlobStore,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def blob_key(key: str) -> str:
        return f"{key}.json"

    def load_or_refresh(self, key: str, ttl: Union[timedelta, int, float], refresher: Refresher) -> str:
        """
        Return the cached payload for key, refreshing it when missing or stale.

        Args:
            key: Stable cache key (e.g. a rounded bounding box)
            ttl: timedelta, or minutes as a number
            refresher: Zero-argument callable producing the fresh payload

        Returns:
            Payload text

        Raises:
            Whatever refresher raises; store errors are logged and bypassed
        """
        if not isinstance(ttl, timedelta):
            ttl = timedelta(minutes=ttl)

        blob_key = self.blob_key(key)

        try:
            cached = self._read_fresh(blob_key, ttl)
        except Exception as e:
            self.logger.error(f"Cache read failed for {key}, fetching directly: {e}")
            return refresher()

        if cached is not None:
            self.logger.info(f"Cache hit for {key}")
            return cached

        self.logger.info(f"Cache miss for {key}, refreshing")
        payload = refresher()

        try:
            self.store.put(blob_key, payload)
        except Exception as e:
            self.logger.error(f"Cache write failed for {key}, returning uncached payload: {e}")

        return payload

    def _read_fresh(self, blob_key: str, ttl: timedelta) -> Optional[str]:
        if not self.store.exists(blob_key):
            return None

        try:
            data, last_modified = self.store.get(blob_key)
        except BlobNotFoundError:
            # Removed between exists() and get()
            return None

        age = self._clock() - last_modified
        # A future last_modified means clock skew or a corrupt node
        if age < timedelta(0) or age >= ttl:
            self.logger.debug(f"Cache entry {blob_key} is stale (age {age})")
            return None

        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise StorageError(f"Corrupt cache entry {blob_key}: {e}") from e
