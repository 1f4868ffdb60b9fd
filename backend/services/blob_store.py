"""
Blob storage backends for the perimeter cache and the route-link store.

Both caches talk to a narrow key -> bytes interface (exists/get/put plus a
small metadata map per key), so they work the same against Firebase in
production and an in-memory dict in tests.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple, Union

from firebase_admin import db

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]


class StorageError(Exception):
    """Storage backend unavailable or returned something unusable"""
    pass


class BlobNotFoundError(StorageError):
    """No blob stored under the requested key"""

    def __init__(self, key: str):
        super().__init__(f"Blob not found: {key}")
        self.key = key


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_bytes(data: Payload) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode('utf-8')
    raise TypeError(f"Blob payload must be bytes or str, got {type(data).__name__}")


class BlobStore(ABC):
    """Key -> bytes store with last-modified timestamps and string metadata"""

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def get(self, key: str) -> Tuple[bytes, datetime]:
        """Return (payload, last_modified_utc); raise BlobNotFoundError if missing."""
        ...

    @abstractmethod
    def put(self, key: str, data: Payload, metadata: Optional[Dict[str, str]] = None) -> None:
        """Create or overwrite; resets last_modified and replaces metadata in the same write."""
        ...

    @abstractmethod
    def set_metadata(self, key: str, metadata: Dict[str, str]) -> None:
        ...

    @abstractmethod
    def get_metadata(self, key: str) -> Dict[str, str]:
        ...


class InMemoryBlobStore(BlobStore):
    """
    Dict-backed store for tests and local development.

    Args:
        clock: Optional callable returning the current UTC datetime, used to
            stamp last_modified so tests can move time forward
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._blobs: Dict[str, Tuple[bytes, datetime]] = {}
        self._metadata: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def get(self, key: str) -> Tuple[bytes, datetime]:
        with self._lock:
            if key not in self._blobs:
                raise BlobNotFoundError(key)
            return self._blobs[key]

    def put(self, key: str, data: Payload, metadata: Optional[Dict[str, str]] = None) -> None:
        payload = _to_bytes(data)
        with self._lock:
            self._blobs[key] = (payload, self._clock())
            self._metadata[key] = dict(metadata or {})

    def set_metadata(self, key: str, metadata: Dict[str, str]) -> None:
        with self._lock:
            if key not in self._blobs:
                raise BlobNotFoundError(key)
            self._metadata[key] = dict(metadata)

    def get_metadata(self, key: str) -> Dict[str, str]:
        with self._lock:
            if key not in self._blobs:
                raise BlobNotFoundError(key)
            return dict(self._metadata.get(key, {}))

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


class FirebaseBlobStore(BlobStore):
    """
    Firebase Realtime Database backed store.

    Each blob is a node at {root}/{container}/{encoded key}:
        data           UTF-8 payload text
        last_modified  ISO-8601 UTC timestamp
        metadata       flat string map (e.g. ExpiresAt)

    Any error from firebase-admin is raised as StorageError so callers only
    ever deal with this module's exceptions.
    """

    # Characters Firebase forbids in path segments
    KEY_ESCAPES = {
        '%': '%25',
        '.': '%2E',
        '$': '%24',
        '#': '%23',
        '[': '%5B',
        ']': '%5D',
        '/': '%2F',
    }

    def __init__(self, container: str, root: str = 'blob_store', db_module=None):
        if not container:
            raise ValueError("container is required")
        self.container = container
        self.root = root.strip('/')
        self._db = db_module or db

    @classmethod
    def encode_key(cls, key: str) -> str:
        """
        Make a blob key safe as a Firebase path segment.

        Examples:
            >>> FirebaseBlobStore.encode_key('abc123.json')
            'abc123%2Ejson'
        """
        # '%' must be escaped first so the encoding stays reversible
        encoded = key.replace('%', cls.KEY_ESCAPES['%'])
        for char, escape in cls.KEY_ESCAPES.items():
            if char != '%':
                encoded = encoded.replace(char, escape)
        return encoded

    def _path(self, key: str, child: Optional[str] = None) -> str:
        path = f"{self.root}/{self.container}/{self.encode_key(key)}"
        return f"{path}/{child}" if child else path

    def _read(self, path: str):
        try:
            return self._db.reference(path).get()
        except Exception as e:
            logger.error(f"Firebase read failed for {path}: {e}")
            raise StorageError(f"Firebase read failed for {path}: {e}") from e

    def _write(self, path: str, value) -> None:
        try:
            self._db.reference(path).set(value)
        except Exception as e:
            logger.error(f"Firebase write failed for {path}: {e}")
            raise StorageError(f"Firebase write failed for {path}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._read(self._path(key, 'last_modified')) is not None

    def get(self, key: str) -> Tuple[bytes, datetime]:
        node = self._read(self._path(key))
        if not node:
            raise BlobNotFoundError(key)

        if not isinstance(node, dict) or 'data' not in node or 'last_modified' not in node:
            raise StorageError(f"Corrupt blob node for {key}")

        try:
            last_modified = datetime.fromisoformat(node['last_modified'])
        except (TypeError, ValueError) as e:
            raise StorageError(f"Corrupt last_modified for {key}: {e}") from e

        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)

        data = node['data']
        if not isinstance(data, str):
            raise StorageError(f"Corrupt payload for {key}")

        return data.encode('utf-8'), last_modified

    def put(self, key: str, data: Payload, metadata: Optional[Dict[str, str]] = None) -> None:
        try:
            text = _to_bytes(data).decode('utf-8')
        except UnicodeDecodeError as e:
            raise StorageError(f"Firebase blobs must be UTF-8 text: {e}") from e

        node = {
            'data': text,
            'last_modified': _utcnow().isoformat(),
        }
        if metadata:
            node['metadata'] = dict(metadata)
        # One set() so a blob is never stored without its metadata
        self._write(self._path(key), node)

    def set_metadata(self, key: str, metadata: Dict[str, str]) -> None:
        if not self.exists(key):
            raise BlobNotFoundError(key)
        self._write(self._path(key, 'metadata'), dict(metadata))

    def get_metadata(self, key: str) -> Dict[str, str]:
        node = self._read(self._path(key))
        if not node:
            raise BlobNotFoundError(key)
        metadata = node.get('metadata') if isinstance(node, dict) else None
        return dict(metadata) if isinstance(metadata, dict) else {}
