"""
Route Link Service - content-addressed, shareable route artifacts

A route link id is a hash of the route inputs and the UTC day, so the
same request on the same day always maps to the same link. Creating a link
that already exists reuses it: the stored payload and its expiry are left
untouched.

Storage layout (BlobStore):
    {id}.json      RouteSpec document
    metadata       {'ExpiresAt': ISO-8601 UTC}

The existence check and the write are not atomic. Two concurrent creates
for the same inputs can both write, which is harmless because the id fixes
the intended content.
"""
import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from models import (LOOKUP_EXPIRED, LOOKUP_NOT_FOUND, LOOKUP_OK, Coordinate,
                    RouteLinkLookup, RouteLinkRecord)
from services.blob_store import BlobNotFoundError, BlobStore
from utils.url_validator import build_view_url
from utils.validators import RouteLinkValidator

logger = logging.getLogger(__name__)

# Bump whenever the stored document shape changes so old links never match
ROUTE_LINK_SCHEMA_VERSION = '2'

EXPIRES_AT_METADATA_KEY = 'ExpiresAt'
DEFAULT_LINK_TTL = timedelta(hours=24)
LINK_ID_LENGTH = 12


def day_bucket(moment: datetime) -> str:
    """UTC calendar date as YYYYMMDD."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime('%Y%m%d')


def compute_link_id(
    origin: Coordinate,
    destination: Coordinate,
    sorted_avoid_labels: Iterable[str],
    bucket: str,
    schema_version: str = ROUTE_LINK_SCHEMA_VERSION
) -> str:
    """
    Deterministic 12 hex character id for a route link.

    Coordinates are rounded to 5 decimals (~1 m) before hashing.

    Args:
        origin: Route start
        destination: Route end
        sorted_avoid_labels: Avoid rectangle labels, already sorted
        bucket: UTC day bucket (YYYYMMDD)
        schema_version: Stored document schema version

    Returns:
        First 12 characters of the lowercase SHA-256 hex digest
    """
    canonical = (
        f"{origin.lat:.5f},{origin.lon:.5f}"
        f"|{destination.lat:.5f},{destination.lon:.5f}"
        f"|{';'.join(sorted_avoid_labels)}"
        f"|{bucket}"
        f"|{schema_version}"
    )
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()[:LINK_ID_LENGTH]


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RouteLinkService:
    """
    Creates and resolves shareable route links.

    Store errors are not caught here; callers decide whether a failed link
    should fail their request.
    """

    def __init__(
        self,
        store: BlobStore,
        base_url: Optional[str] = None,
        schema_version: str = ROUTE_LINK_SCHEMA_VERSION,
        default_ttl: timedelta = DEFAULT_LINK_TTL,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.store = store
        self.base_url = base_url
        self.schema_version = schema_version
        self.default_ttl = default_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def blob_key(link_id: str) -> str:
        return f"{link_id}.json"

    def create(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_labels: Iterable[str],
        payload_builder: Callable[[], Dict[str, Any]],
        ttl: Optional[timedelta] = None,
        request_base_url: Optional[str] = None
    ) -> RouteLinkRecord:
        """
        Create a route link, or reuse the one already stored for these inputs.

        Args:
            origin: Route start
            destination: Route end
            avoid_labels: Avoid rectangle labels in any order
            payload_builder: Called only when a new link is written; returns
                the routing request body stored under routeRequest
            ttl: Link lifetime (defaults to 24 hours)
            request_base_url: Fallback base for the link URL when no base
                URL is configured

        Returns:
            RouteLinkRecord (reused=True when the link already existed)

        Raises:
            StorageError: When the backing store fails
        """
        now = self._clock()
        labels = sorted(avoid_labels)
        link_id = compute_link_id(origin, destination, labels, day_bucket(now), self.schema_version)
        key = self.blob_key(link_id)
        url = build_view_url(link_id, self.base_url or request_base_url)

        if self.store.exists(key):
            expires_at = self._read_expiry(key)
            self.logger.info(f"Reusing existing route link {link_id}")
            return RouteLinkRecord(id=link_id, url=url, created_at=now, expires_at=expires_at, reused=True)

        expires_at = now + (ttl if ttl is not None else self.default_ttl)
        document = {
            'schemaVersion': self.schema_version,
            'id': link_id,
            'origin': origin.to_dict(),
            'destination': destination.to_dict(),
            'appliedAvoids': labels,
            'createdAt': _iso(now),
            'expiresAt': _iso(expires_at),
            'routeRequest': payload_builder(),
        }

        # Record and expiry land in one write; a failed create leaves nothing to reuse
        self.store.put(key, json.dumps(document), metadata={EXPIRES_AT_METADATA_KEY: _iso(expires_at)})

        self.logger.info(f"Created route link {link_id} with {len(labels)} avoid areas, expires {_iso(expires_at)}")
        return RouteLinkRecord(id=link_id, url=url, created_at=now, expires_at=expires_at)

    def resolve(self, link_id: str) -> RouteLinkLookup:
        """
        Public read of a route link.

        Returns:
            RouteLinkLookup with status 'ok' and the stored document,
            'not_found' for unknown or malformed ids, or 'expired' once
            now >= ExpiresAt (the blob itself is kept)

        Raises:
            StorageError: When the backing store fails
        """
        if not RouteLinkValidator.validate_link_id(link_id):
            return RouteLinkLookup(status=LOOKUP_NOT_FOUND, link_id=str(link_id))

        key = self.blob_key(link_id)
        if not self.store.exists(key):
            return RouteLinkLookup(status=LOOKUP_NOT_FOUND, link_id=link_id)

        expires_at = self._read_expiry(key)
        if expires_at is not None and self._clock() >= expires_at:
            self.logger.info(f"Route link {link_id} expired at {_iso(expires_at)}")
            return RouteLinkLookup(status=LOOKUP_EXPIRED, link_id=link_id, expires_at=expires_at)

        try:
            data, _ = self.store.get(key)
        except BlobNotFoundError:
            return RouteLinkLookup(status=LOOKUP_NOT_FOUND, link_id=link_id)

        try:
            payload = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            self.logger.error(f"Stored route link {link_id} is not valid JSON: {e}")
            return RouteLinkLookup(status=LOOKUP_NOT_FOUND, link_id=link_id)

        return RouteLinkLookup(status=LOOKUP_OK, link_id=link_id, payload=payload, expires_at=expires_at)

    def _read_expiry(self, key: str) -> Optional[datetime]:
        try:
            metadata = self.store.get_metadata(key)
        except BlobNotFoundError:
            return None

        raw = metadata.get(EXPIRES_AT_METADATA_KEY)
        if not raw:
            return None

        try:
            return _parse_iso(raw)
        except (TypeError, ValueError):
            self.logger.warning(f"Ignoring unparseable {EXPIRES_AT_METADATA_KEY} on {key}: {raw!r}")
            return None
