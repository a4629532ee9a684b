"""
Refresh one endpoint: run its query, serialize and fingerprint the rows into
memory or an encrypted blob, then publish the new entry and retire the old one.

A failed refresh removes the endpoint's entry (and deletes its blob) so stale
data is never served after the database stopped answering for it. Nothing
partially written is ever published: the blob is discarded on any error.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from querycache.config import EndpointConfig
from querycache.core.errors import CacheError
from querycache.models.entry import CacheEntry
from querycache.services.cache.blobs import EncryptedBlobStore
from querycache.services.cache.fingerprint import Fingerprinter
from querycache.services.cache.store import CacheStore
from querycache.services.query import QueryExecutor
from querycache.services.refresh.serialize import RowSerializer, write_json_rows

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retire_entry(blobs: EncryptedBlobStore, entry: CacheEntry | None) -> None:
    """Release what a displaced entry owns. Readers still holding it keep their open file."""
    if entry is not None and entry.blob is not None:
        blobs.delete_blob(entry.blob)


def freshness_seconds(now: datetime, next_fire: datetime | None) -> int:
    """Whole seconds until the next refresh; 0 when unknown or already past."""
    if next_fire is None:
        return 0
    return max(0, int((next_fire - now).total_seconds()))


class RefreshWorker:
    """
    One per endpoint. The scheduler never runs two refreshes for the same
    endpoint at once; different endpoints refresh independently.
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        store: CacheStore,
        blobs: EncryptedBlobStore,
        executor: QueryExecutor,
        next_fire_time: Callable[[], datetime | None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.endpoint = endpoint
        self._store = store
        self._blobs = blobs
        self._executor = executor
        self._next_fire_time = next_fire_time or (lambda: None)
        self._clock = clock

    @property
    def key(self) -> str:
        return self.endpoint.path

    def run(self) -> CacheEntry | None:
        """Refresh once. Returns the published entry, or None if the refresh failed."""
        try:
            entry = self._make_entry()
        except CacheError as e:
            logger.warning("Failed to query for %s: %s", self.key, e)
            self._invalidate()
            return None
        except Exception as e:
            logger.exception("Unexpected error refreshing %s: %s", self.key, e)
            self._invalidate()
            return None

        old, existed = self._store.publish(self.key, entry)
        if existed:
            retire_entry(self._blobs, old)
            if old.fingerprint == entry.fingerprint:
                logger.debug("Replaced result for %s (no change in content)", self.key)
            else:
                logger.debug("Replaced result for %s", self.key)
        else:
            logger.debug("Populated result for %s", self.key)
        return entry

    def _invalidate(self) -> None:
        old, existed = self._store.remove(self.key)
        if existed:
            retire_entry(self._blobs, old)
            logger.warning("Removed old result for %s", self.key)

    def _make_entry(self) -> CacheEntry:
        e = self.endpoint
        fp = Fingerprinter()
        payload = None
        blob = None
        t1 = time.monotonic()
        try:
            with self._executor.execute(e.sql, e.timeout_seconds) as result:
                serializer = RowSerializer(result.columns, e.as_arrays)
                if e.filebacked:
                    with self._blobs.create_blob() as writer:
                        count = write_json_rows(result.rows, serializer, writer.write, fp)
                        blob = writer.close()
                else:
                    buf = bytearray()
                    count = write_json_rows(result.rows, serializer, buf.extend, fp)
                    payload = bytes(buf)
            logger.debug("Database query for %s took %.3fs (%s rows)", self.key, time.monotonic() - t1, count)

            now = self._clock()
            return CacheEntry(
                fingerprint=fp.value(),
                produced_at=now.astimezone(timezone.utc).replace(microsecond=0),
                freshness_window=freshness_seconds(now, self._next_fire_time()),
                payload=payload,
                blob=blob,
            )
        except BaseException:
            if blob is not None:
                self._blobs.delete_blob(blob)
            raise
