"""Published cache artifact for one endpoint. Immutable: replace, never mutate."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime

from querycache.core.constants import CACHE_CONTROL_FRESH
from querycache.models.blob import BlobHandle


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: int
    produced_at: datetime
    freshness_window: int
    payload: bytes | None = None
    blob: BlobHandle | None = None
    etag: str = field(init=False, repr=False, compare=False)
    last_modified: str = field(init=False, repr=False, compare=False)
    cache_control: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if (self.payload is None) == (self.blob is None):
            raise ValueError("CacheEntry needs exactly one of payload or blob")
        if self.freshness_window < 0:
            raise ValueError("freshness_window cannot be negative")
        if self.produced_at.tzinfo is None:
            raise ValueError("produced_at must be timezone-aware")
        # Header values are formatted once here, not on every request
        object.__setattr__(self, "etag", f'W/"{self.fingerprint:x}"')
        produced = self.produced_at.astimezone(timezone.utc)
        object.__setattr__(self, "last_modified", format_datetime(produced, usegmt=True))
        object.__setattr__(self, "cache_control", CACHE_CONTROL_FRESH.format(max_age=self.freshness_window))

    @property
    def is_file_backed(self) -> bool:
        return self.blob is not None

    def validator_headers(self) -> dict[str, str]:
        """ETag, Last-Modified and Cache-Control, sent with both 200 and 304."""
        return {
            "ETag": self.etag,
            "Last-Modified": self.last_modified,
            "Cache-Control": self.cache_control,
        }
