from querycache.models.blob import BlobHandle
from querycache.models.entry import CacheEntry

__all__ = ["BlobHandle", "CacheEntry"]
