from dataclasses import dataclass


@dataclass(frozen=True)
class BlobHandle:
    """Reference to one encrypted temp file. Owned by exactly one cache entry."""
    path: str
