"""
Cache engine storage: fingerprinting, encrypted blobs and the key -> entry store.
"""
from querycache.services.cache.blobs import BlobHandle, BlobReader, BlobWriter, EncryptedBlobStore
from querycache.services.cache.fingerprint import Fingerprinter
from querycache.services.cache.store import CacheStore

__all__ = [
    "BlobHandle",
    "BlobReader",
    "BlobWriter",
    "CacheStore",
    "EncryptedBlobStore",
    "Fingerprinter",
]
