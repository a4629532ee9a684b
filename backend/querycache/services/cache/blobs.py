"""
Encrypted temporary files for file-backed cache entries.

One AES-256-GCM key is generated when the store is created and lives only in
process memory: once the process exits, blobs it left behind cannot be read.

File layout:
    magic (4 bytes) | stream id (16 random bytes)
    then records:  length (u32) | final flag (u8) | nonce (12 bytes) | ciphertext

Each record's associated data is (stream id, record index, final flag), so a
truncated file, reordered records or a record spliced in from another blob all
fail authentication. The last record always carries final=1 (it may be empty).

A blob deleted while readers have it open is removed when the last one closes.
"""
from __future__ import annotations

import logging
import os
import struct
import tempfile
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from querycache.core.constants import BLOB_CHUNK_SIZE, BLOB_FILE_PREFIX
from querycache.core.errors import StorageFault
from querycache.models.blob import BlobHandle

logger = logging.getLogger(__name__)

MAGIC = b"QCB1"
STREAM_ID_SIZE = 16
NONCE_SIZE = 12
_RECORD_HEADER = struct.Struct(">IB")
_AAD = struct.Struct(">16sQB")


class BlobWriter:
    """Buffered encrypting write stream. close() seals the blob, abort() discards it."""

    def __init__(self, store: "EncryptedBlobStore", handle: BlobHandle, fileobj, stream_id: bytes):
        self._store = store
        self._handle = handle
        self._file = fileobj
        self._stream_id = stream_id
        self._buf = bytearray()
        self._index = 0
        self._closed = False

    @property
    def handle(self) -> BlobHandle:
        return self._handle

    def write(self, data: bytes) -> None:
        if self._closed:
            raise StorageFault("write to closed blob")
        self._buf += data
        size = self._store.chunk_size
        # Leave the tail in the buffer: close() writes it as the final record
        while len(self._buf) > size:
            self._emit(bytes(self._buf[:size]), final=False)
            del self._buf[:size]

    def close(self) -> BlobHandle:
        """Write the final record and close the file. Returns the handle to publish."""
        if self._closed:
            raise StorageFault("blob already closed")
        try:
            self._emit(bytes(self._buf), final=True)
            self._file.close()
        except StorageFault:
            self.abort()
            raise
        except OSError as e:
            self.abort()
            raise StorageFault(f"failed to close blob: {e}") from e
        self._buf.clear()
        self._closed = True
        return self._handle

    def abort(self) -> None:
        """Close and delete a partially written blob. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
        except OSError as e:
            logger.warning("Failed to close aborted blob %s: %s", self._handle.path, e)
        self._store.delete_blob(self._handle)

    def _emit(self, plaintext: bytes, final: bool) -> None:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._store._seal(nonce, plaintext, self._stream_id, self._index, final)
        try:
            self._file.write(_RECORD_HEADER.pack(len(ciphertext), int(final)))
            self._file.write(nonce)
            self._file.write(ciphertext)
        except OSError as e:
            raise StorageFault(f"failed to write blob: {e}") from e
        self._index += 1

    def __enter__(self) -> "BlobWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Anything not explicitly closed (exception or early return) is discarded
        if not self._closed:
            self.abort()


class BlobReader:
    """
    Decrypting read stream over one blob. The first record is read and
    authenticated on open, so a missing or corrupt file fails before any
    plaintext is handed out. Iterate to get decrypted chunks.
    """

    def __init__(self, store: "EncryptedBlobStore", handle: BlobHandle):
        self._store = store
        self._handle = handle
        self._index = 0
        self._released = False
        # Pinned before opening: a delete_blob() from here on waits for close()
        store._pin(handle.path)
        try:
            self._file = open(handle.path, "rb")
        except OSError as e:
            self._released = True
            store._unpin(handle.path)
            raise StorageFault(f"failed to open blob: {e}") from e
        try:
            header = self._file.read(len(MAGIC) + STREAM_ID_SIZE)
            if len(header) != len(MAGIC) + STREAM_ID_SIZE or not header.startswith(MAGIC):
                raise StorageFault("not an encrypted blob")
            self._stream_id = header[len(MAGIC):]
            self._first = self._read_record()
        except BaseException:
            self.close()
            raise

    def _read_record(self) -> tuple[bytes, bool]:
        try:
            raw = self._file.read(_RECORD_HEADER.size)
            if len(raw) != _RECORD_HEADER.size:
                raise StorageFault("blob truncated")
            length, final = _RECORD_HEADER.unpack(raw)
            nonce = self._file.read(NONCE_SIZE)
            ciphertext = self._file.read(length)
        except OSError as e:
            raise StorageFault(f"failed to read blob: {e}") from e
        if len(nonce) != NONCE_SIZE or len(ciphertext) != length:
            raise StorageFault("blob truncated")
        plaintext = self._store._open(nonce, ciphertext, self._stream_id, self._index, bool(final))
        self._index += 1
        return plaintext, bool(final)

    def __iter__(self):
        try:
            data, final = self._first
            while True:
                if data:
                    yield data
                if final:
                    break
                data, final = self._read_record()
            if self._file.read(1):
                raise StorageFault("trailing data after final record")
        finally:
            self.close()

    def read(self) -> bytes:
        """Decrypt the whole blob into memory."""
        return b"".join(self)

    def close(self) -> None:
        if self._released:
            return
        self._released = True
        self._file.close()
        self._store._unpin(self._handle.path)

    def __enter__(self) -> "BlobReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class EncryptedBlobStore:
    """
    Creates, opens and deletes encrypted temp files. The key never leaves this
    object. Blobs still tracked at close() are deleted.
    """

    def __init__(self, temp_dir: str | None = None, chunk_size: int = BLOB_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._aead = AESGCM(AESGCM.generate_key(bit_length=256))
        self._temp_dir = temp_dir
        self.chunk_size = chunk_size
        self._live: set[str] = set()
        # Open reader count per path, and deleted paths waiting on those readers
        self._readers: dict[str, int] = {}
        self._pending: set[str] = set()
        self._lock = threading.Lock()

    def create_blob(self) -> BlobWriter:
        try:
            fd, path = tempfile.mkstemp(prefix=BLOB_FILE_PREFIX, dir=self._temp_dir)
        except OSError as e:
            raise StorageFault(f"failed to create temp file: {e}") from e
        handle = BlobHandle(path)
        with self._lock:
            self._live.add(path)
        stream_id = os.urandom(STREAM_ID_SIZE)
        fileobj = os.fdopen(fd, "wb")
        try:
            fileobj.write(MAGIC + stream_id)
        except OSError as e:
            fileobj.close()
            self.delete_blob(handle)
            raise StorageFault(f"failed to write blob header: {e}") from e
        return BlobWriter(self, handle, fileobj, stream_id)

    def open_blob(self, handle: BlobHandle) -> BlobReader:
        return BlobReader(self, handle)

    def delete_blob(self, handle: BlobHandle) -> None:
        """
        Remove the file. Never raises: a file that is already gone is only
        logged. While readers have the blob open the removal is deferred
        until the last of them closes.
        """
        with self._lock:
            tracked = handle.path in self._live
            self._live.discard(handle.path)
            if self._readers.get(handle.path):
                if tracked:
                    self._pending.add(handle.path)
                return
        self._remove(handle.path, tracked)

    def _remove(self, path: str, tracked: bool) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            if tracked:
                logger.warning("Blob file %s was already gone", path)
            else:
                logger.debug("Blob file %s already deleted", path)
        except OSError as e:
            logger.warning("Failed to remove blob file %s: %s", path, e)

    def _pin(self, path: str) -> None:
        with self._lock:
            self._readers[path] = self._readers.get(path, 0) + 1

    def _unpin(self, path: str) -> None:
        with self._lock:
            left = self._readers.get(path, 0) - 1
            if left > 0:
                self._readers[path] = left
                return
            self._readers.pop(path, None)
            if path not in self._pending:
                return
            self._pending.discard(path)
        logger.debug("Removing retired blob %s after last reader closed", path)
        self._remove(path, tracked=True)

    def live_blobs(self) -> list[BlobHandle]:
        with self._lock:
            return [BlobHandle(p) for p in sorted(self._live)]

    def close(self) -> None:
        """Delete every blob this store still tracks (shutdown)."""
        for handle in self.live_blobs():
            self.delete_blob(handle)

    def _seal(self, nonce: bytes, plaintext: bytes, stream_id: bytes, index: int, final: bool) -> bytes:
        return self._aead.encrypt(nonce, plaintext, _AAD.pack(stream_id, index, int(final)))

    def _open(self, nonce: bytes, ciphertext: bytes, stream_id: bytes, index: int, final: bool) -> bytes:
        try:
            return self._aead.decrypt(nonce, ciphertext, _AAD.pack(stream_id, index, int(final)))
        except InvalidTag as e:
            raise StorageFault("blob failed authentication") from e
