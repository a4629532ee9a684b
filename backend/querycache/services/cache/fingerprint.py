"""64-bit content fingerprint, fed incrementally as rows are serialized."""
import hashlib


class Fingerprinter:
    """Running 64-bit hash (BLAKE2b with an 8-byte digest) over written bytes."""

    DIGEST_SIZE = 8

    def __init__(self) -> None:
        self._digest = hashlib.blake2b(digest_size=self.DIGEST_SIZE)

    def update(self, data: bytes) -> None:
        self._digest.update(data)

    def value(self) -> int:
        return int.from_bytes(self._digest.digest(), "big")
