"""
Row -> JSON rendering for cached results.

Each row becomes a compact JSON array (rowformat=array) or an object keyed by
column name (rowformat=object). Database types JSON has no literal for are
converted: Decimal to its exact number text, temporal values to ISO 8601,
UUID to string, bytes to base64, intervals to seconds.
"""
import base64
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Iterable
from uuid import UUID

import simplejson

from querycache.core.errors import SerializationError
from querycache.services.cache.fingerprint import Fingerprinter


def _json_default(value):
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RowSerializer:
    def __init__(self, columns: list[str], as_arrays: bool):
        self.columns = list(columns)
        self.as_arrays = as_arrays

    def encode(self, row: tuple) -> bytes:
        for v in row:
            # NaN/Infinity have no JSON literal
            if isinstance(v, Decimal) and not v.is_finite():
                raise SerializationError(f"failed to marshal to json: non-finite numeric {v}")
        value = list(row) if self.as_arrays else dict(zip(self.columns, row))
        try:
            return simplejson.dumps(
                value,
                default=_json_default,
                use_decimal=True,
                namedtuple_as_object=False,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"failed to marshal to json: {e}") from e


def write_json_rows(
    rows: Iterable[tuple],
    serializer: RowSerializer,
    write: Callable[[bytes], None],
    fingerprint: Fingerprinter,
) -> int:
    """
    Stream rows as one JSON array into `write`, feeding each row's encoding to
    the fingerprint. Returns the row count.
    """
    count = 0
    write(b"[")
    for row in rows:
        encoded = serializer.encode(row)
        fingerprint.update(encoded)
        if count:
            write(b",")
        write(encoded)
        count += 1
    write(b"]")
    return count
