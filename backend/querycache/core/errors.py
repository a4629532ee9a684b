"""
Error taxonomy for the cache engine, plus helpers that turn serving-path
failures into HTTP responses.

Refresh-side errors (QueryError, SerializationError, StorageFault raised while
writing) are caught by the refresh worker and logged; they cause the endpoint's
cached entry to be removed. Serving-side errors are converted to status codes
at the route boundary and never leak file paths or SQL into the response body.
Absence of data is not an error: the store simply has no entry.
"""
from __future__ import annotations

from fastapi.responses import PlainTextResponse

from querycache.core.constants import CACHE_CONTROL_NO_STORE

# HTTP status codes and fixed bodies for the serving path
STATUS_NOT_FOUND = 404
STATUS_INTERNAL_ERROR = 500
MSG_NOT_FOUND = "404 page not found"
MSG_INTERNAL_ERROR = "Internal Server Error"


class CacheError(Exception):
    """Base class for all querycache errors."""


class ConfigError(CacheError):
    """Invalid or unreadable configuration. Fatal at startup."""


class QueryError(CacheError):
    """Query could not be run or its rows could not be read (connection, timeout, driver)."""


class SerializationError(CacheError):
    """A row value could not be rendered as JSON."""


class StorageFault(CacheError):
    """An encrypted blob could not be created, opened, written or decrypted."""


def not_found_response() -> PlainTextResponse:
    """No entry for the key yet (or it was removed after a failed refresh)."""
    return PlainTextResponse(
        MSG_NOT_FOUND,
        status_code=STATUS_NOT_FOUND,
        headers={"Cache-Control": CACHE_CONTROL_NO_STORE},
    )


def storage_fault_response() -> PlainTextResponse:
    """Entry exists but its backing blob is missing or corrupt."""
    return PlainTextResponse(
        MSG_INTERNAL_ERROR,
        status_code=STATUS_INTERNAL_ERROR,
        headers={"Cache-Control": CACHE_CONTROL_NO_STORE},
    )
