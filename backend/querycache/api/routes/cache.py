"""
Cached endpoints: one GET route per configured path, served from the cache store.

404 until the first successful refresh (and again after a failed one), 304 when
If-None-Match matches the entry's ETag, otherwise 200 with the JSON body read
from memory or decrypted from the entry's blob. A blob that cannot be opened or
authenticated gives a 500 with no details in the body, unless the entry was
replaced in the meantime, in which case the current entry is served.
"""
import logging
import time
from typing import Iterator

from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from querycache.config import EndpointConfig
from querycache.core.constants import CONTENT_TYPE_JSON, SERVE_LOAD_ATTEMPTS
from querycache.core.errors import StorageFault, not_found_response, storage_fault_response
from querycache.services.cache.blobs import BlobReader, EncryptedBlobStore
from querycache.services.cache.store import CacheStore

logger = logging.getLogger(__name__)


def _opaque_tag(tag: str) -> str:
    tag = tag.strip()
    return tag[2:] if tag.startswith("W/") else tag


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Weak comparison of an If-None-Match header (single tag, list, or *) against etag."""
    if not if_none_match:
        return False
    if if_none_match.strip() == "*":
        return True
    target = _opaque_tag(etag)
    return any(_opaque_tag(t) == target for t in if_none_match.split(",") if t.strip())


def _stream_blob(key: str, reader: BlobReader) -> Iterator[bytes]:
    try:
        yield from reader
    except StorageFault as e:
        # Headers are already out; all we can do is cut the response short
        logger.error("http: %s: failed while streaming cached result: %s", key, e)
        raise


def serve(store: CacheStore, blobs: EncryptedBlobStore, key: str, if_none_match: str | None) -> Response:
    for _ in range(SERVE_LOAD_ATTEMPTS):
        entry, found = store.load(key)
        if not found:
            return not_found_response()

        headers = entry.validator_headers()
        if etag_matches(if_none_match, entry.etag):
            return Response(status_code=304, headers=headers)

        if not entry.is_file_backed:
            return Response(content=entry.payload, media_type=CONTENT_TYPE_JSON, headers=headers)

        try:
            reader = blobs.open_blob(entry.blob)
        except StorageFault as e:
            current, _ = store.load(key)
            if current is not entry:
                # Replaced (or removed) and retired since we loaded it; serve what is there now
                logger.debug("http: %s: cached result retired while opening, reloading", key)
                continue
            logger.warning("http: %s: failed to read cached result: %s", key, e)
            return storage_fault_response()
        return StreamingResponse(
            _stream_blob(key, reader),
            media_type=CONTENT_TYPE_JSON,
            headers=headers,
            background=BackgroundTask(reader.close),
        )
    logger.warning("http: %s: cached result kept changing while opening", key)
    return storage_fault_response()


def _make_handler(key: str):
    def handler(request: Request) -> Response:
        t1 = time.monotonic()
        response = serve(
            request.app.state.cache_store,
            request.app.state.blob_store,
            key,
            request.headers.get("if-none-match"),
        )
        logger.debug("%r %d %.3fms", request.url.path, response.status_code, (time.monotonic() - t1) * 1000)
        return response

    return handler


def build_router(endpoints: list[EndpointConfig]) -> APIRouter:
    """GET route per endpoint; the route path (templates included) is the cache key."""
    router = APIRouter()
    for e in endpoints:
        router.add_api_route(
            e.path,
            _make_handler(e.path),
            methods=["GET"],
            name=f"cached:{e.path}",
            include_in_schema=False,
        )
    return router
