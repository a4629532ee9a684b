"""
FastAPI app factory and command-line entrypoint.

    querycache -e > cache.json   # write an example config
    querycache cache.json        # serve the endpoints in cache.json
"""
import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from backend/ before any app code (libpq also reads PG* vars from the environment)
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import uvicorn
from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.engine import Engine

from querycache import __version__
from querycache.api.routes.cache import build_router
from querycache.config import EXAMPLE_CONFIG, CacheConfig, load_config, settings
from querycache.core.errors import ConfigError
from querycache.db.session import make_engine
from querycache.scheduler.refresh_job import build_scheduler, build_workers
from querycache.services.cache.blobs import EncryptedBlobStore
from querycache.services.cache.store import CacheStore
from querycache.services.query import QueryExecutor
from querycache.services.refresh.worker import retire_entry

logger = logging.getLogger(__name__)


def create_app(
    config: CacheConfig,
    engine: Engine | None = None,
    blob_store: EncryptedBlobStore | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Wire store, blob store, pool, workers and scheduler for `config`.
    With start_scheduler=False nothing refreshes on its own; call
    app.state.workers[path].run() to refresh an endpoint.
    """
    engine = engine if engine is not None else make_engine(config.connection)
    blobs = blob_store or EncryptedBlobStore(settings.temp_dir, settings.blob_chunk_size)
    store = CacheStore()
    workers, triggers = build_workers(config.endpoints, store, blobs, QueryExecutor(engine))
    scheduler = build_scheduler(workers, triggers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            scheduler.start()
        logger.info("Serving %s endpoint(s)", len(workers))
        yield
        if scheduler.running:
            # Wait for in-flight refreshes (off the event loop) so no blob is written after cleanup
            await run_in_threadpool(scheduler.shutdown, wait=True)
        for entry in store.clear():
            retire_entry(blobs, entry)
        blobs.close()
        engine.dispose()

    app = FastAPI(title="querycache", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.cache_store = store
    app.state.blob_store = blobs
    app.state.workers = workers
    app.state.scheduler = scheduler

    # Compress large JSON bodies; ETag stays tied to the uncompressed content
    app.add_middleware(GZipMiddleware)
    app.include_router(build_router(config.endpoints))

    # Registered after the endpoints so a configured /health path wins
    @app.get("/health", include_in_schema=False)
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="querycache",
        description="Serve SQL query results from a cache refreshed on cron schedules.",
    )
    parser.add_argument("-v", "--version", action="store_true", help="Print version and exit")
    parser.add_argument("-e", "--example", action="store_true", help="Print example configuration to stdout and exit")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("config_file", nargs="?", default=settings.config_file or None, help="JSON config file")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _parser()
    args = parser.parse_args(argv)
    if args.version:
        print(f"querycache {__version__}")
        return 0
    if args.example:
        sys.stdout.write(EXAMPLE_CONFIG)
        return 0
    if not args.config_file:
        parser.print_usage(sys.stderr)
        return 1

    debug = args.debug or settings.debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config_file)
    except ConfigError as e:
        print(f"querycache: {e}", file=sys.stderr)
        return 1
    try:
        engine = make_engine(config.connection)
    except ConfigError as e:
        print(f"querycache: {e}", file=sys.stderr)
        return 1

    app = create_app(config, engine=engine)
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if debug else "info")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
