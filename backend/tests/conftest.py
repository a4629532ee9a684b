"""Shared test fixtures for querycache.

Provides an in-memory SQLite engine (one shared connection, usable from
scheduler and server threads), an encrypted blob store rooted in tmp_path,
and helpers to build endpoint configs and apps without starting the scheduler.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from querycache.config import CacheConfig, EndpointConfig
from querycache.services.cache.blobs import EncryptedBlobStore
from querycache.services.cache.store import CacheStore
from querycache.services.query import QueryExecutor


FIXED_NOW = datetime(2024, 5, 1, 12, 0, 30, 750000, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    """SQLite in-memory database with a small `people` table."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with eng.begin() as conn:
        conn.execute(text("CREATE TABLE people (name TEXT, age INTEGER)"))
        conn.execute(text("INSERT INTO people VALUES ('ann', 31), ('bob', 42)"))
    yield eng
    eng.dispose()


@pytest.fixture()
def executor(engine) -> QueryExecutor:
    return QueryExecutor(engine)


@pytest.fixture()
def blob_dir(tmp_path):
    d = tmp_path / "blobs"
    d.mkdir()
    return d


@pytest.fixture()
def blobs(blob_dir):
    store = EncryptedBlobStore(str(blob_dir), chunk_size=16)
    yield store
    store.close()


@pytest.fixture()
def store() -> CacheStore:
    return CacheStore()


def make_endpoint(path: str = "/people", sql: str = "SELECT name, age FROM people ORDER BY name", **kwargs) -> EndpointConfig:
    kwargs.setdefault("schedule", "*/5 * * * *")
    return EndpointConfig(path=path, sql=sql, **kwargs)


def make_config(*endpoints: EndpointConfig) -> CacheConfig:
    return CacheConfig(
        listen="127.0.0.1:0",
        connection={"dsn": "sqlite://"},
        endpoints=list(endpoints),
    )


def fixed_clock() -> datetime:
    return FIXED_NOW


def next_fire_in(seconds: float):
    """next_fire_time callable reporting a fire `seconds` after FIXED_NOW."""
    return lambda: FIXED_NOW + timedelta(seconds=seconds)


def blob_files(blob_dir) -> list:
    return sorted(p.name for p in blob_dir.iterdir())
