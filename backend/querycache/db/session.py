"""
Database engine (connection pool) for refresh queries.

The pool is shared by every endpoint's refresh job. It never overflows: when
all connections are busy a refresh blocks for up to pool_timeout seconds
waiting for one, then fails with a QueryError.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError

from querycache.config import ConnectionConfig, settings
from querycache.core.errors import ConfigError


def make_engine(conn: ConnectionConfig, pool_timeout: int | None = None) -> Engine:
    kwargs = {
        "pool_size": conn.pool_size,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "pool_timeout": pool_timeout if pool_timeout is not None else settings.pool_timeout,
    }
    idle = conn.idle_seconds
    if idle is not None:
        kwargs["pool_recycle"] = max(1, int(idle))
    try:
        return create_engine(conn.dsn, **kwargs)
    except (ArgumentError, ImportError, TypeError) as e:
        # TypeError: pool options the dialect's pool class does not take
        raise ConfigError(f"error in connection config: {e}") from e
