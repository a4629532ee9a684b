"""
Query execution against the shared connection pool.

execute() is a context manager yielding the result's column names and a row
iterator; the connection goes back to the pool when the block exits. Any
driver, pool or timeout failure surfaces as QueryError, including failures
that happen while the caller is iterating rows.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from querycache.core.constants import QUERY_YIELD_PER
from querycache.core.errors import QueryError


@dataclass
class QueryResult:
    columns: list[str]
    rows: Iterator[tuple]


class QueryExecutor:
    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def execute(self, sql: str, timeout: float | None = None) -> Iterator[QueryResult]:
        deadline = time.monotonic() + timeout if timeout else None
        try:
            conn = self._engine.connect()
        except SQLAlchemyError as e:
            raise QueryError(f"query failed: {e}") from e
        try:
            with conn.begin():
                if timeout and conn.dialect.name == "postgresql":
                    # Server-side cancel, scoped to this transaction
                    conn.execute(
                        text("SELECT set_config('statement_timeout', :ms, true)"),
                        {"ms": str(max(1, int(timeout * 1000)))},
                    )
                # Sent as written: no bind-parameter or %-format parsing of the SQL
                result = conn.execution_options(stream_results=True, no_parameters=True).exec_driver_sql(sql)
                if not result.returns_rows:
                    raise QueryError("query returned no result set")
                result = result.yield_per(QUERY_YIELD_PER)
                yield QueryResult(list(result.keys()), _iter_rows(result, deadline))
        except SQLAlchemyError as e:
            raise QueryError(f"query failed: {e}") from e
        finally:
            conn.close()


def _iter_rows(result, deadline: float | None) -> Iterator[tuple]:
    # Wall-clock check for dialects without a server-side statement timeout
    for row in result:
        if deadline is not None and time.monotonic() > deadline:
            raise QueryError("query timed out")
        yield tuple(row)
