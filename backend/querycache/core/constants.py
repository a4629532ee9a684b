"""
Centralized constants for refresh, storage and serving.

Change defaults and header values here instead of scattering literals across
the scheduler, the blob store and the routes.
"""

# Connection pool: used when connection.maxconns is 0 / unset
DEFAULT_MAX_CONNS = 5
# Seconds a refresh waits for a pooled connection before failing
DEFAULT_POOL_TIMEOUT_SECONDS = 30

# Row formats accepted in endpoint config ("" means object)
ROW_FORMAT_ARRAY = "array"
ROW_FORMAT_OBJECT = "object"
ROW_FORMATS = ("", ROW_FORMAT_ARRAY, ROW_FORMAT_OBJECT)

# Encrypted blob files
BLOB_FILE_PREFIX = "querycache"
BLOB_CHUNK_SIZE = 64 * 1024  # plaintext bytes per encrypted record

# Rows fetched per round trip when streaming query results
QUERY_YIELD_PER = 1000

# Reloads tried when a blob is retired between load and open
SERVE_LOAD_ATTEMPTS = 3

# HTTP
CONTENT_TYPE_JSON = "application/json"
CACHE_CONTROL_NO_STORE = "no-cache, no-store"
CACHE_CONTROL_FRESH = "max-age={max_age}, immutable"
