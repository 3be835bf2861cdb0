"""Defaults and Matrix protocol constants shared across the package."""

# Run defaults
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_CALL_TIMEOUT_SECONDS = 30
DEFAULT_MAX_WORKERS = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1
DEFAULT_SYNC_RETRIES = 3
MAX_RETRY_DELAY = 60
BACKOFF_FACTOR = 2.0

# HTTP status codes
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_REQUEST_TIMEOUT = 408
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500

# Matrix error codes
M_LIMIT_EXCEEDED = "M_LIMIT_EXCEEDED"
M_FORBIDDEN = "M_FORBIDDEN"
M_UNKNOWN_TOKEN = "M_UNKNOWN_TOKEN"

# Matrix event and account data types
EVENT_POWER_LEVELS = "m.room.power_levels"
EVENT_ROOM_NAME = "m.room.name"
EVENT_CANONICAL_ALIAS = "m.room.canonical_alias"
ACCOUNT_DATA_DIRECT = "m.direct"

CLIENT_API_PREFIX = "/_matrix/client/v3"
USER_AGENT = "matrix-migrator/0.1"

DRY_RUN_PREFIX = "[DRY RUN] "
