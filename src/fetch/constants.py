"""HTTP constants for the fetch layer.

Centralizes all HTTP-related and retry-related constants.
"""

# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600

# Retry backoff (seconds)
DEFAULT_INITIAL_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Politeness delay between page fetches (milliseconds)
DEFAULT_DELAY_INTERVAL_MS = 500

# Jitter window as a fraction of the base duration
JITTER_LOWER_FACTOR = 0.5
JITTER_UPPER_FACTOR = 1.5

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "pagecrawl/1.0"

# Named progress counter incremented on each retried attempt
RETRIES_COUNTER = "retries"
