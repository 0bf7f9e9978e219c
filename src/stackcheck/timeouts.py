"""
Timeout, retry and concurrency constants for stackcheck.

Centralizes values so the gateway client, the authenticator and the
configuration defaults agree.
"""

from __future__ import annotations

# =============================================================================
# HTTP Client Timeouts
# =============================================================================

# Default timeout for proxied queries and gateway API calls
HTTP_CLIENT_TIMEOUT_S = 10.0

# Credential exchange must answer faster than ordinary calls
AUTH_TIMEOUT_S = 5.0

# =============================================================================
# Concurrency
# =============================================================================

# Maximum outstanding requests against the gateway at any time
DEFAULT_MAX_CONCURRENCY = 8

# =============================================================================
# Retry Configuration
# =============================================================================

# Default number of retries for transient failures
DEFAULT_MAX_RETRIES = 2

# Initial delay between retries
DEFAULT_RETRY_DELAY_S = 0.5

# Exponential backoff multiplier
DEFAULT_RETRY_BACKOFF = 2.0

# HTTP status codes that should trigger a retry
RETRYABLE_HTTP_STATUS_CODES = frozenset({502, 503, 504, 429})

# =============================================================================
# Log Query Windows
# =============================================================================

# Look-back window for log range queries (1 hour)
DEFAULT_LOG_WINDOW_S = 3600

NANOS_PER_SECOND = 1_000_000_000
