# src/vaultbench/pooling/errors.py
"""Transient status classification for vault calls.

Transient errors are overload conditions worth one more attempt after a
fixed delay. Everything else non-2xx (auth failures, malformed requests,
unknown tokens) fails the sub-batch immediately.

HTTP Status Codes:
- 429: Too Many Requests
- 5xx: any server-side failure
"""

from __future__ import annotations

RATE_LIMIT_STATUS = 429


def is_transient_status(status_code: int) -> bool:
    """Check if an HTTP status code should be retried.

    Args:
        status_code: HTTP status code

    Returns:
        True for 429 and every 5xx, False otherwise
    """
    return status_code == RATE_LIMIT_STATUS or status_code >= 500


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300
