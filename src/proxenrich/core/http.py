"""
HTTP access for the remote lookups (routing oracle, place browse).

Both upstreams are plain JSON-over-GET APIs keyed by an `apikey` query parameter.
`get_json_with_retry` wraps the single request in the backoff loop both clients
share; callers translate the httpx errors into their own error types.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from proxenrich.config.settings import RetrySettings

logger = logging.getLogger(__name__)

USER_AGENT = "proxenrich/0.1.0"
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


def get_json(url: str, *, params: dict[str, Any] | None = None, timeout_seconds: float = 15) -> Any:
    """One GET; raises `httpx.HTTPError` on failure and `ValueError` on a non-JSON body."""
    with httpx.Client(timeout=timeout_seconds, headers={"User-Agent": USER_AGENT}) as client:
        resp = client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()


def parse_retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _backoff_seconds(retry: RetrySettings, attempt: int) -> float:
    return min(float(retry.max_delay_seconds), float(retry.base_delay_seconds) * (2**attempt))


def get_json_with_retry(
    url: str,
    *,
    params: dict[str, Any],
    retry: RetrySettings,
    timeout_seconds: float = 15,
    label: str = "HTTP",
) -> Any:
    """GET JSON, retrying 429/5xx and transport errors up to `retry.max_attempts` times.

    A `Retry-After` header lengthens (never shortens) the exponential backoff.
    The last error is re-raised once attempts run out.
    """
    max_attempts = int(retry.max_attempts)
    for attempt in range(max_attempts + 1):
        try:
            return get_json(url, params=params, timeout_seconds=timeout_seconds)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status not in RETRYABLE_STATUSES or attempt >= max_attempts:
                raise
            delay = _backoff_seconds(retry, attempt)
            retry_after = parse_retry_after_seconds(exc.response.headers.get("Retry-After"))
            if retry_after is not None:
                delay = max(delay, retry_after)
            logger.warning(
                "%s request failed with status=%s; retrying in %.2fs (attempt %s/%s)",
                label,
                status,
                delay,
                attempt + 1,
                max_attempts,
            )
        except httpx.TransportError:
            if attempt >= max_attempts:
                raise
            delay = _backoff_seconds(retry, attempt)
            logger.warning(
                "%s transport error; retrying in %.2fs (attempt %s/%s)",
                label,
                delay,
                attempt + 1,
                max_attempts,
            )
        time.sleep(delay)

    raise RuntimeError(f"{label} request failed without an exception (unexpected).")
