"""
Distance oracle client.

This module is responsible only for:
- defining the `DistanceOracle` protocol the enrichment pipeline depends on,
- calling a routing HTTP API for one origin/destination pair,
- parsing the route summary into a travel distance in kilometers.

It intentionally does not decide which pairs to look up or how many calls to spend;
see `proxenrich.enrichment.pipeline` for that. Request spacing is also owned by the
pipeline, because the spacing contract spans the whole run.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from proxenrich.config.settings import Settings
from proxenrich.core.http import get_json_with_retry


class OracleError(RuntimeError):
    """A single oracle lookup failed (transport, HTTP status, bad body or no route)."""


class DistanceOracle(Protocol):
    def fetch_travel_distance(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> float: ...


def parse_route_length_km(payload: Any) -> float:
    """Extract the travel distance (km) from a routing response.

    Expects `{"routes": [{"sections": [{"summary": {"length": <meters>}}, ...]}]}` and
    sums the section lengths of the first route.
    """
    if not isinstance(payload, dict):
        raise OracleError("Oracle response is not a JSON object.")
    routes = payload.get("routes")
    if not isinstance(routes, list):
        raise OracleError("Oracle response has no 'routes' list.")
    if not routes:
        raise OracleError("No route found.")

    sections = routes[0].get("sections") if isinstance(routes[0], dict) else None
    if not isinstance(sections, list) or not sections:
        raise OracleError("Oracle route has no sections.")

    total_m = 0.0
    for section in sections:
        summary = section.get("summary") if isinstance(section, dict) else None
        length = summary.get("length") if isinstance(summary, dict) else None
        if not isinstance(length, (int, float)) or isinstance(length, bool) or length < 0:
            raise OracleError("Oracle route section is missing a numeric summary.length.")
        total_m += float(length)
    return total_m / 1000.0


class HttpDistanceOracle:
    """Routing API client returning travel distances in kilometers."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def _require_api_key(self) -> str:
        api_key = self._settings.oracle.api_key
        if not api_key:
            raise RuntimeError(
                "Distance oracle API key is not configured. Set PROXENRICH_ORACLE_API_KEY."
            )
        return api_key

    def fetch_travel_distance(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> float:
        """Return the travel distance in km between two coordinates.

        Raises:
            OracleError: On transport errors, non-2xx status, malformed body or no route.
            RuntimeError: If the API key is missing (a configuration problem, not a pair failure).
        """
        params = {
            "transportMode": self._settings.oracle.transport_mode,
            "origin": f"{origin_lat:.6f},{origin_lng:.6f}",
            "destination": f"{dest_lat:.6f},{dest_lng:.6f}",
            "return": "summary",
            "apikey": self._require_api_key(),
        }
        try:
            payload = get_json_with_retry(
                self._settings.oracle.base_url,
                params=params,
                retry=self._settings.oracle.retry,
                timeout_seconds=self._settings.app.http_timeout_seconds,
                label="Oracle",
            )
        except httpx.HTTPStatusError as exc:
            raise OracleError(f"Oracle returned HTTP {exc.response.status_code}.") from exc
        except httpx.HTTPError as exc:
            raise OracleError(f"Oracle request failed: {exc}") from exc
        except ValueError as exc:
            raise OracleError("Oracle response is not valid JSON.") from exc
        return parse_route_length_km(payload)
