"""
Place browse client (HERE-style `/browse`).

This module is responsible only for:
- calling the browse API around one coordinate (optionally restricted to a category),
- returning the raw place items and small predicates over them.

Choosing seeds and categories, filtering and deduplicating places lives in
`proxenrich.ingestion.harvest`.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from proxenrich.config.settings import Settings
from proxenrich.core.http import get_json_with_retry
from proxenrich.core.rate_limit import RequestSpacer
from proxenrich.domain.models import Point

logger = logging.getLogger(__name__)


class PlacesError(RuntimeError):
    """A browse request failed (transport, HTTP status or malformed body)."""


class PlacesClient(Protocol):
    def browse(self, lat: float, lng: float, *, category: str | None = None) -> list[dict[str, Any]]: ...


def parse_browse_items(payload: Any) -> list[dict[str, Any]]:
    """Return the `items` list of a browse response (non-object entries are dropped)."""
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        raise PlacesError("Places response has no 'items' list.")
    return [item for item in payload["items"] if isinstance(item, dict)]


def has_house_number(item: dict[str, Any]) -> bool:
    address = item.get("address")
    if not isinstance(address, dict):
        return False
    return bool(str(address.get("houseNumber") or "").strip())


def distance_m(item: dict[str, Any]) -> float | None:
    """Provider-reported distance from the browse origin, in meters."""
    value = item.get("distance")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def item_to_point(item: dict[str, Any]) -> Point | None:
    """Convert a place item to a `Point`, keeping its other fields; None if unusable."""
    try:
        return Point.model_validate(item)
    except ValidationError as exc:
        logger.debug("Skipping place item %r: %s", item.get("id"), exc)
        return None


class HttpPlacesClient:
    """Browse API client; requests are spaced by `places.request_delay_ms`."""

    def __init__(self, settings: Settings, *, spacer: RequestSpacer | None = None):
        self._settings = settings
        self._spacer = spacer or RequestSpacer.from_milliseconds(settings.places.request_delay_ms)

    def _require_api_key(self) -> str:
        api_key = self._settings.places.api_key or self._settings.oracle.api_key
        if not api_key:
            raise RuntimeError(
                "Places API key is not configured. Set PROXENRICH_PLACES_API_KEY "
                "(or PROXENRICH_ORACLE_API_KEY)."
            )
        return api_key

    def browse(self, lat: float, lng: float, *, category: str | None = None) -> list[dict[str, Any]]:
        """Return place items around a coordinate, nearest first as the provider orders them.

        Raises:
            PlacesError: On transport errors, non-2xx status or a malformed body.
            RuntimeError: If no API key is configured.
        """
        places = self._settings.places
        params: dict[str, Any] = {
            "at": f"{lat:.6f},{lng:.6f}",
            "limit": places.limit,
            "apikey": self._require_api_key(),
        }
        if category:
            params["categories"] = category

        self._spacer.wait()
        try:
            payload = get_json_with_retry(
                places.base_url,
                params=params,
                retry=places.retry,
                timeout_seconds=self._settings.app.http_timeout_seconds,
                label="Places",
            )
        except httpx.HTTPStatusError as exc:
            raise PlacesError(f"Places API returned HTTP {exc.response.status_code}.") from exc
        except httpx.HTTPError as exc:
            raise PlacesError(f"Places request failed: {exc}") from exc
        except ValueError as exc:
            raise PlacesError("Places response is not valid JSON.") from exc
        return parse_browse_items(payload)
