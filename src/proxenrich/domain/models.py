"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- input records loaded from the points store (`Point`)
- oracle-backed distances (`DistanceEdge`)
- per-point enrichment output (`EnrichmentResult`)

Keeping these models in one place helps:
- validation (reject malformed point records before any processing),
- consistent JSON output across CLI runs and resumed runs.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Point(BaseModel):
    """A geographic point to dedupe and enrich.

    Besides the flat `{id, lat, lng}` shape, the loader accepts provider items that
    nest coordinates under `position` and the legacy `status` key for `processed`.
    Unknown keys (title, address, categories...) are kept so they survive a save.
    """

    model_config = ConfigDict(extra="allow", frozen=True, coerce_numbers_to_str=True)

    id: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    processed: bool = False

    @model_validator(mode="before")
    @classmethod
    def _flatten_position(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        position = data.pop("position", None)
        if isinstance(position, dict):
            data.setdefault("lat", position.get("lat"))
            data.setdefault("lng", position.get("lng", position.get("lon")))
        if "status" in data:
            status = data.pop("status")
            data.setdefault("processed", status)
        return data

    def with_processed(self, processed: bool) -> "Point":
        return self.model_copy(update={"processed": bool(processed)})


class DistanceEdge(BaseModel):
    """Oracle travel distance from `from_id` to `to_id` (recorded from `from_id`'s side)."""

    from_id: str
    to_id: str
    distance_km: float = Field(..., ge=0)


class EnrichmentResult(BaseModel):
    """A scanned point (with its final `processed` flag) and the edges rooted at it."""

    point: Point
    distances: list[DistanceEdge] = Field(default_factory=list)
