"""
Point harvesting around seed coordinates.

Two modes build a points file for the dedupe/enrichment job:
- `nearby`: per seed, browse a few randomly drawn categories and keep addressed places
  strictly inside the distance window, at most `max_per_category` new ones per browse.
- `anchors`: per seed, keep the first addressed place the provider returns.

Places are deduplicated by id across all seeds, in first-seen order. Any browse
failure aborts the harvest; nothing is written for a partial harvest.
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from pathlib import Path
from typing import Sequence

from proxenrich.config.settings import PlacesSettings, Settings, get_settings
from proxenrich.core.env import resolve_project_path
from proxenrich.core.geo import GeoPoint
from proxenrich.domain.models import Point
from proxenrich.ingestion.places_client import (
    HttpPlacesClient,
    PlacesClient,
    distance_m,
    has_house_number,
    item_to_point,
)
from proxenrich.store.json_store import save_points

logger = logging.getLogger(__name__)


class HarvestMode(str, Enum):
    NEARBY = "nearby"
    ANCHORS = "anchors"


def pick_categories(categories: Sequence[str], k: int, rng: random.Random) -> list[str]:
    """Draw `k` distinct categories."""
    return rng.sample(list(dict.fromkeys(categories)), k)


def harvest_anchor_points(seeds: Sequence[GeoPoint], client: PlacesClient) -> list[Point]:
    points: list[Point] = []
    seen: set[str] = set()
    for seed in seeds:
        anchor: Point | None = None
        for item in client.browse(seed.lat, seed.lon):
            if has_house_number(item):
                anchor = item_to_point(item)
                if anchor is not None:
                    break
        if anchor is None:
            logger.info("No addressed place near seed %.6f,%.6f; skipped.", seed.lat, seed.lon)
            continue
        if anchor.id in seen:
            continue
        seen.add(anchor.id)
        points.append(anchor)
    return points


def harvest_nearby_points(
    seeds: Sequence[GeoPoint],
    client: PlacesClient,
    places: PlacesSettings,
    *,
    rng: random.Random | None = None,
) -> list[Point]:
    rng = rng or random.Random()
    points: list[Point] = []
    seen: set[str] = set()

    for seed in seeds:
        for category in pick_categories(places.categories, places.categories_per_seed, rng):
            kept = 0
            for item in client.browse(seed.lat, seed.lon, category=category):
                if kept >= places.max_per_category:
                    break
                if not has_house_number(item):
                    continue
                d = distance_m(item)
                if d is None or not (places.min_distance_m < d < places.max_distance_m):
                    continue
                point = item_to_point(item)
                if point is None or point.id in seen:
                    continue
                seen.add(point.id)
                points.append(point)
                kept += 1
            logger.debug(
                "Seed %.6f,%.6f category %s: kept %s places.", seed.lat, seed.lon, category, kept
            )
    return points


def run_harvest(
    seeds: Sequence[GeoPoint],
    settings: Settings | None = None,
    *,
    mode: HarvestMode = HarvestMode.NEARBY,
    output: str | Path | None = None,
    overwrite: bool = False,
    client: PlacesClient | None = None,
    rng: random.Random | None = None,
) -> tuple[list[Point], Path]:
    """Harvest points around `seeds` and write them as a fresh points file.

    Writes to `output`, or to `store.points_path` by default. An existing file is only
    replaced with `overwrite=True`, since it may hold enrichment progress.

    Raises:
        ValueError: If the target exists and `overwrite` is False.
        PlacesError: If a browse request fails.
        StoreError: If the points file cannot be written.
    """
    settings = settings or get_settings()
    target = resolve_project_path(output or settings.store.points_path)
    if target.exists() and not overwrite:
        raise ValueError(f"{target} already exists; pass --overwrite to replace it.")

    client = client or HttpPlacesClient(settings)
    mode = HarvestMode(mode)
    if mode is HarvestMode.ANCHORS:
        points = harvest_anchor_points(seeds, client)
    else:
        points = harvest_nearby_points(seeds, client, settings.places, rng=rng)

    logger.info("Harvested %s points from %s seeds (%s mode).", len(points), len(seeds), mode.value)
    return points, save_points(target, points)
