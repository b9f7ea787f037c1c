from __future__ import annotations


# Overrides come from CLI flags and `--set key=value` pairs, so values arrive as loosely
# typed mappings and we want clear error messages when a key is not tunable.
from typing import Any, Mapping

import yaml

from proxenrich.config.settings import Settings

"""
Per-run settings overrides (safe subset).

The CLI and scripts can tune certain knobs for a single enrichment run. This module:
- parses `dotted.key=VALUE` pairs into nested mappings,
- validates the override payload against a whitelist,
- deep-merges the safe subset onto current settings,
- re-validates with Pydantic to ensure types/ranges remain correct.

We do NOT allow overriding API keys, endpoint URLs or store paths here;
store paths have their own CLI flags and secrets come from the environment.
"""

# A value of True means "allow any keys under this subtree".
# A nested dict means "only allow the listed keys, recursively".
ALLOWED_SETTINGS_OVERRIDES_TREE: dict[str, Any] = {
    "app": {"log_level": True, "http_timeout_seconds": True},
    "dedupe": True,
    "enrichment": True,
    "oracle": {"transport_mode": True, "retry": True},
    "places": {
        "limit": True,
        "categories": True,
        "categories_per_seed": True,
        "min_distance_m": True,
        "max_distance_m": True,
        "max_per_category": True,
        "request_delay_ms": True,
        "retry": True,
    },
}


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    # New dict so the caller's `base` is never mutated.
    merged: dict[str, Any] = dict(base)
    for key, override_value in override.items():
        if isinstance(override_value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), override_value)
            continue
        merged[key] = override_value
    return merged


def _filter_overrides(
    overrides: Mapping[str, Any],
    *,
    allowed_tree: Mapping[str, Any],
    path: tuple[str, ...] = (),
) -> dict[str, Any]:
    filtered: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in allowed_tree:
            dotted_path = ".".join((*path, key))
            raise ValueError(
                f"settings_overrides contains a disallowed key: '{dotted_path}'"
            )

        allowed = allowed_tree[key]
        if allowed is True:
            filtered[key] = value
            continue

        # Restricted subtrees must be mappings we can recurse into.
        if not isinstance(value, Mapping):
            dotted_path = ".".join((*path, key))
            raise ValueError(
                f"settings_overrides key '{dotted_path}' must be a mapping"
            )

        filtered[key] = _filter_overrides(
            value, allowed_tree=allowed, path=(*path, key)
        )
    return filtered


def parse_override_pairs(pairs: list[str]) -> dict[str, Any]:
    """Parse `dotted.key=VALUE` strings into a nested override mapping.

    Values are decoded as YAML scalars, so `true`, `12`, `0.5` and `null` keep their types.
    """
    out: dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --set '{pair}', expected KEY=VALUE")
        dotted, raw_value = pair.split("=", 1)
        keys = [k.strip() for k in dotted.split(".")]
        if not all(keys):
            raise ValueError(f"Invalid --set key '{dotted}'")

        node = out
        for key in keys[:-1]:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise ValueError(f"Conflicting --set keys at '{dotted}'")
            node = child
        node[keys[-1]] = yaml.safe_load(raw_value) if raw_value.strip() else None
    return out


def apply_settings_overrides(
    settings: Settings, overrides: Mapping[str, Any] | None
) -> Settings:
    # Fast path: no overrides means the shared (cached) settings object is returned as-is.
    if not overrides:
        return settings

    safe_overrides = _filter_overrides(
        overrides, allowed_tree=ALLOWED_SETTINGS_OVERRIDES_TREE
    )
    merged_payload = _deep_merge(settings.model_dump(mode="python"), safe_overrides)

    # Re-validate so we never run with an invalid Settings object.
    return Settings.model_validate(merged_payload)
