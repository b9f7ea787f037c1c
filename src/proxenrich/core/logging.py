"""
Process-wide logging setup for the CLI and scripts.

Handlers and formatters come from the packaged `config/logging.yaml`. The level is
`app.log_level` (settable via `PROXENRICH_LOG_LEVEL`) unless the caller passes one,
e.g. the CLI's `--verbose`.
"""

from __future__ import annotations

import logging
import logging.config

from proxenrich.config.settings import Settings, get_logging_config, get_settings


def _level_name(value: str) -> str:
    name = value.strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(f"Unknown log level: {value!r}")
    return name


def configure_logging(settings: Settings | None = None, *, level: str | None = None) -> str:
    """Apply the packaged logging config at the resolved level; return that level name."""
    settings = settings or get_settings()
    name = _level_name(level or settings.app.log_level)

    config = get_logging_config()
    config.setdefault("root", {})["level"] = name
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict):
            handler["level"] = name

    logging.config.dictConfig(config)
    return name
