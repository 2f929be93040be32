"""Normalization of a source's stored configuration into effective settings."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_ENABLED = True
DEFAULT_AUTO_GENERATE = False
DEFAULT_MAX_ITEMS = 10
DEFAULT_POLLING_INTERVAL = 60  # seconds

KNOWN_KEYS = ("enabled", "autoGenerate", "maxItems", "pollingInterval")


@dataclass(frozen=True)
class SourceConfig:
    """Fully-populated operational parameters for one source."""

    enabled: bool = DEFAULT_ENABLED
    auto_generate: bool = DEFAULT_AUTO_GENERATE
    max_items: int = DEFAULT_MAX_ITEMS
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Return the stored form, including unknown keys that came in."""
        data = dict(self.extra)
        data.update({
            "enabled": self.enabled,
            "autoGenerate": self.auto_generate,
            "maxItems": self.max_items,
            "pollingInterval": self.polling_interval,
        })
        return data


def normalize_config(raw: Any) -> SourceConfig:
    """Normalize a stored configuration value. Never raises.

    Accepts a mapping, a JSON-encoded mapping, or anything else. Missing
    or mistyped keys fall back to their defaults, so a malformed
    configuration always means auto-generation is off.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Source configuration is not valid JSON, using defaults")
            return SourceConfig()

    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning(
                "Source configuration is a %s, not a mapping, using defaults",
                type(raw).__name__,
            )
        return SourceConfig()

    return SourceConfig(
        enabled=_bool_option(raw, "enabled", DEFAULT_ENABLED),
        auto_generate=_bool_option(raw, "autoGenerate", DEFAULT_AUTO_GENERATE),
        max_items=_positive_int_option(raw, "maxItems", DEFAULT_MAX_ITEMS),
        polling_interval=_positive_int_option(
            raw, "pollingInterval", DEFAULT_POLLING_INTERVAL
        ),
        extra={k: v for k, v in raw.items() if k not in KNOWN_KEYS},
    )


def merge_config(raw: Any, updates: dict) -> dict:
    """Apply updates on top of a stored configuration and return the stored form."""
    current = normalize_config(raw).to_dict()
    current.update(updates)
    return normalize_config(current).to_dict()


def _bool_option(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if key in raw:
        logger.warning("Ignoring %s=%r (expected a boolean)", key, value)
    return default


def _positive_int_option(raw: dict, key: str, default: int) -> int:
    value = raw.get(key, default)
    # bool is a subclass of int
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    if key in raw:
        logger.warning("Ignoring %s=%r (expected a positive integer)", key, value)
    return default
