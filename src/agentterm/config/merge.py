"""Layered merge of configuration dicts.

System, user and project files are merged in that order, so a project can
override a single terminal setting without restating the rest.
"""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.

    Rules:
    - Nested dicts merge key by key
    - Lists are replaced, so ``background_patterns`` in a project file
      replaces the user's list instead of extending it
    - ``None`` in ``override`` leaves the base value alone
    - Anything else is replaced

    Args:
        base: The lower-priority dictionary.
        override: The higher-priority dictionary.

    Returns:
        A new merged dictionary; neither input is modified.
    """
    merged = dict(base)

    for key, value in override.items():
        if value is None:
            continue

        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value

    return merged


def merge_configs(*configs: dict[str, Any] | None) -> dict[str, Any]:
    """Merge configs lowest priority first; empty or missing layers are skipped."""
    merged: dict[str, Any] = {}
    for layer in configs:
        if isinstance(layer, dict) and layer:
            merged = deep_merge(merged, layer)
    return merged
