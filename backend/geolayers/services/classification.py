"""Categorized styling: distinct property values mapped to palette colors.

All classification goes through :func:`classify`, which orders the distinct
values alphabetically before assigning colors, so the same field on the
same data always gets the same colors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from geolayers.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

PALETTE = (
    "#ef4444",
    "#f97316",
    "#f59e0b",
    "#84cc16",
    "#22c55e",
    "#10b981",
    "#14b8a6",
    "#06b6d4",
    "#0ea5e9",
    "#3b82f6",
    "#6366f1",
    "#8b5cf6",
    "#d946ef",
    "#f43f5e",
    "#881337",
)


def stringify_value(value: Any) -> str:
    """Coerce a raw property value to its classMap key.

    Booleans render as ``true``/``false`` and integral floats drop their
    fractional part, matching how the values read in GeoJSON. Distinct raw
    values with the same string form share a class.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def unique_values(features: Iterable[Mapping[str, Any]], field: str) -> list[str]:
    """Distinct stringified values of ``field``, sorted.

    Features without properties, or whose value for ``field`` is missing or
    null, are skipped.
    """
    values = set()
    for feature in features:
        properties = feature.get("properties") or {}
        value = properties.get(field)
        if value is None:
            continue
        values.add(stringify_value(value))
    return sorted(values)


def classify(
    values: Iterable[str],
    palette: tuple[str, ...] = PALETTE,
) -> dict[str, str]:
    """Map each distinct value to a palette color in sorted value order.

    Colors repeat once the palette is exhausted.
    """
    return {
        value: palette[index % len(palette)]
        for index, value in enumerate(sorted(set(values)))
    }


def classify_features(
    features: Iterable[Mapping[str, Any]],
    field: str,
    weight: float = db_models.DEFAULT_WEIGHT,
    border_color: str = db_models.DEFAULT_BORDER_COLOR,
) -> db_models.CategorizedStyle:
    """Build a categorized style for ``field`` over a set of features."""
    return db_models.CategorizedStyle(
        field=field,
        class_map=classify(unique_values(features, field)),
        weight=weight,
        border_color=border_color,
    )
