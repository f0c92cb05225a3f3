"""In-memory layer and group tree as an immutable state plus reducers.

MapState is never mutated in place: each function takes a state and returns
the next one. This keeps group cascades, classification and load
reconciliation testable without any ambient global store.

Group visibility cascades on toggle only: hiding a group hides every member
layer, and showing it shows every member layer again. A member's own flag
is not remembered across the cascade.

Loads are tagged with a generation counter. :func:`begin_load` starts a new
generation and :func:`apply_loaded_layers` ignores results that belong to an
older one, so a slow load that finishes after a newer one started cannot
overwrite fresher state.

Example:
    >>> state = MapState()
    >>> state, generation = begin_load(state)
    >>> state = apply_loaded_layers(state, generation, layers)
    >>> state = toggle_group_visibility(state, group_id)
"""

from __future__ import annotations

import dataclasses
import uuid
from typing import TYPE_CHECKING, Any

from geolayers.db import models as db_models
from geolayers.services import classification

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


@dataclasses.dataclass(frozen=True)
class MapState:
    layers: tuple[db_models.Layer, ...] = ()
    groups: tuple[db_models.Group, ...] = ()
    load_generation: int = 0


@dataclasses.dataclass(frozen=True)
class SearchResult:
    layer_id: str
    layer_name: str
    display_name: str
    feature: dict[str, Any]


def _map_layers(
    state: MapState,
    predicate: Callable[[db_models.Layer], bool],
    **changes: Any,
) -> MapState:
    return dataclasses.replace(
        state,
        layers=tuple(
            dataclasses.replace(layer, **changes) if predicate(layer) else layer
            for layer in state.layers
        ),
    )


def _map_groups(
    state: MapState,
    group_id: str,
    update: Callable[[db_models.Group], db_models.Group],
) -> MapState:
    return dataclasses.replace(
        state,
        groups=tuple(
            update(group) if group.id == group_id else group
            for group in state.groups
        ),
    )


def find_layer(state: MapState, layer_id: str) -> db_models.Layer | None:
    return next((layer for layer in state.layers if layer.id == layer_id), None)


def find_group(state: MapState, group_id: str) -> db_models.Group | None:
    return next((g for g in state.groups if g.id == group_id), None)


# Layers


def add_layer(state: MapState, layer: db_models.Layer) -> MapState:
    """Append a layer unless one with the same id is already present."""
    if find_layer(state, layer.id) is not None:
        return state
    return dataclasses.replace(state, layers=(*state.layers, layer))


def remove_layer(state: MapState, layer_id: str) -> MapState:
    return dataclasses.replace(
        state,
        layers=tuple(layer for layer in state.layers if layer.id != layer_id),
    )


def set_layers(state: MapState, layers: Iterable[db_models.Layer]) -> MapState:
    return dataclasses.replace(state, layers=tuple(layers))


def toggle_layer_visibility(state: MapState, layer_id: str) -> MapState:
    current = find_layer(state, layer_id)
    if current is None:
        return state
    return _map_layers(
        state, lambda layer: layer.id == layer_id, visible=not current.visible
    )


def set_layer_opacity(state: MapState, layer_id: str, opacity: float) -> MapState:
    if not 0.0 <= opacity <= 1.0:
        raise ValueError("Opacity must be between 0 and 1")
    return _map_layers(
        state, lambda layer: layer.id == layer_id, opacity=opacity
    )


def update_layer_color(state: MapState, layer_id: str, color: str) -> MapState:
    return _map_layers(state, lambda layer: layer.id == layer_id, color=color)


def set_layer_style(
    state: MapState,
    layer_id: str,
    style: db_models.Style | None,
) -> MapState:
    return _map_layers(state, lambda layer: layer.id == layer_id, style=style)


def classify_layer(
    state: MapState,
    layer_id: str,
    field: str,
    **style_options: Any,
) -> MapState:
    """Give a layer a categorized style over ``field``.

    Colors come from :func:`classification.classify_features`, the same
    sorted assignment used everywhere else.
    """
    layer = find_layer(state, layer_id)
    if layer is None:
        return state
    style = classification.classify_features(
        layer.data.get("features") or [], field, **style_options
    )
    return set_layer_style(state, layer_id, style)


def move_layer_to_group(
    state: MapState,
    layer_id: str,
    group_id: str | None,
) -> MapState:
    return _map_layers(
        state, lambda layer: layer.id == layer_id, group_id=group_id
    )


# Groups


def set_groups(state: MapState, groups: Iterable[db_models.Group]) -> MapState:
    return dataclasses.replace(state, groups=tuple(groups))


def add_group(
    state: MapState,
    name: str,
    group_id: str | None = None,
) -> MapState:
    group = db_models.Group(id=group_id or str(uuid.uuid4()), name=name)
    return dataclasses.replace(state, groups=(*state.groups, group))


def remove_group(state: MapState, group_id: str) -> MapState:
    """Drop a group and move its layers to the root."""
    state = dataclasses.replace(
        state,
        groups=tuple(g for g in state.groups if g.id != group_id),
    )
    return _map_layers(
        state, lambda layer: layer.group_id == group_id, group_id=None
    )


def toggle_group_collapse(state: MapState, group_id: str) -> MapState:
    return _map_groups(
        state,
        group_id,
        lambda g: dataclasses.replace(g, collapsed=not g.collapsed),
    )


def toggle_group_visibility(state: MapState, group_id: str) -> MapState:
    """Flip a group's visibility and cascade the new value to its layers."""
    group = find_group(state, group_id)
    if group is None:
        return state
    visible = not group.visible
    state = _map_groups(
        state, group_id, lambda g: dataclasses.replace(g, visible=visible)
    )
    return _map_layers(
        state, lambda layer: layer.group_id == group_id, visible=visible
    )


# Loading


def begin_load(state: MapState) -> tuple[MapState, int]:
    """Start a load cycle, invalidating any load still in flight."""
    generation = state.load_generation + 1
    return dataclasses.replace(state, load_generation=generation), generation


def apply_loaded_layers(
    state: MapState,
    generation: int,
    layers: Iterable[db_models.Layer],
) -> MapState:
    """Merge the result of a load cycle if it is still the current one.

    Layers already present (same id) are kept as they are.
    """
    if generation != state.load_generation:
        return state
    for layer in layers:
        state = add_layer(state, layer)
    return state


# Search


def _display_name(properties: dict[str, Any]) -> str:
    name_key = next(
        (
            key
            for key in properties
            if "name" in key.lower() or "nome" in key.lower()
        ),
        next(iter(properties), None),
    )
    value = properties.get(name_key) if name_key is not None else None
    return str(value) if value else "Unknown feature"


def search_features(state: MapState, query: str) -> list[SearchResult]:
    """Find features of visible layers with a property containing ``query``.

    Matching is a case-insensitive substring test over the string form of
    every property value.
    """
    needle = query.strip().lower()
    if not needle:
        return []

    results = []
    for layer in state.layers:
        if not layer.visible:
            continue
        for feature in layer.data.get("features") or []:
            properties = feature.get("properties") or {}
            if not any(
                needle in str(value).lower() for value in properties.values()
            ):
                continue
            results.append(
                SearchResult(
                    layer_id=layer.id,
                    layer_name=layer.name,
                    display_name=_display_name(properties),
                    feature=feature,
                )
            )
    return results
