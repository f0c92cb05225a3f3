"""Data models for collections, groups, runtime layers and styles.

This module defines the core data structures shared by the persistence
store, the local layer cache and the in-memory layer/group state. A
Collection is the persisted form of one feature collection; a Layer is its
render-ready projection carrying visibility, opacity, color and style.

Styles are a tagged variant discriminated by ``type``. They are serialized
with camelCase keys so that the JSON stored in ``collections.metadata``
matches what map clients send and receive.

Example:
    Creating a categorized style and serializing it for storage:
        >>> from geolayers.db.models import CategorizedStyle, style_to_dict
        >>> style = CategorizedStyle(
        ...     field="kind",
        ...     class_map={"park": "#22c55e", "lake": "#3b82f6"},
        ... )
        >>> style_to_dict(style)["type"]
        'categorized'

    Parsing a stored style back:
        >>> from geolayers.db.models import parse_style
        >>> parse_style({"type": "simple", "color": "#ef4444", "weight": 3})
        SimpleStyle(color='#ef4444', weight=3.0, type='simple')
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Literal

LayerType = Literal["upload", "database"]
FeatureCollection = dict[str, Any]

DEFAULT_LAYER_COLOR = "#3b82f6"
DEFAULT_WEIGHT = 2.0
DEFAULT_BORDER_COLOR = "#333333"


class StyleError(ValueError):
    """Raised when a style payload has an unknown type or bad fields."""


@dataclasses.dataclass(frozen=True)
class ConnectionConfig:
    """Parameters for one ad-hoc external database connection.

    Never persisted; lives only for the duration of one introspection or
    fetch call.
    """

    host: str
    user: str
    password: str
    database: str
    port: int = 5432

    def connect_kwargs(self, timeout: int | None = None) -> dict[str, Any]:
        """Keyword arguments accepted by ``psycopg2.connect``."""
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.database,
        }
        if timeout is not None:
            kwargs["connect_timeout"] = timeout
        return kwargs


@dataclasses.dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    data_type: str


@dataclasses.dataclass(frozen=True)
class SimpleStyle:
    color: str
    weight: float = DEFAULT_WEIGHT
    type: Literal["simple"] = "simple"


@dataclasses.dataclass(frozen=True)
class BorderOnlyStyle:
    color: str
    weight: float = DEFAULT_WEIGHT
    type: Literal["border-only"] = "border-only"


@dataclasses.dataclass(frozen=True)
class CategorizedStyle:
    field: str
    class_map: dict[str, str]
    weight: float = DEFAULT_WEIGHT
    border_color: str = DEFAULT_BORDER_COLOR
    type: Literal["categorized"] = "categorized"


Style = SimpleStyle | BorderOnlyStyle | CategorizedStyle


def _weight(raw: dict[str, Any]) -> float:
    value = raw.get("weight", DEFAULT_WEIGHT)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise StyleError(f"Invalid style weight: {value!r}")
    return float(value)


def _color(raw: dict[str, Any], key: str, default: str | None = None) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str) or not value:
        raise StyleError(f"Style field '{key}' must be a non-empty string")
    return value


def parse_style(raw: Any) -> Style | None:
    """Build a Style from its serialized dictionary form.

    Args:
        raw: Dictionary with a ``type`` discriminant, or None.

    Returns:
        The matching Style variant, or None when ``raw`` is None.

    Raises:
        StyleError: If the discriminant is unknown or a field is malformed.
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise StyleError("Style must be an object")

    style_type = raw.get("type")
    if style_type == "simple":
        return SimpleStyle(color=_color(raw, "color"), weight=_weight(raw))
    if style_type == "border-only":
        return BorderOnlyStyle(color=_color(raw, "color"), weight=_weight(raw))
    if style_type == "categorized":
        field = raw.get("field")
        if not isinstance(field, str) or not field:
            raise StyleError("Categorized style requires a field")
        class_map = raw.get("classMap") or {}
        if not isinstance(class_map, dict):
            raise StyleError("classMap must be an object")
        return CategorizedStyle(
            field=field,
            class_map={str(k): str(v) for k, v in class_map.items()},
            weight=_weight(raw),
            border_color=_color(raw, "borderColor", DEFAULT_BORDER_COLOR),
        )

    raise StyleError(f"Unknown style type: {style_type!r}")


def style_to_dict(style: Style | None) -> dict[str, Any] | None:
    """Serialize a Style into its JSON dictionary form."""
    if style is None:
        return None
    if isinstance(style, SimpleStyle | BorderOnlyStyle):
        return {"type": style.type, "color": style.color, "weight": style.weight}
    if isinstance(style, CategorizedStyle):
        return {
            "type": style.type,
            "field": style.field,
            "classMap": dict(style.class_map),
            "weight": style.weight,
            "borderColor": style.border_color,
        }
    raise StyleError(f"Unsupported style object: {style!r}")


@dataclasses.dataclass
class Collection:
    """Persisted feature collection header.

    Attributes:
        id: Server-assigned unique identifier (UUID string); the join key
            between store, cache and runtime layers.
        name: Human-readable layer name.
        metadata: Free-form JSON metadata; ``metadata["style"]`` holds the
            serialized Style.
        group_id: Optional id of the owning layer group.
        created_at: Creation timestamp; listings are newest first.
    """

    id: str
    name: str
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)
    group_id: str | None = None
    created_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )

    @property
    def raw_style(self) -> Any:
        return self.metadata.get("style")


@dataclasses.dataclass
class Group:
    id: str
    name: str
    collapsed: bool = False
    visible: bool = True


@dataclasses.dataclass
class Layer:
    """Render-ready projection of a Collection or an unsaved upload."""

    id: str
    name: str
    data: FeatureCollection
    group_id: str | None = None
    visible: bool = True
    opacity: float = 1.0
    color: str = DEFAULT_LAYER_COLOR
    type: LayerType = "database"
    style: Style | None = None


def empty_feature_collection() -> FeatureCollection:
    return {"type": "FeatureCollection", "features": []}


def layer_to_dict(layer: Layer) -> dict[str, Any]:
    """Serialize a Layer for the cache and API responses."""
    return {
        "id": layer.id,
        "groupId": layer.group_id,
        "name": layer.name,
        "data": layer.data,
        "visible": layer.visible,
        "opacity": layer.opacity,
        "color": layer.color,
        "type": layer.type,
        "style": style_to_dict(layer.style),
    }


def layer_from_dict(raw: dict[str, Any]) -> Layer:
    """Rebuild a Layer from its serialized form.

    Raises:
        KeyError: If ``id`` or ``name`` is missing.
        StyleError: If the stored style cannot be parsed.
    """
    return Layer(
        id=str(raw["id"]),
        name=str(raw["name"]),
        data=raw.get("data") or empty_feature_collection(),
        group_id=raw.get("groupId"),
        visible=bool(raw.get("visible", True)),
        opacity=float(raw.get("opacity", 1.0)),
        color=raw.get("color") or DEFAULT_LAYER_COLOR,
        type=raw.get("type", "database"),
        style=parse_style(raw.get("style")),
    )


def group_to_dict(group: Group) -> dict[str, Any]:
    return dataclasses.asdict(group)


def collection_to_dict(collection: Collection) -> dict[str, Any]:
    return {
        "id": collection.id,
        "name": collection.name,
        "metadata": collection.metadata,
        "groupId": collection.group_id,
        "createdAt": collection.created_at.isoformat(),
    }
