"""
Position composition - base layout position plus user override.

The layout engine is external: it supplies a base position for every node and
label and is never written to from here. User overrides live in the store's
customization maps as offsets. Nodes and labels are composed independently:

    node:  base_position(node_id)             + NodeCustomization(x, y)
    label: base_position(label_key(node_id))  + LabelCustomization(offset_x, offset_y)
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from .diagram_store import DiagramStore

LABEL_PREFIX = "label_"


def label_key(node_id: str) -> str:
    """Key under which the layout engine publishes a label's base position."""
    return f"{LABEL_PREFIX}{node_id}"


@dataclass(frozen=True)
class Point:
    """A 2D point or offset."""
    x: float
    y: float

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


class LayoutSource(Protocol):
    """Anything that can report computed base positions."""

    def base_position(self, entity_id: str) -> Optional[Point]:
        ...


class StaticLayout:
    """A LayoutSource backed by a plain mapping, refreshed on each layout pass."""

    def __init__(
        self,
        nodes: Optional[dict[str, tuple[float, float]]] = None,
        labels: Optional[dict[str, tuple[float, float]]] = None,
    ):
        self._positions: dict[str, Point] = {}
        for node_id, (x, y) in (nodes or {}).items():
            self._positions[node_id] = Point(x, y)
        for node_id, (x, y) in (labels or {}).items():
            self._positions[label_key(node_id)] = Point(x, y)

    def base_position(self, entity_id: str) -> Optional[Point]:
        return self._positions.get(entity_id)


class PositionComposer:
    """
    Read-only view combining layout positions with the store's overrides.

    Holds no state of its own; every call reads the store and the layout as
    they are right now.
    """

    def __init__(self, store: DiagramStore, layout: LayoutSource):
        self._store = store
        self._layout = layout

    # --- Nodes ---

    def has_custom_position(self, node_id: str) -> bool:
        entry = self._store.node_customization(node_id)
        return entry is not None and entry.has_position

    def custom_offset(self, node_id: str) -> Optional[Point]:
        entry = self._store.node_customization(node_id)
        if entry is None or not entry.has_position:
            return None
        return Point(*entry.offset())

    def get_final_position(self, node_id: str) -> Optional[Point]:
        """Base position, shifted by the override when there is one. None if the layout has no base."""
        base = self._layout.base_position(node_id)
        if base is None:
            return None
        offset = self.custom_offset(node_id)
        return base if offset is None else base + offset

    # --- Labels ---

    def has_custom_label_position(self, node_id: str) -> bool:
        entry = self._store.label_customization(node_id)
        return entry is not None and entry.has_position

    def custom_label_offset(self, node_id: str) -> Optional[Point]:
        entry = self._store.label_customization(node_id)
        if entry is None or not entry.has_position:
            return None
        return Point(*entry.offset())

    def get_final_label_position(self, node_id: str) -> Optional[Point]:
        base = self._layout.base_position(label_key(node_id))
        if base is None:
            return None
        offset = self.custom_label_offset(node_id)
        return base if offset is None else base + offset

    # --- Read Model ---

    def compose_all(
        self,
        node_ids: Optional[Iterable[str]] = None,
        label_ids: Optional[Iterable[str]] = None,
    ) -> dict:
        """
        Final positions for renderers.

        Defaults to every node referenced by a flow, for both nodes and
        labels. Entities the layout has no base for are omitted.
        """
        if node_ids is None:
            node_ids = self._store.node_ids()
        node_ids = list(node_ids)
        if label_ids is None:
            label_ids = node_ids

        nodes = {}
        for node_id in node_ids:
            position = self.get_final_position(node_id)
            if position is not None:
                nodes[node_id] = {
                    **position.to_dict(),
                    "custom": self.has_custom_position(node_id),
                }

        labels = {}
        for node_id in label_ids:
            position = self.get_final_label_position(node_id)
            if position is not None:
                labels[node_id] = {
                    **position.to_dict(),
                    "custom": self.has_custom_label_position(node_id),
                }

        return {"nodes": nodes, "labels": labels}
