"""
Drag gestures for nodes and labels.

A gesture previews its offset without touching the store. Only `end()`
commits, as one checkpoint plus one position update, so a whole drag is a
single undo step and an aborted drag leaves no trace.
"""

import logging
import math
from enum import Enum
from typing import Optional

from .config import DRAG_THRESHOLD
from .diagram_store import DiagramStore
from .positions import Point

logger = logging.getLogger(__name__)

_NODE_AXES = ("x", "y")
_LABEL_AXES = ("offset_x", "offset_y")


class DragKind(str, Enum):
    """What is being dragged."""
    NODE = "node"
    LABEL = "label"


def is_drag_threshold_met(start: Point, end: Point, threshold: float = DRAG_THRESHOLD) -> bool:
    """Pointer movements shorter than the threshold are clicks, not drags."""
    return math.hypot(end.x - start.x, end.y - start.y) >= threshold


class DragSession:
    """Tracks at most one in-progress drag against a store."""

    def __init__(self, store: DiagramStore, threshold: float = DRAG_THRESHOLD):
        self._store = store
        self._threshold = threshold
        self._kind: Optional[DragKind] = None
        self._entity_id: Optional[str] = None
        self._start_pointer: Optional[Point] = None
        self._current_pointer: Optional[Point] = None
        self._start_offset = Point(0.0, 0.0)

    @property
    def active(self) -> bool:
        return self._kind is not None

    @property
    def kind(self) -> Optional[DragKind]:
        return self._kind

    @property
    def entity_id(self) -> Optional[str]:
        return self._entity_id

    def _entry(self, kind: DragKind, entity_id: str):
        if kind == DragKind.NODE:
            return self._store.node_customization(entity_id)
        return self._store.label_customization(entity_id)

    def _existing_offset(self, kind: DragKind, entity_id: str) -> Point:
        entry = self._entry(kind, entity_id)
        if entry is None:
            return Point(0.0, 0.0)
        return Point(*entry.offset())

    def _position_fields(self, offset: Point) -> dict[str, float]:
        """Axes to write: the ones the entry already sets plus the ones the drag moved."""
        names = _NODE_AXES if self._kind == DragKind.NODE else _LABEL_AXES
        entry = self._entry(self._kind, self._entity_id)
        axes = zip(names, (offset.x, offset.y), (self._start_offset.x, self._start_offset.y))
        fields = {}
        for name, value, start in axes:
            if value != start or (entry is not None and getattr(entry, name) is not None):
                fields[name] = value
        return fields

    def begin(self, kind: str | DragKind, entity_id: str, x: float, y: float) -> bool:
        """
        Start dragging `entity_id` from pointer position (x, y).

        An unknown kind is ignored. A drag already in progress is cancelled
        first.
        """
        try:
            drag_kind = DragKind(kind)
        except ValueError:
            logger.warning("Ignoring drag of unknown kind %r", kind)
            return False

        if self.active:
            self.cancel()

        self._kind = drag_kind
        self._entity_id = entity_id
        self._start_pointer = Point(x, y)
        self._current_pointer = Point(x, y)
        self._start_offset = self._existing_offset(drag_kind, entity_id)
        self._store.set_dragging(True)
        return True

    def move(self, x: float, y: float) -> Optional[Point]:
        """Track the pointer. Returns the preview offset; the store is not changed."""
        if not self.active:
            return None
        self._current_pointer = Point(x, y)
        return self.preview_offset()

    def preview_offset(self) -> Optional[Point]:
        """The offset the entity would have if the drag ended now."""
        if not self.active:
            return None
        delta = Point(
            self._current_pointer.x - self._start_pointer.x,
            self._current_pointer.y - self._start_pointer.y,
        )
        return self._start_offset + delta

    @property
    def threshold_met(self) -> bool:
        if not self.active:
            return False
        return is_drag_threshold_met(self._start_pointer, self._current_pointer, self._threshold)

    def end(self) -> bool:
        """
        Finish the drag.

        Commits one checkpoint and one position update when the pointer moved
        far enough; otherwise the gesture was a click and nothing is written.
        Returns True when a position was committed.
        """
        if not self.active:
            return False

        committed = self.threshold_met
        if committed:
            fields = self._position_fields(self.preview_offset())
            self._store.save_snapshot()
            if self._kind == DragKind.NODE:
                self._store.update_node_customization(self._entity_id, **fields)
            else:
                self._store.update_label_customization(self._entity_id, **fields)

        self._reset()
        return committed

    def cancel(self):
        """Abort the drag. The store is left exactly as it was before `begin`."""
        if self.active:
            self._reset()

    def _reset(self):
        self._kind = None
        self._entity_id = None
        self._start_pointer = None
        self._current_pointer = None
        self._start_offset = Point(0.0, 0.0)
        self._store.set_dragging(False)
