"""
Diagram Store - the single source of truth for diagram state.

This module implements:
- Ownership of flows, node/label customizations, settings and UI state
- O(1) flow lookups via an id index
- Atomic mutations: inputs are validated before any field is touched
- Checkpoint-based undo/redo through `History`
- Change callbacks so persistence and broadcasting stay decoupled

Every durable mutation clears the redo stack; UI setters never do.
"""

import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

from pydantic import BaseModel

from .config import MAX_ZOOM, MIN_ZOOM, UNDO_STACK_LIMIT
from .history import History
from .models import (
    DiagramSettings,
    DurableState,
    Flow,
    LabelCustomization,
    NodeCustomization,
    Selection,
    SelectionKind,
    Tool,
    UIState,
    generate_flow_id,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Reasons passed to change callbacks
CHANGE_MUTATION = "mutation"
CHANGE_HISTORY = "history"
CHANGE_CLEAR = "clear"
CHANGE_LOAD = "load"

_SELECTION_FIELDS = {
    SelectionKind.NODE: "selected_node_id",
    SelectionKind.FLOW: "selected_flow_id",
    SelectionKind.LABEL: "selected_label_id",
}

_NODE_POSITION_FIELDS = ("x", "y")
_LABEL_POSITION_FIELDS = ("offset_x", "offset_y")


def _present_fields(model_cls: type[BaseModel], fields: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial update and return only the keys the caller actually passed."""
    return model_cls.model_validate(fields).model_dump(exclude_unset=True)


def _merge(model_cls: type[M], existing: Optional[M], fields: dict[str, Any]) -> M:
    """Shallow-merge `fields` over `existing`, keeping untouched fields as they were."""
    changes = _present_fields(model_cls, fields)
    base = existing.model_dump(exclude_unset=True) if existing is not None else {}
    return model_cls.model_validate({**base, **changes})


class DiagramStore:
    """
    Owns one diagram's state and history.

    Instances are independent: create one per application (or per test) and
    pass it to collaborators explicitly.
    """

    def __init__(self, max_history: int = UNDO_STACK_LIMIT):
        self._flows: list[Flow] = []
        self._flow_index: dict[str, Flow] = {}  # flow_id -> Flow
        self._node_customizations: dict[str, NodeCustomization] = {}
        self._label_customizations: dict[str, LabelCustomization] = {}
        self._settings = DiagramSettings()
        self._ui = UIState()
        self._history = History(max_history)
        self._on_change_callbacks: list[Callable[[str], None]] = []

    # --- Index Management ---

    def _rebuild_index(self):
        self._flow_index = {flow.id: flow for flow in self._flows}

    def _fresh_flow_id(self) -> str:
        flow_id = generate_flow_id()
        while flow_id in self._flow_index:
            flow_id = generate_flow_id()
        return flow_id

    # --- Properties ---

    @property
    def flows(self) -> list[Flow]:
        """Copies of the flows, in display order."""
        return [flow.model_copy(deep=True) for flow in self._flows]

    @property
    def node_customizations(self) -> dict[str, NodeCustomization]:
        return {k: v.model_copy(deep=True) for k, v in self._node_customizations.items()}

    @property
    def label_customizations(self) -> dict[str, LabelCustomization]:
        return {k: v.model_copy(deep=True) for k, v in self._label_customizations.items()}

    @property
    def settings(self) -> DiagramSettings:
        return self._settings.model_copy(deep=True)

    @property
    def ui(self) -> UIState:
        return self._ui.model_copy()

    @property
    def selection(self) -> Selection:
        return self._ui.selection

    @property
    def history(self) -> History:
        return self._history

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        """Get a flow by ID (O(1) lookup)."""
        flow = self._flow_index.get(flow_id)
        return flow.model_copy(deep=True) if flow is not None else None

    def node_customization(self, node_id: str) -> Optional[NodeCustomization]:
        entry = self._node_customizations.get(node_id)
        return entry.model_copy(deep=True) if entry is not None else None

    def label_customization(self, node_id: str) -> Optional[LabelCustomization]:
        entry = self._label_customizations.get(node_id)
        return entry.model_copy(deep=True) if entry is not None else None

    def node_ids(self) -> list[str]:
        """Node ids referenced by flows, in order of first appearance."""
        seen: dict[str, None] = {}
        for flow in self._flows:
            for node_id in (flow.source, flow.target):
                if node_id:
                    seen.setdefault(node_id, None)
        return list(seen)

    # --- Change Callbacks ---

    def on_change(self, callback: Callable[[str], None]):
        """Register a callback for durable state changes. It receives the change reason."""
        self._on_change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[str], None]):
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def _notify_change(self, reason: str):
        for callback in list(self._on_change_callbacks):
            try:
                callback(reason)
            except Exception:
                # A failing subscriber must not undo or block the mutation
                logger.exception("Change callback %r failed", callback)

    def _mutated(self):
        self._history.clear_redo()
        self._notify_change(CHANGE_MUTATION)

    # --- Durable State ---

    def _current_state(self) -> DurableState:
        """The live state objects wrapped in a DurableState (not copied)."""
        return DurableState(
            flows=list(self._flows),
            node_customizations=dict(self._node_customizations),
            label_customizations=dict(self._label_customizations),
            settings=self._settings,
        )

    def durable_state(self) -> DurableState:
        """Deep copy of everything that is snapshotted and persisted."""
        return self._current_state().model_copy(deep=True)

    def _install(self, state: DurableState):
        state = state.model_copy(deep=True)
        self._flows = list(state.flows)
        self._node_customizations = dict(state.node_customizations)
        self._label_customizations = dict(state.label_customizations)
        self._settings = state.settings
        self._rebuild_index()

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            "diagram": self._current_state().to_payload(),
            "ui": self._ui.model_dump(mode="json", by_alias=True),
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "undo_depth": self._history.undo_depth,
            "redo_depth": self._history.redo_depth,
        }

    def replace_state(self, state: DurableState):
        """Replace all durable data at once (e.g. after an import)."""
        self._install(state)
        self._mutated()

    def load_state(self, state: DurableState):
        """Install state read from storage. History starts empty."""
        self._install(state)
        self._history.clear()
        self._notify_change(CHANGE_LOAD)

    # --- Flow Operations ---

    def set_flows(self, flows: Iterable[Flow | dict]):
        """Replace the flow collection wholesale. Later duplicates of an id are dropped."""
        parsed = [
            flow.model_copy(deep=True) if isinstance(flow, Flow) else Flow.model_validate(flow)
            for flow in flows
        ]
        unique: list[Flow] = []
        seen: set[str] = set()
        for flow in parsed:
            if flow.id in seen:
                logger.warning("Dropping flow with duplicate id %s", flow.id)
                continue
            seen.add(flow.id)
            unique.append(flow)

        self._flows = unique
        self._rebuild_index()
        self._mutated()

    def add_flow(self, partial: Optional[Flow | dict] = None, **fields) -> Flow:
        """
        Append a new flow.

        A fresh id is assigned when none is given or the given one is taken.
        Unset source/target default to "" and value to 0. Existing flows are
        left untouched.
        """
        data: dict[str, Any] = {}
        if isinstance(partial, BaseModel):
            data.update(partial.model_dump(exclude_unset=True))
        elif partial is not None:
            data.update(partial)
        data.update(fields)
        # None means "not given" for a brand new flow
        data = {key: value for key, value in data.items() if value is not None}

        flow_id = data.pop("id", None)
        if flow_id is not None and flow_id in self._flow_index:
            logger.warning("Flow id %s already in use; assigning a fresh id", flow_id)
            flow_id = None
        if flow_id is None:
            flow_id = self._fresh_flow_id()

        flow = Flow.model_validate({**data, "id": flow_id})
        self._flows = [*self._flows, flow]
        self._flow_index[flow.id] = flow
        self._mutated()
        return flow.model_copy(deep=True)

    def update_flow(self, flow_id: str, **fields) -> Optional[Flow]:
        """Shallow-merge fields into an existing flow. The id cannot change."""
        flow = self._flow_index.get(flow_id)
        if flow is None:
            return None

        fields.pop("id", None)
        changes = _present_fields(Flow, fields)
        changes.pop("id", None)
        updated = Flow.model_validate({**flow.model_dump(exclude_unset=True), **changes, "id": flow.id})

        self._flows = [updated if f.id == flow_id else f for f in self._flows]
        self._flow_index[flow_id] = updated
        self._mutated()
        return updated.model_copy(deep=True)

    def remove_flow(self, flow_id: str) -> bool:
        """Remove a flow if present. Returns False (and changes no data) otherwise."""
        removed = flow_id in self._flow_index
        if removed:
            self._flows = [f for f in self._flows if f.id != flow_id]
            del self._flow_index[flow_id]
        self._mutated()
        return removed

    # --- Customization Operations ---

    def update_node_customization(self, node_id: str, **fields) -> NodeCustomization:
        """Merge the given fields into the node's entry, creating it if needed."""
        merged = _merge(NodeCustomization, self._node_customizations.get(node_id), fields)
        self._node_customizations[node_id] = merged
        self._mutated()
        return merged.model_copy(deep=True)

    def update_label_customization(self, node_id: str, **fields) -> LabelCustomization:
        """Merge the given fields into the label's entry. Node entries are not touched."""
        merged = _merge(LabelCustomization, self._label_customizations.get(node_id), fields)
        self._label_customizations[node_id] = merged
        self._mutated()
        return merged.model_copy(deep=True)

    def update_node_position(self, node_id: str, x: float, y: float) -> NodeCustomization:
        """Set the node's override offset."""
        return self.update_node_customization(node_id, x=x, y=y)

    def update_label_position(self, node_id: str, dx: float, dy: float) -> LabelCustomization:
        """Set the label's override offset."""
        return self.update_label_customization(node_id, offset_x=dx, offset_y=dy)

    def _clear_position(self, entries: dict[str, M], key: str, position_fields: tuple[str, ...]) -> bool:
        entry = entries.get(key)
        had_position = entry is not None and entry.has_position
        if entry is not None:
            remaining = {
                name: value
                for name, value in entry.model_dump(exclude_unset=True, exclude_none=True).items()
                if name not in position_fields
            }
            if remaining:
                entries[key] = type(entry).model_validate(remaining)
            else:
                del entries[key]
        self._mutated()
        return had_position

    def clear_node_position(self, node_id: str) -> bool:
        """Drop the node's override; other node customizations are kept."""
        return self._clear_position(self._node_customizations, node_id, _NODE_POSITION_FIELDS)

    def clear_label_position(self, node_id: str) -> bool:
        """Drop the label's override; other label customizations are kept."""
        return self._clear_position(self._label_customizations, node_id, _LABEL_POSITION_FIELDS)

    # --- Settings ---

    def update_settings(self, **fields) -> DiagramSettings:
        """Shallow-merge fields into the diagram settings."""
        changes = _present_fields(DiagramSettings, fields)
        self._settings = DiagramSettings.model_validate({**self._settings.model_dump(), **changes})
        self._mutated()
        return self._settings.model_copy()

    # --- Undo/Redo ---

    def save_snapshot(self):
        """Checkpoint the durable state before a logical edit begins."""
        self._history.checkpoint(self._current_state())

    def undo(self) -> bool:
        """Undo back to the last checkpoint. Returns False when there is none."""
        restored = self._history.undo(self._current_state())
        if restored is None:
            return False
        self._install(restored)
        self._ui = self._ui.model_copy(update={"last_action": "undo"})
        self._notify_change(CHANGE_HISTORY)
        return True

    def redo(self) -> bool:
        """Redo the last undone step. Returns False when there is none."""
        restored = self._history.redo(self._current_state())
        if restored is None:
            return False
        self._install(restored)
        self._ui = self._ui.model_copy(update={"last_action": "redo"})
        self._notify_change(CHANGE_HISTORY)
        return True

    def clear_all(self):
        """Reset data, customizations, settings, UI state and both history stacks."""
        self._flows = []
        self._flow_index = {}
        self._node_customizations = {}
        self._label_customizations = {}
        self._settings = DiagramSettings()
        self._ui = UIState()
        self._history.clear()
        self._notify_change(CHANGE_CLEAR)

    # --- UI State ---

    def select(self, kind: Optional[SelectionKind], entity_id: Optional[str] = None) -> Selection:
        """Select one element, implicitly deselecting whatever was selected before."""
        update: dict[str, Optional[str]] = {field: None for field in _SELECTION_FIELDS.values()}
        if kind is not None and entity_id is not None:
            update[_SELECTION_FIELDS[SelectionKind(kind)]] = entity_id
        self._ui = self._ui.model_copy(update=update)
        return self._ui.selection

    def deselect(self) -> Selection:
        return self.select(None)

    def _set_selected(self, kind: SelectionKind, entity_id: Optional[str]) -> Selection:
        if entity_id is None:
            # Only clears when that kind is what is currently selected
            if self._ui.selection.kind == kind:
                return self.deselect()
            return self._ui.selection
        return self.select(kind, entity_id)

    def set_selected_node(self, node_id: Optional[str]) -> Selection:
        return self._set_selected(SelectionKind.NODE, node_id)

    def set_selected_flow(self, flow_id: Optional[str]) -> Selection:
        return self._set_selected(SelectionKind.FLOW, flow_id)

    def set_selected_label(self, node_id: Optional[str]) -> Selection:
        return self._set_selected(SelectionKind.LABEL, node_id)

    def set_zoom(self, zoom: float) -> float:
        """Set the zoom factor, clamped to the supported range."""
        clamped = max(MIN_ZOOM, min(MAX_ZOOM, float(zoom)))
        self._ui = self._ui.model_copy(update={"zoom": clamped})
        return clamped

    def set_pan(self, x: float, y: float):
        self._ui = self._ui.model_copy(update={"pan_x": float(x), "pan_y": float(y)})

    def set_active_tool(self, tool: str | Tool) -> bool:
        """Switch tools. An unknown tool is ignored and the current one kept."""
        try:
            active = Tool(tool)
        except ValueError:
            logger.debug("Ignoring unknown tool %r", tool)
            return False
        self._ui = self._ui.model_copy(update={"active_tool": active})
        return True

    def set_dragging(self, is_dragging: bool):
        self._ui = self._ui.model_copy(update={"is_dragging": bool(is_dragging)})
