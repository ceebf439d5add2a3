"""
Core data models for Sankey diagrams.

These models define the canonical schema for diagram state:
- Flows (directed, weighted edges between named nodes)
- Per-node customizations and per-label customizations, kept in separate maps
- Global diagram settings
- Transient UI state (selection, viewport, active tool)

Field Naming Convention:
- Python attributes are snake_case
- Persisted and API payloads use camelCase (`comparisonValue`, `offsetX`, ...)
- Both spellings are accepted on input
"""

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel


def _require_number(value: Any) -> Any:
    """Accept real ints and floats only (no bools, strings, NaN or infinity)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False  # int too large for a float
    if not finite:
        raise ValueError("must be a finite number")
    return value


Number = Annotated[float, BeforeValidator(_require_number)]
NonNegative = Annotated[float, BeforeValidator(_require_number), Field(ge=0)]
Opacity = Annotated[float, BeforeValidator(_require_number), Field(ge=0, le=1)]


class ColorScheme(str, Enum):
    """How flow colors are derived."""
    SOURCE = "source"
    TARGET = "target"
    GRADIENT = "gradient"


class Tool(str, Enum):
    """Canvas tools offered by the toolbar."""
    SELECT = "select"
    PAN = "pan"
    ADD_NODE = "addNode"
    ADD_FLOW = "addFlow"


class SelectionKind(str, Enum):
    """Kinds of element that can be selected on the canvas."""
    NODE = "node"
    FLOW = "flow"
    LABEL = "label"


def generate_flow_id() -> str:
    """Generate a unique flow ID."""
    return f"f{uuid.uuid4().hex[:8]}"


class StudioModel(BaseModel):
    """Base model: snake_case attributes, camelCase payload keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Flow(StudioModel):
    """A directed flow from one node to another."""
    id: StrictStr = Field(default_factory=generate_flow_id)
    source: StrictStr = ""
    target: StrictStr = ""
    value: NonNegative = 0.0
    comparison_value: Optional[Number] = None  # e.g. prior-period magnitude
    color: Optional[StrictStr] = None
    opacity: Optional[Opacity] = None
    metadata: Optional[dict[str, Any]] = None


class NodeCustomization(StudioModel):
    """
    User overrides for a single node.

    `x`/`y` is an offset relative to the node's computed layout position.
    """
    color: Optional[StrictStr] = None
    opacity: Optional[Opacity] = None
    x: Optional[Number] = None
    y: Optional[Number] = None
    width: Optional[NonNegative] = None

    @property
    def has_position(self) -> bool:
        return self.x is not None or self.y is not None

    def offset(self) -> tuple[float, float]:
        return (
            self.x if self.x is not None else 0.0,
            self.y if self.y is not None else 0.0,
        )


class LabelCustomization(StudioModel):
    """
    User overrides for the label attached to a node.

    Positioned independently of the node: `offset_x`/`offset_y` are relative
    to the label's own computed position.
    """
    visible: Optional[StrictBool] = None
    font_size: Optional[NonNegative] = None
    font_family: Optional[StrictStr] = None
    color: Optional[StrictStr] = None
    offset_x: Optional[Number] = None
    offset_y: Optional[Number] = None
    background: Optional[StrictStr] = None
    padding: Optional[NonNegative] = None

    @property
    def has_position(self) -> bool:
        return self.offset_x is not None or self.offset_y is not None

    def offset(self) -> tuple[float, float]:
        return (
            self.offset_x if self.offset_x is not None else 0.0,
            self.offset_y if self.offset_y is not None else 0.0,
        )


class DiagramSettings(StudioModel):
    """Global diagram configuration."""
    title: StrictStr = "Untitled Diagram"
    width: NonNegative = 800.0
    height: NonNegative = 600.0
    node_width: NonNegative = 15.0
    node_padding: NonNegative = 10.0
    flow_opacity: Opacity = 0.5
    color_scheme: ColorScheme = ColorScheme.SOURCE
    data_source_notes: StrictStr = ""


@dataclass(frozen=True)
class Selection:
    """The single active selection; an empty kind means nothing is selected."""
    kind: Optional[SelectionKind] = None
    entity_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.kind is None


class UIState(StudioModel):
    """Transient editor state. Never snapshotted or persisted."""
    selected_node_id: Optional[str] = None
    selected_flow_id: Optional[str] = None
    selected_label_id: Optional[str] = None
    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0
    active_tool: Tool = Tool.SELECT
    is_dragging: bool = False
    last_action: Optional[str] = None  # "undo" | "redo"

    @property
    def selection(self) -> Selection:
        if self.selected_node_id is not None:
            return Selection(SelectionKind.NODE, self.selected_node_id)
        if self.selected_flow_id is not None:
            return Selection(SelectionKind.FLOW, self.selected_flow_id)
        if self.selected_label_id is not None:
            return Selection(SelectionKind.LABEL, self.selected_label_id)
        return Selection()


class DurableState(StudioModel):
    """
    The snapshotted and persisted part of the diagram.
    Excludes UI state and the history stacks.
    """
    flows: list[Flow] = Field(default_factory=list)
    node_customizations: dict[str, NodeCustomization] = Field(default_factory=dict)
    label_customizations: dict[str, LabelCustomization] = Field(default_factory=dict)
    settings: DiagramSettings = Field(default_factory=DiagramSettings)

    @field_validator("flows")
    @classmethod
    def check_unique_ids(cls, flows: list[Flow]) -> list[Flow]:
        seen: set[str] = set()
        for flow in flows:
            if flow.id in seen:
                raise ValueError(f"duplicate flow id: {flow.id}")
            seen.add(flow.id)
        return flows

    def to_payload(self) -> dict:
        """Convert to a JSON-ready dict with camelCase keys; unset optionals are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- API Request Models ---

class CreateFlowRequest(StudioModel):
    """Request to add a flow. Omitted fields take their defaults."""
    id: Optional[StrictStr] = None
    source: StrictStr = ""
    target: StrictStr = ""
    value: NonNegative = 0.0
    comparison_value: Optional[Number] = None
    color: Optional[StrictStr] = None
    opacity: Optional[Opacity] = None
    metadata: Optional[dict[str, Any]] = None


class UpdateFlowRequest(StudioModel):
    """Request to update an existing flow (partial update)."""
    source: Optional[StrictStr] = None
    target: Optional[StrictStr] = None
    value: Optional[NonNegative] = None
    comparison_value: Optional[Number] = None
    color: Optional[StrictStr] = None
    opacity: Optional[Opacity] = None
    metadata: Optional[dict[str, Any]] = None


class PositionRequest(StudioModel):
    """An (x, y) pair: an override offset or a base layout position."""
    x: Number
    y: Number


class ViewportRequest(StudioModel):
    """Request to change zoom and/or pan."""
    zoom: Optional[Number] = None
    pan_x: Optional[Number] = None
    pan_y: Optional[Number] = None


class SelectionRequest(StudioModel):
    """Request to select an element; a null kind clears the selection."""
    kind: Optional[SelectionKind] = None
    id: Optional[str] = None


class ToolRequest(StudioModel):
    """Request to change the active tool. Unknown tools are ignored."""
    tool: str


class FilePathRequest(StudioModel):
    """Request naming a diagram file on disk."""
    file_path: str


class BasePositionsRequest(StudioModel):
    """Base positions from the layout engine, keyed by node id."""
    nodes: dict[str, PositionRequest] = Field(default_factory=dict)
    labels: dict[str, PositionRequest] = Field(default_factory=dict)


class FlowTextRequest(StudioModel):
    """Flows written in the plain-text flow format."""
    text: StrictStr
