"""
Sankey Studio Core - Diagram state, history, positioning and persistence.

This package holds everything the editor needs independent of any rendering
or transport layer. The backend API and the MCP tools both build on it.
"""

from .models import (
    # Enums
    ColorScheme,
    Tool,
    SelectionKind,
    # Core models
    Flow,
    NodeCustomization,
    LabelCustomization,
    DiagramSettings,
    UIState,
    Selection,
    DurableState,
    # Request models (for API)
    CreateFlowRequest,
    UpdateFlowRequest,
    PositionRequest,
    ViewportRequest,
    SelectionRequest,
    ToolRequest,
    FilePathRequest,
    FlowTextRequest,
    BasePositionsRequest,
)

from .history import History
from .diagram_store import DiagramStore
from .positions import Point, StaticLayout, PositionComposer, label_key
from .gestures import DragKind, DragSession, is_drag_threshold_met
from .serialization import (
    SCHEMA_VERSION,
    ImportResult,
    serialize,
    deserialize,
    export_document,
    import_document,
)
from .persistence import (
    StorageError,
    StorageQuotaExceeded,
    KeyValueStorage,
    MemoryStorage,
    FileStorage,
    DiagramPersistence,
)
from .validation import validate_flows, validation_summary, ValidationIssue, IssueSeverity
from .analysis import (
    NodeStats,
    FlowGrowth,
    compute_node_stats,
    compute_flow_growth,
    summarize_diagram,
    find_connected_components,
    yoy_growth,
    format_growth,
    is_significant_growth,
)
from .flow_text import (
    FlowTextError,
    FlowTextResult,
    parse_flow_text,
    validate_flow_text,
    format_flow_text,
)

__all__ = [
    # Enums
    "ColorScheme",
    "Tool",
    "SelectionKind",
    # Models
    "Flow",
    "NodeCustomization",
    "LabelCustomization",
    "DiagramSettings",
    "UIState",
    "Selection",
    "DurableState",
    # Request models
    "CreateFlowRequest",
    "UpdateFlowRequest",
    "PositionRequest",
    "ViewportRequest",
    "SelectionRequest",
    "ToolRequest",
    "FilePathRequest",
    "FlowTextRequest",
    "BasePositionsRequest",
    # State
    "History",
    "DiagramStore",
    # Positions
    "Point",
    "StaticLayout",
    "PositionComposer",
    "label_key",
    "DragKind",
    "DragSession",
    "is_drag_threshold_met",
    # Serialization
    "SCHEMA_VERSION",
    "ImportResult",
    "serialize",
    "deserialize",
    "export_document",
    "import_document",
    # Persistence
    "StorageError",
    "StorageQuotaExceeded",
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "DiagramPersistence",
    # Validation
    "validate_flows",
    "validation_summary",
    "ValidationIssue",
    "IssueSeverity",
    # Analysis
    "NodeStats",
    "compute_node_stats",
    "summarize_diagram",
    "find_connected_components",
    "FlowGrowth",
    "compute_flow_growth",
    "yoy_growth",
    "format_growth",
    "is_significant_growth",
    # Flow text
    "FlowTextError",
    "FlowTextResult",
    "parse_flow_text",
    "validate_flow_text",
    "format_flow_text",
]
