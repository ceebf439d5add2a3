#!/usr/bin/env python3
"""
Sankey Studio MCP Server

Provides MCP tools for AI agents to edit the Sankey diagram held by the
backend. All changes are immediately reflected in connected editors via
WebSocket updates.
"""

import json
from typing import Any, Optional

import httpx
from mcp.server.fastmcp import FastMCP

from sankey_core.config import API_BASE

# Create MCP server
mcp = FastMCP("sankey-studio")


class APIError(Exception):
    """The backend rejected a request."""


# --- HTTP Client Helper ---

def _client() -> httpx.Client:
    return httpx.Client(base_url=API_BASE, timeout=30.0)


def api_request(method: str, endpoint: str, **kwargs) -> dict:
    """Make a request to the Sankey Studio backend."""
    with _client() as client:
        response = client.request(
            method,
            endpoint,
            json=kwargs.get("json"),
            params=kwargs.get("params"),
        )

        if response.status_code >= 400:
            try:
                error = response.json().get("detail", "Unknown error")
            except ValueError:
                error = response.text or "Unknown error"
            raise APIError(f"API error: {error}")

        return response.json()


def _compact(**fields: Any) -> dict:
    """Drop arguments the caller left unset."""
    return {k: v for k, v in fields.items() if v is not None}


# ============================================================================
# INSPECTION TOOLS
# ============================================================================

@mcp.tool()
def sankey_get_current() -> str:
    """
    Get the full current diagram state.

    Returns flows, node and label customizations, settings, UI state and
    undo/redo availability. Call this before making changes.
    """
    result = api_request("GET", "/diagram")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_validate() -> str:
    """
    Check the diagram for problems.

    Reports flows missing a source or target, self-loops, duplicate flows,
    zero-value flows, and intermediate nodes whose inflow and outflow differ.
    """
    result = api_request("GET", "/diagram/validate")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_summary() -> str:
    """Summarize the diagram: node and flow counts, totals, sources, sinks and year-over-year growth."""
    result = api_request("GET", "/diagram/summary")
    return json.dumps(result, indent=2)


# ============================================================================
# FILE TOOLS
# ============================================================================

@mcp.tool()
def sankey_open(file_path: str) -> str:
    """
    Replace the current diagram with one exported to a JSON file.

    Args:
        file_path: Full path to the exported diagram JSON file
    """
    result = api_request("POST", "/diagram/open", json={"file_path": file_path})
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_save(file_path: str) -> str:
    """
    Export the current diagram to a JSON file.

    Args:
        file_path: Path to write
    """
    result = api_request("POST", "/diagram/save", json={"file_path": file_path})
    return json.dumps(result, indent=2)


# ============================================================================
# FLOW TOOLS
# ============================================================================

@mcp.tool()
def sankey_add_flow(
    source: str,
    target: str,
    value: float,
    comparison_value: Optional[float] = None,
    color: Optional[str] = None,
) -> str:
    """
    Add a flow between two nodes. Nodes are created implicitly by name.

    Args:
        source: Name of the source node
        target: Name of the target node
        value: Magnitude of the flow (non-negative)
        comparison_value: Optional prior-period magnitude
        color: Optional color override (hex)
    """
    result = api_request("POST", "/flows", json=_compact(
        source=source,
        target=target,
        value=value,
        comparison_value=comparison_value,
        color=color,
    ))
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_update_flow(
    flow_id: str,
    source: Optional[str] = None,
    target: Optional[str] = None,
    value: Optional[float] = None,
    color: Optional[str] = None,
) -> str:
    """
    Update fields of an existing flow. Only specified fields change.

    Args:
        flow_id: ID of the flow
        source: New source node
        target: New target node
        value: New magnitude
        color: New color override
    """
    result = api_request("PATCH", f"/flows/{flow_id}", json=_compact(
        source=source, target=target, value=value, color=color,
    ))
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_remove_flow(flow_id: str) -> str:
    """
    Delete a flow.

    Args:
        flow_id: ID of the flow to delete
    """
    result = api_request("DELETE", f"/flows/{flow_id}")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_set_flows(flows: list[dict]) -> str:
    """
    Replace every flow at once.

    Args:
        flows: List of {"source", "target", "value"} objects; "id" and
            "comparisonValue" are optional
    """
    result = api_request("PUT", "/flows", json=flows)
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_get_flow_text() -> str:
    """
    Get every flow as plain text, one `Source [Amount] Target #color` line each.

    Amounts with a comparison value are written as `current|comparison`.
    """
    result = api_request("GET", "/flows/text")
    return result["text"]


@mcp.tool()
def sankey_set_flow_text(text: str) -> str:
    """
    Replace every flow with the ones written in plain text.

    One flow per line: `Source [Amount] Target #color`. The color is optional;
    `[120|100]` carries a comparison value and `[*]` takes whatever inflow of
    the source is left. Lines starting with // or # are comments. Nothing is
    applied if any line is invalid.

    Args:
        text: The flow text
    """
    result = api_request("PUT", "/flows/text", json={"text": text})
    return json.dumps(result, indent=2)


# ============================================================================
# CUSTOMIZATION TOOLS
# ============================================================================

@mcp.tool()
def sankey_customize_node(
    node_id: str,
    color: Optional[str] = None,
    opacity: Optional[float] = None,
    width: Optional[float] = None,
) -> str:
    """
    Change how a node is drawn.

    Args:
        node_id: Node name
        color: Fill color (hex)
        opacity: 0 to 1
        width: Bar width override
    """
    result = api_request("PATCH", f"/nodes/{node_id}/customization", json=_compact(
        color=color, opacity=opacity, width=width,
    ))
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_customize_label(
    node_id: str,
    visible: Optional[bool] = None,
    font_size: Optional[float] = None,
    color: Optional[str] = None,
) -> str:
    """
    Change how a node's label is drawn.

    Args:
        node_id: Node name the label belongs to
        visible: Show or hide the label
        font_size: Font size in pixels
        color: Text color (hex)
    """
    result = api_request("PATCH", f"/labels/{node_id}/customization", json=_compact(
        visible=visible, fontSize=font_size, color=color,
    ))
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_move_node(node_id: str, dx: float, dy: float) -> str:
    """
    Offset a node from its computed layout position.

    Args:
        node_id: Node name
        dx: Horizontal offset in pixels
        dy: Vertical offset in pixels
    """
    result = api_request("PUT", f"/nodes/{node_id}/position", json={"x": dx, "y": dy})
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_move_label(node_id: str, dx: float, dy: float) -> str:
    """
    Offset a label from its computed position. The node does not move.

    Args:
        node_id: Node name the label belongs to
        dx: Horizontal offset in pixels
        dy: Vertical offset in pixels
    """
    result = api_request("PUT", f"/labels/{node_id}/position", json={"x": dx, "y": dy})
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_reset_position(node_id: str, label: bool = False) -> str:
    """
    Put a node (or its label) back at its computed layout position.

    Args:
        node_id: Node name
        label: Reset the label instead of the node
    """
    kind = "labels" if label else "nodes"
    result = api_request("DELETE", f"/{kind}/{node_id}/position")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_update_settings(
    title: Optional[str] = None,
    width: Optional[float] = None,
    height: Optional[float] = None,
    color_scheme: Optional[str] = None,
    flow_opacity: Optional[float] = None,
) -> str:
    """
    Update global diagram settings. Only specified fields change.

    Args:
        title: Diagram title
        width: Canvas width
        height: Canvas height
        color_scheme: "source", "target" or "gradient"
        flow_opacity: Default flow opacity, 0 to 1
    """
    result = api_request("PATCH", "/settings", json=_compact(
        title=title,
        width=width,
        height=height,
        colorScheme=color_scheme,
        flowOpacity=flow_opacity,
    ))
    return json.dumps(result, indent=2)


# ============================================================================
# HISTORY TOOLS
# ============================================================================

@mcp.tool()
def sankey_checkpoint() -> str:
    """
    Record an undo point. Call once before a group of changes so that a
    single undo reverts the whole group.
    """
    result = api_request("POST", "/snapshot")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_undo() -> str:
    """Undo back to the last checkpoint."""
    result = api_request("POST", "/undo")
    return json.dumps(result, indent=2)


@mcp.tool()
def sankey_redo() -> str:
    """Redo the last undone change."""
    result = api_request("POST", "/redo")
    return json.dumps(result, indent=2)


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    mcp.run()
