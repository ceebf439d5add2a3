"""
Diagram analysis - Flow totals, balance checks, year-over-year growth and
summarization.

Nodes are implicit: a node exists because a flow names it as source or
target. Used by validation, the backend and the MCP tools.
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import DurableState, Flow

BALANCE_TOLERANCE = 0.01
SIGNIFICANT_GROWTH = 5.0  # percent


# --- Year-over-year growth ---

def yoy_growth(current: float, comparison: float) -> float:
    """
    Percentage change from `comparison` to `current`.

    Measured against |comparison| so a negative baseline still gives the
    direction of change. A zero baseline gives 0.0 when current is also
    zero and +/-inf otherwise.
    """
    if comparison == 0:
        if current == 0:
            return 0.0
        return math.inf if current > 0 else -math.inf
    return (current - comparison) / abs(comparison) * 100


def format_growth(rate: float) -> str:
    """Render a growth rate as e.g. "+15.2%", "-8.7%" or "+∞%"."""
    if math.isinf(rate):
        return "+∞%" if rate > 0 else "-∞%"
    sign = "+" if rate >= 0 else ""
    return f"{sign}{rate:.1f}%"


def is_significant_growth(rate: float, threshold: float = SIGNIFICANT_GROWTH) -> bool:
    """Whether a change of `rate` percent, in either direction, reaches `threshold`."""
    return math.isinf(rate) or abs(rate) >= threshold


def _growth_fields(rate: Optional[float]) -> dict:
    # Infinite rates only appear in the formatted string (JSON has no inf)
    if rate is None:
        return {"growth": None, "growth_rate": None, "significant": False}
    return {
        "growth": format_growth(rate),
        "growth_rate": rate if math.isfinite(rate) else None,
        "significant": is_significant_growth(rate),
    }


@dataclass
class FlowGrowth:
    """Year-over-year change of a single flow."""
    flow_id: str
    source: str
    target: str
    value: float
    comparison_value: float
    rate: float

    @property
    def significant(self) -> bool:
        return is_significant_growth(self.rate)

    def to_dict(self) -> dict:
        return {
            "id": self.flow_id,
            "source": self.source,
            "target": self.target,
            "value": self.value,
            "comparison_value": self.comparison_value,
            **_growth_fields(self.rate),
        }


def compute_flow_growth(flows: Iterable[Flow]) -> list[FlowGrowth]:
    """Growth of every flow that carries a comparison value, in flow order."""
    return [
        FlowGrowth(
            flow_id=f.id,
            source=f.source,
            target=f.target,
            value=f.value,
            comparison_value=f.comparison_value,
            rate=yoy_growth(f.value, f.comparison_value),
        )
        for f in flows
        if f.comparison_value is not None
    ]


# --- Node statistics ---

@dataclass
class NodeStats:
    """
    Inflow and outflow of a single node.

    `compared_*` sums the current values of the flows that carry a
    comparison value and `comparison_*` sums those comparison values, so
    growth is measured over the same set of flows.
    """
    node_id: str
    total_in: float = 0.0
    total_out: float = 0.0
    incoming: int = 0   # Flows ending at this node
    outgoing: int = 0   # Flows starting at this node
    compared_in: float = 0.0
    comparison_in: Optional[float] = None
    compared_out: float = 0.0
    comparison_out: Optional[float] = None

    @property
    def is_source(self) -> bool:
        return self.incoming == 0

    @property
    def is_sink(self) -> bool:
        return self.outgoing == 0

    @property
    def balance(self) -> float:
        """Inflow minus outflow; 0 for a conserving node."""
        return self.total_in - self.total_out

    @property
    def growth(self) -> Optional[float]:
        """Growth of the node's inflow, or of its outflow for a pure source."""
        if self.comparison_in is not None:
            return yoy_growth(self.compared_in, self.comparison_in)
        if self.comparison_out is not None:
            return yoy_growth(self.compared_out, self.comparison_out)
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.node_id,
            "total_in": self.total_in,
            "total_out": self.total_out,
            "incoming": self.incoming,
            "outgoing": self.outgoing,
            "is_source": self.is_source,
            "is_sink": self.is_sink,
            **_growth_fields(self.growth),
        }


def compute_node_stats(flows: Iterable[Flow]) -> dict[str, NodeStats]:
    """
    Total up every node's inflow and outflow.

    Flows with an empty source or target still count for the end that is set.

    Returns:
        Dictionary mapping node_id to NodeStats, in order of first appearance
    """
    stats: dict[str, NodeStats] = {}

    def _get(node_id: str) -> NodeStats:
        if node_id not in stats:
            stats[node_id] = NodeStats(node_id=node_id)
        return stats[node_id]

    for flow in flows:
        compared = flow.comparison_value is not None
        if flow.source:
            source = _get(flow.source)
            source.total_out += flow.value
            source.outgoing += 1
            if compared:
                source.compared_out += flow.value
                source.comparison_out = (source.comparison_out or 0.0) + flow.comparison_value
        if flow.target:
            target = _get(flow.target)
            target.total_in += flow.value
            target.incoming += 1
            if compared:
                target.compared_in += flow.value
                target.comparison_in = (target.comparison_in or 0.0) + flow.comparison_value

    return stats


def find_imbalanced_nodes(
    flows: Iterable[Flow],
    tolerance: float = BALANCE_TOLERANCE,
) -> list[NodeStats]:
    """
    Intermediate nodes whose inflow and outflow differ by more than `tolerance`.

    Pure sources and pure sinks are never reported.
    """
    return [
        s for s in compute_node_stats(flows).values()
        if not s.is_source and not s.is_sink and abs(s.balance) > tolerance
    ]


# --- Graph structure ---

@dataclass
class ConnectedComponent:
    """A connected component in the flow graph."""
    node_ids: list[str] = field(default_factory=list)
    flow_count: int = 0

    @property
    def size(self) -> int:
        return len(self.node_ids)


def find_connected_components(flows: Iterable[Flow]) -> list[ConnectedComponent]:
    """
    Find all connected components of the flow graph using BFS.

    Flows are treated as undirected edges.
    """
    flows = [f for f in flows if f.source and f.target]

    adjacency: dict[str, set[str]] = defaultdict(set)
    for flow in flows:
        adjacency[flow.source].add(flow.target)
        adjacency[flow.target].add(flow.source)

    visited: set[str] = set()
    components: list[ConnectedComponent] = []

    for start_node in adjacency:
        if start_node in visited:
            continue

        component_nodes: list[str] = []
        queue = [start_node]
        while queue:
            current = queue.pop(0)
            if current in visited:
                continue
            visited.add(current)
            component_nodes.append(current)
            queue.extend(n for n in adjacency[current] if n not in visited)

        members = set(component_nodes)
        components.append(ConnectedComponent(
            node_ids=component_nodes,
            flow_count=sum(1 for f in flows if f.source in members),
        ))

    return components


# --- Summary ---

@dataclass
class DiagramSummary:
    """Complete summary of a diagram's structure."""
    title: str
    total_nodes: int
    total_flows: int
    total_value: float
    sources: list[str]
    sinks: list[str]
    imbalanced_nodes: list[str]
    connected_components: int
    largest_nodes: list[NodeStats]
    customized_nodes: int
    customized_labels: int
    flow_growth: list[FlowGrowth] = field(default_factory=list)

    @property
    def total_growth(self) -> Optional[float]:
        """Growth over all flows that carry a comparison value."""
        if not self.flow_growth:
            return None
        return yoy_growth(
            sum(g.value for g in self.flow_growth),
            sum(g.comparison_value for g in self.flow_growth),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        totals = _growth_fields(self.total_growth)
        return {
            "title": self.title,
            "total_nodes": self.total_nodes,
            "total_flows": self.total_flows,
            "total_value": self.total_value,
            "sources": self.sources,
            "sinks": self.sinks,
            "imbalanced_nodes": self.imbalanced_nodes,
            "connected_components": self.connected_components,
            "largest_nodes": [n.to_dict() for n in self.largest_nodes],
            "customized_nodes": self.customized_nodes,
            "customized_labels": self.customized_labels,
            "total_growth": totals["growth"],
            "significant_changes": [g.flow_id for g in self.flow_growth if g.significant],
            "flow_growth": [g.to_dict() for g in self.flow_growth],
        }


def summarize_diagram(state: DurableState, top_n: int = 5) -> DiagramSummary:
    """
    Generate a summary of a diagram.

    Args:
        state: The durable diagram state
        top_n: Number of largest nodes (by throughput) to include

    Returns:
        DiagramSummary object with all analysis results
    """
    flows = state.flows
    stats = compute_node_stats(flows)

    largest = sorted(
        stats.values(),
        key=lambda s: max(s.total_in, s.total_out),
        reverse=True,
    )[:top_n]

    return DiagramSummary(
        title=state.settings.title,
        total_nodes=len(stats),
        total_flows=len(flows),
        total_value=sum(f.value for f in flows),
        sources=[s.node_id for s in stats.values() if s.is_source],
        sinks=[s.node_id for s in stats.values() if s.is_sink],
        imbalanced_nodes=[s.node_id for s in find_imbalanced_nodes(flows)],
        connected_components=len(find_connected_components(flows)),
        largest_nodes=largest,
        customized_nodes=len(state.node_customizations),
        customized_labels=len(state.label_customizations),
        flow_growth=compute_flow_growth(flows),
    )
