"""
Diagram validation - Check flows for structural and balance issues.

Validation never changes state; it reports. Used by both the backend and MCP
tools.
"""

from dataclasses import dataclass
from enum import Enum

from .analysis import BALANCE_TOLERANCE, find_imbalanced_nodes
from .models import DurableState


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a diagram."""
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    flow_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id:
            result["node_id"] = self.node_id
        if self.flow_id:
            result["flow_id"] = self.flow_id
        return result


def validate_flows(state: DurableState, tolerance: float = BALANCE_TOLERANCE) -> list[ValidationIssue]:
    """
    Validate a diagram and return a list of issues.

    Checks for:
    - Empty diagram - INFO
    - Flows without a source or target - ERROR
    - Self-referencing flows - WARNING
    - Duplicate flows (same source->target) - WARNING
    - Zero-value flows - WARNING
    - Intermediate nodes whose inflow and outflow differ - WARNING
    - Customizations for nodes no flow references - INFO
    """
    issues: list[ValidationIssue] = []
    flows = state.flows

    if not flows:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Diagram has no flows"
        ))
        return issues

    referenced: set[str] = set()
    for flow in flows:
        referenced.update(n for n in (flow.source, flow.target) if n)

    for flow in flows:
        if not flow.source:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Flow has no source node",
                flow_id=flow.id
            ))
        if not flow.target:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Flow has no target node",
                flow_id=flow.id
            ))

    for flow in flows:
        if flow.source and flow.source == flow.target:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Self-referencing flow (node flows into itself)",
                flow_id=flow.id,
                node_id=flow.source
            ))

    seen_pairs: set[tuple[str, str]] = set()
    for flow in flows:
        if not flow.source or not flow.target:
            continue
        pair = (flow.source, flow.target)
        if pair in seen_pairs:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Duplicate flow from {flow.source} to {flow.target}",
                flow_id=flow.id
            ))
        else:
            seen_pairs.add(pair)

    for flow in flows:
        if flow.value == 0:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Flow has zero value",
                flow_id=flow.id
            ))

    for stats in find_imbalanced_nodes(flows, tolerance):
        issues.append(ValidationIssue(
            severity=IssueSeverity.WARNING,
            message=f"Node is imbalanced: inflow {stats.total_in:g}, outflow {stats.total_out:g}",
            node_id=stats.node_id
        ))

    for node_id in state.node_customizations:
        if node_id not in referenced:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message="Node customization for a node no flow references",
                node_id=node_id
            ))
    for node_id in state.label_customizations:
        if node_id not in referenced:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message="Label customization for a node no flow references",
                node_id=node_id
            ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """Counts of issues by severity; `valid` is True when there are no errors."""
    errors = len([i for i in issues if i.severity == IssueSeverity.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": errors == 0
    }
