"""Tests for flow validation."""

from sankey_core import (
    DurableState,
    Flow,
    IssueSeverity,
    LabelCustomization,
    NodeCustomization,
    validate_flows,
    validation_summary,
)


def _issues(flows, **kwargs):
    return validate_flows(DurableState(flows=flows, **kwargs))


def _messages(issues, severity):
    return [i.message for i in issues if i.severity == severity]


class TestValidateFlows:
    def test_empty_diagram_is_info(self):
        issues = _issues([])
        assert len(issues) == 1
        assert issues[0].severity == IssueSeverity.INFO

    def test_balanced_diagram_has_no_issues(self, sample_flows):
        assert _issues(sample_flows) == []

    def test_missing_endpoints_are_errors(self):
        issues = _issues([Flow(id="f1", source="", target="B", value=1)])
        errors = [i for i in issues if i.severity == IssueSeverity.ERROR]
        assert len(errors) == 1
        assert errors[0].flow_id == "f1"

    def test_self_reference_warning(self):
        issues = _issues([Flow(id="loop", source="A", target="A", value=1)])
        assert any(i.flow_id == "loop" and "Self-referencing" in i.message for i in issues)

    def test_duplicate_pair_warning(self):
        issues = _issues([
            Flow(id="a", source="A", target="B", value=1),
            Flow(id="b", source="A", target="B", value=2),
        ])
        duplicates = [i for i in issues if "Duplicate" in i.message]
        assert [i.flow_id for i in duplicates] == ["b"]

    def test_zero_value_warning(self):
        issues = _issues([Flow(id="z", source="A", target="B", value=0)])
        assert any(i.flow_id == "z" and "zero" in i.message for i in issues)

    def test_imbalanced_intermediate_node(self):
        issues = _issues([
            Flow(id="in", source="A", target="Mid", value=100),
            Flow(id="out", source="Mid", target="C", value=60),
        ])
        warnings = [i for i in issues if i.severity == IssueSeverity.WARNING]
        assert [i.node_id for i in warnings] == ["Mid"]

    def test_imbalance_within_tolerance_is_fine(self):
        issues = _issues([
            Flow(id="in", source="A", target="Mid", value=100),
            Flow(id="out", source="Mid", target="C", value=99.995),
        ])
        assert issues == []

    def test_customization_for_unknown_node_is_info(self):
        issues = _issues(
            [Flow(id="f", source="A", target="B", value=1)],
            node_customizations={"Ghost": NodeCustomization(color="#000")},
            label_customizations={"Phantom": LabelCustomization(visible=False)},
        )
        assert sorted(i.node_id for i in issues) == ["Ghost", "Phantom"]
        assert all(i.severity == IssueSeverity.INFO for i in issues)

    def test_issue_to_dict(self):
        issue = _issues([Flow(id="z", source="A", target="B", value=0)])[0]
        assert issue.to_dict() == {"type": "warning", "message": "Flow has zero value", "flow_id": "z"}


class TestValidationSummary:
    def test_counts(self):
        issues = _issues([
            Flow(id="e", source="", target="B", value=0),
        ])
        summary = validation_summary(issues)
        assert summary["errors"] == 1
        assert summary["warnings"] == 1
        assert summary["total"] == 2
        assert summary["valid"] is False

    def test_valid_when_no_errors(self):
        assert validation_summary(_issues([]))["valid"] is True
