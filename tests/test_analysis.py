"""Tests for flow analysis and diagram summaries."""

import math

import pytest

from sankey_core import DurableState, Flow, NodeCustomization, compute_node_stats, find_connected_components, summarize_diagram
from sankey_core.analysis import (
    compute_flow_growth,
    find_imbalanced_nodes,
    format_growth,
    is_significant_growth,
    yoy_growth,
)


class TestNodeStats:
    def test_totals(self, sample_flows):
        stats = compute_node_stats(sample_flows)
        revenue = stats["Revenue"]
        assert revenue.total_out == 100
        assert revenue.total_in == 0
        assert revenue.is_source
        assert not revenue.is_sink

        gross = stats["Gross Profit"]
        assert gross.total_in == gross.total_out == 60
        assert gross.balance == 0

        assert stats["Net Income"].is_sink

    def test_empty_endpoints_are_skipped(self):
        stats = compute_node_stats([Flow(source="A", target="", value=3)])
        assert list(stats) == ["A"]

    def test_imbalanced_nodes_exclude_sources_and_sinks(self):
        flows = [
            Flow(source="A", target="B", value=10),
            Flow(source="B", target="C", value=4),
        ]
        assert [s.node_id for s in find_imbalanced_nodes(flows)] == ["B"]


class TestComponents:
    def test_disconnected_groups(self):
        flows = [
            Flow(source="A", target="B", value=1),
            Flow(source="B", target="C", value=1),
            Flow(source="X", target="Y", value=1),
        ]
        components = find_connected_components(flows)
        assert sorted(c.size for c in components) == [2, 3]
        assert sorted(c.flow_count for c in components) == [1, 2]

    def test_no_flows(self):
        assert find_connected_components([]) == []


class TestGrowth:
    @pytest.mark.parametrize("current, comparison, expected", [
        (115, 100, "+15.0%"),
        (91.3, 100, "-8.7%"),
        (100, 100, "+0.0%"),
        (0, 0, "+0.0%"),
        (50, 0, "+∞%"),
        (-50, 0, "-∞%"),
        (-50, -100, "+50.0%"),
    ])
    def test_formatted_growth(self, current, comparison, expected):
        assert format_growth(yoy_growth(current, comparison)) == expected

    def test_zero_baseline_is_infinite(self):
        assert yoy_growth(5, 0) == math.inf
        assert yoy_growth(0, 0) == 0.0

    def test_significance(self):
        assert is_significant_growth(5.0)
        assert is_significant_growth(-12.5)
        assert not is_significant_growth(4.9)
        assert not is_significant_growth(4.9, threshold=10)
        assert is_significant_growth(math.inf)
        assert is_significant_growth(3, threshold=2)

    def test_only_flows_with_comparison_values(self):
        flows = [
            Flow(id="a", source="A", target="B", value=120, comparison_value=100),
            Flow(id="b", source="A", target="C", value=10),
        ]
        growth = compute_flow_growth(flows)
        assert [g.flow_id for g in growth] == ["a"]
        assert growth[0].rate == pytest.approx(20.0)
        assert growth[0].to_dict()["growth"] == "+20.0%"

    def test_infinite_growth_is_json_safe(self):
        growth = compute_flow_growth([Flow(id="a", source="A", target="B", value=3, comparison_value=0)])
        entry = growth[0].to_dict()
        assert entry["growth"] == "+∞%"
        assert entry["growth_rate"] is None
        assert entry["significant"] is True

    def test_node_growth_uses_compared_flows(self):
        flows = [
            Flow(source="A", target="B", value=110, comparison_value=100),
            Flow(source="C", target="B", value=50),
            Flow(source="B", target="D", value=160),
        ]
        stats = compute_node_stats(flows)
        assert stats["B"].growth == pytest.approx(10.0)
        assert stats["A"].growth == pytest.approx(10.0)
        assert stats["C"].growth is None
        assert stats["D"].to_dict()["growth"] is None


class TestSummary:
    def test_summary(self, sample_flows):
        state = DurableState(
            flows=sample_flows,
            node_customizations={"Revenue": NodeCustomization(x=1)},
        )
        summary = summarize_diagram(state).to_dict()

        assert summary["total_nodes"] == 4
        assert summary["total_flows"] == 3
        assert summary["total_value"] == 160
        assert summary["sources"] == ["Revenue"]
        assert summary["sinks"] == ["Cost of Sales", "Net Income"]
        assert summary["imbalanced_nodes"] == []
        assert summary["connected_components"] == 1
        assert summary["largest_nodes"][0]["id"] == "Revenue"
        assert summary["customized_nodes"] == 1
        assert summary["customized_labels"] == 0
        assert summary["total_growth"] is None
        assert summary["flow_growth"] == []

    def test_summary_growth(self):
        state = DurableState(flows=[
            Flow(id="a", source="Revenue", target="Profit", value=60, comparison_value=50),
            Flow(id="b", source="Revenue", target="Costs", value=40, comparison_value=39),
            Flow(id="c", source="Revenue", target="Other", value=5),
        ])
        summary = summarize_diagram(state).to_dict()

        assert summary["total_growth"] == "+12.4%"
        assert summary["significant_changes"] == ["a"]
        assert [g["id"] for g in summary["flow_growth"]] == ["a", "b"]
