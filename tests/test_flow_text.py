"""Tests for the plain-text flow format."""

import pytest

from sankey_core import Flow, format_flow_text, parse_flow_text, validate_flow_text

BUDGET = """\
// Monthly budget
Salary [3000] Budget
Budget [1200] Rent #ff0000

Budget: #3b82f6
# spending
Budget [500|450] Food
"""


class TestParse:
    def test_parses_flows_and_skips_comments(self):
        result = parse_flow_text(BUDGET)
        assert result.is_valid
        assert [(f.source, f.target, f.value) for f in result.flows] == [
            ("Salary", "Budget", 3000),
            ("Budget", "Rent", 1200),
            ("Budget", "Food", 500),
        ]

    def test_ids_follow_line_numbers(self):
        assert [f.id for f in parse_flow_text(BUDGET).flows] == ["line_2", "line_3", "line_7"]

    def test_color_and_comparison(self):
        flows = parse_flow_text(BUDGET).flows
        assert flows[1].color == "#ff0000"
        assert flows[0].color is None
        assert flows[2].comparison_value == 450

    def test_names_with_spaces(self):
        flow = parse_flow_text("Cost of Sales [12.5] Gross Profit").flows[0]
        assert flow.source == "Cost of Sales"
        assert flow.target == "Gross Profit"
        assert flow.value == 12.5

    def test_auto_amount_takes_unassigned_inflow(self):
        text = "Salary [100] Budget\nBudget [30] Rent\nBudget [*] Savings\nSavings [*] Bank"
        flows = parse_flow_text(text).flows
        assert [f.value for f in flows] == [100, 30, 70, 70]

    def test_auto_amounts_split_evenly(self):
        text = "A [10] B\nB [*] C\nB [*] D"
        assert [f.value for f in parse_flow_text(text).flows] == [10, 5, 5]

    def test_auto_amount_never_negative(self):
        text = "A [10] B\nB [20] C\nB [*] D"
        assert parse_flow_text(text).flows[2].value == 0

    def test_empty_or_non_text(self):
        assert parse_flow_text("").flows == []
        assert parse_flow_text(None).is_valid

    def test_bad_lines_are_reported_and_skipped(self):
        result = parse_flow_text("A [1] B\nnot a flow\nC [x] D")
        assert [f.id for f in result.flows] == ["line_1"]
        assert [(e.line, e.code) for e in result.errors] == [(2, "MISSING_BRACKETS"), (3, "INVALID_AMOUNT")]


class TestValidate:
    @pytest.mark.parametrize("line, code", [
        ("A [10 B", "UNBALANCED_BRACKETS"),
        ("A 10 B", "MISSING_BRACKETS"),
        ("A [10] B #12", "INVALID_COLOR"),
        ("[10] B", "INVALID_SYNTAX"),
        ("A [-5] B", "INVALID_AMOUNT"),
        ("A [nan] B", "INVALID_AMOUNT"),
        ("A [5|abc] B", "INVALID_AMOUNT"),
    ])
    def test_error_codes(self, line, code):
        errors = validate_flow_text(line)
        assert [e.code for e in errors] == [code]
        assert errors[0].line == 1

    def test_valid_text(self):
        assert validate_flow_text(BUDGET) == []

    def test_error_to_dict(self):
        error = validate_flow_text("x\nA 10 B")[1]
        assert error.to_dict() == {
            "line": 2,
            "column": 1,
            "message": "Flow must contain amount in brackets [amount]",
            "code": "MISSING_BRACKETS",
        }


class TestFormat:
    def test_format(self):
        flows = [
            Flow(source="A", target="B", value=10),
            Flow(source="B", target="C", value=2.5, comparison_value=2, color="#abc"),
            Flow(source="", target="C", value=1),
        ]
        assert format_flow_text(flows) == "A [10] B\nB [2.5|2] C #abc"

    def test_text_survives_parse_and_format(self):
        text = "Salary [3000] Budget\nBudget [500|450] Food #00ff00"
        assert format_flow_text(parse_flow_text(text).flows) == text

    def test_original_comments_are_kept(self):
        flows = [
            Flow(source="Salary", target="Budget", value=3100),
            Flow(source="Budget", target="Rent", value=1200),
            Flow(source="Budget", target="Food", value=500),
            Flow(source="Budget", target="Fun", value=50),
        ]
        lines = format_flow_text(flows, original_text=BUDGET).splitlines()
        assert lines == [
            "// Monthly budget",
            "Salary [3100] Budget",
            "Budget [1200] Rent",
            "",
            "Budget: #3b82f6",
            "# spending",
            "Budget [500] Food",
            "Budget [50] Fun",
        ]
