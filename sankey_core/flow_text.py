"""
Plain-text flow format.

One flow per line:

    Source [Amount] Target #color

- `Amount` is a number, `current|comparison` to carry a comparison value,
  or `*` for whatever inflow of the source is not yet assigned elsewhere
- the trailing `#RGB` / `#RRGGBB` color is optional
- blank lines and lines starting with `//` or `#` are comments
- lines with a `:` and no `[...]` are node definitions and are skipped

Parsing never raises; problems come back as FlowTextError entries with the
line and column they were found at.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import Flow

FLOW_LINE = re.compile(r"^(.+?)\s*\[([^\]]+)\]\s*(.+?)(?:\s+(#[0-9A-Fa-f]{6}|#[0-9A-Fa-f]{3}))?$")
COLOR = re.compile(r"^#(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{3})$")

AUTO_AMOUNT = "*"


@dataclass
class FlowTextError:
    """A syntax problem on one line of flow text."""
    line: int
    column: int
    message: str
    code: str

    def to_dict(self) -> dict:
        return {
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "code": self.code,
        }


@dataclass
class FlowTextResult:
    """Flows parsed from text, plus any errors found along the way."""
    flows: list[Flow] = field(default_factory=list)
    errors: list[FlowTextError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "flows": [f.model_dump(mode="json", by_alias=True, exclude_none=True) for f in self.flows],
            "errors": [e.to_dict() for e in self.errors],
        }


def _is_comment(line: str) -> bool:
    return not line or line.startswith("//") or line.startswith("#")


def _is_node_definition(line: str) -> bool:
    return ":" in line and ("[" not in line or "]" not in line)


def _parse_number(text: str) -> Optional[float]:
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _check_line(line: str, line_number: int) -> Optional[FlowTextError]:
    """Syntax checks that do not depend on the amount."""
    opening, closing = line.count("["), line.count("]")
    if opening != closing:
        return FlowTextError(line_number, line.find("[") + 1, "Unbalanced brackets in flow definition",
                             "UNBALANCED_BRACKETS")
    if not opening:
        return FlowTextError(line_number, 1, "Flow must contain amount in brackets [amount]", "MISSING_BRACKETS")

    last_token = line.rsplit(None, 1)[-1]
    if last_token.startswith("#") and not COLOR.match(last_token):
        return FlowTextError(line_number, line.rfind("#") + 1, "Invalid color format. Use #RGB or #RRGGBB",
                             "INVALID_COLOR")

    if not FLOW_LINE.match(line):
        return FlowTextError(line_number, 1, "Invalid flow syntax. Expected: Source [Amount] Target [Color]",
                             "INVALID_SYNTAX")
    return None


def _amount_error(line: str, line_number: int, message: str) -> FlowTextError:
    return FlowTextError(line_number, line.find("[") + 2, message, "INVALID_AMOUNT")


def parse_flow_text(text: str) -> FlowTextResult:
    """
    Parse flow text into Flows.

    Each flow's id is `line_<n>`, n being its 1-based line number. `*`
    amounts are resolved once every line has been read.
    """
    result = FlowTextResult()
    if not isinstance(text, str):
        return result

    auto: list[int] = []  # indexes into result.flows whose amount is `*`

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if _is_comment(line) or _is_node_definition(line):
            continue

        error = _check_line(line, line_number)
        if error is not None:
            result.errors.append(error)
            continue

        source, amount, target, color = FLOW_LINE.match(line).groups()
        amount = amount.strip()
        comparison: Optional[float] = None

        if amount == AUTO_AMOUNT:
            value = 0.0
            auto.append(len(result.flows))
        else:
            current_text, _, comparison_text = amount.partition("|")
            value = _parse_number(current_text.strip())
            if value is None or value < 0:
                result.errors.append(_amount_error(line, line_number, f"Invalid amount: {current_text.strip()}"))
                continue
            if comparison_text:
                comparison = _parse_number(comparison_text.strip())
                if comparison is None:
                    result.errors.append(
                        _amount_error(line, line_number, f"Invalid comparison amount: {comparison_text.strip()}"))
                    continue

        result.flows.append(Flow(
            id=f"line_{line_number}",
            source=source.strip(),
            target=target.strip(),
            value=value,
            comparison_value=comparison,
            color=color,
        ))

    _resolve_auto_amounts(result.flows, auto)
    return result


def _resolve_auto_amounts(flows: list[Flow], auto: list[int]):
    """
    Give each `*` flow an equal share of its source's unassigned inflow.

    Resolved in line order, so a `*` flow can feed a later one. The share
    never goes below 0.
    """
    pending = set(auto)
    for index in auto:
        source = flows[index].source
        inflow = sum(f.value for i, f in enumerate(flows) if f.target == source and i not in pending)
        assigned = sum(f.value for i, f in enumerate(flows) if f.source == source and i not in pending)
        siblings = sum(1 for i in pending if flows[i].source == source)
        flows[index].value = max(inflow - assigned, 0.0) / siblings
        pending.discard(index)


def validate_flow_text(text: str) -> list[FlowTextError]:
    """Syntax errors in flow text; empty when every flow line parses."""
    return parse_flow_text(text).errors


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_flow_line(flow: Flow) -> Optional[str]:
    """One flow as a text line, or None when it lacks a source or target."""
    if not flow.source or not flow.target:
        return None
    amount = _format_number(flow.value)
    if flow.comparison_value is not None:
        amount += "|" + _format_number(flow.comparison_value)
    line = f"{flow.source} [{amount}] {flow.target}"
    if flow.color and COLOR.match(flow.color):
        line += f" {flow.color}"
    return line


def format_flow_text(flows: Iterable[Flow], original_text: Optional[str] = None) -> str:
    """
    Render flows as text.

    With `original_text`, its comments, blank lines and node definitions are
    kept in place and its flow lines are replaced in order. Flows beyond the
    original flow lines are appended; surplus original flow lines are kept.
    """
    lines = [line for line in (format_flow_line(f) for f in flows) if line is not None]
    if not original_text:
        return "\n".join(lines)

    rendered = iter(lines)
    output: list[str] = []
    for raw in original_text.splitlines():
        stripped = raw.strip()
        if _is_comment(stripped) or _is_node_definition(stripped):
            output.append(raw)
        else:
            output.append(next(rendered, raw))
    output.extend(rendered)
    return "\n".join(output)
