"""Prometheus text exposition rendering.

Output follows the text format version 0.0.4:

    # HELP <name> <help text>
    # TYPE <name> <type>
    <name>{<k1>="<v1>", <k2>="<v2>"} <value>

Label keys are sorted so the output never depends on dict insertion order.
"""

import math

from render_exporter.models.metric import CollectionResult, MetricDefinition, MetricPoint


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def format_header(definition: MetricDefinition) -> str:
    return (
        f"# HELP {definition.name} {_escape_help(definition.help)}\n"
        f"# TYPE {definition.name} {definition.type}\n"
    )


def format_values(name: str, points: list[MetricPoint]) -> str:
    lines: list[str] = []
    for point in points:
        label_str = ", ".join(
            f'{k}="{_escape_label_value(v)}"' for k, v in sorted(point.labels.items())
        )
        if label_str:
            lines.append(f"{name}{{{label_str}}} {format_value(point.value)}")
        else:
            lines.append(f"{name} {format_value(point.value)}")
    return "".join(f"{line}\n" for line in lines)


def format_result(result: CollectionResult) -> str:
    """Render one family, or nothing at all if it has no values."""
    if not result.values:
        return ""
    return format_header(result.definition) + format_values(
        result.definition.name, result.values
    )
