"""Markdown rendering of a finished flow analysis."""

from src.agents.flow_analyst.models import FlowStats, LinearStep, MethodAnalysis

_STEP_ICONS = {
    "methodStart": "▶",
    "execution": "•",
    "methodCall": "→",
    "methodReturn": "↩",
    "conditional": "?",
    "methodEnd": "■",
}

_CLASSIFICATION_LABELS = {
    "stepInto": "step into",
    "objectLookup": "object lookup",
    "external": "external",
    "notFound": "unknown",
}


def format_step(step: LinearStep) -> str:
    indent = "  " * step.depth
    icon = _STEP_ICONS.get(step.step_type, "-")
    line = f"{indent}{step.step_number}. {icon} {step.description}"
    if step.classification:
        line += f" _[{_CLASSIFICATION_LABELS[step.classification]}]_"
    if step.depends_on_step is not None:
        line += f" (if step {step.depends_on_step})"
    return line


def format_summary(root_display: str, stats: FlowStats) -> str:
    return "\n".join([
        f"## Execution Flow: {root_display}",
        "",
        f"- **Methods analyzed**: {stats.total_methods_analyzed}",
        f"- **Max depth reached**: {stats.max_depth_reached}",
        f"- **Analysis time**: {stats.analysis_time_ms / 1000:.1f}s",
        f"- **Cache hit rate**: {stats.cache_hit_rate:.0%}",
        f"- **Oracle calls**: {stats.oracle_calls}",
        f"- **Model used**: {stats.model}",
    ])


def format_flow_markdown(
    root: MethodAnalysis,
    steps: list[LinearStep],
    analyses: list[MethodAnalysis],
    stats: FlowStats,
) -> str:
    """Full walkthrough: summary, numbered steps, and the methods touched."""
    sections = [format_summary(root.display, stats)]

    if root.inherited_from:
        sections.append(
            f"> `{root.method_name}` is not declared on `{root.type_name}`; "
            f"it is inherited from `{root.inherited_from}`."
        )

    if stats.partial_leaves or stats.error_leaves:
        sections.append(
            f"> Flow truncated: {stats.partial_leaves} partial and "
            f"{stats.error_leaves} failed method(s) were not expanded."
        )

    sections.append("### Step-by-step\n\n" + "\n".join(format_step(s) for s in steps))

    method_lines = []
    for analysis in analyses:
        counts = analysis.call_summary.counts()
        line = f"- `{analysis.display}` ({analysis.status}"
        if analysis.status == "complete":
            line += f", {len(analysis.blocks)} blocks, {counts['stepInto']} step-into calls"
        line += ")"
        if analysis.inherited_from:
            line += f", inherited from `{analysis.inherited_from}`"
        if analysis.error_message:
            line += f": {analysis.error_message}"
        method_lines.append(line)
    if method_lines:
        sections.append("### Methods analyzed\n\n" + "\n".join(method_lines))

    return "\n\n".join(sections) + "\n"


def format_error_markdown(type_name: str, method_name: str, message: str, chain: list[str] | None = None) -> str:
    lines = [
        f"## Execution Flow: {type_name}.{method_name}()",
        "",
        f"**Analysis failed**: {message}",
    ]
    if chain:
        lines += ["", f"Searched: {' -> '.join(chain)}"]
    lines += [
        "",
        "Check the type and method names, or that the source file is inside the workspace.",
    ]
    return "\n".join(lines) + "\n"
