"""Markdown rendering for pull request comments and run summaries."""

from decimal import Decimal
from typing import Optional, Sequence

from ..core.interfaces import (
    CostEstimate,
    PipelineResult,
    PlanArtifact,
    ScanFinding,
    Severity,
    StageOutcome,
)


MAX_PLAN_OUTPUT_CHARS = 60000

_STATUS_ICONS = {
    "success": "✅",
    "partial": "⚠️",
    "failed": "❌",
    "pending": "⏳",
}

_OUTCOME_ICONS = {
    StageOutcome.SUCCEEDED: "✅",
    StageOutcome.FAILED: "❌",
    StageOutcome.SKIPPED: "⏭️",
    StageOutcome.NOT_RUN: "⛔",
    StageOutcome.CANCELLED: "🚫",
}


def _truncate(text: str, limit: int = MAX_PLAN_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (output truncated)"


def render_plan_comment(artifact: PlanArtifact, environment: str, output: str = "") -> str:
    """Render plan or what-if output as a collapsible PR comment."""
    changes = "Changes detected" if artifact.has_changes else "No changes"
    lines = [
        f"### {artifact.tool} plan for `{environment}`",
        "",
        f"**{changes}**" + (f": {artifact.summary}" if artifact.summary else ""),
    ]

    if output:
        lines.extend([
            "",
            "<details><summary>Show output</summary>",
            "",
            "```",
            _truncate(output.strip()),
            "```",
            "",
            "</details>",
        ])

    return "\n".join(lines)


def render_findings_comment(findings: Sequence[ScanFinding], scanner: str,
                            fail_on: Optional[Severity] = None) -> str:
    """Render scanner findings as a markdown table, most severe first."""
    if not findings:
        return f"### {scanner} security scan\n\n✅ No findings."

    ordered = sorted(findings, key=lambda f: (-f.severity.rank, f.rule_id, f.location))

    counts = {}
    for finding in findings:
        counts[finding.severity] = counts.get(finding.severity, 0) + 1
    count_text = ", ".join(
        f"{counts[severity]} {severity.value}"
        for severity in sorted(counts, key=lambda s: -s.rank)
    )

    lines = [f"### {scanner} security scan", "", f"**{len(findings)} finding(s)**: {count_text}"]
    if fail_on is not None:
        lines.append(f"Failing threshold: `{fail_on.value}`")

    lines.extend(["", "| Severity | Rule | Location | Message |", "|---|---|---|---|"])
    for finding in ordered:
        message = finding.message.replace("|", "\\|").replace("\n", " ")
        lines.append(f"| {finding.severity.value} | `{finding.rule_id}` | `{finding.location}` | {message} |")

    return "\n".join(lines)


def format_amount(amount: Decimal, currency: str) -> str:
    return f"{amount.quantize(Decimal('0.01')):,} {currency}"


def render_cost_comment(estimate: CostEstimate, environment: str) -> str:
    """Render a cost estimate with its per-resource-type breakdown."""
    lines = [
        f"### Cost estimate for `{environment}`",
        "",
        f"**Monthly total: {format_amount(estimate.monthly_estimate, estimate.currency)}**",
    ]

    if estimate.breakdown:
        lines.extend(["", "| Resource type | Monthly cost |", "|---|---|"])
        for resource_type, amount in sorted(estimate.breakdown.items(), key=lambda item: -item[1]):
            lines.append(f"| `{resource_type}` | {format_amount(amount, estimate.currency)} |")

    return "\n".join(lines)


def render_pipeline_summary(result: PipelineResult) -> str:
    """Render the per-stage outcome list of a finished run."""
    status = result.overall_status.value
    lines = [
        f"## Pipeline {_STATUS_ICONS.get(status, '')} {status} (`{result.environment}`)",
        "",
        "| Stage | Outcome | Policy | Details |",
        "|---|---|---|---|",
    ]

    for stage_result in result.stage_results:
        details = stage_result.error_message or ""
        finding_count = len(stage_result.findings)
        if finding_count:
            details = f"{finding_count} finding(s)" + (f"; {details}" if details else "")
        icon = _OUTCOME_ICONS.get(stage_result.outcome, "")
        lines.append(
            f"| {stage_result.name} | {icon} {stage_result.outcome.value} | "
            f"{stage_result.policy.value} | {details.replace('|', '/')} |"
        )

    if result.cancelled:
        lines.extend(["", "_Run was cancelled before all stages started._"])

    return "\n".join(lines)
