"""Cost estimation adapter backed by Infracost."""

import json
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..core.interfaces import (
    AdapterResult,
    Annotation,
    AnnotationTarget,
    CostEstimate,
    StageRequest,
)
from ..reporting.comments import render_cost_comment
from .base import CommandAdapter


def to_decimal(value: Any) -> Decimal:
    """Parse an Infracost cost value; null and unparsable values count as zero."""
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def parse_breakdown(payload: Dict[str, Any], currency: str) -> CostEstimate:
    """Aggregate an ``infracost breakdown --format json`` report by resource type."""
    breakdown: Dict[str, Decimal] = {}

    for project in payload.get("projects") or []:
        resources = (project.get("breakdown") or {}).get("resources") or []
        for resource in resources:
            resource_type = resource.get("resourceType") or resource.get("name", "unknown").split(".")[0]
            breakdown[resource_type] = breakdown.get(resource_type, Decimal("0")) + to_decimal(
                resource.get("monthlyCost")
            )

    total = payload.get("totalMonthlyCost")
    monthly = to_decimal(total) if total is not None else sum(breakdown.values(), Decimal("0"))

    return CostEstimate(
        currency=payload.get("currency") or currency,
        monthly_estimate=monthly,
        breakdown=breakdown,
    )


class InfracostAdapter(CommandAdapter):
    """Runs ``infracost breakdown`` and returns the estimate as the stage artifact."""

    name = "infracost"
    executable = "infracost"

    def __init__(self, version: Optional[str] = None, currency: str = "USD",
                 pr_comment: bool = False, api_key_name: str = "INFRACOST_API_KEY", **kwargs):
        super().__init__(version=version, **kwargs)
        self.currency = currency
        self.pr_comment = pr_comment
        self.api_key_name = api_key_name

    def run(self, request: StageRequest) -> AdapterResult:
        currency = self._optional(request, "currency") or self.currency

        args = ["breakdown", "--path", self._stack_dir(request), "--format", "json", "--no-color"]
        var_file = self._optional(request, "var_file")
        if var_file:
            args.extend(["--terraform-var-file", var_file])

        if self.api_key_name not in request.secret_names:
            request = replace(request, secret_names=[*request.secret_names, self.api_key_name])

        result = self._run(request, args, env={"INFRACOST_CURRENCY": currency})
        if result.returncode != 0:
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"infracost breakdown failed with exit code {result.returncode}",
            )

        try:
            estimate = parse_breakdown(json.loads(result.stdout), currency)
        except ValueError as e:
            return AdapterResult(success=False, diagnostics=result.output,
                                 error_message=f"Cannot parse infracost report: {e}")

        self.logger.info(f"[{request.stage_name}] estimated monthly cost: "
                         f"{estimate.monthly_estimate} {estimate.currency}")

        annotations = []
        if self.pr_comment:
            annotations.append(Annotation(
                text=render_cost_comment(estimate, request.environment),
                target=AnnotationTarget.PULL_REQUEST,
                stage_name=request.stage_name,
                title=f"Infracost ({request.environment})",
            ))

        return AdapterResult(success=True, artifact=estimate, cost_estimate=estimate,
                             diagnostics=result.stderr.strip(), annotations=annotations)
