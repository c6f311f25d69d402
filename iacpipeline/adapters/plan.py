"""Plan, what-if and apply adapters for Terraform and Bicep stacks."""

import json
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.interfaces import (
    ABSENT,
    AdapterResult,
    Annotation,
    AnnotationTarget,
    PlanArtifact,
    StageRequest,
)
from ..reporting.comments import render_plan_comment
from .base import CommandAdapter


_PLAN_SUMMARY = re.compile(r"Plan: (\d+) to add, (\d+) to change, (\d+) to destroy")

# terraform plan -detailed-exitcode
_EXIT_NO_CHANGES = 0
_EXIT_CHANGES = 2


def summarize_terraform_plan(output: str) -> str:
    """Pull the one-line change summary out of terraform plan output."""
    match = _PLAN_SUMMARY.search(output)
    if match:
        return match.group(0)
    if "No changes." in output:
        return "No changes."
    return ""


class TerraformPlanAdapter(CommandAdapter):
    """Runs ``terraform init`` and ``terraform plan`` and produces a plan file."""

    name = "terraform_plan"
    executable = "terraform"

    def __init__(self, version: Optional[str] = None, plan_file: str = "tfplan",
                 init: bool = True, pr_comment: bool = False, **kwargs):
        super().__init__(version=version, **kwargs)
        self.plan_file = plan_file
        self.init = init
        self.pr_comment = pr_comment

    def run(self, request: StageRequest) -> AdapterResult:
        stack_dir = self._stack_dir(request)

        if self.init:
            init_result = self._run(request, ["init", "-input=false", "-no-color"], cwd=stack_dir)
            if init_result.returncode != 0:
                return AdapterResult(
                    success=False,
                    diagnostics=init_result.output,
                    error_message=f"terraform init failed with exit code {init_result.returncode}",
                )

        args = ["plan", "-input=false", "-no-color", "-detailed-exitcode", f"-out={self.plan_file}"]
        var_file = self._optional(request, "var_file")
        if var_file:
            args.append(f"-var-file={var_file}")

        result = self._run(request, args, cwd=stack_dir)
        if result.returncode not in (_EXIT_NO_CHANGES, _EXIT_CHANGES):
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"terraform plan failed with exit code {result.returncode}",
            )

        artifact = PlanArtifact(
            tool="terraform",
            path=str(Path(stack_dir) / self.plan_file),
            has_changes=result.returncode == _EXIT_CHANGES,
            summary=summarize_terraform_plan(result.stdout),
        )

        annotations = []
        if self.pr_comment:
            annotations.append(Annotation(
                text=render_plan_comment(artifact, request.environment, result.stdout),
                target=AnnotationTarget.PULL_REQUEST,
                stage_name=request.stage_name,
                title=f"Terraform plan ({request.environment})",
            ))

        return AdapterResult(success=True, artifact=artifact, diagnostics=result.output,
                             annotations=annotations)


class TerraformApplyAdapter(CommandAdapter):
    """Applies a previously produced plan file."""

    name = "terraform_apply"
    executable = "terraform"

    def run(self, request: StageRequest) -> AdapterResult:
        plan = request.inputs.get("plan_artifact", ABSENT)
        if plan is ABSENT or plan is None:
            return AdapterResult(success=False, error_message="No plan artifact available; refusing to apply")

        if not plan.has_changes:
            self.logger.info(f"[{request.stage_name}] plan has no changes; nothing to apply")
            return AdapterResult(success=True, diagnostics="No changes to apply.")

        result = self._run(
            request,
            ["apply", "-input=false", "-no-color", "-auto-approve", str(Path(plan.path).resolve())],
            cwd=self._stack_dir(request),
        )
        if result.returncode != 0:
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"terraform apply failed with exit code {result.returncode}",
            )

        return AdapterResult(success=True, diagnostics=result.output)


class BicepWhatIfAdapter(CommandAdapter):
    """Runs an Azure deployment what-if for a Bicep template."""

    name = "bicep_what_if"
    executable = "az"
    scopes = ("resourceGroup", "subscription")

    _UNCHANGED = {"NoChange", "Ignore", "Unsupported"}

    def __init__(self, version: Optional[str] = None, deployment_scope: str = "resourceGroup",
                 pr_comment: bool = False, **kwargs):
        super().__init__(version=version, **kwargs)
        if deployment_scope not in self.scopes:
            raise ValueError(f"deployment_scope must be one of {', '.join(self.scopes)}, got {deployment_scope}")
        self.deployment_scope = deployment_scope
        self.pr_comment = pr_comment

    def validate_inputs(self, inputs: Dict[str, Any]) -> List[str]:
        problems = super().validate_inputs(inputs)
        if self.deployment_scope == "resourceGroup" and not inputs.get("resource_group"):
            problems.append("resource_group is required for resourceGroup scope")
        if self.deployment_scope == "subscription" and not inputs.get("location"):
            problems.append("location is required for subscription scope")
        return problems

    def build_args(self, request: StageRequest) -> List[str]:
        template_file = self._optional(request, "template_file") or "main.bicep"

        if self.deployment_scope == "subscription":
            args = ["deployment", "sub", "what-if", "--location", request.inputs["location"]]
        else:
            args = ["deployment", "group", "what-if", "--resource-group", request.inputs["resource_group"]]

        args.extend(["--template-file", template_file, "--no-pretty-print"])

        var_file = self._optional(request, "var_file")
        if var_file:
            args.extend(["--parameters", var_file])
        return args

    def run(self, request: StageRequest) -> AdapterResult:
        result = self._run(request, self.build_args(request), cwd=self._stack_dir(request))
        if result.returncode != 0:
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"az what-if failed with exit code {result.returncode}",
            )

        has_changes, summary = self._summarize(result.stdout)
        artifact = PlanArtifact(tool="bicep", path=None, has_changes=has_changes, summary=summary)

        annotations = []
        if self.pr_comment:
            annotations.append(Annotation(
                text=render_plan_comment(artifact, request.environment, result.stdout),
                target=AnnotationTarget.PULL_REQUEST,
                stage_name=request.stage_name,
                title=f"Bicep what-if ({request.environment})",
            ))

        return AdapterResult(success=True, artifact=artifact, diagnostics=result.output,
                             annotations=annotations)

    def _summarize(self, output: str):
        try:
            payload = json.loads(output)
        except ValueError:
            self.logger.warning("Could not parse what-if output as JSON; assuming changes")
            return True, ""

        counts = Counter(change.get("changeType", "Unknown") for change in payload.get("changes", []))
        has_changes = any(change_type not in self._UNCHANGED for change_type in counts)
        summary = ", ".join(f"{count} {change_type}" for change_type, count in sorted(counts.items()))
        return has_changes, summary or "No changes."
