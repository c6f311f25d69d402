"""Stage definitions built from configuration, including the standard pipeline."""

from typing import Any, Dict, List

from ..core.interfaces import FailurePolicy, StageDefinition
from .schema import IaCTool, PipelineConfig, StageConfig


ENABLE_FLAGS = ("enable_security_scan", "enable_cost_estimate", "enable_apply", "enable_precommit")


def _value(option: Any) -> Any:
    return getattr(option, "value", option)


def enable_flags(config: PipelineConfig) -> Dict[str, bool]:
    """Boolean gates from the options section, keyed by flag name."""
    return {flag: bool(getattr(config.options, flag)) for flag in ENABLE_FLAGS}


def stage_definitions_from_config(stages: List[StageConfig]) -> List[StageDefinition]:
    """Convert explicit stage configuration into stage definitions."""
    return [
        StageDefinition(
            name=stage.name,
            adapter=stage.adapter,
            on_failure=FailurePolicy(_value(stage.on_failure)),
            enabled=stage.enabled,
            enabled_by=stage.enabled_by,
            inputs=dict(stage.inputs),
            consumes=dict(stage.consumes),
            produces=stage.produces,
            secrets=list(stage.secrets),
            adapter_version=stage.version,
            adapter_options=dict(stage.options),
        )
        for stage in stages
    ]


def build_standard_pipeline(config: PipelineConfig) -> List[StageDefinition]:
    """
    Build the standard change pipeline.

    Order: pre-commit, plan (or what-if), one stage per scanner, cost
    estimate, apply. Stages are gated by the option flags; Bicep stacks get
    a what-if stage and no cost or apply stage.
    """
    options = config.options
    stack = config.stack
    versions = stack.tool_versions
    timeout = stack.timeout_seconds
    is_bicep = _value(stack.tool) == IaCTool.BICEP.value

    stack_inputs: Dict[str, Any] = {"stack_dir": stack.stack_dir}
    if stack.var_file:
        stack_inputs["var_file"] = stack.var_file

    definitions = [
        StageDefinition(
            name="precommit",
            adapter="pre_commit",
            on_failure=FailurePolicy.SOFT_FAIL,
            enabled=False,
            enabled_by="enable_precommit",
            inputs={"repo_dir": stack.repo_dir},
            adapter_version=versions.get("pre_commit"),
            adapter_options={"timeout": timeout},
        )
    ]

    if is_bicep:
        plan_inputs = dict(stack_inputs)
        for key in ("template_file", "resource_group", "location"):
            if getattr(stack, key):
                plan_inputs[key] = getattr(stack, key)
        definitions.append(StageDefinition(
            name="plan",
            adapter="bicep_what_if",
            on_failure=FailurePolicy.HARD_FAIL,
            inputs=plan_inputs,
            produces="plan",
            secrets=list(stack.secrets),
            adapter_version=versions.get("bicep_what_if"),
            adapter_options={
                "deployment_scope": _value(options.deployment_scope),
                "pr_comment": options.pr_comment,
                "timeout": timeout,
            },
        ))
    else:
        definitions.append(StageDefinition(
            name="plan",
            adapter="terraform_plan",
            on_failure=FailurePolicy.HARD_FAIL,
            inputs=dict(stack_inputs),
            produces="plan",
            secrets=list(stack.secrets),
            adapter_version=versions.get("terraform_plan"),
            adapter_options={"pr_comment": options.pr_comment, "timeout": timeout},
        ))

    for scanner in options.scanners:
        scanner_name = _value(scanner)
        definitions.append(StageDefinition(
            name=f"scan_{scanner_name}",
            adapter=scanner_name,
            on_failure=FailurePolicy.SOFT_FAIL,
            enabled_by="enable_security_scan",
            inputs=dict(stack_inputs),
            adapter_version=versions.get(scanner_name),
            adapter_options={
                "fail_on_severity": _value(options.fail_on_severity),
                "upload_sarif": options.upload_sarif,
                "pr_comment": options.pr_comment,
                "timeout": timeout,
            },
        ))

    if is_bicep:
        return definitions

    definitions.append(StageDefinition(
        name="cost",
        adapter="infracost",
        on_failure=FailurePolicy.REPORT_ONLY,
        enabled=False,
        enabled_by="enable_cost_estimate",
        inputs=dict(stack_inputs, currency=options.currency),
        produces="cost_estimate",
        secrets=list(stack.secrets),
        adapter_version=versions.get("infracost"),
        adapter_options={"currency": options.currency, "pr_comment": options.pr_comment, "timeout": timeout},
    ))

    definitions.append(StageDefinition(
        name="apply",
        adapter="terraform_apply",
        on_failure=FailurePolicy.HARD_FAIL,
        enabled=False,
        enabled_by="enable_apply",
        inputs=dict(stack_inputs),
        consumes={"plan_artifact": "plan"},
        secrets=list(stack.secrets),
        adapter_version=versions.get("terraform_apply"),
        adapter_options={"timeout": timeout},
    ))

    return definitions


def build_stage_definitions(config: PipelineConfig) -> List[StageDefinition]:
    """Explicit stages when configured, otherwise the standard pipeline."""
    if config.stages is not None:
        return stage_definitions_from_config(config.stages)
    return build_standard_pipeline(config)
