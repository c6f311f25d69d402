"""End-to-end tests of the standard pipeline with external tools stubbed out."""

import json
import subprocess
import tempfile
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from iacpipeline.config.presets import build_stage_definitions, enable_flags
from iacpipeline.config.schema import PipelineConfig
from iacpipeline.core.interfaces import (
    AnnotationTarget,
    CostEstimate,
    PipelineStatus,
    PlanArtifact,
    StageOutcome,
)
from iacpipeline.core.orchestrator import PipelineOrchestrator
from iacpipeline.reporting.annotations import AnnotationDispatcher, FileReportSink


TFSEC_OUTPUT = json.dumps({"results": [{
    "long_id": "azure-storage-no-public-access",
    "severity": "HIGH",
    "description": "Storage container allows public access",
    "location": {"filename": "storage.tf", "start_line": 7},
}]})

CHECKOV_OUTPUT = json.dumps({"results": {"failed_checks": []}})

INFRACOST_OUTPUT = json.dumps({
    "currency": "USD",
    "totalMonthlyCost": "73.00",
    "projects": [{"breakdown": {"resources": [
        {"name": "azurerm_linux_virtual_machine.vm", "resourceType": "azurerm_linux_virtual_machine",
         "monthlyCost": "73.00"},
    ]}}],
})


class FakeTools:
    """Stand-in for subprocess.run keyed on the tool and subcommand."""

    def __init__(self, plan_exit=2):
        self.plan_exit = plan_exit
        self.commands = []

    def __call__(self, args, **kwargs):
        self.commands.append(list(args))
        tool = args[0]
        if tool == "terraform" and args[1] == "init":
            return subprocess.CompletedProcess(args, 0, stdout="Terraform has been initialized!", stderr="")
        if tool == "terraform" and args[1] == "plan":
            stdout = "Plan: 1 to add, 0 to change, 0 to destroy." if self.plan_exit == 2 else ""
            return subprocess.CompletedProcess(args, self.plan_exit, stdout=stdout, stderr="")
        if tool == "terraform" and args[1] == "apply":
            return subprocess.CompletedProcess(args, 0, stdout="Apply complete!", stderr="")
        if tool == "tfsec":
            return subprocess.CompletedProcess(args, 1, stdout=TFSEC_OUTPUT, stderr="")
        if tool == "checkov":
            return subprocess.CompletedProcess(args, 0, stdout=CHECKOV_OUTPUT, stderr="")
        if tool == "infracost":
            return subprocess.CompletedProcess(args, 0, stdout=INFRACOST_OUTPUT, stderr="")
        raise FileNotFoundError(tool)

    def ran(self, tool, subcommand=None):
        return any(c[0] == tool and (subcommand is None or c[1] == subcommand) for c in self.commands)


class TestStandardPipelineEndToEnd:
    """Test the standard pipeline through every layer."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.dispatcher = AnnotationDispatcher()
        self.sink = FileReportSink(self.temp_dir)
        self.dispatcher.add_sink(AnnotationTarget.SECURITY_REPORT, self.sink)
        self.orchestrator = PipelineOrchestrator(annotation_dispatcher=self.dispatcher)

    def _run(self, tools, **options):
        config = PipelineConfig(
            pipeline={"name": "e2e", "environment": "dev"},
            options=dict({"upload_sarif": True}, **options),
            stack={"stack_dir": self.temp_dir},
        )
        run = self.orchestrator.configure(build_stage_definitions(config), enable_flags(config), "dev")
        with patch("iacpipeline.adapters.base.subprocess.run", side_effect=tools):
            return self.orchestrator.execute(run)

    def test_plan_scan_cost(self):
        tools = FakeTools()

        result = self._run(tools, enable_cost_estimate=True)

        assert result.overall_status == PipelineStatus.PARTIAL
        assert result.stage_result("scan_tfsec").outcome == StageOutcome.FAILED
        assert result.stage_result("scan_checkov").outcome == StageOutcome.SUCCEEDED
        assert result.stage_result("apply").outcome == StageOutcome.SKIPPED
        assert isinstance(result.artifacts["plan"], PlanArtifact)
        assert result.artifacts["plan"].has_changes is True
        assert isinstance(result.artifacts["cost"], CostEstimate)
        assert result.artifacts["cost"].monthly_estimate == Decimal("73.00")
        assert result.findings["scan_tfsec"][0].rule_id == "azure-storage-no-public-access"
        assert not tools.ran("terraform", "apply")

        sarif_files = sorted(p.name for p in self.sink.written)
        assert sarif_files == ["scan_checkov-checkov.sarif", "scan_tfsec-tfsec.sarif"]

    def test_security_scan_disabled(self):
        tools = FakeTools()

        result = self._run(tools, enable_security_scan=False)

        assert result.overall_status == PipelineStatus.SUCCESS
        assert not tools.ran("tfsec")
        assert not tools.ran("checkov")
        assert not tools.ran("infracost")
        assert list(result.artifacts) == ["plan"]
        assert self.sink.written == []

    def test_apply_uses_plan_artifact(self):
        tools = FakeTools()

        result = self._run(tools, enable_security_scan=False, enable_apply=True)

        assert result.overall_status == PipelineStatus.SUCCESS
        apply_command = next(c for c in tools.commands if c[:2] == ["terraform", "apply"])
        assert apply_command[-1] == str((Path(self.temp_dir) / "tfplan").resolve())

    def test_apply_skips_when_no_changes(self):
        tools = FakeTools(plan_exit=0)

        result = self._run(tools, enable_security_scan=False, enable_apply=True)

        assert result.overall_status == PipelineStatus.SUCCESS
        assert result.artifacts["plan"].has_changes is False
        assert not tools.ran("terraform", "apply")

    def test_missing_tool_fails_soft_stage_only(self):
        tools = FakeTools()

        result = self._run(tools, scanners=["trivy"])

        assert result.overall_status == PipelineStatus.PARTIAL
        assert "not installed" in result.stage_result("scan_trivy").error_message
