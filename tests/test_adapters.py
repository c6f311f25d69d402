"""Tests for external tool adapters."""

import json
import subprocess
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest

from iacpipeline.adapters.base import CommandResult, CommandRunner
from iacpipeline.adapters.cost import InfracostAdapter, parse_breakdown, to_decimal
from iacpipeline.adapters.plan import (
    BicepWhatIfAdapter,
    TerraformApplyAdapter,
    TerraformPlanAdapter,
    summarize_terraform_plan,
)
from iacpipeline.adapters.precommit import PreCommitAdapter, failed_hooks
from iacpipeline.adapters.scanners import CheckovAdapter, TfsecAdapter, TrivyAdapter
from iacpipeline.core.credentials import StaticCredentialProvider
from iacpipeline.core.errors import AdapterFailure, AdapterTimeout
from iacpipeline.core.interfaces import (
    ABSENT,
    AnnotationTarget,
    PlanArtifact,
    Severity,
    StageRequest,
)


class FakeRunner:
    """Command runner returning scripted results in call order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def run(self, args, cwd=None, secret_names=(), env=None, timeout=None):
        self.calls.append({"args": list(args), "cwd": cwd, "secret_names": list(secret_names), "env": env})
        returncode, stdout, stderr = self.results.pop(0)
        return CommandResult(args=list(args), returncode=returncode, stdout=stdout, stderr=stderr)


def make_request(stage_name="stage", **inputs):
    inputs.setdefault("stack_dir", "infra")
    return StageRequest(stage_name=stage_name, environment="dev", inputs=inputs, secret_names=["ARM_CLIENT_ID"])


class TestCommandRunner:
    """Test subprocess wrapper."""

    def test_run_forwards_only_declared_secrets(self):
        runner = CommandRunner(
            credentials=StaticCredentialProvider({"ARM_CLIENT_ID": "id", "OTHER": "x"}),
            base_env={"PATH": "/usr/bin"},
        )
        completed = subprocess.CompletedProcess(["terraform"], 0, stdout="ok", stderr="")

        with patch("iacpipeline.adapters.base.subprocess.run", return_value=completed) as mock_run:
            result = runner.run(["terraform", "version"], secret_names=["ARM_CLIENT_ID"], env={"TF_IN_AUTOMATION": "1"})

        env = mock_run.call_args.kwargs["env"]
        assert env == {"PATH": "/usr/bin", "TF_IN_AUTOMATION": "1", "ARM_CLIENT_ID": "id"}
        assert result.returncode == 0
        assert result.output == "ok"

    def test_timeout_raises_adapter_timeout(self):
        runner = CommandRunner(base_env={})
        expired = subprocess.TimeoutExpired(["tfsec"], 5, output="partial")

        with patch("iacpipeline.adapters.base.subprocess.run", side_effect=expired):
            with pytest.raises(AdapterTimeout) as exc_info:
                runner.run(["tfsec", "."], timeout=5)

        assert exc_info.value.timeout == 5
        assert exc_info.value.diagnostics == "partial"

    def test_missing_executable_raises_adapter_failure(self):
        runner = CommandRunner(base_env={})

        with patch("iacpipeline.adapters.base.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(AdapterFailure, match="not installed"):
                runner.run(["checkov"])


class TestTerraformAdapters:
    """Test Terraform plan and apply adapters."""

    def test_plan_with_changes(self):
        runner = FakeRunner(
            (0, "Terraform initialized", ""),
            (2, "Plan: 2 to add, 1 to change, 0 to destroy.", ""),
        )
        adapter = TerraformPlanAdapter(runner=runner, pr_comment=True)

        result = adapter.run(make_request("plan", var_file="dev.tfvars"))

        assert result.success is True
        assert result.artifact.has_changes is True
        assert result.artifact.summary == "Plan: 2 to add, 1 to change, 0 to destroy"
        assert result.artifact.path.endswith("tfplan")
        assert runner.calls[0]["args"][:2] == ["terraform", "init"]
        assert "-var-file=dev.tfvars" in runner.calls[1]["args"]
        assert runner.calls[1]["cwd"] == "infra"
        assert runner.calls[1]["secret_names"] == ["ARM_CLIENT_ID"]
        assert result.annotations[0].target == AnnotationTarget.PULL_REQUEST

    def test_plan_without_changes(self):
        runner = FakeRunner((0, "No changes. Your infrastructure matches the configuration.", ""))
        adapter = TerraformPlanAdapter(runner=runner, init=False)

        result = adapter.run(make_request("plan"))

        assert result.success is True
        assert result.artifact.has_changes is False
        assert result.artifact.summary == "No changes."
        assert result.annotations == []

    def test_plan_error_exit_code(self):
        runner = FakeRunner((0, "", ""), (1, "", "Error: invalid provider"))
        adapter = TerraformPlanAdapter(runner=runner)

        result = adapter.run(make_request("plan"))

        assert result.success is False
        assert result.artifact is None
        assert "exit code 1" in result.error_message
        assert "invalid provider" in result.diagnostics

    def test_init_failure_stops_plan(self):
        runner = FakeRunner((1, "", "backend error"))
        adapter = TerraformPlanAdapter(runner=runner)

        result = adapter.run(make_request("plan"))

        assert result.success is False
        assert "init" in result.error_message
        assert len(runner.calls) == 1

    def test_summarize_terraform_plan_unknown_output(self):
        assert summarize_terraform_plan("garbage") == ""

    def test_apply_refuses_absent_plan(self):
        runner = FakeRunner()
        adapter = TerraformApplyAdapter(runner=runner)

        result = adapter.run(make_request("apply", plan_artifact=ABSENT))

        assert result.success is False
        assert "No plan artifact" in result.error_message
        assert runner.calls == []

    def test_apply_skips_plan_without_changes(self):
        runner = FakeRunner()
        adapter = TerraformApplyAdapter(runner=runner)
        plan = PlanArtifact(tool="terraform", path="infra/tfplan", has_changes=False)

        result = adapter.run(make_request("apply", plan_artifact=plan))

        assert result.success is True
        assert runner.calls == []

    def test_apply_runs_plan_file(self):
        runner = FakeRunner((0, "Apply complete!", ""))
        adapter = TerraformApplyAdapter(runner=runner)
        plan = PlanArtifact(tool="terraform", path="infra/tfplan", has_changes=True)

        result = adapter.run(make_request("apply", plan_artifact=plan))

        assert result.success is True
        args = runner.calls[0]["args"]
        assert args[:2] == ["terraform", "apply"]
        assert "-auto-approve" in args
        assert args[-1].endswith("tfplan")


class TestBicepWhatIfAdapter:
    """Test Bicep what-if adapter."""

    def test_invalid_scope(self):
        with pytest.raises(ValueError):
            BicepWhatIfAdapter(deployment_scope="tenant")

    def test_validate_inputs_per_scope(self):
        group = BicepWhatIfAdapter(deployment_scope="resourceGroup")
        sub = BicepWhatIfAdapter(deployment_scope="subscription")

        assert group.validate_inputs({"stack_dir": "infra"}) == [
            "resource_group is required for resourceGroup scope"
        ]
        assert sub.validate_inputs({"stack_dir": "infra", "location": "westeurope"}) == []

    def test_build_args_for_subscription_scope(self):
        adapter = BicepWhatIfAdapter(deployment_scope="subscription")

        args = adapter.build_args(make_request(location="westeurope", var_file="main.bicepparam"))

        assert args[:3] == ["deployment", "sub", "what-if"]
        assert "--location" in args
        assert args[-2:] == ["--parameters", "main.bicepparam"]

    def test_what_if_summary(self):
        payload = {"changes": [{"changeType": "Create"}, {"changeType": "NoChange"}, {"changeType": "Create"}]}
        runner = FakeRunner((0, json.dumps(payload), ""))
        adapter = BicepWhatIfAdapter(runner=runner)

        result = adapter.run(make_request("plan", resource_group="rg-dev"))

        assert result.success is True
        assert result.artifact.tool == "bicep"
        assert result.artifact.has_changes is True
        assert result.artifact.summary == "2 Create, 1 NoChange"
        assert runner.calls[0]["args"][:4] == ["az", "deployment", "group", "what-if"]

    def test_what_if_no_changes(self):
        runner = FakeRunner((0, json.dumps({"changes": [{"changeType": "NoChange"}]}), ""))
        adapter = BicepWhatIfAdapter(runner=runner)

        result = adapter.run(make_request("plan", resource_group="rg-dev"))

        assert result.artifact.has_changes is False


TFSEC_REPORT = {
    "results": [
        {
            "long_id": "aws-s3-enable-bucket-encryption",
            "rule_id": "AVD-AWS-0088",
            "severity": "HIGH",
            "description": "Bucket does not have encryption enabled",
            "location": {"filename": "/work/infra/s3.tf", "start_line": 12},
        },
        {
            "rule_id": "AVD-AWS-0090",
            "severity": "LOW",
            "description": "Bucket does not have versioning enabled",
            "location": {"filename": "/work/infra/s3.tf", "start_line": 20},
        },
    ]
}


class TestScannerAdapters:
    """Test security scanner adapters."""

    def test_tfsec_blocking_finding(self):
        runner = FakeRunner((1, json.dumps(TFSEC_REPORT), ""))
        adapter = TfsecAdapter(runner=runner, upload_sarif=True)

        result = adapter.run(make_request("scan", stack_dir="/work/infra"))

        assert result.success is False
        assert [f.severity for f in result.findings] == [Severity.HIGH, Severity.LOW]
        assert result.findings[0].rule_id == "aws-s3-enable-bucket-encryption"
        assert result.findings[0].location == "s3.tf:12"
        assert result.error_message == "1 finding(s) at or above high severity"
        sarif = json.loads(result.annotations[0].text)
        assert result.annotations[0].target == AnnotationTarget.SECURITY_REPORT
        assert len(sarif["runs"][0]["results"]) == 2

    def test_tfsec_threshold_not_reached(self):
        runner = FakeRunner((1, json.dumps(TFSEC_REPORT), ""))
        adapter = TfsecAdapter(runner=runner, fail_on_severity="critical")

        result = adapter.run(make_request("scan"))

        assert result.success is True
        assert len(result.findings) == 2
        assert result.annotations == []

    def test_tfsec_clean_run(self):
        runner = FakeRunner((0, json.dumps({"results": None}), ""))

        result = TfsecAdapter(runner=runner).run(make_request("scan"))

        assert result.success is True
        assert result.findings == []

    def test_scanner_unexpected_exit_code(self):
        runner = FakeRunner((2, "", "panic"))

        result = TfsecAdapter(runner=runner).run(make_request("scan"))

        assert result.success is False
        assert "exited with 2" in result.error_message

    def test_scanner_invalid_json(self):
        runner = FakeRunner((0, "not json", ""))

        result = TrivyAdapter(runner=runner).run(make_request("scan"))

        assert result.success is False

    def test_unknown_threshold_rejected(self):
        with pytest.raises(ValueError):
            TfsecAdapter(fail_on_severity="severe-ish")

    def test_checkov_list_report_with_default_severity(self):
        payload = [
            {"check_type": "terraform", "results": {"failed_checks": [
                {"check_id": "CKV_AWS_18", "check_name": "Ensure access logging", "resource": "aws_s3_bucket.logs",
                 "file_path": "/s3.tf", "file_line_range": [3, 9], "severity": None},
            ]}},
            {"check_type": "secrets", "results": {"failed_checks": []}},
        ]
        runner = FakeRunner((1, json.dumps(payload), ""))
        adapter = CheckovAdapter(runner=runner, pr_comment=True)

        result = adapter.run(make_request("scan"))

        assert result.success is True
        finding = result.findings[0]
        assert finding.severity == Severity.MEDIUM
        assert finding.rule_id == "CKV_AWS_18"
        assert finding.message == "Ensure access logging (aws_s3_bucket.logs)"
        assert finding.location == "/s3.tf:3"
        assert result.annotations[0].target == AnnotationTarget.PULL_REQUEST
        assert "CKV_AWS_18" in result.annotations[0].text

    def test_checkov_build_args(self):
        args = CheckovAdapter().build_args(make_request(var_file="dev.tfvars"))

        assert args == ["-d", "infra", "-o", "json", "--quiet", "--compact",
                        "--var-file", str(Path("infra") / "dev.tfvars")]

    def test_absolute_var_file_passed_through(self):
        var_file = str(Path("/shared/dev.tfvars").resolve())

        args = TrivyAdapter().build_args(make_request(var_file=var_file))

        assert args[args.index("--tf-vars") + 1] == var_file

    @pytest.mark.parametrize("adapter_class,report,flag", [
        (TfsecAdapter, {"results": None}, "--tfvars-file"),
        (CheckovAdapter, {"results": {}}, "--var-file"),
        (TrivyAdapter, {"Results": []}, "--tf-vars"),
    ])
    def test_scanner_reads_same_var_file_as_plan(self, adapter_class, report, flag):
        plan_runner = FakeRunner((0, "", ""), (0, "No changes.", ""))
        TerraformPlanAdapter(runner=plan_runner).run(make_request("plan", var_file="dev.tfvars"))
        plan_call = plan_runner.calls[1]
        plan_arg = next(a for a in plan_call["args"] if a.startswith("-var-file="))
        plan_file = Path(plan_call["cwd"] or ".") / plan_arg.split("=", 1)[1]

        scan_runner = FakeRunner((0, json.dumps(report), ""))
        adapter_class(runner=scan_runner).run(make_request("scan", var_file="dev.tfvars"))
        scan_call = scan_runner.calls[0]
        scan_file = Path(scan_call["cwd"] or ".") / scan_call["args"][scan_call["args"].index(flag) + 1]

        assert scan_file == plan_file == Path("infra") / "dev.tfvars"

    def test_trivy_misconfigurations(self):
        payload = {"Results": [{"Target": "main.tf", "Misconfigurations": [
            {"ID": "AVD-AZU-0013", "Severity": "CRITICAL", "Message": "Storage allows public access",
             "CauseMetadata": {"StartLine": 4}},
        ]}]}
        runner = FakeRunner((0, json.dumps(payload), ""))

        result = TrivyAdapter(runner=runner).run(make_request("scan"))

        assert result.success is False
        assert result.findings[0].severity == Severity.CRITICAL
        assert result.findings[0].location == "main.tf:4"
        assert runner.calls[0]["args"][-1] == "infra"


INFRACOST_REPORT = {
    "currency": "USD",
    "totalMonthlyCost": "130.5",
    "projects": [{"breakdown": {"resources": [
        {"name": "aws_instance.web", "resourceType": "aws_instance", "monthlyCost": "100.25"},
        {"name": "aws_instance.api", "resourceType": "aws_instance", "monthlyCost": "20"},
        {"name": "aws_s3_bucket.logs", "monthlyCost": None},
        {"name": "aws_ebs_volume.data", "resourceType": "aws_ebs_volume", "monthlyCost": "10.25"},
    ]}}],
}


class TestInfracostAdapter:
    """Test cost estimation adapter."""

    def test_parse_breakdown(self):
        estimate = parse_breakdown(INFRACOST_REPORT, "EUR")

        assert estimate.currency == "USD"
        assert estimate.monthly_estimate == Decimal("130.5")
        assert estimate.breakdown == {
            "aws_instance": Decimal("120.25"),
            "aws_s3_bucket": Decimal("0"),
            "aws_ebs_volume": Decimal("10.25"),
        }

    def test_parse_breakdown_sums_without_total(self):
        estimate = parse_breakdown({"projects": INFRACOST_REPORT["projects"]}, "EUR")

        assert estimate.currency == "EUR"
        assert estimate.monthly_estimate == Decimal("130.50")

    def test_to_decimal(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("abc") == Decimal("0")
        assert to_decimal(1.5) == Decimal("1.5")

    def test_run_produces_estimate(self):
        runner = FakeRunner((0, json.dumps(INFRACOST_REPORT), ""))
        adapter = InfracostAdapter(runner=runner, currency="EUR", pr_comment=True)
        request = make_request("cost")

        result = adapter.run(request)

        assert result.success is True
        assert result.artifact is result.cost_estimate
        assert result.artifact.monthly_estimate == Decimal("130.5")
        call = runner.calls[0]
        assert call["env"] == {"INFRACOST_CURRENCY": "EUR"}
        assert call["secret_names"] == ["ARM_CLIENT_ID", "INFRACOST_API_KEY"]
        assert request.secret_names == ["ARM_CLIENT_ID"]
        assert "130.50 USD" in result.annotations[0].text

    def test_run_failure(self):
        runner = FakeRunner((1, "", "No INFRACOST_API_KEY"))

        result = InfracostAdapter(runner=runner).run(make_request("cost"))

        assert result.success is False
        assert result.artifact is None


class TestPreCommitAdapter:
    """Test pre-commit adapter."""

    def test_failed_hooks(self):
        output = "terraform_fmt............................................Failed\n" \
                 "terraform_validate.......................................Passed\n"

        assert failed_hooks(output) == ["terraform_fmt"]

    def test_run_failure_lists_hooks(self):
        runner = FakeRunner((1, "terraform_fmt..........Failed\n", ""))
        adapter = PreCommitAdapter(runner=runner)

        result = adapter.run(make_request("precommit", repo_dir="."))

        assert result.success is False
        assert result.error_message == "pre-commit hooks failed: terraform_fmt"
        assert runner.calls[0]["cwd"] == "."
        assert runner.calls[0]["args"][-1] == "--all-files"

    def test_no_required_inputs(self):
        assert PreCommitAdapter().validate_inputs({}) == []
