"""Security scanner adapters: tfsec, Checkov and Trivy."""

import json
import os
from abc import abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.interfaces import (
    AdapterResult,
    Annotation,
    AnnotationTarget,
    ScanFinding,
    Severity,
    StageRequest,
)
from ..reporting.comments import render_findings_comment
from ..reporting.sarif import dumps_sarif
from .base import CommandAdapter, CommandResult


class ScannerAdapter(CommandAdapter):
    """
    Base class for scanners that emit JSON findings.

    The stage fails when any finding is at or above ``fail_on_severity``.
    Findings are returned either way so soft-fail stages still report them.
    """

    display_name: str = "scanner"
    information_uri: Optional[str] = None
    accepted_exit_codes = (0, 1)

    def __init__(self, version: Optional[str] = None, fail_on_severity: str = "high",
                 upload_sarif: bool = False, pr_comment: bool = False, **kwargs):
        super().__init__(version=version, **kwargs)
        self.fail_on = Severity.parse(fail_on_severity)
        if self.fail_on == Severity.UNKNOWN:
            raise ValueError(f"Unknown fail_on_severity: {fail_on_severity}")
        self.upload_sarif = upload_sarif
        self.pr_comment = pr_comment

    @abstractmethod
    def build_args(self, request: StageRequest) -> List[str]:
        """Command-line arguments after the executable."""
        pass

    @abstractmethod
    def parse_findings(self, payload: Any, stack_dir: str) -> List[ScanFinding]:
        """Convert the tool's JSON report into findings."""
        pass

    def _var_file(self, request: StageRequest) -> Optional[str]:
        """The var file, resolved against the stack directory when relative, as terraform reads it."""
        var_file = self._optional(request, "var_file")
        if not var_file or Path(var_file).is_absolute():
            return var_file
        return str(Path(self._stack_dir(request)) / var_file)

    def run(self, request: StageRequest) -> AdapterResult:
        stack_dir = self._stack_dir(request)
        result = self._run(request, self.build_args(request))

        try:
            payload = self._load_report(result)
        except ValueError as e:
            return AdapterResult(
                success=False,
                diagnostics=result.output,
                error_message=f"{self.display_name} exited with {result.returncode}: {e}",
            )

        findings = self.parse_findings(payload, stack_dir)
        blocking = [f for f in findings if f.severity.rank >= self.fail_on.rank]

        self.logger.info(f"[{request.stage_name}] {self.display_name} reported {len(findings)} finding(s), "
                         f"{len(blocking)} at or above {self.fail_on.value}")

        return AdapterResult(
            success=not blocking,
            findings=findings,
            diagnostics=result.stderr.strip(),
            annotations=self._annotations(request, findings),
            error_message=(
                f"{len(blocking)} finding(s) at or above {self.fail_on.value} severity" if blocking else None
            ),
        )

    def _load_report(self, result: CommandResult) -> Any:
        if result.returncode not in self.accepted_exit_codes:
            raise ValueError("unexpected exit status")
        if not result.stdout.strip():
            raise ValueError("no report on stdout")
        return json.loads(result.stdout)

    def _annotations(self, request: StageRequest, findings: List[ScanFinding]) -> List[Annotation]:
        annotations = []
        if self.upload_sarif:
            annotations.append(Annotation(
                text=dumps_sarif(findings, self.display_name, tool_version=self.version,
                                 information_uri=self.information_uri),
                target=AnnotationTarget.SECURITY_REPORT,
                stage_name=request.stage_name,
                title=f"{request.stage_name}-{self.name}",
            ))
        if self.pr_comment:
            annotations.append(Annotation(
                text=render_findings_comment(findings, self.display_name, self.fail_on),
                target=AnnotationTarget.PULL_REQUEST,
                stage_name=request.stage_name,
                title=f"{self.display_name} ({request.environment})",
            ))
        return annotations

    @staticmethod
    def _location(path: Optional[str], line: Optional[int], stack_dir: str) -> str:
        if not path:
            return ""
        if os.path.isabs(path) and os.path.isabs(stack_dir):
            try:
                path = os.path.relpath(path, stack_dir)
            except ValueError:
                pass
        return f"{path}:{line}" if line else path


class TfsecAdapter(ScannerAdapter):
    """Runs tfsec against a Terraform stack."""

    name = "tfsec"
    display_name = "tfsec"
    executable = "tfsec"
    information_uri = "https://github.com/aquasecurity/tfsec"

    def build_args(self, request: StageRequest) -> List[str]:
        args = [self._stack_dir(request), "--format", "json", "--no-colour"]
        var_file = self._var_file(request)
        if var_file:
            args.extend(["--tfvars-file", var_file])
        return args

    def parse_findings(self, payload: Any, stack_dir: str) -> List[ScanFinding]:
        findings = []
        for item in payload.get("results") or []:
            location = item.get("location") or {}
            findings.append(ScanFinding(
                severity=Severity.parse(item.get("severity")),
                rule_id=item.get("long_id") or item.get("rule_id", "unknown"),
                message=item.get("description") or item.get("rule_description", ""),
                location=self._location(location.get("filename"), location.get("start_line"), stack_dir),
                scanner=self.name,
            ))
        return findings


class CheckovAdapter(ScannerAdapter):
    """Runs Checkov against a stack directory."""

    name = "checkov"
    display_name = "Checkov"
    executable = "checkov"
    information_uri = "https://www.checkov.io"

    def __init__(self, version: Optional[str] = None, default_severity: str = "medium", **kwargs):
        super().__init__(version=version, **kwargs)
        # Checkov leaves severity empty unless connected to a platform API key
        self.default_severity = Severity.parse(default_severity)

    def build_args(self, request: StageRequest) -> List[str]:
        args = ["-d", self._stack_dir(request), "-o", "json", "--quiet", "--compact"]
        var_file = self._var_file(request)
        if var_file:
            args.extend(["--var-file", var_file])
        return args

    def parse_findings(self, payload: Any, stack_dir: str) -> List[ScanFinding]:
        reports = payload if isinstance(payload, list) else [payload]
        findings = []
        for report in reports:
            results = report.get("results") or {}
            for check in results.get("failed_checks") or []:
                line_range = check.get("file_line_range") or []
                severity = Severity.parse(check.get("severity"))
                if severity == Severity.UNKNOWN:
                    severity = self.default_severity
                message = check.get("check_name", "")
                if check.get("resource"):
                    message = f"{message} ({check['resource']})"
                findings.append(ScanFinding(
                    severity=severity,
                    rule_id=check.get("check_id", "unknown"),
                    message=message,
                    location=self._location(check.get("file_path"), line_range[0] if line_range else None,
                                            stack_dir),
                    scanner=self.name,
                ))
        return findings


class TrivyAdapter(ScannerAdapter):
    """Runs ``trivy config`` misconfiguration scanning."""

    name = "trivy"
    display_name = "Trivy"
    executable = "trivy"
    information_uri = "https://trivy.dev"

    def build_args(self, request: StageRequest) -> List[str]:
        args = ["config", "--format", "json", "--quiet"]
        var_file = self._var_file(request)
        if var_file:
            args.extend(["--tf-vars", var_file])
        args.append(self._stack_dir(request))
        return args

    def parse_findings(self, payload: Any, stack_dir: str) -> List[ScanFinding]:
        findings = []
        for target in payload.get("Results") or []:
            for item in target.get("Misconfigurations") or []:
                cause: Dict[str, Any] = item.get("CauseMetadata") or {}
                findings.append(ScanFinding(
                    severity=Severity.parse(item.get("Severity")),
                    rule_id=item.get("ID") or item.get("AVDID", "unknown"),
                    message=item.get("Message") or item.get("Title", ""),
                    location=self._location(target.get("Target"), cause.get("StartLine"), stack_dir),
                    scanner=self.name,
                ))
        return findings
