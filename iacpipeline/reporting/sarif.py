"""SARIF 2.1.0 report generation for scanner findings."""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.interfaces import ScanFinding, Severity


SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"
SARIF_VERSION = "2.1.0"

_LEVELS = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
    Severity.UNKNOWN: "none",
}


def severity_to_level(severity: Severity) -> str:
    """Map a finding severity onto a SARIF result level."""
    return _LEVELS.get(severity, "none")


def split_location(location: str) -> Tuple[str, Optional[int]]:
    """Split ``path:line`` into its parts; the line is optional."""
    if not location:
        return "", None
    path, sep, line = location.rpartition(":")
    if sep and line.isdigit():
        return path, int(line)
    return location, None


def build_sarif(findings: Sequence[ScanFinding], tool_name: str,
                tool_version: Optional[str] = None,
                information_uri: Optional[str] = None) -> Dict[str, Any]:
    """Build a SARIF document with one run for a single scanner."""
    rules: Dict[str, Dict[str, Any]] = {}
    results: List[Dict[str, Any]] = []

    for finding in findings:
        if finding.rule_id not in rules:
            rules[finding.rule_id] = {
                "id": finding.rule_id,
                "shortDescription": {"text": finding.message or finding.rule_id},
                "properties": {"severity": finding.severity.value},
            }

        result: Dict[str, Any] = {
            "ruleId": finding.rule_id,
            "level": severity_to_level(finding.severity),
            "message": {"text": finding.message or finding.rule_id},
        }

        path, line = split_location(finding.location)
        if path:
            physical: Dict[str, Any] = {"artifactLocation": {"uri": path}}
            if line is not None and line > 0:
                physical["region"] = {"startLine": line}
            result["locations"] = [{"physicalLocation": physical}]

        results.append(result)

    driver: Dict[str, Any] = {"name": tool_name, "rules": list(rules.values())}
    if tool_version:
        driver["version"] = tool_version
    if information_uri:
        driver["informationUri"] = information_uri

    return {
        "$schema": SARIF_SCHEMA,
        "version": SARIF_VERSION,
        "runs": [{"tool": {"driver": driver}, "results": results}],
    }


def dumps_sarif(findings: Sequence[ScanFinding], tool_name: str, **kwargs) -> str:
    return json.dumps(build_sarif(findings, tool_name, **kwargs), indent=2)
