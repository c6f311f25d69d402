"""Core interfaces and data model for pipeline stages and runs."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import logging


class FailurePolicy(str, Enum):
    """How a stage failure affects the rest of the pipeline."""
    HARD_FAIL = "hard_fail"
    SOFT_FAIL = "soft_fail"
    REPORT_ONLY = "report_only"


class PipelineStatus(str, Enum):
    """Overall pipeline status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class StageOutcome(str, Enum):
    """Recorded outcome of a single stage."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"
    CANCELLED = "cancelled"


class AnnotationTarget(str, Enum):
    """Where an annotation is delivered."""
    PULL_REQUEST = "pull_request"
    SECURITY_REPORT = "security_report"
    ARTIFACT_STORE = "artifact_store"


class Severity(str, Enum):
    """Scan finding severity, ordered from least to most severe."""
    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def parse(cls, value: Optional[str]) -> "Severity":
        """Map a tool-specific severity string onto the enum."""
        if not value:
            return cls.UNKNOWN
        normalized = str(value).strip().lower()
        if normalized in ("error", "severe"):
            return cls.HIGH
        if normalized in ("warning", "moderate"):
            return cls.MEDIUM
        if normalized in ("info", "informational", "note"):
            return cls.LOW
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


_SEVERITY_ORDER = [Severity.UNKNOWN, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class _Absent:
    """Sentinel for a consumed artifact that was never produced."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class ScanFinding:
    """A single security scanner finding."""
    severity: Severity
    rule_id: str
    message: str
    location: str
    scanner: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "rule_id": self.rule_id,
            "message": self.message,
            "location": self.location,
            "scanner": self.scanner,
        }


@dataclass(frozen=True)
class CostEstimate:
    """Monthly cost estimate for a stack."""
    currency: str
    monthly_estimate: Decimal
    breakdown: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "monthly_estimate": str(self.monthly_estimate),
            "breakdown": {k: str(v) for k, v in self.breakdown.items()},
        }


@dataclass(frozen=True)
class PlanArtifact:
    """Output of a plan or what-if stage."""
    tool: str
    path: Optional[str]
    has_changes: bool
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool,
            "path": self.path,
            "has_changes": self.has_changes,
            "summary": self.summary,
        }


@dataclass(frozen=True)
class Annotation:
    """Human-readable side-channel output of a stage."""
    text: str
    target: AnnotationTarget
    stage_name: str = ""
    title: Optional[str] = None


@dataclass
class StageRequest:
    """Everything an adapter receives for one stage invocation."""
    stage_name: str
    environment: str
    inputs: Dict[str, Any]
    secret_names: List[str] = field(default_factory=list)
    adapter_version: Optional[str] = None
    run_id: str = ""


@dataclass
class AdapterResult:
    """Terminal result of one adapter invocation."""
    success: bool
    artifact: Any = None
    findings: List[ScanFinding] = field(default_factory=list)
    cost_estimate: Optional[CostEstimate] = None
    diagnostics: str = ""
    annotations: List[Annotation] = field(default_factory=list)
    error_message: Optional[str] = None


class StageAdapter(ABC):
    """Abstract base class for external tool adapters."""

    name: str = "adapter"

    def __init__(self, version: Optional[str] = None):
        self.version = version
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def run(self, request: StageRequest) -> AdapterResult:
        """Invoke the external tool and return its terminal result."""
        pass

    def validate_inputs(self, inputs: Dict[str, Any]) -> List[str]:
        """Return problems with the statically configured inputs (optional override)."""
        return []


@dataclass
class StageDefinition:
    """Configuration-time description of a pipeline stage."""
    name: str
    adapter: Union[str, StageAdapter]
    on_failure: FailurePolicy = FailurePolicy.HARD_FAIL
    enabled: bool = True
    enabled_by: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    consumes: Dict[str, str] = field(default_factory=dict)
    produces: Optional[str] = None
    secrets: List[str] = field(default_factory=list)
    adapter_version: Optional[str] = None
    adapter_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Stage:
    """A stage resolved for one pipeline run."""
    name: str
    adapter: StageAdapter
    enabled: bool
    on_failure: FailurePolicy
    inputs: Dict[str, Any] = field(default_factory=dict)
    consumes: Dict[str, str] = field(default_factory=dict)
    produces: Optional[str] = None
    secrets: List[str] = field(default_factory=list)
    adapter_version: Optional[str] = None


@dataclass
class PipelineRun:
    """An ordered sequence of stages for one invocation."""
    environment: str
    stages: List[Stage]
    run_id: str = ""
    artifacts: Dict[str, Any] = field(default_factory=dict)
    overall_status: PipelineStatus = PipelineStatus.PENDING

    @property
    def enabled_stages(self) -> List[Stage]:
        return [stage for stage in self.stages if stage.enabled]


@dataclass
class StageResult:
    """Recorded result of one stage within a run."""
    name: str
    outcome: StageOutcome
    policy: FailurePolicy
    diagnostics: str = ""
    error_message: Optional[str] = None
    findings: List[ScanFinding] = field(default_factory=list)
    adapter_version: Optional[str] = None
    duration: float = field(default=0.0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "policy": self.policy.value,
            "error_message": self.error_message,
            "findings": [finding.to_dict() for finding in self.findings],
            "adapter_version": self.adapter_version,
            "duration": round(self.duration, 3),
        }


@dataclass
class PipelineResult:
    """Terminal result of a pipeline run."""
    environment: str
    overall_status: PipelineStatus
    stage_results: List[StageResult] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    findings: Dict[str, List[ScanFinding]] = field(default_factory=dict)
    cancelled: bool = False
    run_id: str = field(default="", compare=False)
    execution_time: float = field(default=0.0, compare=False)

    @property
    def success(self) -> bool:
        return self.overall_status == PipelineStatus.SUCCESS

    def stage_result(self, name: str) -> Optional[StageResult]:
        return next((r for r in self.stage_results if r.name == name), None)

    def executed_stages(self) -> List[str]:
        """Names of stages whose adapter actually ran."""
        return [
            r.name for r in self.stage_results
            if r.outcome in (StageOutcome.SUCCEEDED, StageOutcome.FAILED)
        ]

    def to_dict(self) -> Dict[str, Any]:
        artifacts = {}
        for name, artifact in self.artifacts.items():
            artifacts[name] = artifact.to_dict() if hasattr(artifact, "to_dict") else repr(artifact)

        return {
            "run_id": self.run_id,
            "environment": self.environment,
            "overall_status": self.overall_status.value,
            "cancelled": self.cancelled,
            "execution_time": round(self.execution_time, 3),
            "stages": [r.to_dict() for r in self.stage_results],
            "artifacts": artifacts,
        }
