"""Configuration schema definitions using Pydantic models."""

from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum

from ..core.interfaces import FailurePolicy


class IaCTool(str, Enum):
    """Supported infrastructure-as-code tools."""
    TERRAFORM = "terraform"
    BICEP = "bicep"


class DeploymentScope(str, Enum):
    """Azure deployment scopes for Bicep what-if."""
    RESOURCE_GROUP = "resourceGroup"
    SUBSCRIPTION = "subscription"


class ScannerType(str, Enum):
    """Supported security scanners."""
    TFSEC = "tfsec"
    CHECKOV = "checkov"
    TRIVY = "trivy"


class SeverityThreshold(str, Enum):
    """Minimum finding severity that fails a scan stage."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PipelineMetadata(BaseModel):
    """Pipeline metadata."""
    name: str = Field(..., description="Pipeline name")
    description: Optional[str] = Field(None, description="Pipeline description")
    environment: str = Field("dev", min_length=1, description="Target environment identifier")


class OptionsConfig(BaseModel):
    """Boolean gates and reporting options for the standard pipeline."""
    enable_security_scan: bool = Field(True, description="Run security scanners")
    enable_cost_estimate: bool = Field(False, description="Run cost estimation")
    enable_apply: bool = Field(False, description="Apply the plan after checks")
    enable_precommit: bool = Field(False, description="Run pre-commit hooks first")
    upload_sarif: bool = Field(False, description="Emit SARIF security reports")
    pr_comment: bool = Field(False, description="Post results as pull request comments")
    currency: str = Field("USD", description="Currency for cost estimates")
    deployment_scope: DeploymentScope = Field(DeploymentScope.RESOURCE_GROUP, description="Bicep deployment scope")
    scanners: List[ScannerType] = Field(
        default_factory=lambda: [ScannerType.TFSEC, ScannerType.CHECKOV],
        description="Security scanners to run"
    )
    fail_on_severity: SeverityThreshold = Field(SeverityThreshold.HIGH, description="Scan failure threshold")

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        """Validate ISO 4217 style currency code."""
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"currency must be a three-letter code, got {v!r}")
        return v.upper()

    @field_validator('scanners')
    @classmethod
    def validate_scanners(cls, v):
        """Reject duplicate scanners."""
        if len(set(v)) != len(v):
            raise ValueError("scanners must not contain duplicates")
        return v


class StackConfig(BaseModel):
    """Infrastructure stack location and tool settings."""
    tool: IaCTool = Field(IaCTool.TERRAFORM, description="IaC tool")
    stack_dir: str = Field(".", description="Directory containing the stack")
    repo_dir: str = Field(".", description="Repository root for pre-commit")
    var_file: Optional[str] = Field(None, description="Variable or parameter file")
    template_file: Optional[str] = Field(None, description="Bicep template file")
    resource_group: Optional[str] = Field(None, description="Azure resource group")
    location: Optional[str] = Field(None, description="Azure location for subscription scope")
    timeout_seconds: int = Field(1800, ge=1, description="Per-tool timeout in seconds")
    secrets: List[str] = Field(default_factory=list, description="Credential names forwarded to tools")
    tool_versions: Dict[str, str] = Field(default_factory=dict, description="Pinned adapter versions by adapter name")


class StageConfig(BaseModel):
    """Explicit stage definition."""
    name: str = Field(..., min_length=1, description="Stage name")
    adapter: str = Field(..., description="Registered adapter name")
    on_failure: FailurePolicy = Field(FailurePolicy.HARD_FAIL, description="Failure policy")
    enabled: bool = Field(True, description="Default enabled state")
    enabled_by: Optional[str] = Field(None, description="Option flag that enables this stage")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Adapter inputs")
    consumes: Dict[str, str] = Field(default_factory=dict, description="Input name to producing stage")
    produces: Optional[str] = Field(None, description="Artifact name")
    secrets: List[str] = Field(default_factory=list, description="Credential names")
    version: Optional[str] = Field(None, description="Pinned adapter version")
    options: Dict[str, Any] = Field(default_factory=dict, description="Adapter constructor options")


class ReportingConfig(BaseModel):
    """Annotation delivery configuration."""
    output_dir: str = Field("./reports", description="Directory for SARIF and artifact files")
    github_repository: Optional[str] = Field(None, description="owner/repo for PR comments")
    pull_request: Optional[int] = Field(None, ge=1, description="Pull request number")
    token_env: str = Field("GITHUB_TOKEN", description="Credential name holding the GitHub token")
    console: bool = Field(True, description="Echo pull request annotations to the console")

    @field_validator('github_repository')
    @classmethod
    def validate_repository(cls, v):
        """Validate owner/repo format."""
        if v is not None and v.count("/") != 1:
            raise ValueError("github_repository must look like owner/repo")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field("INFO", description="Logging level")
    format: str = Field("%(asctime)s - %(name)s - %(levelname)s - %(message)s", description="Log format")
    file_path: Optional[str] = Field(None, description="Log file path")


class PipelineConfig(BaseModel):
    """Main pipeline configuration."""
    pipeline: PipelineMetadata = Field(..., description="Pipeline metadata")
    options: OptionsConfig = Field(default_factory=OptionsConfig, description="Pipeline options")
    stack: StackConfig = Field(default_factory=StackConfig, description="Stack configuration")
    stages: Optional[List[StageConfig]] = Field(None, description="Explicit stages; standard pipeline when omitted")
    reporting: ReportingConfig = Field(default_factory=ReportingConfig, description="Reporting configuration")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")

    model_config = {
        "extra": "forbid",  # Forbid extra fields
        "validate_assignment": True,  # Validate on assignment
        "use_enum_values": True,  # Use enum values in serialization
    }

    @model_validator(mode='after')
    def validate_config_consistency(self):
        """Validate cross-field consistency."""
        if self.stages is None and self.stack.tool == IaCTool.BICEP.value:
            scope = self.options.deployment_scope
            if scope == DeploymentScope.RESOURCE_GROUP.value and not self.stack.resource_group:
                raise ValueError("stack.resource_group is required for resourceGroup deployment scope")
            if scope == DeploymentScope.SUBSCRIPTION.value and not self.stack.location:
                raise ValueError("stack.location is required for subscription deployment scope")

        if self.stages is not None:
            names = [stage.name for stage in self.stages]
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                raise ValueError(f"Duplicate stage names: {', '.join(duplicates)}")

        return self


class ValidationError(Exception):
    """Configuration validation error."""

    def __init__(self, message: str, errors: List[str] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationResult(BaseModel):
    """Result of configuration validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    config: Optional[PipelineConfig] = None
