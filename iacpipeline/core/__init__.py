"""Core pipeline orchestration components."""

from .orchestrator import PipelineOrchestrator
from .interfaces import (
    ABSENT, FailurePolicy, PipelineResult, PipelineRun, PipelineStatus,
    StageAdapter, StageDefinition, StageOutcome,
)
from .registry import AdapterRegistry, adapter_registry
from .errors import AdapterFailure, AdapterTimeout, AnnotationFailure, ConfigurationError

__all__ = [
    "PipelineOrchestrator",
    "ABSENT",
    "FailurePolicy",
    "PipelineResult",
    "PipelineRun",
    "PipelineStatus",
    "StageAdapter",
    "StageDefinition",
    "StageOutcome",
    "AdapterRegistry",
    "adapter_registry",
    "AdapterFailure",
    "AdapterTimeout",
    "AnnotationFailure",
    "ConfigurationError",
]
