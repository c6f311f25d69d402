"""Error taxonomy and error recording for pipeline execution."""

import time
import logging
import traceback
import uuid
from typing import Dict, Any, Optional, List
from enum import Enum
from dataclasses import dataclass
from pathlib import Path
import json


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of pipeline errors."""
    CONFIGURATION = "configuration"
    ADAPTER = "adapter"
    TIMEOUT = "timeout"
    ANNOTATION = "annotation"
    CANCELLED = "cancelled"


@dataclass
class ErrorContext:
    """Context information for an error."""
    error_id: str
    timestamp: float
    stage_name: str
    run_id: str
    error_message: str
    exception_type: str
    stack_trace: str
    category: ErrorCategory
    severity: ErrorSeverity
    metadata: Dict[str, Any]


class PipelineError(Exception):
    """Base class for pipeline-specific errors."""

    def __init__(self, message: str, category: ErrorCategory, severity: ErrorSeverity,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or {}
        self.timestamp = time.time()


class ConfigurationError(PipelineError):
    """Invalid stage graph or configuration; raised before any stage executes."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCategory.CONFIGURATION, ErrorSeverity.HIGH, context)


class AdapterFailure(PipelineError):
    """External tool returned an error or a non-zero exit status."""

    def __init__(self, message: str, severity: ErrorSeverity = ErrorSeverity.HIGH,
                 context: Optional[Dict[str, Any]] = None, diagnostics: str = ""):
        super().__init__(message, ErrorCategory.ADAPTER, severity, context)
        self.diagnostics = diagnostics


class AdapterTimeout(AdapterFailure):
    """External tool did not finish within its timeout."""

    def __init__(self, message: str, timeout: Optional[float] = None,
                 context: Optional[Dict[str, Any]] = None, diagnostics: str = ""):
        super().__init__(message, ErrorSeverity.HIGH, context, diagnostics)
        self.category = ErrorCategory.TIMEOUT
        self.timeout = timeout


class AnnotationFailure(PipelineError):
    """Delivering an annotation failed. Logged only, never affects pipeline status."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCategory.ANNOTATION, ErrorSeverity.LOW, context)


class ErrorHandler:
    """Classifies, logs and keeps a history of pipeline errors."""

    def __init__(self, error_log_path: Optional[str] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.error_log_path = Path(error_log_path) if error_log_path else None
        self.error_history: List[ErrorContext] = []

        if self.error_log_path:
            self.error_log_path.parent.mkdir(parents=True, exist_ok=True)

    def classify_error(self, exception: Exception, context: Dict[str, Any]) -> ErrorContext:
        """Classify an error and create error context."""
        category, severity = self._categorize_error(exception)

        error_context = ErrorContext(
            error_id=str(uuid.uuid4()),
            timestamp=time.time(),
            stage_name=context.get('stage_name', 'unknown'),
            run_id=context.get('run_id', 'unknown'),
            error_message=str(exception),
            exception_type=type(exception).__name__,
            stack_trace=''.join(traceback.format_exception(type(exception), exception, exception.__traceback__)),
            category=category,
            severity=severity,
            metadata=context.copy()
        )

        self._log_error(error_context)
        self.error_history.append(error_context)

        return error_context

    def _categorize_error(self, exception: Exception) -> tuple[ErrorCategory, ErrorSeverity]:
        """Categorize an error based on its type."""
        if isinstance(exception, PipelineError):
            return exception.category, exception.severity

        # Anything an adapter raises that is not one of ours is still an adapter failure
        return ErrorCategory.ADAPTER, ErrorSeverity.HIGH

    def _log_error(self, error_context: ErrorContext) -> None:
        """Log error to file and logger."""
        log_entry = {
            'error_id': error_context.error_id,
            'timestamp': error_context.timestamp,
            'stage_name': error_context.stage_name,
            'run_id': error_context.run_id,
            'error_message': error_context.error_message,
            'exception_type': error_context.exception_type,
            'category': error_context.category.value,
            'severity': error_context.severity.value,
            'metadata': error_context.metadata
        }

        if error_context.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            self.logger.error(f"Pipeline error [{error_context.error_id}] in {error_context.stage_name}: "
                              f"{error_context.error_message}")
        else:
            self.logger.warning(f"Pipeline warning [{error_context.error_id}] in {error_context.stage_name}: "
                                f"{error_context.error_message}")

        if self.error_log_path:
            try:
                with open(self.error_log_path, 'a') as f:
                    f.write(json.dumps(log_entry, default=str) + '\n')
            except OSError as e:
                self.logger.error(f"Failed to write error log: {str(e)}")

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics from history."""
        if not self.error_history:
            return {"total_errors": 0}

        stats = {
            "total_errors": len(self.error_history),
            "by_category": {},
            "by_severity": {},
            "by_stage": {},
        }

        for error in self.error_history:
            category = error.category.value
            stats["by_category"][category] = stats["by_category"].get(category, 0) + 1

            severity = error.severity.value
            stats["by_severity"][severity] = stats["by_severity"].get(severity, 0) + 1

            stage = error.stage_name
            stats["by_stage"][stage] = stats["by_stage"].get(stage, 0) + 1

        return stats

    def export_error_report(self, output_path: str) -> None:
        """Export detailed error report to file."""
        report = {
            "generated_at": time.time(),
            "statistics": self.get_error_statistics(),
            "errors": [
                {
                    "error_id": error.error_id,
                    "timestamp": error.timestamp,
                    "stage_name": error.stage_name,
                    "run_id": error.run_id,
                    "error_message": error.error_message,
                    "category": error.category.value,
                    "severity": error.severity.value,
                }
                for error in self.error_history
            ]
        }

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)

        self.logger.info(f"Error report exported to {output_path}")
