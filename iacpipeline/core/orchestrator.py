"""Pipeline orchestrator implementation."""

import time
import logging
import uuid
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .interfaces import (
    ABSENT,
    AdapterResult,
    Annotation,
    FailurePolicy,
    PipelineResult,
    PipelineRun,
    PipelineStatus,
    Stage,
    StageAdapter,
    StageDefinition,
    StageOutcome,
    StageRequest,
    StageResult,
)
from .registry import AdapterRegistry, adapter_registry
from .errors import AdapterFailure, AnnotationFailure, ConfigurationError, ErrorHandler


StageListener = Callable[[StageResult], None]

_POLICY_VALUES = tuple(policy.value for policy in FailurePolicy)


class PipelineOrchestrator:
    """Sequential stage orchestrator with failure policies and structured logging."""

    def __init__(self, registry: Optional[AdapterRegistry] = None, annotation_dispatcher=None,
                 error_log_path: Optional[str] = None):
        self.registry = registry or adapter_registry
        self.annotation_dispatcher = annotation_dispatcher
        self.logger = self._setup_structured_logger()
        self.error_handler = ErrorHandler(error_log_path)
        self._listeners: List[StageListener] = []
        self._cancel_event = threading.Event()
        self._lock = threading.RLock()
        self._active = False

    def _setup_structured_logger(self) -> logging.Logger:
        """Setup structured logger with correlation ID support."""
        logger = logging.getLogger(self.__class__.__name__)

        class CorrelationFormatter(logging.Formatter):
            def format(self, record):
                correlation_id = getattr(threading.current_thread(), 'correlation_id', None)
                record.correlation_id = correlation_id or 'N/A'
                return super().format(record)

        formatter = CorrelationFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s'
        )

        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)

        return logger

    def add_listener(self, listener: StageListener) -> None:
        """Register a callback invoked with every recorded stage result."""
        self._listeners.append(listener)

    def cancel(self) -> None:
        """Request cancellation of the active run. Honored before the next stage starts."""
        with self._lock:
            if not self._active:
                self.logger.debug("No run in progress; ignoring cancellation request")
                return
            self._cancel_event.set()
        self.logger.warning("Cancellation requested; remaining stages will not start")

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    # ------------------------------------------------------------------ configure

    def validate_definitions(self, stage_definitions: Sequence[StageDefinition]) -> List[str]:
        """Validate the stage graph and return a list of problems."""
        errors = []
        defined: Dict[str, StageDefinition] = {}

        for definition in stage_definitions:
            if definition.name in defined:
                errors.append(f"Duplicate stage name: {definition.name}")
                continue

            for input_name, producer in definition.consumes.items():
                upstream = defined.get(producer)
                if upstream is None:
                    later = any(d.name == producer for d in stage_definitions)
                    where = "defined later in the sequence" if later else "not defined"
                    errors.append(
                        f"Stage {definition.name} input '{input_name}' consumes artifact of stage "
                        f"{producer}, which is {where}"
                    )
                elif not upstream.produces:
                    errors.append(
                        f"Stage {definition.name} input '{input_name}' consumes stage {producer}, "
                        f"which declares no artifact"
                    )

            if definition.on_failure not in _POLICY_VALUES:
                errors.append(
                    f"Stage {definition.name} has unknown failure policy: {definition.on_failure} "
                    f"(expected one of {', '.join(_POLICY_VALUES)})"
                )

            if isinstance(definition.adapter, str) and self.registry.get_adapter_class(definition.adapter) is None:
                errors.append(f"Stage {definition.name} uses unknown adapter: {definition.adapter}")

            defined[definition.name] = definition

        return errors

    def configure(self, stage_definitions: Sequence[StageDefinition],
                  enable_flags: Optional[Mapping[str, bool]] = None,
                  environment: str = "default") -> PipelineRun:
        """
        Build a pipeline run from stage definitions.

        Args:
            stage_definitions: Ordered stage definitions
            enable_flags: Boolean flags keyed by flag name or stage name
            environment: Target environment identifier

        Returns:
            PipelineRun: Run with every stage's enabled flag resolved

        Raises:
            ConfigurationError: If the stage graph is invalid
        """
        enable_flags = dict(enable_flags or {})

        errors = self.validate_definitions(stage_definitions)
        if errors:
            raise ConfigurationError(
                f"Invalid pipeline configuration: {'; '.join(errors)}",
                {"errors": errors}
            )

        stages = []
        for definition in stage_definitions:
            adapter = self._resolve_adapter(definition)

            problems = adapter.validate_inputs(definition.inputs)
            if problems:
                raise ConfigurationError(
                    f"Stage {definition.name} has invalid inputs: {'; '.join(problems)}",
                    {"stage_name": definition.name, "errors": problems}
                )

            stages.append(Stage(
                name=definition.name,
                adapter=adapter,
                enabled=self._resolve_enabled(definition, enable_flags),
                on_failure=FailurePolicy(definition.on_failure),
                inputs=dict(definition.inputs),
                consumes=dict(definition.consumes),
                produces=definition.produces,
                secrets=list(definition.secrets),
                adapter_version=definition.adapter_version or adapter.version,
            ))

        run = PipelineRun(environment=environment, stages=stages, run_id=str(uuid.uuid4()))
        self.logger.info(
            f"Configured pipeline for {environment}: "
            f"{len(run.enabled_stages)}/{len(stages)} stages enabled"
        )
        return run

    def _resolve_adapter(self, definition: StageDefinition) -> StageAdapter:
        if isinstance(definition.adapter, StageAdapter):
            return definition.adapter

        try:
            return self.registry.create_adapter(
                definition.adapter,
                version=definition.adapter_version,
                **definition.adapter_options
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Cannot create adapter {definition.adapter} for stage {definition.name}: {e}",
                {"stage_name": definition.name}
            ) from e

    @staticmethod
    def _resolve_enabled(definition: StageDefinition, enable_flags: Mapping[str, bool]) -> bool:
        if definition.enabled_by and definition.enabled_by in enable_flags:
            return bool(enable_flags[definition.enabled_by])
        if definition.name in enable_flags:
            return bool(enable_flags[definition.name])
        return definition.enabled

    # ------------------------------------------------------------------ execute

    def execute(self, run: PipelineRun) -> PipelineResult:
        """Execute enabled stages in order and return the terminal result."""
        run_id = run.run_id or str(uuid.uuid4())
        threading.current_thread().correlation_id = run_id

        self.logger.info(f"Starting pipeline run for environment: {run.environment}")

        start_time = time.time()
        artifacts: Dict[str, Any] = {}
        findings: Dict[str, list] = {}
        stage_results: List[StageResult] = []
        hard_failed = False
        soft_failed = False
        cancelled = False

        with self._lock:
            self._cancel_event.clear()
            self._active = True

        try:
            for stage in run.stages:
                if hard_failed:
                    self._record(stage_results, StageResult(stage.name, StageOutcome.NOT_RUN, stage.on_failure))
                    continue

                if cancelled or self._cancel_event.is_set():
                    if not cancelled:
                        self.logger.warning(f"Run cancelled before stage {stage.name}")
                    cancelled = True
                    self._record(stage_results, StageResult(stage.name, StageOutcome.CANCELLED, stage.on_failure))
                    continue

                if not stage.enabled:
                    self.logger.info(f"Skipping disabled stage: {stage.name}")
                    self._record(stage_results, StageResult(stage.name, StageOutcome.SKIPPED, stage.on_failure))
                    continue

                stage_result, adapter_result = self._execute_stage(stage, run, run_id, artifacts)

                if adapter_result.findings:
                    findings[stage.name] = list(adapter_result.findings)

                if stage_result.outcome == StageOutcome.SUCCEEDED:
                    if adapter_result.artifact is not None:
                        artifacts[stage.name] = adapter_result.artifact
                elif stage.on_failure == FailurePolicy.HARD_FAIL:
                    self.logger.error(f"Stage {stage.name} failed with hard_fail policy; halting pipeline")
                    hard_failed = True
                elif stage.on_failure == FailurePolicy.SOFT_FAIL:
                    self.logger.warning(f"Stage {stage.name} failed with soft_fail policy; continuing")
                    soft_failed = True
                else:
                    self.logger.info(f"Stage {stage.name} failed with report_only policy; continuing")

                self._dispatch_annotations(stage, adapter_result.annotations)
                self._record(stage_results, stage_result)
        finally:
            with self._lock:
                self._active = False
                self._cancel_event.clear()

        if hard_failed or cancelled:
            status = PipelineStatus.FAILED
        elif soft_failed:
            status = PipelineStatus.PARTIAL
        else:
            status = PipelineStatus.SUCCESS

        run.artifacts = dict(artifacts)
        run.overall_status = status
        execution_time = time.time() - start_time

        log = self.logger.info if status == PipelineStatus.SUCCESS else self.logger.warning
        log(f"Pipeline run finished with status {status.value} in {execution_time:.2f} seconds")

        return PipelineResult(
            environment=run.environment,
            overall_status=status,
            stage_results=stage_results,
            artifacts=artifacts,
            findings=findings,
            cancelled=cancelled,
            run_id=run_id,
            execution_time=execution_time,
        )

    def _execute_stage(self, stage: Stage, run: PipelineRun, run_id: str,
                       artifacts: Mapping[str, Any]) -> Tuple[StageResult, AdapterResult]:
        """Invoke a stage adapter; failures are converted into a failed result."""
        self.logger.info(f"Executing stage: {stage.name}")

        inputs = dict(stage.inputs)
        for input_name, producer in stage.consumes.items():
            inputs[input_name] = artifacts.get(producer, ABSENT)

        request = StageRequest(
            stage_name=stage.name,
            environment=run.environment,
            inputs=inputs,
            secret_names=list(stage.secrets),
            adapter_version=stage.adapter_version,
            run_id=run_id,
        )

        start_time = time.time()
        try:
            adapter_result = stage.adapter.run(request)
        except Exception as e:
            self.error_handler.classify_error(e, {'stage_name': stage.name, 'run_id': run_id})
            adapter_result = AdapterResult(
                success=False,
                diagnostics=getattr(e, 'diagnostics', ''),
                error_message=str(e),
            )
        else:
            if not adapter_result.success:
                message = adapter_result.error_message or f"Stage {stage.name} reported failure"
                self.error_handler.classify_error(
                    AdapterFailure(message, diagnostics=adapter_result.diagnostics),
                    {'stage_name': stage.name, 'run_id': run_id}
                )
                adapter_result = replace(adapter_result, error_message=message)

        duration = time.time() - start_time

        if adapter_result.success:
            self.logger.info(f"Stage {stage.name} completed successfully in {duration:.2f} seconds")

        stage_result = StageResult(
            name=stage.name,
            outcome=StageOutcome.SUCCEEDED if adapter_result.success else StageOutcome.FAILED,
            policy=stage.on_failure,
            diagnostics=adapter_result.diagnostics,
            error_message=adapter_result.error_message,
            findings=list(adapter_result.findings),
            adapter_version=stage.adapter_version,
            duration=duration,
        )
        return stage_result, adapter_result

    def _dispatch_annotations(self, stage: Stage, annotations: List[Annotation]) -> None:
        if not annotations:
            return

        if self.annotation_dispatcher is None:
            self.logger.debug(f"No annotation dispatcher configured; dropping {len(annotations)} "
                              f"annotation(s) from {stage.name}")
            return

        for annotation in annotations:
            try:
                self.annotation_dispatcher.dispatch(annotation)
            except Exception as e:
                failure = AnnotationFailure(
                    f"Annotation for {annotation.target.value} from stage {stage.name} failed: {e}"
                )
                self.logger.warning(failure.message)

    def _record(self, stage_results: List[StageResult], result: StageResult) -> None:
        stage_results.append(result)
        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                self.logger.warning(f"Stage listener failed for {result.name}: {e}")

