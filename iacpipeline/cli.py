"""Command-line interface for IaC Pipeline."""

import click
import json
import logging
import signal
import sys
import yaml
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .config.manager import ConfigManager
from .config.schema import PipelineConfig, ValidationError
from .core.errors import ConfigurationError
from .core.interfaces import (
    Annotation, AnnotationTarget, PipelineResult, PipelineRun, PipelineStatus, StageOutcome, StageResult,
)
from .core.orchestrator import PipelineOrchestrator
from .core.registry import adapter_registry
from .reporting.annotations import AnnotationDispatcher, ConsoleSink, FileReportSink, GitHubCommentSink
from .reporting.comments import format_amount, render_pipeline_summary
from . import adapters  # noqa: F401  registers the built-in adapters


console = Console()

_OUTCOME_STYLES = {
    StageOutcome.SUCCEEDED: "[green]✓ succeeded[/green]",
    StageOutcome.FAILED: "[red]✗ failed[/red]",
    StageOutcome.SKIPPED: "[dim]- skipped[/dim]",
    StageOutcome.NOT_RUN: "[yellow]⊘ not run[/yellow]",
    StageOutcome.CANCELLED: "[yellow]⊘ cancelled[/yellow]",
}

_STATUS_STYLES = {
    PipelineStatus.SUCCESS: "bold green",
    PipelineStatus.PARTIAL: "bold yellow",
    PipelineStatus.FAILED: "bold red",
    PipelineStatus.PENDING: "dim",
}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        logging.getLogger().addHandler(file_handler)


@click.group(invoke_without_command=True)
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.option('--version', is_flag=True, help='Show version and exit')
@click.pass_context
def cli(ctx, verbose: bool, log_file: Optional[str], version: bool):
    """IaC Pipeline - plan, scan, estimate and apply infrastructure changes."""
    if version:
        console.print(f"IaC Pipeline version {__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        return

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['log_file'] = log_file

    setup_logging(verbose, log_file)


@cli.command()
@click.option('--config', '-c', required=True, type=click.Path(exists=True),
              help='Path to pipeline configuration file')
@click.option('--environment', '-e', type=str, help='Override the target environment')
@click.option('--enable-security-scan/--no-enable-security-scan', default=None,
              help='Override the security scan gate')
@click.option('--enable-cost-estimate/--no-enable-cost-estimate', default=None,
              help='Override the cost estimate gate')
@click.option('--enable-apply/--no-enable-apply', default=None, help='Override the apply gate')
@click.option('--output', '-o', type=click.Path(), help='Write the pipeline result as JSON')
@click.option('--error-log', type=click.Path(), help='Append stage errors as JSON lines')
@click.option('--error-report', type=click.Path(), help='Write an error summary report as JSON')
@click.option('--dry-run', is_flag=True, help='Validate and show stages without executing')
@click.pass_context
def run(ctx, config: str, environment: Optional[str], enable_security_scan: Optional[bool],
        enable_cost_estimate: Optional[bool], enable_apply: Optional[bool], output: Optional[str],
        error_log: Optional[str], error_report: Optional[str], dry_run: bool):
    """Run the pipeline described by a configuration file."""
    try:
        with console.status("[bold green]Loading configuration..."):
            config_manager = ConfigManager()
            pipeline_config = config_manager.load_config(config)

        console.print(f"[green]✓[/green] Configuration loaded: {pipeline_config.pipeline.name}")

        flags = config_manager.enable_flags(pipeline_config)
        overrides = {
            "enable_security_scan": enable_security_scan,
            "enable_cost_estimate": enable_cost_estimate,
            "enable_apply": enable_apply,
        }
        flags.update({flag: value for flag, value in overrides.items() if value is not None})

        dispatcher = _build_dispatcher(pipeline_config)
        orchestrator = PipelineOrchestrator(annotation_dispatcher=dispatcher, error_log_path=error_log)
        pipeline_run = orchestrator.configure(
            config_manager.build_stage_definitions(pipeline_config),
            flags,
            environment or pipeline_config.pipeline.environment,
        )

        _display_stage_table(pipeline_run)

        if dry_run:
            console.print("[yellow]Dry run mode - no stages executed[/yellow]")
            return

        orchestrator.add_listener(_print_stage_result)

        previous_handlers = _install_cancel_handlers(orchestrator)
        try:
            result = orchestrator.execute(pipeline_run)
        finally:
            _restore_handlers(previous_handlers)

        dispatcher.dispatch(Annotation(
            text=render_pipeline_summary(result),
            target=AnnotationTarget.ARTIFACT_STORE,
            stage_name="pipeline",
            title="summary",
        ))

        _display_pipeline_result(result)

        if output:
            output_path = Path(output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                json.dump(result.to_dict(), f, indent=2)
            console.print(f"[green]✓[/green] Result written to {output_path}")

        if error_report:
            orchestrator.error_handler.export_error_report(error_report)
            console.print(f"[green]✓[/green] Error report written to {error_report}")

        if result.overall_status == PipelineStatus.FAILED:
            sys.exit(1)

    except (ConfigurationError, ValidationError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.option('--config', '-c', required=True, type=click.Path(exists=True),
              help='Configuration file to validate')
def validate(config: str):
    """Validate a configuration file and its stage graph."""
    config_manager = ConfigManager()

    try:
        raw_config = config_manager.resolve_variables(config_manager._load_raw_config(Path(config)) or {})
    except (ValidationError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    result = config_manager.validate_schema(raw_config)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if not result.valid:
        console.print("[red]✗[/red] Configuration is invalid:")
        for error in result.errors:
            console.print(f"  • {error}")
        sys.exit(1)

    orchestrator = PipelineOrchestrator()
    try:
        orchestrator.configure(
            config_manager.build_stage_definitions(result.config),
            config_manager.enable_flags(result.config),
            result.config.pipeline.environment,
        )
    except ConfigurationError as e:
        console.print("[red]✗[/red] Stage graph is invalid:")
        for error in e.context.get("errors", [e.message]):
            console.print(f"  • {error}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")


@cli.command()
@click.option('--config', '-c', required=True, type=click.Path(exists=True),
              help='Configuration file')
def stages(config: str):
    """Show the resolved stages for a configuration."""
    try:
        config_manager = ConfigManager()
        pipeline_config = config_manager.load_config(config)
        orchestrator = PipelineOrchestrator()
        pipeline_run = orchestrator.configure(
            config_manager.build_stage_definitions(pipeline_config),
            config_manager.enable_flags(pipeline_config),
            pipeline_config.pipeline.environment,
        )
    except (ConfigurationError, ValidationError, FileNotFoundError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    _display_stage_table(pipeline_run)


@cli.command()
@click.option('--output', '-o', type=click.Path(), default='./pipeline.yaml',
              help='Output path for the configuration template')
@click.option('--format', type=click.Choice(['yaml', 'json']), default='yaml',
              help='Configuration file format')
@click.option('--tool', type=click.Choice(['terraform', 'bicep']), default='terraform',
              help='IaC tool of the stack')
def init(output: str, format: str, tool: str):
    """Generate a configuration template."""
    output_path = Path(output)
    if output_path.exists() and not click.confirm(f"{output_path} exists. Overwrite?", default=False):
        console.print("[yellow]Aborted[/yellow]")
        return

    template = ConfigManager().get_default_config(tool)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        if format == 'yaml':
            yaml.dump(template, f, default_flow_style=False, indent=2, sort_keys=False)
        else:
            json.dump(template, f, indent=2)

    console.print(f"[green]✓[/green] Configuration template written to {output_path}")


@cli.command()
def adapters_list():
    """List registered adapters."""
    table = Table(title="Registered adapters")
    table.add_column("Name", style="cyan")
    table.add_column("Class")
    table.add_column("Executable")

    for name, adapter_class in sorted(adapter_registry.list_adapters().items()):
        table.add_row(name, adapter_class.__name__, getattr(adapter_class, "executable", "") or "-")

    console.print(table)


def _build_dispatcher(pipeline_config: PipelineConfig) -> AnnotationDispatcher:
    """Wire annotation sinks from the reporting section."""
    reporting = pipeline_config.reporting
    dispatcher = AnnotationDispatcher()

    file_sink = FileReportSink(reporting.output_dir)
    dispatcher.add_sink(AnnotationTarget.SECURITY_REPORT, file_sink)
    dispatcher.add_sink(AnnotationTarget.ARTIFACT_STORE, file_sink)

    if reporting.github_repository and reporting.pull_request:
        dispatcher.add_sink(
            AnnotationTarget.PULL_REQUEST,
            GitHubCommentSink(reporting.github_repository, reporting.pull_request, reporting.token_env)
        )
    if reporting.console:
        dispatcher.add_sink(AnnotationTarget.PULL_REQUEST, ConsoleSink(console))

    return dispatcher


def _install_cancel_handlers(orchestrator: PipelineOrchestrator):
    """Turn SIGINT/SIGTERM into a cancellation honored between stages."""
    def handle(signum, frame):
        console.print("[yellow]Cancellation requested; waiting for the current stage to finish[/yellow]")
        orchestrator.cancel()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handle)
        except ValueError:
            # Not in the main thread
            pass
    return previous


def _restore_handlers(previous):
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def _print_stage_result(result: StageResult):
    console.print(f"  {_OUTCOME_STYLES.get(result.outcome, result.outcome.value)} [bold]{result.name}[/bold]"
                  + (f" [dim]({result.duration:.1f}s)[/dim]" if result.duration else ""))


def _display_stage_table(pipeline_run: PipelineRun):
    """Display the resolved stages of a run."""
    table = Table(title=f"Stages for {pipeline_run.environment}")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Adapter")
    table.add_column("Enabled")
    table.add_column("On failure")
    table.add_column("Consumes")

    for index, stage in enumerate(pipeline_run.stages, 1):
        table.add_row(
            str(index),
            stage.name,
            stage.adapter.name + (f"@{stage.adapter_version}" if stage.adapter_version else ""),
            "[green]yes[/green]" if stage.enabled else "[dim]no[/dim]",
            stage.on_failure.value,
            ", ".join(f"{k}←{v}" for k, v in stage.consumes.items()) or "-",
        )

    console.print(table)


def _display_pipeline_result(result: PipelineResult):
    """Display the per-stage outcome list and artifacts of a finished run."""
    table = Table(title="Pipeline result")
    table.add_column("Stage", style="cyan")
    table.add_column("Outcome")
    table.add_column("Policy")
    table.add_column("Findings", justify="right")
    table.add_column("Details")

    for stage_result in result.stage_results:
        table.add_row(
            stage_result.name,
            _OUTCOME_STYLES.get(stage_result.outcome, stage_result.outcome.value),
            stage_result.policy.value,
            str(len(stage_result.findings)) if stage_result.findings else "-",
            stage_result.error_message or "",
        )

    console.print(table)

    cost = result.artifacts.get("cost")
    if cost is not None and hasattr(cost, "monthly_estimate"):
        console.print(f"[blue]Estimated monthly cost:[/blue] {format_amount(cost.monthly_estimate, cost.currency)}")

    plan = result.artifacts.get("plan")
    if plan is not None and getattr(plan, "summary", None):
        console.print(f"[blue]Plan:[/blue] {plan.summary}")

    style = _STATUS_STYLES.get(result.overall_status, "")
    status_text = f"[{style}]{result.overall_status.value.upper()}[/{style}]"
    if result.cancelled:
        status_text += " (cancelled)"
    console.print(Panel(f"Pipeline status: {status_text}  ·  {result.execution_time:.1f}s",
                        title=result.environment))


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
