"""PhaseForge run command."""

import importlib
import threading
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from phaseforge.config.loader import load_config
from phaseforge.core.exceptions import ConfigurationError, PlanParseError
from phaseforge.core.module_state import ModuleState
from phaseforge.core.state_persistence import StatePersistence
from phaseforge.core.worker import Worker
from phaseforge.orchestrator.orchestrator import Orchestrator
from phaseforge.orchestrator.report import BuildReport, RunStatus
from phaseforge.tracking.activity_logger import ActivityLogger, new_session_id
from phaseforge.workers.command_worker import CommandWorker

console = Console()

_PARSE_ERROR_KINDS = {
    PlanParseError.DANGLING_DEPENDENCY,
    PlanParseError.DUPLICATE_MODULE,
    PlanParseError.EMPTY_PLAN,
    PlanParseError.INVALID_DOCUMENT,
}

_STATE_STYLES = {
    ModuleState.PASSED: "green",
    ModuleState.FAILED: "red",
    ModuleState.PENDING: "dim",
}


@click.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--worker",
    "-w",
    "worker_ref",
    type=str,
    help="Worker to use, as 'module:attribute' (class, factory or instance)",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.option("--resume", is_flag=True, help="Skip modules that passed in an earlier run")
@click.pass_context
def run_command(
    ctx: click.Context,
    plan_file: Path,
    worker_ref: Optional[str],
    config_path: Optional[Path],
    as_json: bool,
    resume: bool,
) -> None:
    """Run a plan.

    Exits 0 only when the run is done and every module and the integration
    unit passed, 1 otherwise, and 2 when the plan is rejected.

    Examples:
        phaseforge run plan.yaml
        phaseforge run plan.yaml --worker mypkg.workers:MyWorker --json
        phaseforge run plan.yaml --resume
    """
    obj = ctx.obj or {}
    verbose = obj.get("verbose", False)

    try:
        config = load_config(config_path=config_path or obj.get("config"))
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    if worker_ref:
        worker = load_worker(worker_ref)
    else:
        try:
            timeout = float(
                max(config.pool.timeout_seconds(role) for role in ("build", "validate", "fix"))
            )
            worker = CommandWorker.from_config(config.worker, timeout=timeout)
        except ConfigurationError as e:
            raise click.ClickException(f"No worker available: {e}. Pass --worker or configure one.")

    activity_logger = None
    if config.logging.enabled:
        activity_logger = ActivityLogger(
            new_session_id(), config.get_log_dir(), level=config.logging.level
        )

    persistence = None
    if config.state.persist or resume:
        persistence = StatePersistence(config.get_state_dir())

    orchestrator = Orchestrator(
        worker,
        config=config,
        activity_logger=activity_logger,
        persistence=persistence,
    )

    if verbose and not as_json:
        console.print(f"[dim]Running {plan_file} with {type(worker).__name__}[/dim]")

    report = _run_interruptible(orchestrator, plan_file, resume)

    if report.error_kind in _PARSE_ERROR_KINDS:
        raise click.BadParameter(f"[{report.error_kind}] {report.error}", param_hint="PLAN_FILE")

    if as_json:
        click.echo(report.to_json())
    else:
        _display_report(report)
        if activity_logger and verbose:
            console.print(f"[dim]Activity log:[/dim] {activity_logger.main_log_file}")

    ctx.exit(report.exit_code())


def load_worker(reference: str) -> Worker:
    """Resolve a 'module:attribute' reference to a worker instance.

    Classes and other callables without the worker methods are called with
    no arguments to produce the worker.

    Raises:
        click.BadParameter: If the reference cannot be resolved
    """
    module_name, sep, attr_path = reference.partition(":")
    if not sep or not module_name or not attr_path:
        raise click.BadParameter(
            f"Expected 'module:attribute', got '{reference}'", param_hint="--worker"
        )

    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(
            f"Cannot import '{module_name}': {e}", param_hint="--worker"
        ) from e

    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise click.BadParameter(
                f"'{module_name}' has no attribute '{attr_path}'", param_hint="--worker"
            ) from e

    if isinstance(target, type) or not isinstance(target, Worker):
        if not callable(target):
            raise click.BadParameter(f"'{reference}' is not a worker", param_hint="--worker")
        target = target()

    if not isinstance(target, Worker):
        raise click.BadParameter(
            f"'{reference}' does not provide build, validate and fix", param_hint="--worker"
        )
    return target


def _run_interruptible(orchestrator: Orchestrator, plan_file: Path, resume: bool) -> BuildReport:
    """Run on a background thread so Ctrl-C can cancel the run cleanly."""
    result = {}

    def target() -> None:
        try:
            result["report"] = orchestrator.run(plan_file, resume=resume)
        except Exception as e:
            result["error"] = e

    thread = threading.Thread(target=target, name="phaseforge-run", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(timeout=0.2)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelling: waiting for in-flight modules to stop[/yellow]")
        orchestrator.cancel()
        thread.join()

    if "error" in result:
        raise result["error"]
    if "report" not in result:
        raise click.ClickException("Run ended without a report")
    return result["report"]


def _display_report(report: BuildReport) -> None:
    """Display the build report as a table."""
    table = Table(title=f"Plan {report.plan_id}")
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Module", style="bold")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="dim")

    for phase in report.phases:
        label = phase.name or f"phase-{phase.index}"
        for position, module in enumerate(phase.modules):
            table.add_row(
                label if position == 0 else "",
                module.name,
                _styled_state(module.final_state),
                str(module.attempts),
                escape(module.error or ""),
            )

    table.add_row(
        "integration",
        report.integration.name,
        _styled_state(report.integration.final_state),
        str(report.integration.attempts),
        escape(report.integration.error or ""),
    )
    console.print(table)

    if report.overall_status == RunStatus.DONE:
        body = f"[green]Done[/green] in {report.duration_seconds:.1f}s"
        border = "green"
    else:
        body = f"[red]Aborted[/red] after {report.duration_seconds:.1f}s\n{escape(report.error or '')}"
        border = "red"
    console.print(Panel(body, title="Build", border_style=border))


def _styled_state(state: ModuleState) -> str:
    style = _STATE_STYLES.get(state, "yellow")
    return f"[{style}]{state.value}[/{style}]"
