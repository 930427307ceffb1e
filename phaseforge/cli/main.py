"""Main CLI entry point for PhaseForge."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from phaseforge import __version__
from phaseforge.cli.commands.check import check_command
from phaseforge.cli.commands.init import init_command
from phaseforge.cli.commands.run import run_command
from phaseforge.core.exceptions import PhaseForgeError

console = Console()


@click.group()
@click.version_option(__version__, prog_name="phaseforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[Path]) -> None:
    """PhaseForge: phased, dependency-aware build orchestrator.

    Runs a plan of phases. The modules of a phase are built concurrently,
    each through a bounded build -> validate -> fix loop, and a phase only
    starts once every module of the previous one has passed.

    \b
    Examples:
        phaseforge init                     # Write .phaseforge/config.yaml
        phaseforge check plan.yaml          # Validate a plan
        phaseforge run plan.yaml            # Run with the configured command worker
        phaseforge run plan.yaml --worker mypkg.workers:MyWorker
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]PhaseForge CLI starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(check_command, name="check")
cli.add_command(run_command, name="run")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except PhaseForgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
