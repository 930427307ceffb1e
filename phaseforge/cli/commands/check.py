"""PhaseForge check command."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from phaseforge.core.exceptions import PlanParseError
from phaseforge.core.plan_model import Plan
from phaseforge.core.plan_parser import PlanParser

console = Console()


@click.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def check_command(plan_file: Path) -> None:
    """Validate a plan and show its phases.

    Exits with status 2 when the plan is rejected.

    Examples:
        phaseforge check plan.yaml
    """
    try:
        plan = PlanParser().parse_file(plan_file)
    except PlanParseError as e:
        raise click.BadParameter(f"[{e.kind}] {e}", param_hint="PLAN_FILE")

    console.print(f"[green]✓[/green] Plan '{plan.id}' is valid")
    _display_plan(plan)


def _display_plan(plan: Plan) -> None:
    """Display the phase/module layout of a plan."""
    table = Table(title=f"Plan {plan.id}")
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Module", style="bold")
    table.add_column("Depends on")
    table.add_column("Expected artifacts", style="dim")

    for phase in plan.phases:
        for position, module in enumerate(phase.modules):
            table.add_row(
                phase.label if position == 0 else "",
                module.name,
                ", ".join(sorted(module.dependencies)) or "-",
                ", ".join(module.expected_artifacts) or "-",
            )

    console.print(table)
    console.print(
        f"[dim]{len(plan.phases)} phase(s), {len(plan.module_names)} module(s)[/dim]"
    )
