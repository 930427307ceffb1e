"""PhaseForge init command."""

from pathlib import Path

import click
import yaml
from rich.console import Console

from phaseforge.config.loader import CONFIG_DIR_NAME, CONFIG_FILE_NAME, create_default_config, save_config
from phaseforge.core.exceptions import ConfigurationError

console = Console()


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite an existing configuration",
)
def init_command(force: bool) -> None:
    """Initialize PhaseForge in the current project.

    Creates a .phaseforge directory with a default configuration and an
    example plan.

    Examples:
        phaseforge init                # Initialize with default settings
        phaseforge init --force        # Rewrite the default configuration
    """
    project_root = Path.cwd()
    config_dir = project_root / CONFIG_DIR_NAME
    config_path = config_dir / CONFIG_FILE_NAME

    if config_path.exists() and not force:
        console.print(
            f"[yellow]PhaseForge already initialized in {project_root}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    try:
        (config_dir / "plans").mkdir(parents=True, exist_ok=True)

        save_config(create_default_config(), config_path)

        gitignore_path = config_dir / ".gitignore"
        if not gitignore_path.exists() or force:
            with open(gitignore_path, "w", encoding="utf-8") as f:
                f.write("# PhaseForge generated files\nlogs/\nstate/\n*.tmp\n")

        example_plan_path = config_dir / "plans" / "example.yaml"
        if not example_plan_path.exists() or force:
            with open(example_plan_path, "w", encoding="utf-8") as f:
                yaml.dump(_get_example_plan(), f, default_flow_style=False, sort_keys=False, indent=2)

    except (ConfigurationError, OSError) as e:
        console.print(f"[red]Failed to initialize PhaseForge:[/red] {e}")
        raise click.ClickException(f"Initialization failed: {e}")

    console.print(f"[green]✓[/green] PhaseForge initialized in {project_root}")
    console.print(f"[dim]Configuration:[/dim] {config_path}")
    console.print(f"[dim]Example plan:[/dim] {example_plan_path}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Set worker.build_command, validate_command and fix_command")
    console.print(f"2. Check the plan: phaseforge check {example_plan_path}")
    console.print(f"3. Run it: phaseforge run {example_plan_path}")


def _get_example_plan() -> dict:
    """Get a small two-phase example plan."""
    return {
        "id": "example",
        "phases": [
            {
                "name": "foundation",
                "modules": [
                    {
                        "name": "models",
                        "scope": "Data models for the service",
                        "expectedArtifacts": ["models.py"],
                    },
                    {
                        "name": "config",
                        "scope": "Configuration loading",
                        "expectedArtifacts": ["config.py"],
                    },
                ],
            },
            {
                "name": "service",
                "modules": [
                    {
                        "name": "api",
                        "scope": "HTTP handlers built on the models",
                        "dependencies": ["models", "config"],
                        "expectedArtifacts": ["api.py"],
                    }
                ],
            },
        ],
    }
