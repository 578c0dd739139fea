"""Init command implementation."""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

from gpm.core.config import Config, ConfigError
from gpm.core.context import ProjectContext

console = Console()


def command(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite existing configuration"
    ),
    show_config: bool = typer.Option(
        False, "--show", help="Show default configuration without creating"
    ),
):
    """Initialize gpm configuration for this project.

    Creates .gpm.yml at the project root with default settings.
    """
    context = ProjectContext()
    try:
        config = Config(context.project_root)
    except ConfigError as e:
        if not force:
            console.print(f"[red]ERROR:[/red] {e}")
            console.print("[yellow]Hint:[/yellow] Use --force to replace it with the defaults")
            raise typer.Exit(code=1)
        (context.project_root / ".gpm.yml").unlink()
        config = Config(context.project_root)

    # Show config and exit
    if show_config:
        console.print("\n[bold]Default configuration:[/bold]\n")
        syntax = Syntax(
            Config.get_default_config(), "yaml", theme="monokai", line_numbers=True
        )
        console.print(syntax)
        console.print(f"\n[dim]Would be created at: {config.config_file}[/dim]")
        return

    if config.exists() and not force:
        console.print(
            Panel(
                f"[yellow]Configuration already exists:[/yellow]\n"
                f"{config.config_file}\n\n"
                f"Use [bold]--force[/bold] to overwrite or [bold]--show[/bold] to view default config",
                title="⚠️  Config Exists",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=1)

    try:
        if force and config.exists():
            config.config_file.unlink()
            console.print("[yellow]Removed existing config[/yellow]")

        config_path = config.create_default()

        console.print(
            Panel(
                f"[green]✓[/green] Configuration created: [bold]{config_path}[/bold]\n\n"
                f"[dim]Edit the file to tune CI waiting, merging and scanning.[/dim]",
                title="✅ gpm Initialized",
                border_style="green",
            )
        )
    except (FileExistsError, OSError) as e:
        console.print(f"[red]ERROR:[/red] Failed to create configuration: {e}")
        raise typer.Exit(code=1)
