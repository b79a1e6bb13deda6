"""
layerhost - Main CLI Application

Builds a default host for the current directory and shows its merged
configuration or its environment. Extra arguments after ``--`` are passed to
the command-line configuration provider:

    layerhost show-config -- --Feature:Enabled=false
    layerhost env -- --environment Development
"""
from enum import Enum
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from core.errors import HostingError
from hosting.defaults import create_default_builder
from hosting.host import Host
from observability import setup_observability, shutdown_tracing

# Initialize app
app = typer.Typer(
    name="layerhost",
    help="layerhost - layered configuration and host builder",
    add_completion=False,
)

console = Console()


@app.callback()
def root(
    ctx: typer.Context,
    trace: bool = typer.Option(False, "--trace", help="Print host build and lifecycle spans to stdout"),
):
    """Inspect the configuration and environment a default host would see."""
    if trace:
        setup_observability(service_name="layerhost-cli", tracing=True, console_spans=True)
        ctx.call_on_close(shutdown_tracing)


class OutputFormat(str, Enum):
    """Output format options."""
    TABLE = "table"
    JSON = "json"


def _build_host(args: Optional[List[str]]) -> Host:
    try:
        return create_default_builder(args or []).build()
    except HostingError as e:
        console.print(f"[red]Host build failed: {escape(str(e))}[/red]")
        raise typer.Exit(1)


@app.command("show-config")
def show_config(
    args: Optional[List[str]] = typer.Argument(None, help="Arguments for the command-line provider"),
    section: Optional[str] = typer.Option(None, "--section", "-s", help="Only show keys below this section"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--output", "-o", help="Output format"),
):
    """Show every effective configuration key and the provider that set it."""
    host = _build_host(args)
    configuration = host.configuration

    if output == OutputFormat.JSON:
        view = configuration.get_section(section) if section else configuration
        console.print_json(data=view.to_nested())
        return

    title = f"Configuration ({host.environment.environment_name})"
    table = Table(title=title if not section else f"{title} - {section}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Provider", style="dim")

    rows = configuration.debug_view()
    if section:
        prefix = section.casefold() + ":"
        rows = [r for r in rows if r.key.casefold().startswith(prefix)]
    for row in rows:
        table.add_row(row.key, row.value, row.provider)

    console.print(table)
    console.print(f"\n{len(rows)} key(s) from {len(configuration.providers)} provider(s)")


@app.command()
def env(
    args: Optional[List[str]] = typer.Argument(None, help="Arguments for the command-line provider"),
):
    """Show the resolved host environment."""
    host = _build_host(args)
    environment = host.environment

    color = "green" if environment.is_production() else "yellow"
    console.print(Panel.fit(
        f"[bold]Application:[/bold]  {environment.application_name}\n"
        f"[bold]Environment:[/bold]  [{color}]{environment.environment_name}[/{color}]\n"
        f"[bold]Content root:[/bold] {environment.content_root_path}",
        title="Host Environment",
        border_style="blue",
    ))

    table = Table(title="Configuration Providers")
    table.add_column("#", style="dim")
    table.add_column("Provider", style="cyan")
    table.add_column("Entries", justify="right")
    for index, provider in enumerate(host.configuration.providers, start=1):
        table.add_row(str(index), provider.name, str(len(provider)))
    console.print(table)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
