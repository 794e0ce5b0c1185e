"""
trace-agent - Main CLI Application

Commands:
    run     Run a Python program with the agent preloaded
    config  Show the configuration the agent would start with
"""
import json
import os
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Optional

import typer
from dotenv import dotenv_values
from rich.console import Console
from rich.table import Table

from trace_agent.config import ENV_CONFIG_FILE, resolve_config
from trace_agent.core.errors import ConfigurationError
from trace_agent.preload import preload_environment

app = typer.Typer(
    name="trace-agent",
    help="trace-agent - Distributed Tracing Agent",
    add_completion=False,
)

console = Console()


def build_child_environment(
    environ: Mapping[str, str],
    config_file: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> MutableMapping[str, str]:
    """
    Environment for a program run under the agent.

    Values from ``env_file`` override ``environ``; ``config_file`` is passed
    on through ``GCLOUD_TRACE_CONFIG``.
    """
    extra: Dict[str, str] = {}
    if env_file is not None:
        extra.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    if config_file is not None:
        extra[ENV_CONFIG_FILE] = str(config_file.expanduser().resolve())
    return preload_environment(environ, extra)


@app.command()
def run(
    command: List[str] = typer.Argument(..., help="Program and arguments, after '--'"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Agent configuration file"),
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help="dotenv file for the program"),
):
    """Run a program with the trace agent started before its first import."""
    if config is not None and not config.exists():
        console.print(f"[red]Error: Configuration file not found: {config}[/red]")
        raise typer.Exit(1)
    if env_file is not None and not env_file.exists():
        console.print(f"[red]Error: Environment file not found: {env_file}[/red]")
        raise typer.Exit(1)

    env = build_child_environment(os.environ, config, env_file)
    try:
        os.execvpe(command[0], command, env)
    except OSError as e:
        console.print(f"[red]Error: Cannot run {command[0]}: {e}[/red]")
        raise typer.Exit(127)


@app.command("config")
def show_config(
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Agent configuration file"),
):
    """Show the resolved agent configuration."""
    environ = dict(os.environ)
    if config is not None:
        environ[ENV_CONFIG_FILE] = str(config)

    try:
        resolved = resolve_config(environ=environ)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(resolved.to_dict(), indent=2, default=str))
        return

    table = Table(title="Resolved Configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value")

    for key, value in resolved.to_dict().items():
        if key == "plugins":
            value = ", ".join(sorted(value)) or "-"
        elif key == "service_context":
            value = ", ".join(f"{k}={v}" for k, v in value.items() if v) or "-"
        table.add_row(key, str(value))

    console.print(table)

    for issue in resolved.issues:
        console.print(f"[yellow]Warning: {issue}[/yellow]")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
