#!/usr/bin/env python3
"""
devicetrust CLI - Device identity keys and SAS verification

Main entrypoint for the devicetrust command-line tool.
"""

import os

import typer
from typing import Optional
from rich.console import Console
from rich.table import Table

from cli.commands import keys, sas
from devicetrust.core.config import Settings
from devicetrust.core.logging_config import setup_logging
from devicetrust.core.metrics import start_metrics_server

# Initialize Typer app
app = typer.Typer(
    name="devicetrust",
    help="Device identity keys and interactive SAS verification",
    add_completion=False,
)

# Console for rich output
console = Console()

# Add command groups
app.add_typer(keys.app, name="keys", help="Identity and one-time key management")
app.add_typer(sas.app, name="sas", help="Short authentication string verification")


@app.callback()
def configure(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override DEVICETRUST_LOG_LEVEL"),
):
    """Configure logging and metrics from DEVICETRUST_* settings."""
    settings = Settings.from_env()
    # Command output stays readable unless a level was asked for
    level = log_level or os.getenv("DEVICETRUST_LOG_LEVEL", "WARNING")
    setup_logging(level=level, log_format=settings.log_format)
    start_metrics_server(settings.metrics_enabled, settings.metrics_port)


@app.command()
def version():
    """Show version information."""
    from cli import __version__
    from devicetrust import __version__ as core_version
    from devicetrust.verification import SAS_TABLE_VERSION

    table = Table(show_header=False, box=None)
    table.add_row("[bold]devicetrust CLI[/bold]", f"v{__version__}")
    table.add_row("Core", f"v{core_version}")
    table.add_row("SAS table", SAS_TABLE_VERSION)

    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
