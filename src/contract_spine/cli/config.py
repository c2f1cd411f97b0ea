"""
CLI: ``contract-spine config`` — inspect resolved settings.
"""

from __future__ import annotations

import typer
from rich.table import Table

from contract_spine.cli.utils import console
from contract_spine.core.settings import get_settings

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """Show the resolved configuration (environment, .env and defaults)."""
    settings = get_settings(_force_reload=True)

    if format == "json":
        console.print_json(settings.model_dump_json(exclude={"session_token"}))
        return

    table = Table(title="contract-spine settings")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in settings.model_dump(exclude={"session_token"}).items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", _display(sub_value))
        else:
            table.add_row(key, _display(value))
    table.add_row("session_token", "set" if settings.session_token else "-")
    console.print(table)


def _display(value: object) -> str:
    if value is None:
        return "-"
    return str(getattr(value, "value", value))
