"""
CLI: ``contract-spine schema`` — validate JSON documents against a schema.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from contract_spine.cli.utils import console, err_console, load_json_file
from contract_spine.core.errors import ConfigError
from contract_spine.core.validation import SchemaValidator

app = typer.Typer(no_args_is_help=True)


@app.command("validate")
def validate(
    schema_file: Path = typer.Argument(..., help="JSON schema definition"),
    payload_file: Path = typer.Argument(..., help="JSON payload to check"),
    name: str | None = typer.Option(None, "--name", "-n", help="Schema name (defaults to the file stem)"),
) -> None:
    """Validate PAYLOAD_FILE against SCHEMA_FILE and list every violation."""
    definition = load_json_file(schema_file, "schema")
    payload = load_json_file(payload_file, "payload")
    schema_name = name or schema_file.stem

    validator = SchemaValidator()
    try:
        validator.register(schema_name, definition)
        violations = validator.validate(payload, schema_name)
    except ConfigError as e:
        err_console.print(f"[red]Invalid schema:[/red] {e}")
        raise typer.Exit(code=2) from e

    if not violations:
        console.print(f"[green]✓[/green] payload matches schema '{schema_name}'")
        return

    table = Table(title=f"{len(violations)} violation(s) of '{schema_name}'")
    table.add_column("Path")
    table.add_column("Rule")
    table.add_column("Message")
    for violation in violations:
        table.add_row(violation.path or "<root>", violation.rule, violation.message)
    console.print(table)
    raise typer.Exit(code=1)
