"""
CLI: ``contract-spine call`` — one contract call through the full resilience path.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import typer

from contract_spine.cli.utils import console, err_console, load_json_file, parse_json_option
from contract_spine.client import ContractClient
from contract_spine.core.errors import SpineError
from contract_spine.core.settings import get_settings


def call_contract(
    target: str = typer.Argument(..., help="Contract identifier"),
    operation: str = typer.Argument(..., help="Operation name"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="JSON payload"),
    schema_file: Path | None = typer.Option(None, "--schema", "-s", help="Validate the response against this JSON schema"),
    priority: int = typer.Option(0, "--priority", help="Queue priority (higher first)"),
) -> None:
    """Call OPERATION on TARGET and print the response body as JSON."""
    body = parse_json_option(payload, "--payload")
    definition = load_json_file(schema_file, "schema") if schema_file else None

    try:
        result = asyncio.run(_run(target, operation, body, definition, priority))
    except SpineError as e:
        err_console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
        raise typer.Exit(code=1) from e

    console.print_json(data=result)


async def _run(target: str, operation: str, payload: Any, definition: Any, priority: int) -> Any:
    async with ContractClient.from_settings(get_settings()) as client:
        schema = None
        if definition is not None:
            schema = "response"
            client.register_schema(schema, definition)
        return await client.call_contract(target, operation, payload, priority=priority, schema=schema)
