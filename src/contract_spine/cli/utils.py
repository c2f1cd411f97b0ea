"""
CLI utility helpers — consoles and JSON file loading.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

console = Console()
err_console = Console(stderr=True)


def load_json_file(path: Path, what: str) -> Any:
    """Read a JSON document or exit with code 2 and a readable message."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        err_console.print(f"[red]Cannot read {what} file {path}:[/red] {e}")
        raise typer.Exit(code=2) from e
    except json.JSONDecodeError as e:
        err_console.print(f"[red]{what.capitalize()} file {path} is not valid JSON:[/red] {e}")
        raise typer.Exit(code=2) from e


def parse_json_option(raw: str | None, what: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        err_console.print(f"[red]Invalid JSON for {what}:[/red] {e}")
        raise typer.Exit(code=2) from e
