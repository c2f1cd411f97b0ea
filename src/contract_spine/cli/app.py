"""
Root Typer application for the contract-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from contract_spine import __version__
from contract_spine.cli.call import call_contract
from contract_spine.cli.config import app as config_app
from contract_spine.cli.schema import app as schema_app
from contract_spine.core.logging import configure_logging
from contract_spine.core.settings import get_settings

app = Typer(
    name="contract-spine",
    help="contract-spine — resilient calls to contract and content backends.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contract-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override CONTRACT_SPINE_LOG_LEVEL."),
) -> None:
    """contract-spine CLI — inspect configuration, validate schemas, call contracts."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.log_json)


# ── Sub-commands ─────────────────────────────────────────────────────────

app.add_typer(config_app, name="config", help="Configuration inspection.")
app.add_typer(schema_app, name="schema", help="Schema validation.")
app.command("call")(call_contract)


if __name__ == "__main__":
    app()
