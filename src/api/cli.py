"""Click CLI for running and inspecting the gateway."""

from __future__ import annotations

import dataclasses
import logging
import sys
from pathlib import Path

import click
import uvicorn

from src.api.app import create_app
from src.audit.logger import validate_audit_chain
from src.config import GatewaySettings
from src.session.client import ClientFactoryError, load_client_factory
from src.session.normalizer import normalize


@click.group()
@click.option("--log-level", default="INFO", help="Root log level.")
def cli(log_level: str) -> None:
    """WhatsApp session gateway CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--host", default=None, help="Listen host (default: $HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Listen port (default: $PORT or 3006).")
@click.option("--client-factory", default=None, help="Client factory as module:attribute.")
@click.option("--no-auto-start", is_flag=True, help="Do not start the session at startup.")
def serve(
    host: str | None, port: int | None, client_factory: str | None, no_auto_start: bool,
) -> None:
    """Run the HTTP API under uvicorn."""
    settings = GatewaySettings.from_env()
    overrides: dict[str, object] = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if client_factory:
        overrides["client_factory"] = client_factory
    if no_auto_start:
        overrides["auto_start"] = False
    settings = dataclasses.replace(settings, **overrides)

    if not settings.client_factory:
        raise click.UsageError("Set GATEWAY_CLIENT_FACTORY or pass --client-factory.")
    try:
        factory = load_client_factory(settings.client_factory)
    except ClientFactoryError as exc:
        raise click.ClickException(str(exc)) from exc

    app = create_app(settings, factory)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


@cli.command("normalize")
@click.argument("phone")
@click.option("--country-code", default=None, help="Country prefix (default: $COUNTRY_CODE or 62).")
def normalize_command(phone: str, country_code: str | None) -> None:
    """Print the chat identifier a phone number is routed to."""
    code = country_code or GatewaySettings.from_env().country_code
    click.echo(normalize(phone, code))


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
def verify_audit(log_path: str) -> None:
    """Validate the hash chain of an audit log file."""
    result = validate_audit_chain(Path(log_path))
    if result.valid:
        click.echo("Audit chain valid")
        return
    click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
    sys.exit(1)
