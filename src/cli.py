"""Click CLI: run the bridge and talk to a running instance."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
import httpx
import uvicorn

from src.audit.logger import validate_audit_chain
from src.config import BridgeSettings

DEFAULT_URL = "http://localhost:3001"


def _echo_response(resp: httpx.Response) -> None:
    try:
        body = resp.json()
    except ValueError:
        # Not JSON, e.g. an error page from a proxy in front of the bridge
        click.echo(resp.text)
        return
    click.echo(json.dumps(body, indent=2))


@click.group()
def cli() -> None:
    """WhatsApp to automation-webhook bridge."""


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST or 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Port (default: PORT or 3001).")
@click.option("--log-level", default=None, help="Log level (default: LOG_LEVEL or info).")
def serve(host: str | None, port: int | None, log_level: str | None) -> None:
    """Run the bridge HTTP server and WhatsApp session."""
    try:
        settings = BridgeSettings.from_env()
    except KeyError as exc:
        raise click.UsageError(f"Missing required environment variable: {exc.args[0]}") from exc

    level = (log_level or settings.log_level).lower()
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    bind_host = host or settings.host
    bind_port = port or settings.port
    click.echo(f"WhatsApp bridge running on http://{bind_host}:{bind_port}", err=True)
    uvicorn.run(
        "src.server.app:create_app_from_env",
        factory=True,
        host=bind_host,
        port=bind_port,
        log_level=level,
    )


@cli.command()
@click.option("--url", default=DEFAULT_URL, show_default=True, help="Bridge base URL.")
def status(url: str) -> None:
    """Print the status of a running bridge."""
    try:
        resp = httpx.get(f"{url.rstrip('/')}/status", timeout=10.0)
    except httpx.HTTPError as exc:
        click.echo(f"Bridge unreachable: {exc}", err=True)
        sys.exit(2)
    _echo_response(resp)


@cli.command()
@click.argument("to")
@click.argument("text")
@click.option("--url", default=DEFAULT_URL, show_default=True, help="Bridge base URL.")
@click.option("--token", envvar="API_TOKEN", default=None, help="API token for /send.")
def send(to: str, text: str, url: str, token: str | None) -> None:
    """Send TEXT to the contact or chat TO through a running bridge."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        resp = httpx.post(
            f"{url.rstrip('/')}/send",
            json={"to": to, "text": text},
            headers=headers,
            timeout=30.0,
        )
    except httpx.HTTPError as exc:
        click.echo(f"Bridge unreachable: {exc}", err=True)
        sys.exit(2)
    _echo_response(resp)
    if resp.status_code != 200:
        sys.exit(1)


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def verify_audit(log_path: Path) -> None:
    """Validate the hash chain of an audit log."""
    result = validate_audit_chain(log_path)
    if result.valid:
        click.echo(f"Audit chain valid ({result.entries} entries)")
        return
    click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
    sys.exit(1)
