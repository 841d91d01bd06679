#!/usr/bin/env python
"""
gpu-metrics <command>

Examples:
    gpu-metrics collect --once                 # one snapshot, then exit
    gpu-metrics serve --port 8080
    gpu-metrics provision gpu-node-01          # prints the generated api key
    gpu-metrics prune 14
"""
from __future__ import annotations

import logging
import secrets
import sys
from typing import NoReturn, Optional

import typer

from .config import load_collector_config, load_server_config, setup_logging
from .db import MetricsDB
from .errors import ConfigError

log = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="GPU metrics collector and ingestion service")


def _fail(exc: Exception) -> NoReturn:
    print(f"Failed to load config: {exc}", file=sys.stderr)
    raise typer.Exit(code=1)


@app.command()
def collect(
    once: bool = typer.Option(False, "--once", help="take one snapshot and exit"),
    config: Optional[str] = typer.Option(None, "--config", help="collector JSON config path"),
):
    """Poll nvidia-smi and push each snapshot to the ingestion API."""
    from .collector.poller import Collector

    setup_logging()
    try:
        cfg = load_collector_config(config)
    except ConfigError as exc:
        _fail(exc)
    Collector(cfg).run(loop=not once)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="listen address (default $HOST or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, help="listen port (default $PORT or 8080)"),
):
    """Start the ingestion API."""
    import uvicorn

    from .api import create_app

    setup_logging()
    try:
        cfg = load_server_config()
    except ConfigError as exc:
        _fail(exc)

    db = MetricsDB(cfg.db_path)
    if not db.ping():
        print(f"Failed to open database {cfg.db_path}", file=sys.stderr)
        raise typer.Exit(code=1)
    if cfg.retention_days > 0:
        removed = db.prune_older_than(cfg.retention_days)
        log.info("DB pruned to keep last %d days (%d rows removed)", cfg.retention_days, removed)

    host = host or cfg.host
    port = port or cfg.port
    log.info("Starting metrics server on %s:%d", host, port)
    log.info("Database: %s", cfg.db_path)
    uvicorn.run(create_app(db), host=host, port=port)


@app.command()
def provision(
    instance_id: str = typer.Argument(..., help="stable host identifier"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="bearer token (generated if omitted)"),
    disable: bool = typer.Option(False, "--disable", help="mark the instance as not provisioned"),
):
    """Create or update an instance and print its api key."""
    try:
        cfg = load_server_config()
    except ConfigError as exc:
        _fail(exc)
    key = api_key or secrets.token_urlsafe(32)
    MetricsDB(cfg.db_path).provision_instance(instance_id, key, provisioned=not disable)
    state = "disabled" if disable else "provisioned"
    typer.echo(f"{instance_id} {state} api_key={key}")


@app.command()
def prune(days: int = typer.Argument(..., min=1, help="keep this many days of rows")):
    """Delete metric rows older than DAYS."""
    try:
        cfg = load_server_config()
    except ConfigError as exc:
        _fail(exc)
    removed = MetricsDB(cfg.db_path).prune_older_than(days)
    typer.echo(f"removed {removed} rows older than {days} days")


def main() -> None:
    app()


if __name__ == "__main__":
    main()          # `python -m gpu_metrics.cli collect --once`
