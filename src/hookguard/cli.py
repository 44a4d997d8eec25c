"""Hookguard CLI - Command line interface."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from hookguard.webhooks.verifier import SignatureAlgorithm

console = Console()

ALGORITHMS = [a.value for a in SignatureAlgorithm]


def _configure_logging(log_level: str) -> None:
    import structlog

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


def _read_payload(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    return Path(path).read_bytes()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    help="Log level (default: info)",
)
def main(verbose: bool, log_level: str):
    """Hookguard - reliable webhook intake.

    Verifies signed webhook deliveries, deduplicates provider retries,
    retries failed processing with backoff and tracks per-event metrics.

    \b
    Examples:
        hookguard serve --bind 0.0.0.0:8080
        hookguard sign payload.json --secret whsec_test
        hookguard verify payload.json -S "t=...,sha256=..." --secret whsec_test
        hookguard stats --server http://localhost:8080
    """
    _configure_logging("debug" if verbose else log_level)


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--bind", "-b", default=None, help="host:port to listen on")
@click.option("--secret", envvar="HOOKGUARD_WEBHOOK_SECRET", help="Shared webhook secret")
def serve(config_file: str | None, bind: str | None, secret: str | None):
    """Run the webhook receiver.

    Accepted events are acknowledged and logged. Embed hookguard.server.create_app
    with your own handler to act on them.
    """
    from hookguard.core.config import get_config, load_config_from_file, section_overrides
    from hookguard.server.app import run_server

    overrides: dict[str, Any] = {}
    if config_file:
        try:
            overrides.update(section_overrides(load_config_from_file(config_file)))
            console.print(f"Loaded config from {config_file}", style="dim")
        except Exception as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)
    if bind:
        overrides["bind"] = bind
    if secret:
        overrides["webhook_secret"] = secret

    cfg = get_config().with_overrides(overrides)
    if not cfg.verifier.webhook_secret:
        console.print("[red]No webhook secret configured.[/red] Set HOOKGUARD_WEBHOOK_SECRET or --secret.")
        sys.exit(1)

    console.print(f"Listening on {cfg.server.bind}", style="yellow")
    run_server(cfg)


@main.command()
@click.argument("payload_file", type=click.Path(allow_dash=True))
@click.option("--secret", required=True, envvar="HOOKGUARD_WEBHOOK_SECRET", help="Shared webhook secret")
@click.option("--algorithm", "-a", type=click.Choice(ALGORITHMS), default="sha256", help="Digest algorithm")
@click.option("--timestamp", "-t", type=int, default=None, help="Unix timestamp (default: now)")
def sign(payload_file: str, secret: str, algorithm: str, timestamp: int | None):
    """Print a signature header for PAYLOAD_FILE ('-' for stdin)."""
    from hookguard.webhooks.verifier import generate_signature

    payload = _read_payload(payload_file)
    click.echo(generate_signature(payload, secret, algorithm, timestamp))


@main.command()
@click.argument("payload_file", type=click.Path(allow_dash=True))
@click.option("--signature", "-S", required=True, help="Signature header value")
@click.option("--secret", required=True, envvar="HOOKGUARD_WEBHOOK_SECRET", help="Shared webhook secret")
@click.option("--algorithm", "-a", type=click.Choice(ALGORITHMS), default="sha256", help="Digest algorithm")
@click.option("--tolerance", type=int, default=300, help="Timestamp tolerance in seconds (default: 300)")
def verify(payload_file: str, signature: str, secret: str, algorithm: str, tolerance: int):
    """Verify a signature header against PAYLOAD_FILE ('-' for stdin).

    Exits with status 1 when the signature is not valid.
    """
    from hookguard.webhooks.verifier import verify_signature

    payload = _read_payload(payload_file)
    result = verify_signature(payload, signature, secret, tolerance=tolerance, algorithm=algorithm)

    if result.valid:
        console.print(f"[green]OK[/green] - signature valid (t={result.timestamp})")
        return

    console.print(f"[red]INVALID[/red] - {result.status.value}: {result.error}")
    sys.exit(1)


@main.command()
@click.option("--server", default="http://localhost:8080", help="Receiver base URL")
@click.option("--user", envvar="HOOKGUARD_ADMIN_USER", help="Admin username")
@click.option("--password", envvar="HOOKGUARD_ADMIN_PASSWORD", help="Admin password")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def stats(server: str, user: str | None, password: str | None, json_output: bool):
    """Show per-event-type webhook statistics from a running receiver."""
    import httpx

    auth = (user, password) if user and password else None
    try:
        with httpx.Client(timeout=5.0) as client:
            resp = client.get(f"{server.rstrip('/')}/stats", auth=auth)
            resp.raise_for_status()
            data = resp.json()
    except Exception as e:
        console.print(f"[red]Error fetching stats:[/red] {e}")
        sys.exit(1)

    if json_output:
        import json

        click.echo(json.dumps(data, indent=2))
        return

    console.print(f"\n[bold]Server:[/bold] {server}")
    console.print(
        f"[bold]Events:[/bold] {data.get('total_events', 0)} total, "
        f"{data.get('successful_events', 0)} ok, "
        f"{data.get('failed_events', 0)} failed, "
        f"{data.get('duplicate_events', 0)} duplicate"
    )
    console.print(f"[bold]Success rate:[/bold] {data.get('success_rate', 0.0) * 100:.1f}%")
    console.print(f"[bold]Dedup entries:[/bold] {data.get('dedup_entries', 0)}")

    event_types = data.get("event_types", {})
    if not event_types:
        console.print("\n[dim]No events processed yet[/dim]")
        return

    table = Table(title="Event Types")
    table.add_column("Event Type", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Duplicate", justify="right")
    table.add_column("Avg ms", justify="right")

    for name, metric in sorted(event_types.items()):
        table.add_row(
            name,
            str(metric.get("total_events", 0)),
            str(metric.get("successful_events", 0)),
            str(metric.get("failed_events", 0)),
            str(metric.get("duplicate_events", 0)),
            f"{metric.get('average_processing_time_ms', 0.0):.1f}",
        )
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from hookguard import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """View and validate configuration settings.

    All settings can be configured via environment variables with the
    HOOKGUARD_ prefix.
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only specific section (verifier, retry, dedup, server)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings. Secrets are masked."""
    from hookguard.core.config import get_config

    display = get_config().to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        import json

        click.echo(json.dumps(display, indent=2))
        return

    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in settings.items():
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, f"HOOKGUARD_{key.upper()}")

        console.print(table)
        console.print()


@config.command("validate")
def config_validate():
    """Validate current configuration."""
    from hookguard.core.config import clear_config, get_config, validate_config

    clear_config()

    try:
        errors, warnings = validate_config(get_config())
    except Exception as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    if errors:
        console.print("[red bold]Configuration Errors:[/red bold]")
        for error in errors:
            console.print(f"  [red]x[/red] {error}")
        console.print()

    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        console.print()

    if not errors and not warnings:
        console.print("[green]OK - Configuration is valid[/green]")
    elif not errors:
        console.print("[green]OK - Configuration is valid (with warnings)[/green]")
    else:
        console.print("[red]ERROR - Configuration has errors[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
