"""Typer CLI for mentor-meter."""

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="mentor-meter", help="mentor-meter: usage tracking and entitlements")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the mentor-meter API server."""
    import uvicorn
    from mentor_meter.app import create_app
    from mentor_meter.common.config import get_settings
    from mentor_meter.common.logging import setup_logging

    setup_logging(get_settings().log_level)
    console.print(f"[bold green]Starting mentor-meter on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def tiers():
    """Show the subscription tier table."""
    from mentor_meter.entitlements.tiers import TIERS

    def fmt(limit):
        return "unlimited" if limit is None else str(limit)

    table = Table(title="Subscription tiers")
    for column in ("Tier", "Sessions", "Minutes", "Documents", "Tokens", "Per session"):
        table.add_column(column)
    for tier in TIERS.values():
        table.add_row(
            f"{tier.name} ({tier.id})",
            fmt(tier.sessions_limit),
            fmt(tier.minutes_limit),
            fmt(tier.documents_limit),
            fmt(tier.tokens_limit),
            str(tier.minutes_per_session),
        )
    console.print(table)


@app.command()
def sign(
    payload_file: typer.FileBinaryRead = typer.Argument(..., help="Webhook body to sign ('-' for stdin)"),
    secret: str = typer.Option("", help="Signing secret (defaults to MENTOR_WEBHOOK_SECRET)"),
):
    """Print an X-Mentor-Signature header value for a webhook body."""
    from mentor_meter.common.config import get_settings
    from mentor_meter.webhooks.signing import SIGNATURE_HEADER, build_signature_header

    secret = secret or get_settings().webhook_secret
    if not secret:
        console.print("[bold red]Error:[/bold red] no signing secret configured")
        raise typer.Exit(1)
    header = build_signature_header(payload_file.read(), secret)
    console.print(f"{SIGNATURE_HEADER}: {header}", soft_wrap=True)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check mentor-meter server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
