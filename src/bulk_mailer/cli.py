"""Command-line interface for the bulk mailer.

Usage:
    # Run the HTTP service
    bulk-mailer serve --config config.ini --port 3000

    # Send a batch straight from the terminal
    bulk-mailer send --to "a@example.com, b@example.com" \\
        --subject "Hello" --message "Body" --attach report.pdf
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from .api import report_to_response
from .bootstrap import build_transport, warn_missing_credentials
from .config import MailerSettings, load_settings
from .core import MailDispatcher, NoRecipientsError, parse_recipients
from .logger import configure_logging
from .models import AttachmentRef, SendReport, SendRequest
from .uploads import AttachmentTooLargeError

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _attachment_from_path(path: Path, max_bytes: int) -> AttachmentRef:
    size = path.stat().st_size
    if size > max_bytes:
        raise AttachmentTooLargeError(max_bytes)
    return AttachmentRef(original_name=path.name, stored_path=path, size_bytes=size)


def _report_table(report: SendReport) -> Table:
    table = Table(title=f"Processed {report.total_processed} emails")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Recipient", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for index, outcome in enumerate(report.outcomes, start=1):
        status = "[green]sent[/green]" if outcome.success else "[red]failed[/red]"
        table.add_row(str(index), outcome.recipient, status, outcome.detail)
    return table


async def _send_batch(settings: MailerSettings, request: SendRequest) -> SendReport:
    transport = build_transport(settings)
    dispatcher = MailDispatcher(settings.dispatch_config(), transport)
    try:
        return await dispatcher.dispatch(request)
    finally:
        await transport.close()


@click.group()
@click.version_option(package_name="bulk-mailer")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="INI configuration file (default: $BULK_MAILER_CONFIG or config.ini).",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path]) -> None:
    """Paced bulk email sender."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--host", "-h", default=None, help="Host to bind to (default from settings).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default from settings).")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Run the HTTP service with uvicorn."""
    import uvicorn

    config_path = ctx.obj.get("config_path")
    # bulk_mailer.server loads the same file when uvicorn imports it
    if config_path is not None:
        os.environ["BULK_MAILER_CONFIG"] = str(config_path)
    settings = load_settings(config_path)
    host = host or settings.http_host
    port = port or settings.http_port

    console.print("\n[bold cyan]Starting bulk mailer[/bold cyan]")
    console.print(f"  Sender:  {settings.sender_address or '[yellow]not set[/yellow]'}")
    console.print(f"  Relay:   {settings.smtp_host}:{settings.smtp_port}")
    console.print(f"  Listen:  {host}:{port}")
    console.print()

    uvicorn.run(
        "bulk_mailer.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@main.command()
@click.option("--to", "recipients", required=True, help="Comma-separated recipient addresses.")
@click.option("--subject", "-s", default="", help="Message subject.")
@click.option("--message", "-m", default="", help="Message body.")
@click.option(
    "--message-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the body from a file instead of --message.",
)
@click.option(
    "--attach", "-a",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File attached to every message.",
)
@click.option("--json", "as_json", is_flag=True, help="Output the report as JSON.")
@click.pass_context
def send(
    ctx: click.Context,
    recipients: str,
    subject: str,
    message: str,
    message_file: Optional[Path],
    attach: Optional[Path],
    as_json: bool,
) -> None:
    """Send one email per recipient, paced like the HTTP endpoint."""
    settings = load_settings(ctx.obj.get("config_path"))
    configure_logging(settings.log_level)
    warn_missing_credentials(settings)

    if message_file is not None:
        message = message_file.read_text(encoding="utf-8")

    try:
        recipient_list = parse_recipients(recipients)
        if not recipient_list:
            raise NoRecipientsError()
        attachment = _attachment_from_path(attach, settings.max_upload_bytes) if attach else None
    except (NoRecipientsError, AttachmentTooLargeError) as exc:
        print_error(str(exc))
        sys.exit(1)

    request = SendRequest(
        recipients=recipient_list,
        subject=subject,
        message=message,
        attachment=attachment,
    )
    report = run_async(_send_batch(settings, request))

    if as_json:
        print_json(report_to_response(report).model_dump(exclude_none=True))
    else:
        console.print(_report_table(report))

    if report.failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
