"""
CLI interface for the OCR quota ledger.

Runs recognition batches and shows, exports and clears usage statistics.
"""

import json
import logging
import sys
from decimal import Decimal
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ocr_quota_ledger.config.loader import LedgerConfig, load_config, resolve_config_path
from ocr_quota_ledger.core.ledger import QuotaLedger
from ocr_quota_ledger.core.pricing import ModelPricing
from ocr_quota_ledger.sdk.recognition_client import RecognitionClient
from ocr_quota_ledger.storage.models import QuotaSummary, UsageLogEntry, UsageStatus
from ocr_quota_ledger.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_STATUS_STYLES = {
    UsageStatus.SUCCESS: "green",
    UsageStatus.ERROR: "red",
    UsageStatus.RATE_LIMITED: "yellow",
}


def build_ledger(config: LedgerConfig) -> QuotaLedger:
    """Create the single ledger instance for this process."""
    return QuotaLedger.from_config(config)


def build_recognition_client(
    ledger: QuotaLedger,
    model: str,
    config: LedgerConfig
) -> RecognitionClient:
    """Create the recognition client, applying configured pricing."""
    pricing = None
    if config.pricing is not None:
        pricing = ModelPricing(
            input_cost_per_1m=Decimal(str(config.pricing.input_per_1m)),
            output_cost_per_1m=Decimal(str(config.pricing.output_per_1m)),
        )
    return RecognitionClient(ledger, model=model, pricing=pricing)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    )
):
    """OCR Quota Ledger CLI."""
    _configure_logging(verbose)
    try:
        ctx.obj = load_config(resolve_config_path(config))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("OCR Quota Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the ledger database."""
    try:
        initialize_schema(ctx.obj.storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    return f"${amount:,.4f}"


def _summary_table(title: str, summary: QuotaSummary) -> Table:
    table = Table(title=title, show_header=False, title_justify="left")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Requests", str(summary.total_requests))
    table.add_row("Success", f"[green]{summary.successful_requests}[/]")
    table.add_row("Failed", f"[red]{summary.failed_requests}[/]")
    table.add_row("Rate Limited", f"[yellow]{summary.rate_limited_requests}[/]")
    table.add_row("Success Rate", f"{summary.success_rate:.1f}%")
    table.add_row(
        "Total Tokens",
        f"{summary.total_tokens:,} (prompt {summary.total_prompt_tokens:,}, "
        f"output {summary.total_output_tokens:,})"
    )
    table.add_row("Total Cost", _format_currency(summary.total_cost))
    table.add_row("Avg Cost/Request", _format_currency(summary.average_cost))
    table.add_row("Avg Processing Time", f"{summary.average_processing_time:,.0f}ms")
    table.add_row("First Request", summary.first_request or "-")
    table.add_row("Last Request", summary.last_request or "-")
    return table


@app.command()
def status(ctx: typer.Context):
    """Show today's and all-time usage with any rate limit warning."""
    ledger = build_ledger(ctx.obj)

    warning = ledger.get_rate_limit_warning()
    if warning:
        console.print(f"[bold yellow]{warning}[/]")

    all_time = ledger.get_summary()
    if all_time.total_requests == 0:
        console.print("\n[bold yellow]No recognition usage recorded yet[/]")
        console.print("Run `ocr-quota-ledger recognize IMAGE...` to process documents.\n")
        sys.exit(EXIT_CODE_PASS)

    today = ledger.get_summary(ledger.get_today_logs())
    if today.total_requests > 0:
        console.print(_summary_table("Today's Usage", today))
    console.print(_summary_table("All-Time Statistics", all_time))
    console.print("[dim]Costs are estimates based on published per-token prices.[/]")


def _entries_table(entries: List[UsageLogEntry]) -> Table:
    table = Table(title="Usage Log")
    table.add_column("Timestamp")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Files", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Error")
    for entry in entries:
        style = _STATUS_STYLES[entry.status]
        table.add_row(
            entry.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{entry.status.value}[/]",
            entry.model,
            str(entry.files_processed),
            f"{entry.total_tokens:,}",
            f"${entry.estimated_cost:.6f}",
            f"{entry.processing_time_ms:,}ms",
            entry.error_message or "",
        )
    return table


@app.command()
def logs(
    ctx: typer.Context,
    today: bool = typer.Option(False, "--today", "-t", help="Only show today's entries"),
    session: bool = typer.Option(False, "--session", "-s", help="Only show this session's entries"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum entries to show")
):
    """List recorded calls, newest first."""
    ledger = build_ledger(ctx.obj)
    if today:
        entries = ledger.get_today_logs()
    elif session:
        entries = ledger.get_session_logs()
    else:
        entries = ledger.get_all_logs()

    if not entries:
        console.print("[dim]No usage entries found.[/]")
        return

    console.print(_entries_table(list(reversed(entries))[:limit]))


@app.command()
def export(
    ctx: typer.Context,
    fmt: str = typer.Option("txt", "--format", "-f", help="Export format: txt or json"),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="File name, relative to the export directory"
    )
):
    """Export the usage ledger with a summary header."""
    if fmt not in ("txt", "json"):
        console.print(f"[red]Unsupported format:[/] {fmt} (use txt or json)")
        sys.exit(EXIT_CODE_FAIL)

    ledger = build_ledger(ctx.obj)
    try:
        if fmt == "json":
            path = ledger.download_logs_json(output)
        else:
            path = ledger.download_logs(output)
    except OSError as e:
        console.print(f"[red]Error writing export:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Exported usage log to {path}")


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt")
):
    """Erase all recorded usage. This cannot be undone."""
    if not yes and not typer.confirm(
        "Are you sure you want to clear all quota logs? This cannot be undone."
    ):
        console.print("Aborted.")
        sys.exit(EXIT_CODE_PASS)

    build_ledger(ctx.obj).clear_logs()
    console.print("[green]✓[/] Usage logs cleared")


@app.command()
def recognize(
    ctx: typer.Context,
    files: List[str] = typer.Argument(..., help="Document images to transcribe"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Recognition model")
):
    """Transcribe document images and print the records as JSON."""
    ledger = build_ledger(ctx.obj)
    try:
        client = build_recognition_client(ledger, model or ctx.obj.model, ctx.obj)
        records = client.recognize(files)
    except Exception as e:
        console.print(f"[red]Recognition failed:[/] {str(e)}")
        warning = ledger.get_rate_limit_warning()
        if warning:
            console.print(f"[yellow]{warning}[/]")
        sys.exit(EXIT_CODE_FAIL)

    print(json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False))

    warning = ledger.get_rate_limit_warning()
    if warning:
        console.print(f"[yellow]{warning}[/]")


if __name__ == "__main__":
    app()
