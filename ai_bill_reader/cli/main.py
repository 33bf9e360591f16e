"""
CLI interface for AI Bill Reader.

Analyze bill images, browse and edit the analysis history, export CSV and
manage the AI provider settings.
"""

import base64
import mimetypes
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ai_bill_reader.config.loader import load_app_config, resolve_default_api_key
from ai_bill_reader.core.errors import (
    AnalysisFailedError,
    BillReaderError,
    ConfigurationError,
    InvalidImageError,
    RateLimitExceeded,
)
from ai_bill_reader.core.export import default_export_filename, export_bill_csv
from ai_bill_reader.core.pipeline import ExtractionPipeline
from ai_bill_reader.core.rate_governor import MAX_REQUESTS, WINDOW_SECONDS, RateGovernor
from ai_bill_reader.providers.factory import build_adapters
from ai_bill_reader.providers.ollama_client import check_connection
from ai_bill_reader.storage.kv_store import SqliteKeyValueStore
from ai_bill_reader.storage.models import AiProvider, AiSettings, BillRecord
from ai_bill_reader.storage.repository import HistoryStore, SettingsStore, is_configured

app = typer.Typer()
settings_app = typer.Typer(help="Show or change the AI provider settings.")
app.add_typer(settings_app, name="settings")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}

NOT_CONFIGURED_HINT = (
    "AI provider is not configured. "
    "Run `ai-bill-reader settings set` to add an API key or a local model."
)


@dataclass
class Services:
    """Stores and pipeline wired to one database."""
    settings: SettingsStore
    history: HistoryStore
    governor: RateGovernor
    pipeline: ExtractionPipeline


def _build_services(config_path: Optional[str]) -> Services:
    config = load_app_config(config_path)
    kv = SqliteKeyValueStore(config.database_path)
    defaults = AiSettings(
        gemini_api_key=resolve_default_api_key(),
        ollama_url=config.ollama_url,
        ollama_model=config.ollama_model,
    )
    governor = RateGovernor(kv)
    return Services(
        settings=SettingsStore(kv, defaults=defaults),
        history=HistoryStore(kv),
        governor=governor,
        pipeline=ExtractionPipeline(governor, adapters=build_adapters(config)),
    )


def _services(ctx: typer.Context) -> Services:
    root = ctx.find_root()
    if not isinstance(root.obj, Services):
        try:
            root.obj = _build_services(root.params.get("config"))
        except (OSError, ValueError) as e:
            console.print(f"[red]Error loading configuration:[/] {escape(str(e))}")
            sys.exit(EXIT_CODE_FAIL)
    return root.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file (defaults to $AI_BILL_READER_CONFIG)"
    ),
):
    """AI Bill Reader CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Bill Reader - Use --help to see available commands")


def _image_to_data_uri(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise ValueError("Unsupported image format. Use JPEG, PNG, WebP or HEIC.")
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def _load_record(services: Services, record_id: str) -> BillRecord:
    record = services.history.get(record_id)
    if record is None:
        console.print(f"[red]No analysis with id[/] {escape(record_id)}")
        sys.exit(EXIT_CODE_FAIL)
    return record


@app.command()
def analyze(
    ctx: typer.Context,
    image: Path = typer.Argument(..., help="Bill image (JPEG, PNG, WebP or HEIC)"),
):
    """Extract a bill from an image and save it to the history."""
    services = _services(ctx)
    settings = services.settings.load()
    if not is_configured(settings):
        console.print(f"[yellow]{NOT_CONFIGURED_HINT}[/]")
        sys.exit(EXIT_CODE_FAIL)

    try:
        image_data_uri = _image_to_data_uri(image)
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to read the file:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        with console.status("Analyzing bill..."):
            record = services.pipeline.analyze_bill(image_data_uri, settings)
    except InvalidImageError as e:
        console.print(f"[red]Failed to read the file:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    except RateLimitExceeded as e:
        console.print(f"[yellow]{escape(str(e))}[/]")
        sys.exit(EXIT_CODE_FAIL)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    except AnalysisFailedError as e:
        console.print(f"[red]Analysis failed:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    services.history.add(record)
    _display_record(record)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(ctx: typer.Context):
    """List past analyses, most recent first."""
    records = _services(ctx).history.list()
    if not records:
        console.print("[dim]No analyses yet. Run `ai-bill-reader analyze IMAGE` to get started.[/]")
        return

    table = Table(title="Analysis History")
    table.add_column("ID")
    table.add_column("Analyzed At")
    table.add_column("Account")
    table.add_column("Statement Date")
    table.add_column("Total", justify="right")
    for record in records:
        bill = record.bill
        table.add_row(
            escape(record.id),
            escape(record.analyzed_at),
            escape(bill.account_name or bill.account_number),
            escape(bill.statement_date or ""),
            _format_currency(bill.total_current_charges),
        )
    console.print(table)


@app.command()
def show(ctx: typer.Context, record_id: str = typer.Argument(..., help="Analysis id")):
    """Show one analysis in full."""
    _display_record(_load_record(_services(ctx), record_id))


@app.command()
def delete(ctx: typer.Context, record_id: str = typer.Argument(..., help="Analysis id")):
    """Delete an analysis from the history."""
    _services(ctx).history.remove(record_id)
    console.print(f"[green]✓[/] Deleted {escape(record_id)}")


@app.command()
def edit(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Analysis id"),
    account_name: Optional[str] = typer.Option(None, "--account-name"),
    account_number: Optional[str] = typer.Option(None, "--account-number"),
    service_address: Optional[str] = typer.Option(None, "--service-address"),
    statement_date: Optional[str] = typer.Option(None, "--statement-date"),
    due_date: Optional[str] = typer.Option(None, "--due-date"),
    total: Optional[float] = typer.Option(None, "--total", help="Total current charges"),
    usage: Tuple[int, int, str, float] = typer.Option(
        (None, None, None, None),
        "--usage",
        metavar="CHART MONTH YEAR VALUE",
        help="Set one usage chart value; CHART and MONTH are 0-based positions as shown by `show`",
    ),
):
    """Correct fields of a saved analysis."""
    services = _services(ctx)
    record = _load_record(services, record_id)

    changes = {
        "account_name": account_name,
        "account_number": account_number,
        "service_address": service_address,
        "statement_date": statement_date,
        "due_date": due_date,
        "total_current_charges": total,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    usage_edit = usage if usage and usage[0] is not None else None
    if not changes and usage_edit is None:
        console.print("[yellow]Nothing to change.[/] Pass at least one field option.")
        sys.exit(EXIT_CODE_FAIL)

    updated = record.with_edits(**changes)
    if usage_edit is not None:
        chart_index, month_index, year, value = usage_edit
        try:
            updated = updated.with_usage_value(chart_index, month_index, year, value)
        except ValueError as e:
            console.print(f"[red]Cannot change usage:[/] {escape(str(e))}")
            sys.exit(EXIT_CODE_FAIL)
    services.history.update(updated)
    _display_record(updated)


@app.command()
def export(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Analysis id"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination CSV file"),
):
    """Export an analysis as CSV."""
    record = _load_record(_services(ctx), record_id)
    path = output or Path(default_export_filename(record))
    try:
        export_bill_csv(record, path)
    except OSError as e:
        console.print(f"[red]Error writing CSV:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Exported to {escape(str(path))}")


@app.command()
def status(ctx: typer.Context):
    """Show provider readiness and rate-limit usage."""
    services = _services(ctx)
    settings = services.settings.load()
    if is_configured(settings):
        console.print(f"[green]✓[/] Provider '{settings.provider.value}' is configured")
    else:
        console.print(f"[yellow]![/] {NOT_CONFIGURED_HINT}")

    used = len(services.governor.window_usage())
    console.print(f"Requests in the last {WINDOW_SECONDS // 60} minutes: {used}/{MAX_REQUESTS}")
    decision = services.governor.check_limit()
    if not decision.allowed:
        console.print(f"[yellow]Rate limit reached.[/] Try again in {decision.retry_after_seconds} seconds.")


def _mask(secret: str) -> str:
    if not secret:
        return "[dim](not set)[/]"
    return "*" * max(len(secret) - 4, 4) + escape(secret[-4:])


@settings_app.command("show")
def settings_show(ctx: typer.Context):
    """Print the current settings (the API key is masked)."""
    settings = _services(ctx).settings.load()
    table = Table(show_header=False)
    table.add_row("Provider", settings.provider.value)
    table.add_row("Gemini API key", _mask(settings.gemini_api_key))
    table.add_row("Ollama URL", escape(settings.ollama_url))
    table.add_row("Ollama model", escape(settings.ollama_model))
    table.add_row("Configured", "yes" if is_configured(settings) else "no")
    console.print(table)


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    provider: Optional[AiProvider] = typer.Option(None, "--provider", "-p", help="cloud or local"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Gemini API key"),
    ollama_url: Optional[str] = typer.Option(None, "--ollama-url"),
    ollama_model: Optional[str] = typer.Option(None, "--ollama-model"),
):
    """Change and save the settings."""
    store = _services(ctx).settings
    current = store.load()
    updated = AiSettings(
        provider=provider or current.provider,
        gemini_api_key=current.gemini_api_key if api_key is None else api_key.strip(),
        ollama_url=current.ollama_url if ollama_url is None else ollama_url.strip(),
        ollama_model=current.ollama_model if ollama_model is None else ollama_model.strip(),
    )
    store.save(updated)
    console.print("[green]✓[/] Settings saved")
    if not is_configured(updated):
        console.print(f"[yellow]![/] {NOT_CONFIGURED_HINT}")


@settings_app.command("check")
def settings_check(ctx: typer.Context):
    """Verify the settings, probing the local server when it is selected."""
    settings = _services(ctx).settings.load()
    if not is_configured(settings):
        console.print(f"[red]✗[/] {NOT_CONFIGURED_HINT}")
        sys.exit(EXIT_CODE_FAIL)

    if settings.provider != AiProvider.LOCAL:
        console.print("[green]✓[/] Gemini API key is set")
        return

    try:
        models = check_connection(settings.ollama_url)
    except BillReaderError as e:
        console.print(f"[red]✗[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Connected to {escape(settings.ollama_url)} ({len(models)} models)")
    pulled = {m.split(":")[0] for m in models} | set(models)
    if settings.ollama_model not in pulled:
        console.print(f"[yellow]![/] Model '{escape(settings.ollama_model)}' is not pulled on this server")


def _format_currency(amount: float) -> str:
    """Format currency; credits keep their minus sign."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _display_record(record: BillRecord):
    """Display an analysis: details, line items and usage charts."""
    bill = record.bill
    console.print(f"\n[bold]Bill Analysis[/bold] {escape(record.id)}")
    console.print("-" * 40)

    details = [
        ("Account Name", bill.account_name),
        ("Account Number", bill.account_number),
        ("Service Address", bill.service_address),
        ("Statement Date", bill.statement_date),
        ("Service Period", " - ".join(
            p for p in (bill.service_period_start, bill.service_period_end) if p
        ) or None),
        ("Due Date", bill.due_date),
        ("Total Current Charges", _format_currency(bill.total_current_charges)),
        ("Analyzed At", record.analyzed_at),
    ]
    for label, value in details:
        if value:
            console.print(f"[bold]{label}:[/bold] {escape(value)}")
    if bill.confidence_score is not None:
        console.print(f"[bold]Confidence:[/bold] {bill.confidence_score:.0%}")

    if record.needs_review:
        console.print(
            "\n[yellow]Low confidence: the image may be unclear. "
            "Please review the extracted values and correct them with `edit`.[/]"
        )

    if bill.line_items:
        table = Table(title="Line Items")
        table.add_column("Description")
        table.add_column("Amount", justify="right")
        for item in bill.line_items:
            table.add_row(escape(item.description), _format_currency(item.amount))
        console.print(table)

    for chart_index, chart in enumerate(bill.usage_charts):
        years = chart.years
        table = Table(title=escape(f"Chart {chart_index}: {chart.title} ({chart.unit})"))
        table.add_column("#", justify="right")
        table.add_column("Month")
        for year in years:
            table.add_column(escape(year), justify="right")
        for month_index, point in enumerate(chart.data):
            values = {u.year: u.value for u in point.usage}
            table.add_row(str(month_index), escape(point.month), *[f"{values.get(y, 0):g}" for y in years])
        console.print(table)


if __name__ == "__main__":
    app()
