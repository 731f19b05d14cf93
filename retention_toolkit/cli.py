#!/usr/bin/env python3
"""
Command-line interface for the Retention Toolkit.

Provides record lifecycle administration, sweep control and audit log
reporting on top of the configured database.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .audit_trail import AuditAction, AuditEntry, AuditLogger, AuditQuery
from .config import RETENTION_WINDOW_DAYS, RetentionConfig, get_config, set_config
from .database import Base, dispose, setup_database
from .soft_delete import (
    LifecycleError,
    LifecycleManager,
    LifecycleResult,
    RetentionSweeper,
    get_registry,
)

console = Console()

ENTITY_TYPES = [registration.entity_type.value for registration in get_registry()]
AUDIT_ACTIONS = [action.value for action in AuditAction]


def get_services() -> Tuple[LifecycleManager, RetentionSweeper]:
    """Build the lifecycle manager and sweeper for the configured database."""
    config = get_config()
    session_factory = setup_database(config.database_url)
    audit = AuditLogger(session_factory, config=config)
    lifecycle = LifecycleManager(session_factory, audit, config=config)
    return lifecycle, RetentionSweeper(lifecycle, config=config)


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "[dim]never[/dim]"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _print_result(result: LifecycleResult) -> None:
    console.print(
        f"[green]✓[/green] {result.entity_type} record {result.record_id}: "
        f"{result.outcome}"
    )
    if result.cascade:
        for table, rows in result.cascade.items():
            console.print(f"  [dim]{table}: {rows} rows removed[/dim]")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Load configuration from a JSON or YAML file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """Retention Toolkit - soft delete, restore and retention sweeps."""
    if config_path:
        set_config(RetentionConfig.from_file(config_path))

    logging.basicConfig(
        level=logging.DEBUG if verbose else get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Retention Toolkit[/bold blue] v{__version__}\n"
                f"[dim]Soft delete with a {RETENTION_WINDOW_DAYS} day restore "
                "window[/dim]\n\n"
                "Use [bold]retention --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def db() -> None:
    """Database setup."""
    pass


@db.command("init")
def db_init() -> None:
    """Create the participating tables and the audit log table."""
    try:
        session_factory = setup_database(get_config().database_url)
        dispose(session_factory)
        console.print(
            f"[green]✓[/green] Initialized {len(Base.metadata.tables)} tables"
        )
    except Exception as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        sys.exit(1)


@cli.group()
def records() -> None:
    """Soft delete, restore and purge individual records."""
    pass


@records.command("list")
@click.argument("entity_type", type=click.Choice(ENTITY_TYPES))
@click.option("--page", type=int, default=1, help="Page number")
@click.option("--limit", type=int, default=None, help="Records per page")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
def records_list(
    entity_type: str, page: int, limit: Optional[int], format: str
) -> None:
    """List soft-deleted records, most recent deletion first."""
    try:
        lifecycle, _ = get_services()
        result = asyncio.run(
            lifecycle.list_deleted(entity_type, page=page, limit=limit)
        )
    except (LifecycleError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if format == "json":
        console.print_json(data=result.model_dump(mode="json"))
        return

    if not result.records:
        console.print(f"[yellow]No deleted {entity_type} records[/yellow]")
        return

    pagination = result.pagination
    table = Table(
        title=(
            f"Deleted {entity_type} records "
            f"(page {pagination.page} of {pagination.pages}, {pagination.total} total)"
        )
    )
    table.add_column("ID", style="cyan")
    table.add_column("Deleted At", style="green")
    table.add_column("Deleted By", style="yellow")
    table.add_column("Age (days)", style="blue")
    table.add_column("Restorable", style="magenta")

    for item in result.records:
        table.add_row(
            str(item.record.get("id")),
            _format_time(item.deleted_at),
            item.deleted_by,
            str(item.deletion_age_days),
            "[green]yes[/green]" if item.restorable else "[red]no[/red]",
        )

    console.print(table)


@records.command("delete")
@click.argument("entity_type", type=click.Choice(ENTITY_TYPES))
@click.argument("record_id")
@click.option("--actor", required=True, help="Actor performing the deletion")
@click.option("--reason", help="Reason for the deletion")
def records_delete(
    entity_type: str, record_id: str, actor: str, reason: Optional[str]
) -> None:
    """Soft delete a record."""
    try:
        lifecycle, _ = get_services()
        result = asyncio.run(
            lifecycle.soft_delete(entity_type, record_id, actor_id=actor, reason=reason)
        )
        _print_result(result)
    except (LifecycleError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@records.command("restore")
@click.argument("entity_type", type=click.Choice(ENTITY_TYPES))
@click.argument("record_id")
@click.option("--actor", required=True, help="Actor performing the restoration")
@click.option("--reason", help="Reason for the restoration")
def records_restore(
    entity_type: str, record_id: str, actor: str, reason: Optional[str]
) -> None:
    """Restore a soft-deleted record inside the restore window."""
    try:
        lifecycle, _ = get_services()
        result = asyncio.run(
            lifecycle.restore(entity_type, record_id, actor_id=actor, reason=reason)
        )
        _print_result(result)
    except (LifecycleError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@records.command("purge")
@click.argument("entity_type", type=click.Choice(ENTITY_TYPES))
@click.argument("record_id")
@click.option("--actor", required=True, help="Actor performing the deletion")
@click.option("--reason", help="Reason for the deletion")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def records_purge(
    entity_type: str, record_id: str, actor: str, reason: Optional[str], yes: bool
) -> None:
    """Permanently delete a record and its auxiliary rows."""
    if not yes:
        click.confirm(
            f"Permanently delete {entity_type} record {record_id}? "
            "This cannot be undone",
            abort=True,
        )

    try:
        lifecycle, _ = get_services()
        result = asyncio.run(
            lifecycle.permanent_delete(
                entity_type, record_id, actor_id=actor, reason=reason
            )
        )
        _print_result(result)
    except (LifecycleError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.group()
def sweep() -> None:
    """Retention sweep control."""
    pass


@sweep.command("run")
@click.option("--actor", required=True, help="Actor starting the sweep")
@click.option("--reason", help="Reason for the manual sweep")
def sweep_run(actor: str, reason: Optional[str]) -> None:
    """Run a retention sweep now."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Sweeping expired records...", total=None)

        try:
            _, sweeper = get_services()
            report = asyncio.run(sweeper.manual_sweep(actor, reason=reason))
        except Exception as e:
            progress.stop()
            console.print(f"[red]Error running sweep: {e}[/red]")
            sys.exit(1)

    if report.skipped:
        console.print("[yellow]A sweep is already in progress; skipped[/yellow]")
        return

    table = Table(title=f"Sweep Report (cutoff {_format_time(report.cutoff)})")
    table.add_column("Table", style="cyan")
    table.add_column("Purged", style="green")
    table.add_column("Errors", style="red")

    for name, count in report.counts.items():
        table.add_row(name, str(count), str(len(report.errors.get(name, []))))
    table.add_row("audit_log", str(report.audit_entries_purged), "")

    console.print(table)

    if report.has_errors:
        console.print("\n[yellow]⚠ Failures:[/yellow]")
        for name, failures in report.errors.items():
            for failure in failures:
                console.print(f"  [yellow]• {name}: {failure}[/yellow]")
        sys.exit(1)

    console.print(f"[green]✓ Purged {report.total_purged} records[/green]")


@sweep.command("status")
def sweep_status() -> None:
    """Display sweeper status and schedule."""
    try:
        _, sweeper = get_services()
        status = asyncio.run(sweeper.get_sweep_status())
    except Exception as e:
        console.print(f"[red]Error reading sweep status: {e}[/red]")
        sys.exit(1)

    config = get_config()
    enabled = (
        "[green]enabled[/green]" if config.sweep_enabled else "[red]disabled[/red]"
    )
    console.print(
        Panel.fit(
            f"[bold]Retention Sweep[/bold]\n\n"
            f"Retention window: [cyan]{RETENTION_WINDOW_DAYS} days[/cyan]\n"
            f"Scheduled sweeps: {enabled}\n"
            f"Last sweep: {_format_time(status.last_sweep_time)} UTC\n"
            f"Next sweep: {_format_time(status.next_scheduled_time)} UTC",
            border_style="blue",
        )
    )


@sweep.command("stats")
def sweep_stats() -> None:
    """Display soft-deleted record counts per table."""
    try:
        lifecycle, _ = get_services()
        stats = lifecycle.get_retention_stats()
    except Exception as e:
        console.print(f"[red]Error calculating statistics: {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Soft-Deleted Records ({RETENTION_WINDOW_DAYS} day window)")
    table.add_column("Table", style="cyan")
    table.add_column("Deleted", style="green")
    table.add_column("Within Window", style="yellow")
    table.add_column("Ready for Cleanup", style="red")

    for row in stats:
        table.add_row(
            row.entity_type,
            str(row.total_deleted),
            str(row.within_retention),
            str(row.ready_for_cleanup),
        )

    console.print(table)


@sweep.command("schedule")
def sweep_schedule() -> None:
    """Run the recurring sweep scheduler until interrupted."""
    config = get_config()
    if not config.sweep_enabled:
        console.print("[yellow]Scheduled sweeps are disabled in configuration[/yellow]")
        sys.exit(1)

    _, sweeper = get_services()
    console.print(
        f"[green]✓[/green] Sweeping daily at "
        f"{config.sweep_hour:02d}:{config.sweep_minute:02d} {config.timezone}; "
        "press Ctrl+C to stop"
    )
    try:
        asyncio.run(sweeper.run_forever())
    except KeyboardInterrupt:
        console.print("\n[dim]Scheduler stopped[/dim]")


@cli.group()
def audit() -> None:
    """Audit log search and reporting."""
    pass


def _build_query(
    actor: Optional[str],
    action: Optional[str],
    table: Optional[str],
    target_id: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    limit: int = 50,
    offset: int = 0,
) -> AuditQuery:
    return AuditQuery(
        actor_ids=[actor] if actor else None,
        actions=[AuditAction(action)] if action else None,
        target_tables=[table] if table else None,
        target_ids=[target_id] if target_id else None,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


def _entries_to_rows(entries: List[AuditEntry]) -> List[Dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in entries]


def _entries_to_frame(entries: List[AuditEntry]) -> pd.DataFrame:
    # Spreadsheet cells cannot hold mappings
    df = pd.DataFrame(_entries_to_rows(entries))
    if "metadata" in df.columns:
        df["metadata"] = df["metadata"].map(
            lambda value: json.dumps(value, sort_keys=True) if value else ""
        )
    return df


@audit.command("search")
@click.option("--actor", help="Filter by actor ID")
@click.option("--action", type=click.Choice(AUDIT_ACTIONS), help="Filter by action")
@click.option("--table", help="Filter by target table")
@click.option("--target-id", help="Filter by record ID")
@click.option("--start-date", type=click.DateTime(), help="Start date for search")
@click.option("--end-date", type=click.DateTime(), help="End date for search")
@click.option("--page", type=int, default=1, help="Page number")
@click.option("--limit", type=int, default=50, help="Entries per page")
@click.option("--format", type=click.Choice(["table", "json", "csv"]), default="table")
def audit_search(
    actor: Optional[str],
    action: Optional[str],
    table: Optional[str],
    target_id: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    page: int,
    limit: int,
    format: str,
) -> None:
    """Search audit log entries."""
    try:
        if page < 1:
            raise ValueError("Page must be 1 or greater")
        query = _build_query(
            actor,
            action,
            table,
            target_id,
            start_date,
            end_date,
            limit=limit,
            offset=(page - 1) * limit,
        )
        lifecycle, _ = get_services()
        audit_logger = lifecycle.audit_logger
        entries = asyncio.run(audit_logger.query(query))
        total = asyncio.run(audit_logger.count(query))
    except Exception as e:
        console.print(f"[red]Error searching audit log: {e}[/red]")
        sys.exit(1)

    if not entries:
        console.print("[yellow]No audit entries found matching criteria[/yellow]")
        return

    if format == "json":
        console.print_json(data=_entries_to_rows(entries))
    elif format == "csv":
        df = _entries_to_frame(entries)
        click.echo(df.to_csv(index=False))
    else:
        result_table = Table(
            title=f"Audit Log (page {page}, {len(entries)} of {total} entries)"
        )
        result_table.add_column("Timestamp", style="cyan")
        result_table.add_column("Actor", style="green")
        result_table.add_column("Action", style="yellow")
        result_table.add_column("Target", style="blue")
        result_table.add_column("Reason", style="dim")

        for entry in entries:
            target = entry.target_table
            if entry.target_id is not None:
                target = f"{target}:{entry.target_id}"

            action_text = entry.action
            if entry.action == AuditAction.SWEEP_ERROR.value:
                action_text = f"[red]{entry.action}[/red]"

            result_table.add_row(
                _format_time(entry.created_at),
                entry.actor_id or "system",
                action_text,
                target,
                entry.reason or "",
            )

        console.print(result_table)


@audit.command("export")
@click.option(
    "--start-date", type=click.DateTime(), required=True, help="Start date for export"
)
@click.option(
    "--end-date", type=click.DateTime(), required=True, help="End date for export"
)
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
def audit_export(
    start_date: datetime, end_date: datetime, output: str, format: str
) -> None:
    """Export the audit log for a date range."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting audit log...", total=None)

        try:
            lifecycle, _ = get_services()
            audit_logger = lifecycle.audit_logger

            entries: List[AuditEntry] = []
            offset = 0
            while True:
                query = AuditQuery(
                    start_date=start_date,
                    end_date=end_date,
                    sort_desc=False,
                    limit=1000,
                    offset=offset,
                )
                batch = asyncio.run(audit_logger.query(query))
                entries.extend(batch)
                if len(batch) < query.limit:
                    break
                offset += query.limit

            progress.update(
                task, description=f"Found {len(entries)} entries, exporting..."
            )

            df = _entries_to_frame(entries)

            output_path = Path(output)
            if format == "json":
                df.to_json(output_path, orient="records", date_format="iso", indent=2)
            elif format == "excel":
                df.to_excel(output_path, index=False, engine="openpyxl")
            else:
                df.to_csv(output_path, index=False)

            progress.stop()
            console.print(
                f"[green]✓ Exported {len(entries)} audit entries to "
                f"{output_path}[/green]"
            )

        except Exception as e:
            progress.stop()
            console.print(f"[red]Error exporting audit log: {e}[/red]")
            sys.exit(1)


@audit.command("verify")
@click.option("--start-date", type=click.DateTime(), help="Start date to verify")
@click.option("--end-date", type=click.DateTime(), help="End date to verify")
def audit_verify(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    """Verify audit entry checksums."""
    try:
        lifecycle, _ = get_services()
        results = asyncio.run(
            lifecycle.audit_logger.verify_integrity(
                start_date=start_date, end_date=end_date
            )
        )
    except Exception as e:
        console.print(f"[red]Error verifying audit log: {e}[/red]")
        sys.exit(1)

    if results["invalid"]:
        console.print(
            f"[red]✗ {results['invalid']} of {results['total_checked']} audit "
            "entries failed checksum verification:[/red]"
        )
        for entry_id in results["invalid_entries"]:
            console.print(f"  [red]• {entry_id}[/red]")
        sys.exit(1)

    console.print(
        f"[green]✓ All {results['total_checked']} audit entries verified[/green]"
    )


@cli.group()
def config() -> None:
    """Manage toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config = get_config()
        config_dict = config.to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            import yaml  # type: ignore[import-untyped]

            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Retention Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": [
                    "application_name",
                    "environment",
                    "timezone",
                    "database_url",
                    "log_level",
                ],
                "Audit Log": ["audit_log_retention_days", "audit_checksum_algorithm"],
                "Sweep": ["sweep_enabled", "sweep_hour", "sweep_minute"],
                "Listings": ["default_page_size", "max_page_size"],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict[setting]
                    if isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            table.add_row("[bold]Retention[/bold]", "")
            table.add_row("  retention_window_days", f"{RETENTION_WINDOW_DAYS} (fixed)")

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    try:
        config = get_config()
    except Exception as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        sys.exit(1)

    issues = []
    warnings = []

    if config.default_page_size > config.max_page_size:
        issues.append("default_page_size must not exceed max_page_size")

    if config.environment == "production" and config.database_url.startswith("sqlite"):
        warnings.append("SQLite database not recommended for production")

    if not config.sweep_enabled:
        warnings.append(
            "Scheduled sweeps are disabled - expired records will not be purged"
        )

    if issues:
        console.print("[red]✗ Configuration validation failed:[/red]")
        for issue in issues:
            console.print(f"  [red]• {issue}[/red]")
        sys.exit(1)

    console.print("[green]✓ Configuration is valid[/green]")

    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


if __name__ == "__main__":
    cli()
