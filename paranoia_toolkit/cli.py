#!/usr/bin/env python3
"""
Command-line interface for Paranoia Toolkit.

Provides configuration, reporting and maintenance tools for soft-deleted data.
Database commands load the application's declarative base from a
``module:attribute`` target so its paranoid models are known.
"""

import importlib
import sys
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple

import click
from dateutil import parser as date_parser
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from . import __version__
from .config import get_config
from .soft_delete import (
    ParanoiaError,
    RecoveryWindow,
    SoftDeleteService,
    live,
    only_deleted,
    policy_for,
    with_deleted,
)
from .soft_delete.policy import normalize_timestamp, utcnow

console = Console()


def load_base(target: str) -> Any:
    """Import a declarative base given as ``package.module:Base``."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(
            f"'{target}' is not of the form module:attribute", param_hint="TARGET"
        )
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"Cannot load '{target}': {e}", param_hint="TARGET")


def paranoid_models(base: Any) -> List[type]:
    """Paranoid classes mapped in ``base``'s registry, sorted by name."""
    classes = [
        mapper.class_
        for mapper in base.registry.mappers
        if policy_for(mapper.class_) is not None
    ]
    return sorted(classes, key=lambda cls: cls.__name__)


def find_model(base: Any, name: str) -> type:
    for cls in paranoid_models(base):
        if cls.__name__ == name:
            return cls
    raise click.BadParameter(f"No paranoid model named '{name}'", param_hint="MODEL")


def convert_identifier(cls: type, value: str) -> Any:
    """Convert a command-line identifier to the primary key's Python type."""
    columns = sa_inspect(cls).primary_key
    parts = value.split(",")
    if len(parts) != len(columns):
        raise click.BadParameter(
            f"{cls.__name__} identifiers have {len(columns)} part(s)", param_hint="IDS"
        )

    converted = []
    for column, part in zip(columns, parts):
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            python_type = str
        converted.append(python_type(part))
    return converted[0] if len(converted) == 1 else tuple(converted)


def database_url(url: Optional[str]) -> str:
    if not url:
        console.print("[red]Error: Database URL required[/red]")
        console.print("Set PARANOIA_DATABASE_URL environment variable or use --url")
        sys.exit(1)
    return url


url_option = click.option(
    "--url", envvar="PARANOIA_DATABASE_URL", help="Database connection URL"
)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Paranoia Toolkit - Soft delete tools for SQLAlchemy applications."""
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Paranoia Toolkit[/bold blue] v{__version__}\n"
                "[dim]Soft delete tools for SQLAlchemy applications[/dim]\n\n"
                "Use [bold]paranoia --help[/bold] to see available commands.",
                border_style="blue",
            )
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
            import yaml

            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Paranoia Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")
            table.add_column("Description", style="dim")

            fields = type(config).model_fields
            for setting, value in config_dict.items():
                if isinstance(value, bool):
                    value = "✓" if value else "✗"
                description = fields[setting].description or ""
                table.add_row(setting, str(value), description)

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Validating configuration...", total=None)

        try:
            config = get_config()
            warnings = []

            if config.auto_commit and config.environment == "production":
                warnings.append(
                    "auto_commit commits inside callers' transactions; "
                    "prefer explicit commits in production"
                )
            if not config.update_marker_before_hard_delete:
                warnings.append(
                    "Markers are not stamped before hard deletes; "
                    "delete listeners will see live markers"
                )

            progress.stop()
            console.print("[green]✓ Configuration is valid[/green]")

            if warnings:
                console.print("\n[yellow]⚠ Warnings:[/yellow]")
                for warning in warnings:
                    console.print(f"  [yellow]• {warning}[/yellow]")

        except Exception as e:
            progress.stop()
            console.print(f"[red]Error validating configuration: {e}[/red]")
            sys.exit(1)


@cli.command("stats")
@click.argument("target")
@url_option
def stats(target: str, url: Optional[str]) -> None:
    """Show live and soft-deleted row counts per paranoid model."""
    base = load_base(target)
    engine = create_engine(database_url(url))

    models = paranoid_models(base)
    if not models:
        console.print(f"[yellow]No paranoid models found in {target}[/yellow]")
        return

    table = Table(title="Soft Delete Statistics")
    table.add_column("Model", style="cyan")
    table.add_column("Table", style="blue")
    table.add_column("Live", style="green", justify="right")
    table.add_column("Deleted", style="red", justify="right")
    table.add_column("Total", justify="right")

    with Session(engine) as session:
        for cls in models:
            table.add_row(
                cls.__name__,
                getattr(cls, "__tablename__", ""),
                str(live(session, cls).count()),
                str(only_deleted(session, cls).count()),
                str(with_deleted(session, cls).count()),
            )

    console.print(table)


def _window(
    minutes: Optional[int], after: Optional[str], before: Optional[str]
) -> Any:
    if minutes is not None and (after or before):
        raise click.UsageError(
            "Use either --window-minutes or --deleted-after/--deleted-before"
        )
    if minutes is not None:
        return timedelta(minutes=minutes)
    if after or before:
        if not (after and before):
            raise click.UsageError(
                "--deleted-after and --deleted-before must be given together"
            )
        try:
            bounds: Tuple[datetime, datetime] = (
                date_parser.parse(after),
                date_parser.parse(before),
            )
            return RecoveryWindow.coerce(bounds)
        except (ValueError, OverflowError) as e:
            raise click.UsageError(f"Invalid recovery window: {e}")
    return None


@cli.command("restore")
@click.argument("target")
@click.argument("model")
@click.argument("ids", nargs=-1, required=True)
@url_option
@click.option("--recursive", is_flag=True, help="Also restore dependents")
@click.option(
    "--window-minutes",
    type=click.IntRange(min=0),
    help="Restore dependents deleted within N minutes of the record",
)
@click.option("--deleted-after", help="Only restore dependents deleted after this time")
@click.option(
    "--deleted-before", help="Only restore dependents deleted before this time"
)
def restore(
    target: str,
    model: str,
    ids: Tuple[str, ...],
    url: Optional[str],
    recursive: bool,
    window_minutes: Optional[int],
    deleted_after: Optional[str],
    deleted_before: Optional[str],
) -> None:
    """Restore soft-deleted MODEL rows by primary key.

    Composite keys are given comma separated, e.g. ``3,7``.
    """
    base = load_base(target)
    cls = find_model(base, model)
    window = _window(window_minutes, deleted_after, deleted_before)
    identifiers = [convert_identifier(cls, value) for value in ids]
    engine = create_engine(database_url(url))

    with Session(engine) as session:
        try:
            restored = SoftDeleteService(session).restore_by_id(
                cls, identifiers, recursive=recursive, recovery_window=window
            )
            session.commit()
        except ParanoiaError as e:
            console.print(f"[red]✗ {e}[/red]")
            sys.exit(1)

    console.print(
        f"[green]✓[/green] Restored {len(restored)} {cls.__name__} record(s)"
    )


@cli.command("purge")
@click.argument("target")
@click.argument("model")
@url_option
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    required=True,
    help="Only purge rows soft-deleted more than N days ago",
)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def purge(
    target: str, model: str, url: Optional[str], older_than_days: int, yes: bool
) -> None:
    """Permanently delete soft-deleted MODEL rows older than a cutoff."""
    base = load_base(target)
    cls = find_model(base, model)
    policy = policy_for(cls)
    engine = create_engine(database_url(url))
    cutoff = normalize_timestamp(utcnow()) - timedelta(days=older_than_days)

    with Session(engine) as session:
        candidates = [
            record
            for record in only_deleted(session, cls).all()
            if _deleted_before(policy.deleted_at(record), cutoff)
        ]
        # each purge below runs in its own transaction
        session.commit()

        if not candidates:
            console.print(f"[yellow]No {cls.__name__} rows to purge[/yellow]")
            return

        if not yes and not click.confirm(
            f"Permanently delete {len(candidates)} {cls.__name__} row(s)?"
        ):
            console.print("[yellow]Aborted[/yellow]")
            return

        service = SoftDeleteService(session)
        purged = 0
        try:
            for record in candidates:
                if service.is_hard_deleted(record):
                    # removed by an earlier record's cascade
                    continue
                if service.really_destroy(record):
                    purged += 1
            session.commit()
        except ParanoiaError as e:
            session.rollback()
            console.print(f"[red]✗ Purge failed: {e}[/red]")
            sys.exit(1)

    console.print(f"[green]✓[/green] Purged {purged} {cls.__name__} row(s)")


def _deleted_before(deleted_at: Optional[datetime], cutoff: datetime) -> bool:
    return deleted_at is not None and deleted_at < cutoff


@cli.command()
@url_option
def doctor(url: Optional[str]) -> None:
    """Run diagnostic checks on the toolkit installation."""
    console.print("[bold]Running Paranoia Toolkit diagnostics...[/bold]\n")

    checks_passed = 0
    checks_failed = 0

    try:
        get_config()
        console.print("[green]✓[/green] Configuration loaded successfully")
        checks_passed += 1
    except Exception as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        checks_failed += 1

    if url:
        try:
            from sqlalchemy import text

            engine = create_engine(url)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            console.print("[green]✓[/green] Database connection successful")
            checks_passed += 1
        except Exception as e:
            console.print(f"[red]✗[/red] Database connection failed: {e}")
            checks_failed += 1
    else:
        console.print(
            "[yellow]⚠[/yellow] No database configured (PARANOIA_DATABASE_URL not set)"
        )

    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Checks passed: [green]{checks_passed}[/green]")
    console.print(f"  Checks failed: [red]{checks_failed}[/red]")

    if checks_failed == 0:
        console.print("\n[green]✓ All systems operational[/green]")
    else:
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
