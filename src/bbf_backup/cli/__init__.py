"""CLI for Babelfish database backup and restore.

Usage:
    bbf-backup check
    bbf-backup profiles
    bbf-backup databases
    bbf-backup --profile prod backup acme backups/acme.zip
    bbf-backup restore backups/acme.zip bolt
    bbf-backup restore backups/acme.zip bolt --bbf-db babelfish_db
    bbf-backup inspect /tmp/acme_dump/toc.dat

Commands:
    check      - Connect to the server and run a trivial query
    profiles   - List profiles from bbf-backup.toml
    databases  - List logical databases
    backup     - Dump one logical database into a zip file
    restore    - Restore a zip under a new database name
    inspect    - Show the header and entries of a toc.dat file (read-only)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from bbf_backup.adapters.postgres import check_connection, list_databases
from bbf_backup.config.loader import DEFAULT_CONFIG_FILE, load_config
from bbf_backup.config.models import BackupConfig, ConnectionDescriptor
from bbf_backup.errors import DatabaseError, FormatError, ProfileNotFoundError
from bbf_backup.factory import PROFILE_ENV_VAR, get_client, resolve_profile
from bbf_backup.pipeline.backup import run_backup
from bbf_backup.pipeline.models import BackupRequest, PipelineResult, RestoreRequest
from bbf_backup.pipeline.restore import run_restore
from bbf_backup.pipeline.workdir import resolve_bbf_database
from bbf_backup.pipeline.worker import PipelineFn, PipelineWorker
from bbf_backup.toc.codec import iter_entries, read_entry_count, read_header

console = Console()
err_console = Console(stderr=True)


# ============================================================================
# Shared helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    """Route library logging through rich; quiet unless ``--verbose``."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load(args: argparse.Namespace) -> tuple[BackupConfig, str, ConnectionDescriptor] | None:
    """Load config and the active profile, printing the error on failure.

    Returns:
        ``(config, profile_name, descriptor)`` or ``None`` if either step failed.
    """
    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path)
        name, descriptor = resolve_profile(config, args.profile, args.env_prefix)
    except (FileNotFoundError, ValueError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return None
    return config, name, descriptor


def _print_batch(batch: str) -> None:
    console.print(batch, markup=False, highlight=False)


def _run_on_worker(config: BackupConfig, pipeline_fn: PipelineFn) -> PipelineResult:
    """Run a pipeline on a ``PipelineWorker`` and print progress as it arrives."""
    worker = PipelineWorker(
        on_progress=_print_batch,
        coalesce_window=config.tools.coalesce_window,
        min_duration=config.tools.min_duration,
    )
    worker.start(pipeline_fn)
    result = worker.join()
    if result is None:
        raise RuntimeError("Pipeline worker finished without a result")
    return result


def _print_result(result: PipelineResult, action: str) -> int:
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    if result.success:
        console.print(f"\n[bold green]v[/bold green] {action} complete")
        return 0
    console.print(
        f"\n[bold red]x[/bold red] {action} failed during "
        f"[bold]{result.failed_at}[/bold] ({result.error_type})"
    )
    console.print(result.error, markup=False, highlight=False)
    return 1


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_check(config: BackupConfig, name: str, descriptor: ConnectionDescriptor) -> int:
    """Connect with the active profile and run ``SELECT 1``.

    Returns:
        0 on success, 1 on failure.
    """
    bbf_db = resolve_bbf_database(None, descriptor, config.default_bbf_database)
    console.print(f"Connecting to {descriptor.redacted()}/{bbf_db}...", style="dim")
    client = get_client(descriptor, bbf_db)
    try:
        ok = await check_connection(client)
    except DatabaseError as e:
        console.print(f"[bold red]x[/bold red] Connection failed: {escape(str(e))}")
        return 1
    finally:
        await client.close()

    if not ok:
        console.print("[bold red]x[/bold red] Unexpected response from server")
        return 1
    console.print(
        f"[bold green]v[/bold green] Connected with profile: [bold cyan]{name}[/bold cyan]"
    )
    return 0


async def _async_databases(
    config: BackupConfig, descriptor: ConnectionDescriptor, include_system: bool
) -> int:
    """List logical databases on the server.

    Returns:
        0 on success, 1 on failure.
    """
    bbf_db = resolve_bbf_database(None, descriptor, config.default_bbf_database)
    client = get_client(descriptor, bbf_db)
    try:
        names = await list_databases(client, include_system=include_system)
    except DatabaseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1
    finally:
        await client.close()

    if not names:
        console.print("[yellow]No databases found.[/yellow]")
        return 0
    for name in sorted(names):
        console.print(name, markup=False, highlight=False)
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_check(args: argparse.Namespace) -> int:
    """Handle check command.

    Wraps the async implementation with ``asyncio.run()``.
    """
    loaded = _load(args)
    if loaded is None:
        return 1
    return asyncio.run(_async_check(*loaded))


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from bbf-backup.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if the config cannot be loaded.
    """
    config_path = Path(args.config) if args.config else None
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title="Connection Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Server")
    table.add_column("Database")
    table.add_column("TLS")

    for name, profile in config.profiles.items():
        table.add_row(
            name,
            profile.redacted(),
            resolve_bbf_database(None, profile, config.default_bbf_database),
            profile.tls_mode,
        )

    console.print(table)
    console.print(
        f"\n[dim]Select with[/dim] [cyan]--profile <name>[/cyan] "
        f"[dim]or[/dim] [cyan]{args.env_prefix}{PROFILE_ENV_VAR}[/cyan]"
    )
    return 0


def cmd_databases(args: argparse.Namespace) -> int:
    """Handle databases command.

    Wraps the async implementation with ``asyncio.run()``.
    """
    loaded = _load(args)
    if loaded is None:
        return 1
    config, _name, descriptor = loaded
    return asyncio.run(_async_databases(config, descriptor, args.all))


def cmd_backup(args: argparse.Namespace) -> int:
    """Handle backup command: run the backup pipeline on a worker thread."""
    loaded = _load(args)
    if loaded is None:
        return 1
    config, _name, descriptor = loaded

    request = BackupRequest(
        dbname=args.dbname,
        dest_file=Path(args.dest_file),
        bbf_db_name=args.bbf_db,
    )
    console.print(
        f"Backing up [bold cyan]{request.dbname}[/bold cyan] to {request.dest_file}"
    )
    result = _run_on_worker(
        config,
        lambda progress: run_backup(
            descriptor,
            request,
            tools=config.tools,
            progress=progress,
            default_bbf_database=config.default_bbf_database,
        ),
    )
    return _print_result(result, "Backup")


def cmd_restore(args: argparse.Namespace) -> int:
    """Handle restore command: run the restore pipeline on a worker thread."""
    loaded = _load(args)
    if loaded is None:
        return 1
    config, _name, descriptor = loaded

    request = RestoreRequest(
        zip_path=Path(args.zip_file),
        dest_dbname=args.dest_dbname,
        bbf_db_name=args.bbf_db,
    )
    console.print(
        f"Restoring {request.zip_path} as [bold cyan]{request.dest_dbname}[/bold cyan]"
    )
    result = _run_on_worker(
        config,
        lambda progress: run_restore(
            descriptor,
            request,
            tools=config.tools,
            progress=progress,
            default_bbf_database=config.default_bbf_database,
        ),
    )
    return _print_result(result, "Restore")


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print the header and entries of a ``toc.dat`` file.

    Read-only: the file is never modified.

    Returns:
        0 on success, 1 if the file is missing or malformed.
    """
    toc_path = Path(args.toc_file)
    if toc_path.is_dir():
        toc_path = toc_path / "toc.dat"

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Description")
    table.add_column("Namespace")
    table.add_column("Tag")
    table.add_column("Owner")
    table.add_column("File")

    try:
        with open(toc_path, "rb") as reader:
            header = read_header(reader)
            count = read_entry_count(reader)
            for entry in iter_entries(reader, count):
                cells = (
                    str(entry.dump_id),
                    entry.description_text,
                    (entry.namespace or b"").decode(errors="replace"),
                    entry.tag_text,
                    (entry.owner or b"").decode(errors="replace"),
                    entry.filename_text,
                )
                table.add_row(*(escape(cell) for cell in cells))
    except FileNotFoundError:
        console.print(f"[red]Error: TOC file not found: {escape(str(toc_path))}[/red]")
        return 1
    except (FormatError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    version = ".".join(str(part) for part in header.version)
    created = header.created_at.isoformat(sep=" ") if header.created_at else "unknown"
    console.print(f"[bold]Archive version:[/bold] {version}")
    console.print(f"[bold]Created:[/bold] {created}")
    console.print(f"[bold]Source database:[/bold] {escape(header.source_dbname)}")
    console.print(f"[bold]Entries:[/bold] {count}")
    console.print(table)
    return 0


# ============================================================================
# Entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="bbf-backup",
        description="Backup and restore Babelfish logical databases",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to config file (default: ./{DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Connection profile to use",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            f"(e.g., --env-prefix APP_ reads APP_{PROFILE_ENV_VAR})"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # check command
    p_check = subparsers.add_parser(
        "check",
        help="Connect to the server and run a trivial query",
    )
    p_check.set_defaults(func=cmd_check)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # databases command
    p_databases = subparsers.add_parser(
        "databases",
        help="List logical databases",
    )
    p_databases.add_argument(
        "--all",
        action="store_true",
        help="Include master, msdb and tempdb",
    )
    p_databases.set_defaults(func=cmd_databases)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Dump one logical database into a zip file",
    )
    p_backup.add_argument("dbname", help="Logical database to back up")
    p_backup.add_argument("dest_file", help="Zip file to create")
    p_backup.add_argument(
        "--bbf-db",
        default=None,
        help="Physical Babelfish database (default: from profile or config)",
    )
    p_backup.set_defaults(func=cmd_backup)

    # restore command
    p_restore = subparsers.add_parser(
        "restore",
        help="Restore a zip under a new database name",
    )
    p_restore.add_argument("zip_file", help="Zip file created by the backup command")
    p_restore.add_argument("dest_dbname", help="New logical database name")
    p_restore.add_argument(
        "--bbf-db",
        default=None,
        help="Physical Babelfish database (default: from profile or config)",
    )
    p_restore.set_defaults(func=cmd_restore)

    # inspect command
    p_inspect = subparsers.add_parser(
        "inspect",
        help="Show the header and entries of a toc.dat file",
    )
    p_inspect.add_argument("toc_file", help="toc.dat file or dump directory")
    p_inspect.set_defaults(func=cmd_inspect)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
