"""CLI interface for OneDrive backup."""

import logging
import signal
from pathlib import Path
from typing import Any, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from . import __version__
from .config import CONFIG_DIR_ENV, load_jobs, load_jobs_from_directory
from .exceptions import ConfigError
from .output import OutputFormatter
from .scheduler import BackupScheduler
from .sync.state import MetadataStore
from .utils import parse_iso_timestamp

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> None:
    """Set up root logging for a CLI invocation."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)
    logging.getLogger("onedrive_backup").setLevel(level)
    if not verbose:
        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="Also write log messages to this file",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any, quiet: bool, json: bool, verbose: bool, log_file: Optional[str]
) -> None:
    """OneDrive Backup - mirror OneDrive accounts into local directories."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    configure_logging(verbose=verbose, quiet=quiet, log_file=log_file)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
@click.option("--no-progress", is_flag=True, help="Disable the progress spinner")
@click.pass_context
def sync(ctx: Any, config_path: Path, no_progress: bool) -> None:
    """Run backup jobs once.

    CONFIG_PATH: A job file, or a folder holding one *.json file per job

    Examples:
        onedrive-backup sync ~/.config/onedrive-backup/personal.json
        onedrive-backup sync ~/.config/onedrive-backup/
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        jobs = load_jobs(config_path)
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    scheduler = BackupScheduler(jobs)
    out.info(f"Running {len(jobs)} backup job(s)")

    if no_progress or out.quiet or out.json_output:
        results = scheduler.run_once()
    else:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=out.console,
            transient=True,
        ) as progress:
            progress.add_task(
                f"Backing up {', '.join(job.account_name for job in jobs)}",
                total=None,
            )
            results = scheduler.run_once()

    summaries = [r.to_dict() for r in results if r is not None]
    if out.json_output:
        out.output_json(summaries)
    else:
        for result in results:
            if result is None:
                continue
            status = "✓" if result.succeeded else "✗"
            out.print_summary(
                f"{status} {result.account_name}",
                [
                    ("Mode", result.sync_mode.value),
                    ("State", result.state.value),
                    ("Downloaded", str(result.files_downloaded)),
                    ("Transferred", out.format_size(result.bytes_downloaded)),
                    ("Unchanged", str(result.files_skipped)),
                    ("Moved", str(result.files_moved)),
                    ("Deleted", str(result.files_deleted)),
                    ("Errors", str(len(result.errors))),
                ],
            )
            if result.error is not None:
                out.error(f"{result.account_name}: {result.error}")

    if any(r is None or not r.succeeded for r in results):
        ctx.exit(1)


@main.command()
@click.argument(
    "config_dir",
    envvar=CONFIG_DIR_ENV,
    type=click.Path(file_okay=False, path_type=Path),
)
@click.pass_context
def daemon(ctx: Any, config_dir: Path) -> None:
    """Run every job in CONFIG_DIR on its interval until interrupted.

    CONFIG_DIR defaults to the ONEDRIVE_BACKUP_CONFIG_DIR environment variable.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        jobs = load_jobs_from_directory(config_dir)
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    scheduler = BackupScheduler(jobs)

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        scheduler.stop()

    signal.signal(signal.SIGTERM, handle_signal)

    out.info(f"Scheduling {len(jobs)} job(s) from {config_dir}")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()
        out.warning("Interrupted, stopping")
        ctx.exit(130)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
@click.pass_context
def status(ctx: Any, config_path: Path) -> None:
    """Show the checkpoint of each configured job."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        jobs = load_jobs(config_path)
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    store = MetadataStore()
    rows = []
    for job in jobs:
        metadata = store.load(store.path_for(job.local_target_directory))
        last_backup = parse_iso_timestamp(metadata.last_backup_time)
        rows.append(
            {
                "account": job.account_name,
                "mode": job.sync_mode.value,
                "target": str(job.local_target_directory),
                "last_backup": (
                    last_backup.strftime("%Y-%m-%d %H:%M:%S UTC")
                    if last_backup
                    else "never"
                ),
                "files": metadata.total_files_backed_up,
                "folders": len(metadata.folders),
                "delta": "yes" if metadata.delta_link else "no",
            }
        )

    out.output_table(
        rows,
        ["account", "mode", "target", "last_backup", "files", "folders", "delta"],
        {
            "account": "Account",
            "mode": "Mode",
            "target": "Target",
            "last_backup": "Last backup",
            "files": "Files",
            "folders": "Folders",
            "delta": "Delta link",
        },
    )


if __name__ == "__main__":
    main()
