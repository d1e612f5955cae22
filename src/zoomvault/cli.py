"""
zoomvault – unified CLI entrypoint (Click group)

Subcommands:
- whoami: resolve a Zoom identity
- recordings / files: browse recordings and their files
- transfer: copy a meeting's files into object storage
- delete-recording: trash or delete a file on Zoom
- storage: list, sign, and delete stored objects
- history: show the transfer ledger
"""

import logging
import os
import re
import sys
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime, timedelta
from functools import cached_property, wraps
from typing import Any
from urllib.parse import unquote

import rich_click as click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from zoomvault import __version__
from zoomvault.config import Config
from zoomvault.credentials import CredentialCache, ZoomTokenFetcher
from zoomvault.exceptions import NotFoundError, ZoomVaultError
from zoomvault.ledger import SQLiteTransferLedger, TransferLedger
from zoomvault.logger import setup_logging
from zoomvault.models import LedgerStatus
from zoomvault.naming import meeting_folder_policy, topic_folder_policy
from zoomvault.output import OutputFormatter
from zoomvault.storage import GCSObjectStore, ObjectStore
from zoomvault.transfer import TransferHandle, TransferOrchestrator, TransferSnapshot
from zoomvault.zoom_client import ZoomClient

# Rich-click configuration
click.rich_click.TEXT_MARKUP = "rich"
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True

console = Console()
logger = logging.getLogger(__name__)


def _autoload_dotenv() -> None:
    """Load the nearest .env file unless ZOOMVAULT_NO_DOTENV is set.

    Existing environment variables are never overridden.
    """
    if os.getenv("ZOOMVAULT_NO_DOTENV"):
        return
    from dotenv import find_dotenv, load_dotenv

    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path, override=False)


class Services:
    """Lazily built collaborators shared by one command invocation"""

    def __init__(self, config: Config):
        self.config = config

    @cached_property
    def client(self) -> ZoomClient:
        cfg = self.config
        cfg.validate()
        if cfg.zoom_client_id and cfg.zoom_client_secret:
            fetcher = ZoomTokenFetcher(
                str(cfg.zoom_account_id),
                cfg.zoom_client_id,
                cfg.zoom_client_secret,
                cfg.zoom_oauth_token_url,
            )
        else:
            fetcher = ZoomTokenFetcher.from_zoom_key(
                str(cfg.zoom_account_id), str(cfg.zoom_key), cfg.zoom_oauth_token_url
            )
        return ZoomClient(CredentialCache(fetcher), base_url=cfg.zoom_api_base_url)

    @cached_property
    def ledger(self) -> TransferLedger:
        return SQLiteTransferLedger(self.config.ledger_path)

    @cached_property
    def store(self) -> ObjectStore:
        return GCSObjectStore(
            self.config.gcs_bucket_name,
            project=self.config.gcs_project_id,
            credentials_file=self.config.gcs_credentials_file,
        )

    def orchestrator(self) -> TransferOrchestrator:
        return TransferOrchestrator(
            self.client,
            self.ledger,
            self.store,
            max_workers=self.config.max_concurrent_transfers,
        )


def build_services(config_path: str | None) -> Services:
    return Services(Config(config_path) if config_path else Config())


def validate_meeting_id(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    """
    Normalize and validate a meeting ID

    Accepts numeric IDs and Zoom meeting UUIDs, including UUIDs pasted
    percent-encoded or with a trailing fragment/query.
    """
    if value is None:
        return None

    raw = str(value).strip().split("#", 1)[0].split("?", 1)[0].rstrip("/")
    decoded = unquote(raw)
    # Double-encoded UUIDs come from copying API paths
    if decoded != raw:
        decoded = unquote(decoded)
    normalized = "".join(decoded.split())

    if not normalized:
        raise click.BadParameter("Meeting ID cannot be empty")
    if ".." in normalized or "\\" in normalized:
        raise click.BadParameter(
            "Meeting ID contains invalid characters (path traversal attempt detected)"
        )
    if normalized.isdigit():
        if len(normalized) > 12:
            raise click.BadParameter(f"Numeric meeting ID is too long ({len(normalized)} digits)")
        return normalized
    if re.match(r"^(?=.*[A-Za-z0-9])[A-Za-z0-9+/=_-]{2,100}$", normalized):
        return normalized
    raise click.BadParameter(
        f"Invalid meeting ID format: {normalized!r}. "
        "Expected a numeric ID or a UUID (alphanumeric with +/=_- characters)"
    )


def _validate_date(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    if not re.match(r"^\d{4}-\d{2}-\d{2}$", value):
        raise click.BadParameter(f"Date must be YYYY-MM-DD, got: {value}")
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError as e:
        raise click.BadParameter(f"Invalid date: {e}")
    return value


def _utc_today() -> date:
    """Return today's date in UTC (date portion only)."""
    return datetime.now(UTC).date()


def _calc_range(range_opt: str) -> tuple[str, str]:
    today = _utc_today()
    if range_opt == "today":
        f = t = today
    elif range_opt == "yesterday":
        f = t = today - timedelta(days=1)
    elif range_opt == "last-7-days":
        f, t = today - timedelta(days=6), today
    elif range_opt == "last-30-days":
        f, t = today - timedelta(days=29), today
    else:
        raise click.BadParameter(f"Invalid range: {range_opt}")
    return f.strftime("%Y-%m-%d"), t.strftime("%Y-%m-%d")


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """--json/--verbose/--debug/--config, logging setup, and a formatter for each command"""

    @click.option("--json", "-j", "json_mode", is_flag=True, help="JSON output mode")
    @click.option("--verbose", "-v", is_flag=True, help="Verbose output")
    @click.option("--debug", "-d", is_flag=True, help="Debug output")
    @click.option(
        "--config", type=click.Path(exists=True, dir_okay=False), help="Path to config file"
    )
    @wraps(func)
    def wrapper(
        *args: Any, json_mode: bool, verbose: bool, debug: bool, config: str | None, **kwargs: Any
    ) -> Any:
        log_level = "DEBUG" if debug else ("INFO" if verbose else "WARNING")
        setup_logging(level=log_level, verbose=debug)
        formatter = OutputFormatter("json" if json_mode else "human", console=console)
        with _handle_errors(formatter, debug):
            return func(*args, formatter=formatter, config_path=config, **kwargs)

    return wrapper


@contextmanager
def _handle_errors(formatter: OutputFormatter, debug: bool) -> Iterator[None]:
    """Render failures as structured errors and exit with status 1"""
    try:
        yield
    except click.ClickException:
        raise
    except ZoomVaultError as e:
        logger.debug("ZoomVaultError exception caught:", exc_info=True)
        if formatter.is_json:
            formatter.output_error(e.message, e.to_dict())
        else:
            formatter.output_error(f"{e.code}: {e.message}")
            if e.details:
                formatter.output_info(e.details)
        if debug:
            raise
        sys.exit(1)
    except Exception as e:
        logger.debug("Unexpected exception caught:", exc_info=True)
        formatter.output_error(
            f"Unexpected error: {e}",
            {"code": "UNEXPECTED_ERROR", "message": str(e), "details": type(e).__name__},
        )
        if debug:
            raise
        sys.exit(1)


@click.group(help="zoomvault – Archive Zoom cloud recordings into object storage")
@click.version_option(version=__version__)
def cli() -> None:
    """Top-level Click group."""
    _autoload_dotenv()


@cli.command(name="whoami", help="Resolve a Zoom user (the token owner by default)")
@click.option("--user", "user_email", help="Email of the Zoom user to resolve")
@common_options
def whoami(user_email: str | None, formatter: OutputFormatter, config_path: str | None) -> None:
    services = build_services(config_path)
    formatter.output_identity(services.client.resolve_identity(user_email))


@cli.command(name="recordings", help="List recorded meetings in a date window (default: today)")
@click.option("--user", "user_email", help="Email of the Zoom user whose recordings to list")
@click.option("--from-date", callback=_validate_date, help="Start date (YYYY-MM-DD)")
@click.option("--to-date", callback=_validate_date, help="End date (YYYY-MM-DD)")
@click.option(
    "--range",
    "range_opt",
    type=click.Choice(["today", "yesterday", "last-7-days", "last-30-days"]),
    help="Quick date range shortcut (mutually exclusive with --from-date/--to-date)",
)
@common_options
def recordings(
    user_email: str | None,
    from_date: str | None,
    to_date: str | None,
    range_opt: str | None,
    formatter: OutputFormatter,
    config_path: str | None,
) -> None:
    if range_opt and (from_date or to_date):
        raise click.UsageError("--range cannot be used with --from-date or --to-date")
    if range_opt:
        from_date, to_date = _calc_range(range_opt)
    if from_date and to_date and from_date > to_date:
        raise click.UsageError("--from-date must be before or equal to --to-date")

    services = build_services(config_path)
    identity = services.client.resolve_identity(user_email)
    entries = services.client.list_recordings(identity, from_date, to_date)
    formatter.output_recordings(entries)


@cli.command(name="files", help="List a meeting's recording files and whether they are stored")
@click.argument("meeting_id", callback=validate_meeting_id)
@common_options
def files(meeting_id: str, formatter: OutputFormatter, config_path: str | None) -> None:
    services = build_services(config_path)
    _token, recording_files = services.client.list_recording_files(meeting_id)
    transferred = services.ledger.find_completed_bulk(f.file_id for f in recording_files)
    formatter.output_files(meeting_id, recording_files, transferred)


def _status_label(snapshot: TransferSnapshot) -> str:
    if snapshot.already_transferred:
        return "[green]already stored[/green]"
    styles = {"completed": "green", "failed": "red", "cancelled": "yellow"}
    style = styles.get(snapshot.status.value)
    return f"[{style}]{snapshot.status.value}[/{style}]" if style else snapshot.status.value


def _watch_transfers(
    handles: Sequence[TransferHandle], show_progress: bool, poll_interval: float = 0.2
) -> None:
    """Block until every handle is terminal, rendering progress bars when asked"""
    if not show_progress:
        TransferOrchestrator.wait_all(handles)
        return

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[status]}"),
        console=console,
    ) as progress:
        tasks = {
            handle.file_id: progress.add_task(
                handle.destination_name.rsplit("/", 1)[-1] or handle.file_id,
                total=100,
                status=handle.status.value,
            )
            for handle in handles
        }
        while True:
            for handle in handles:
                snapshot = handle.snapshot()
                progress.update(
                    tasks[snapshot.file_id],
                    completed=snapshot.progress_percent,
                    status=_status_label(snapshot),
                )
            if all(handle.done for handle in handles):
                break
            time.sleep(poll_interval)


@cli.command(name="transfer", help="Copy a meeting's recording files into object storage")
@click.argument("meeting_id", callback=validate_meeting_id)
@click.option(
    "--file-id", "file_ids", multiple=True, help="Only transfer these file IDs (repeatable)"
)
@click.option("--user", "user_email", help="Email of the Zoom user who owns the recordings")
@click.option(
    "--naming",
    type=click.Choice(["meeting", "topic"]),
    default="meeting",
    show_default=True,
    help="Group objects by meeting ID or by meeting topic",
)
@common_options
def transfer(
    meeting_id: str,
    file_ids: tuple[str, ...],
    user_email: str | None,
    naming: str,
    formatter: OutputFormatter,
    config_path: str | None,
) -> None:
    services = build_services(config_path)
    cfg = services.config
    identity = services.client.resolve_identity(user_email)
    download_token, recording_files = services.client.list_recording_files(meeting_id)

    if file_ids:
        available = {f.file_id for f in recording_files}
        missing = [file_id for file_id in file_ids if file_id not in available]
        if missing:
            raise NotFoundError(
                f"File(s) not found in meeting {meeting_id}: {', '.join(missing)}"
            )
        recording_files = [f for f in recording_files if f.file_id in set(file_ids)]

    if not recording_files:
        formatter.output_data(
            {"meeting_id": meeting_id, "files": []}, f"No files to transfer for {meeting_id}"
        )
        return

    resolved_meeting_id = recording_files[0].meeting_id
    if naming == "topic":
        topic = services.client.get_meeting_recordings(meeting_id).get("topic") or "Meeting"
        name_fn = topic_folder_policy(identity.email, str(topic), cfg.storage_prefix)
    else:
        name_fn = meeting_folder_policy(identity.email, cfg.storage_prefix)

    with services.orchestrator() as orchestrator:
        handles = orchestrator.transfer_many(
            resolved_meeting_id, recording_files, download_token, name_fn
        )
        try:
            _watch_transfers(handles, show_progress=not formatter.is_json)
        except KeyboardInterrupt:
            cancelled = orchestrator.cancel_all(handles)
            formatter.output_info(f"[yellow]Cancelling {cancelled} transfer(s)...[/yellow]")
            orchestrator.wait_all(handles)
        summary = orchestrator.summarize(handles)

    formatter.output_transfer_summary(
        resolved_meeting_id, [handle.snapshot() for handle in handles], summary
    )
    if summary.failed or summary.cancelled:
        sys.exit(1)


@cli.command(name="delete-recording", help="Move a recording file to the Zoom trash")
@click.argument("meeting_id", callback=validate_meeting_id)
@click.argument("file_id")
@click.option("--permanent", is_flag=True, help="Delete permanently instead of trashing")
@common_options
def delete_recording(
    meeting_id: str,
    file_id: str,
    permanent: bool,
    formatter: OutputFormatter,
    config_path: str | None,
) -> None:
    mode = "delete" if permanent else "trash"
    services = build_services(config_path)
    services.client.delete_recording_file(meeting_id, file_id, mode=mode)
    formatter.output_data(
        {"status": "success", "meeting_id": meeting_id, "file_id": file_id, "action": mode},
        f"Recording file {file_id} {'deleted' if permanent else 'moved to trash'}",
    )


@cli.group(name="storage", help="Inspect and manage stored recordings")
def storage() -> None:
    pass


@storage.command(name="ls", help="List stored objects")
@click.argument("prefix", required=False)
@common_options
def storage_ls(prefix: str | None, formatter: OutputFormatter, config_path: str | None) -> None:
    services = build_services(config_path)
    formatter.output_objects(services.store.list(prefix))


@storage.command(name="url", help="Print a time-limited (or public) URL for an object")
@click.argument("name")
@click.option("--ttl-days", type=click.IntRange(1, 7), help="Signed URL lifetime in days")
@click.option("--public", "public", is_flag=True, help="Print the public URL instead")
@common_options
def storage_url(
    name: str,
    ttl_days: int | None,
    public: bool,
    formatter: OutputFormatter,
    config_path: str | None,
) -> None:
    services = build_services(config_path)
    if not services.store.exists(name):
        raise NotFoundError(f"Object {name} does not exist")
    if public:
        url = services.store.get_public_url(name)
    else:
        days = ttl_days or services.config.signed_url_ttl_days
        url = services.store.get_access_url(name, timedelta(days=days))
    if formatter.is_json:
        formatter.output_data({"name": name, "url": url, "public": public}, url)
    else:
        console.print(url, soft_wrap=True)


@storage.command(name="rm", help="Delete one or more stored objects")
@click.argument("names", nargs=-1, required=True)
@common_options
def storage_rm(names: tuple[str, ...], formatter: OutputFormatter, config_path: str | None) -> None:
    services = build_services(config_path)
    result = services.store.bulk_delete(names)
    if formatter.is_json:
        formatter.output_data(result.to_dict(), "")
    else:
        formatter.output_info(
            f"Deleted {result.succeeded} of {result.total} object(s), {result.failed} failed"
        )
        for name, error in result.errors.items():
            formatter.output_error(f"{name}: {error}")
    if result.failed:
        sys.exit(1)


@cli.command(name="history", help="Show recorded transfer outcomes")
@click.option("--meeting-id", "meeting_ids", multiple=True, help="Restrict to meeting(s)")
@click.option("--status", type=click.Choice([s.value for s in LedgerStatus]), help="Filter by status")
@common_options
def history(
    meeting_ids: tuple[str, ...],
    status: str | None,
    formatter: OutputFormatter,
    config_path: str | None,
) -> None:
    services = build_services(config_path)
    records = services.ledger.list_records(
        meeting_ids=meeting_ids or None,
        status=LedgerStatus(status) if status else None,
    )
    formatter.output_records(records)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
