"""
Output formatters for different output modes (JSON, human-readable)
"""

import dataclasses
import json
from collections.abc import Mapping, Sequence
from typing import Any

from rich.console import Console
from rich.table import Table

from zoomvault.models import Identity, ObjectInfo, RecordingFile, RecordingIndexEntry, TransferRecord
from zoomvault.transfer import TransferSnapshot, TransferSummary


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"


class OutputFormatter:
    """Format output in different modes"""

    def __init__(self, mode: str = "human", console: Console | None = None):
        """
        Initialize formatter

        Args:
            mode: Output mode (human, json)
            console: Rich console for human output (stdout by default)
        """
        self.mode = mode.lower()
        self.console = console or Console()

    @property
    def is_json(self) -> bool:
        return self.mode == "json"

    def output_identity(self, identity: Identity) -> None:
        if self.is_json:
            self._output_json(dataclasses.asdict(identity))
            return
        self.console.print(f"[bold]User:[/bold] {identity.display_name or identity.email}")
        self.console.print(f"[bold]Email:[/bold] {identity.email}")
        self.console.print(f"[bold]ID:[/bold] {identity.id}")

    def output_recordings(self, recordings: Sequence[RecordingIndexEntry]) -> None:
        if self.is_json:
            self._output_json([dataclasses.asdict(r) for r in recordings])
            return

        if not recordings:
            self.console.print("[yellow]No recordings found[/yellow]")
            return

        table = Table(title="Zoom Recordings")
        table.add_column("Meeting ID", style="cyan")
        table.add_column("Topic", style="green")
        table.add_column("Start Time", style="blue")
        table.add_column("Duration (min)", style="magenta")
        table.add_column("Files", style="yellow")
        table.add_column("Size")
        table.add_column("Host")

        for recording in recordings:
            table.add_row(
                recording.meeting_id,
                recording.topic,
                recording.start_time,
                str(recording.duration_minutes),
                str(recording.file_count),
                _format_size(recording.total_size_bytes),
                recording.host_email or "",
            )
        self.console.print(table)

    def output_files(
        self,
        meeting_id: str,
        files: Sequence[RecordingFile],
        transferred: Mapping[str, TransferRecord],
    ) -> None:
        """Recording files of one meeting, marking those already in storage"""
        if self.is_json:
            rows = []
            for file in files:
                record = transferred.get(file.file_id)
                row = dataclasses.asdict(file)
                row.pop("download_url", None)
                row["transferred"] = record is not None
                row["destination_ref"] = record.destination_ref if record else None
                rows.append(row)
            self._output_json({"meeting_id": meeting_id, "files": rows})
            return

        if not files:
            self.console.print(f"[yellow]No downloadable files for meeting {meeting_id}[/yellow]")
            return

        table = Table(title=f"Recording files for meeting {meeting_id}")
        table.add_column("File ID", style="cyan")
        table.add_column("Type", style="green")
        table.add_column("Ext")
        table.add_column("Size", style="yellow")
        table.add_column("Stored")

        for file in files:
            record = transferred.get(file.file_id)
            table.add_row(
                file.file_id,
                file.recording_type or file.file_type,
                file.file_extension,
                _format_size(file.size_bytes),
                record.destination_ref if record and record.destination_ref else "-",
            )
        self.console.print(table)

    def output_transfer_summary(
        self, meeting_id: str, snapshots: Sequence[TransferSnapshot], summary: TransferSummary
    ) -> None:
        if self.is_json:
            self._output_json(
                {
                    "meeting_id": meeting_id,
                    "summary": summary.to_dict(),
                    "files": [s.to_dict() for s in snapshots],
                }
            )
            return

        table = Table(title=f"Transfers for meeting {meeting_id}")
        table.add_column("File ID", style="cyan")
        table.add_column("Status")
        table.add_column("Destination / Error")

        status_styles = {
            "completed": "green",
            "failed": "red",
            "cancelled": "yellow",
        }
        for snapshot in snapshots:
            status = snapshot.status.value
            if snapshot.already_transferred:
                status = "already transferred"
            style = status_styles.get(snapshot.status.value, "white")
            detail = snapshot.destination_ref or snapshot.error or snapshot.destination_name
            table.add_row(snapshot.file_id, f"[{style}]{status}[/{style}]", detail or "")
        self.console.print(table)
        self.console.print(
            f"[bold]Transferred:[/bold] {summary.transferred}  "
            f"[bold]Already stored:[/bold] {summary.already_transferred}  "
            f"[bold]Failed:[/bold] {summary.failed}  "
            f"[bold]Cancelled:[/bold] {summary.cancelled}"
        )

    def output_objects(self, objects: Sequence[ObjectInfo]) -> None:
        if self.is_json:
            self._output_json([o.to_dict() for o in objects])
            return

        if not objects:
            self.console.print("[yellow]No objects found[/yellow]")
            return

        table = Table(title="Stored objects")
        table.add_column("Name", style="cyan")
        table.add_column("Size", style="yellow")
        table.add_column("Content Type")
        table.add_column("Created", style="blue")
        for obj in objects:
            table.add_row(
                obj.name,
                _format_size(obj.size),
                obj.content_type or "",
                obj.created_at.isoformat() if obj.created_at else "",
            )
        self.console.print(table)

    def output_records(self, records: Sequence[TransferRecord]) -> None:
        if self.is_json:
            self._output_json([r.to_dict() for r in records])
            return

        if not records:
            self.console.print("[yellow]No transfer records[/yellow]")
            return

        table = Table(title="Transfer history")
        table.add_column("Meeting ID", style="cyan")
        table.add_column("File ID")
        table.add_column("Status")
        table.add_column("Size", style="yellow")
        table.add_column("When", style="blue")
        table.add_column("Destination / Error")
        for record in records:
            style = "green" if record.destination_ref else "red"
            table.add_row(
                record.meeting_id,
                record.file_id,
                f"[{style}]{record.status.value}[/{style}]",
                _format_size(record.size_bytes),
                record.completed_at.isoformat(timespec="seconds"),
                record.destination_ref or record.error or "",
            )
        self.console.print(table)

    def output_data(self, data: dict[str, Any], message: str) -> None:
        """Structured result in JSON mode, a success line otherwise"""
        if self.is_json:
            self._output_json(data)
        else:
            self.output_success(message)

    def output_error(self, message: str, error: dict[str, Any] | None = None) -> None:
        if self.is_json:
            self._output_json({"status": "error", "error": error or {"message": message}})
        else:
            self.console.print(f"[bold red]Error:[/bold red] {message}")

    def output_success(self, message: str) -> None:
        if self.is_json:
            self._output_json({"status": "success", "message": message})
        else:
            self.console.print(f"[bold green]✓[/bold green] {message}")

    def output_info(self, message: str) -> None:
        if not self.is_json:
            self.console.print(message)

    def _output_json(self, data: Any) -> None:
        print(json.dumps(data, indent=2, default=str))
