"""
Data model shared by the provider client, ledger, storage sink and orchestrator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

UNKNOWN_HOST_EMAIL = "unknown"


@dataclass(frozen=True)
class Credential:
    """Bearer token plus the absolute instant (epoch seconds) it stops being usable"""

    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def __repr__(self) -> str:
        return f"Credential(token=[REDACTED], expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    display_name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Identity:
        display_name = data.get("display_name") or " ".join(
            part for part in (data.get("first_name"), data.get("last_name")) if part
        )
        return cls(
            id=str(data.get("id", "")),
            email=str(data.get("email", "")),
            display_name=str(display_name or ""),
        )


@dataclass(frozen=True)
class RecordingIndexEntry:
    """One meeting in the recording index"""

    meeting_id: str
    uuid: str
    topic: str
    start_time: str
    duration_minutes: int
    total_size_bytes: int
    file_count: int
    host_id: str
    host_email: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RecordingIndexEntry:
        return cls(
            meeting_id=str(data.get("id", "")),
            uuid=str(data.get("uuid", "")),
            topic=str(data.get("topic") or "Meeting"),
            start_time=str(data.get("start_time", "")),
            duration_minutes=_as_int(data.get("duration")),
            total_size_bytes=_as_int(data.get("total_size")),
            file_count=_as_int(data.get("recording_count", len(data.get("recording_files") or []))),
            host_id=str(data.get("host_id", "")),
        )


@dataclass(frozen=True)
class RecordingFile:
    """One downloadable artifact of a meeting recording"""

    file_id: str
    meeting_id: str
    file_type: str
    file_extension: str
    size_bytes: int
    download_url: str
    recording_type: str = ""
    recording_start: str = ""
    status: str = "completed"

    @classmethod
    def from_api(cls, data: dict[str, Any], meeting_id: str) -> RecordingFile:
        # Zoom sometimes returns file_size as a string, and the per-file
        # meeting_id field holds the instance UUID rather than the meeting ID
        return cls(
            file_id=str(data.get("id", "")),
            meeting_id=str(meeting_id),
            file_type=str(data.get("file_type", "")),
            file_extension=str(data.get("file_extension") or data.get("file_type") or "").upper(),
            size_bytes=_as_int(data.get("file_size")),
            download_url=str(data.get("download_url", "")),
            recording_type=str(data.get("recording_type", "")),
            recording_start=str(data.get("recording_start", "")),
            status=str(data.get("status") or "completed"),
        )


class LedgerStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferRecord:
    """Ledger entry for a transfer attempt that reached a terminal state"""

    file_id: str
    meeting_id: str
    destination_name: str
    size_bytes: int
    status: LedgerStatus
    destination_ref: str | None = None
    error: str | None = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    file_type: str = ""

    def __post_init__(self) -> None:
        if not self.file_id:
            raise ValueError("TransferRecord requires a file_id")
        if self.status is LedgerStatus.COMPLETED:
            if not self.destination_ref:
                raise ValueError("completed TransferRecord requires destination_ref")
            if self.error:
                raise ValueError("completed TransferRecord must not carry an error")
        else:
            if not self.error:
                raise ValueError("failed TransferRecord requires an error message")
            if self.destination_ref:
                raise ValueError("failed TransferRecord must not carry destination_ref")

    @classmethod
    def completed(
        cls,
        file: RecordingFile,
        destination_name: str,
        destination_ref: str,
        size_bytes: int,
    ) -> TransferRecord:
        return cls(
            file_id=file.file_id,
            meeting_id=file.meeting_id,
            destination_name=destination_name,
            size_bytes=size_bytes,
            status=LedgerStatus.COMPLETED,
            destination_ref=destination_ref,
            file_type=file.file_type,
        )

    @classmethod
    def failed(cls, file: RecordingFile, destination_name: str, error: str) -> TransferRecord:
        return cls(
            file_id=file.file_id,
            meeting_id=file.meeting_id,
            destination_name=destination_name,
            size_bytes=0,
            status=LedgerStatus.FAILED,
            error=error or "Transfer failed",
            file_type=file.file_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_id": self.file_id,
            "meeting_id": self.meeting_id,
            "destination_name": self.destination_name,
            "size_bytes": self.size_bytes,
            "status": self.status.value,
            "destination_ref": self.destination_ref,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
            "file_type": self.file_type,
        }


class TransferStatus(str, Enum):
    PENDING = "pending"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELLED)


@dataclass(frozen=True)
class ObjectInfo:
    name: str
    size: int
    content_type: str | None
    created_at: datetime | None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "content_type": self.content_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (ValueError, TypeError):
        return 0
