"""
Destination naming policies and content types for transferred recording files
"""

import re
from collections.abc import Callable

from zoomvault.models import RecordingFile

DestinationNameFn = Callable[[str, RecordingFile], str]

DEFAULT_PREFIX = "zoom-recordings"

_CONTENT_TYPES = {
    "MP4": "video/mp4",
    "M4A": "audio/mp4",
    "VTT": "text/vtt",
    "TXT": "text/plain",
    "JSON": "application/json",
    "CSV": "text/csv",
    "PDF": "application/pdf",
}


def content_type_for(file: RecordingFile) -> str:
    """Map a recording file's extension to the MIME type stored on the object"""
    return _CONTENT_TYPES.get(file.file_extension.upper(), "application/octet-stream")


def safe_segment(value: str, fallback: str = "unknown") -> str:
    """Make ``value`` usable as one path segment (no slashes, no control characters)"""
    cleaned = re.sub(r"[^\w\s.@-]", "_", value or "").strip()
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = cleaned.strip("._")
    return cleaned or fallback


def owner_segment(email: str | None) -> str:
    """Folder name for a host: the lowercased local part of the email"""
    local_part = (email or "").split("@", 1)[0].lower()
    return safe_segment(local_part)


def descriptive_file_name(file: RecordingFile) -> str:
    """Human-readable, collision-free object name for one file

    e.g. ``2024-05-01T10-00-00_shared_screen_with_speaker_view_abc123.mp4``
    """
    parts = []
    if file.recording_start:
        parts.append(file.recording_start.replace(":", "-").replace("Z", ""))
    parts.append(file.recording_type or file.file_type or "recording")
    parts.append(file.file_id)
    stem = safe_segment("_".join(parts))
    extension = (file.file_extension or "bin").lower()
    return f"{stem}.{extension}"


def meeting_folder_policy(owner_email: str | None, prefix: str = DEFAULT_PREFIX) -> DestinationNameFn:
    """``<prefix>/<owner>/<meeting_id>/<descriptive name>`` (the default policy)"""
    owner = owner_segment(owner_email)

    def name_for(meeting_id: str, file: RecordingFile) -> str:
        return f"{prefix}/{owner}/{safe_segment(str(meeting_id))}/{descriptive_file_name(file)}"

    return name_for


def topic_folder_policy(
    owner_email: str | None, topic: str, prefix: str = DEFAULT_PREFIX
) -> DestinationNameFn:
    """``<prefix>/<owner>/<topic>/<descriptive name>``

    Meetings sharing a topic land in one folder; the file ID in the object
    name keeps the result deterministic and unique per file.
    """
    owner = owner_segment(owner_email)
    folder = safe_segment(topic, fallback="Meeting")

    def name_for(meeting_id: str, file: RecordingFile) -> str:
        return f"{prefix}/{owner}/{folder}/{descriptive_file_name(file)}"

    return name_for
