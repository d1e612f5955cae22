"""
Zoom API Client: identity resolution, recording listing, authenticated downloads and deletion
"""

from __future__ import annotations

import dataclasses
import logging
import urllib.parse
from collections.abc import Iterator
from datetime import UTC, datetime
from types import TracebackType
from typing import Any, NoReturn

import requests

from zoomvault.credentials import CredentialCache
from zoomvault.exceptions import (
    AuthError,
    DeleteFailureReason,
    DownloadFailedError,
    IdentityNotFoundError,
    NetworkError,
    NoRecordingTokenError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RecordingDeleteError,
    ZoomAPIError,
    ZoomVaultError,
)
from zoomvault.models import UNKNOWN_HOST_EMAIL, Identity, RecordingFile, RecordingIndexEntry

logger = logging.getLogger(__name__)

# Zoom error codes returned by DELETE meetings/{id}/recordings/{fileId}
_DELETE_REASONS_BY_ZOOM_CODE = {
    200: DeleteFailureReason.NOT_PERMITTED,
    1010: DeleteFailureReason.NOT_PERMITTED,
    1001: DeleteFailureReason.NOT_FOUND,
    3301: DeleteFailureReason.NOT_FOUND,
    3303: DeleteFailureReason.MEETING_INCOMPLETE,
}

_ALLOWED_DOWNLOAD_DOMAINS = (
    "zoom.us",
    ".zoom.us",
    "zoomgov.com",
    ".zoomgov.com",
    "zoom.com.cn",
    ".zoom.com.cn",
)


def _user_agent() -> str:
    from zoomvault import __version__

    return f"zoomvault/{__version__}"


def _utc_today() -> str:
    """Return today's UTC calendar date as YYYY-MM-DD (the date Zoom filters on)."""
    return datetime.now(UTC).date().isoformat()


class RecordingDownload:
    """An open, authenticated download stream for one recording file"""

    def __init__(self, response: requests.Response, file: RecordingFile, total_length: int):
        self._response = response
        self.file = file
        self.total_length = total_length

    def iter_chunks(self, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        """Yield the body in chunks of at most ``chunk_size`` bytes

        Raises:
            DownloadFailedError: If the connection drops mid-stream
        """
        try:
            for chunk in self._response.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            raise DownloadFailedError(
                f"Download of file {self.file.file_id} interrupted: {type(e).__name__}",
                details=str(e),
            ) from e

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> RecordingDownload:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ZoomClient:
    """Client for the Zoom recordings API backed by a shared CredentialCache"""

    def __init__(
        self,
        credentials: CredentialCache,
        *,
        base_url: str = "https://api.zoom.us/v2",
        timeout: float = 30,
        page_size: int = 300,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size

    def __repr__(self) -> str:
        return f"ZoomClient(base_url={self.base_url!r}, credentials={self.credentials!r})"

    @staticmethod
    def encode_uuid(uuid: str) -> str:
        """Double URL-encode UUID for meeting endpoints"""
        return urllib.parse.quote(urllib.parse.quote(uuid, safe=""), safe="")

    def _meeting_path(self, meeting_id: str) -> str:
        meeting_id = str(meeting_id)
        if meeting_id.isdigit():
            return meeting_id
        return self.encode_uuid(meeting_id)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated API request.

        A 401 invalidates the cached credential and the request is re-issued
        once with a fresh one. Rate limiting and server errors are surfaced
        as exceptions; backing off is left to the caller.
        """
        url = f"{self.base_url}/{endpoint}"
        logger.debug("Zoom API request: %s %s params=%s", method, url, params)

        response = self._send(method, url, params)
        if response.status_code == 401:
            logger.info("Zoom rejected the access token, refreshing")
            self.credentials.invalidate()
            response = self._send(method, url, params)

        if 200 <= response.status_code < 300:
            if response.status_code == 204:
                return {}
            try:
                data = response.json()
            except ValueError as e:
                raise ZoomAPIError(
                    "Zoom API returned invalid JSON", status_code=response.status_code
                ) from e
            return data if isinstance(data, dict) else {}

        # A second 401 means even a fresh token is rejected
        self._raise_for_error(response, endpoint)

    def _send(
        self, method: str, url: str, params: dict[str, Any] | None
    ) -> requests.Response:
        credential = self.credentials.get_credential()
        headers = {
            "Authorization": f"Bearer {credential.token}",
            "Accept": "application/json",
            "User-Agent": _user_agent(),
        }
        if method.upper() in ("POST", "PUT", "PATCH"):
            headers["Content-Type"] = "application/json"

        try:
            response = requests.request(
                method, url, headers=headers, params=params, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(
                f"Zoom API request failed: {type(e).__name__}", details=str(e)
            ) from e

        logger.debug("Zoom API response: HTTP %s", response.status_code)
        return response

    def _raise_for_error(self, response: requests.Response, endpoint: str) -> NoReturn:
        error_data: dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                error_data = parsed
        except ValueError:
            logger.debug("Non-JSON error body from %s", endpoint)

        status_code = response.status_code
        zoom_code = error_data.get("code")
        zoom_message = error_data.get("message") or f"HTTP {status_code}"

        if status_code == 401:
            self.credentials.invalidate()
            raise AuthError(
                "Authentication failed",
                details="Check ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID and ZOOM_CLIENT_SECRET",
            )
        if status_code == 403:
            raise PermissionDeniedError(
                "Permission denied", details=f"{endpoint}: {zoom_message}"
            )
        if status_code == 404:
            raise NotFoundError("Zoom resource not found", details=f"{endpoint}: {zoom_message}")
        if status_code == 429:
            raise RateLimitedError("Rate limit exceeded", details=zoom_message)
        raise ZoomAPIError(
            f"Zoom API error: {zoom_message}",
            status_code=status_code,
            zoom_code=zoom_code,
            payload=error_data,
        )

    def _paginate(
        self, endpoint: str, key: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Follow next_page_token until Zoom stops returning one"""
        items: list[dict[str, Any]] = []
        seen_tokens: set[str] = set()
        next_token: str | None = None

        while True:
            page_params: dict[str, Any] = dict(params or {})
            page_params["page_size"] = self.page_size
            if next_token:
                page_params["next_page_token"] = next_token

            response = self._make_request("GET", endpoint, params=page_params)
            items.extend(response.get(key) or [])

            next_token = response.get("next_page_token") or None
            if not next_token:
                break
            if next_token in seen_tokens:
                logger.warning("Zoom repeated page token for %s; stopping pagination", endpoint)
                break
            seen_tokens.add(next_token)

        return items

    def get_current_user(self) -> dict[str, Any]:
        """Get information about the current Zoom user ("users/me")."""
        return self._make_request("GET", "users/me")

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._make_request("GET", f"users/{urllib.parse.quote(str(user_id), safe='')}")

    def list_users(self) -> list[dict[str, Any]]:
        """Return the account's full user roster"""
        return self._paginate("users", "users")

    def resolve_identity(self, raw_identifier: str | None = None) -> Identity:
        """Resolve the Zoom user whose recordings should be listed.

        An empty identifier means the token owner ("me"). A non-empty one must
        match exactly one roster entry by case-insensitive email; otherwise
        IdentityNotFoundError is raised and "me" is never substituted.
        """
        identifier = (raw_identifier or "").strip()
        if not identifier:
            return Identity.from_api(self.get_current_user())

        wanted = identifier.lower()
        matches = [
            user for user in self.list_users() if str(user.get("email") or "").lower() == wanted
        ]
        if not matches:
            raise IdentityNotFoundError(
                f"No Zoom user found with email {identifier!r}",
                details="The identifier must match a user's email exactly (case-insensitive)",
            )
        if len(matches) > 1:
            raise IdentityNotFoundError(
                f"Email {identifier!r} matches {len(matches)} Zoom users",
                details="Identity resolution requires a unique match",
            )
        return Identity.from_api(matches[0])

    def list_recordings(
        self,
        identity: Identity,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> list[RecordingIndexEntry]:
        """List every recorded meeting for ``identity`` within the date window

        Both bounds default to today when neither is given. All pages are
        fetched before returning.
        """
        if not from_date and not to_date:
            from_date = to_date = _utc_today()

        params: dict[str, Any] = {}
        if from_date:
            params["from"] = from_date
        if to_date:
            params["to"] = to_date

        endpoint = f"users/{urllib.parse.quote(identity.id, safe='')}/recordings"
        meetings = self._paginate(endpoint, "meetings", params)
        host_emails: dict[str, str] = {}
        if identity.id and identity.email:
            host_emails[identity.id] = identity.email
        entries = []
        for meeting in meetings:
            entry = RecordingIndexEntry.from_api(meeting)
            if entry.host_id not in host_emails:
                host_emails[entry.host_id] = self._lookup_host_email(entry.host_id)
            entries.append(dataclasses.replace(entry, host_email=host_emails[entry.host_id]))

        logger.info(
            "Listed %d recorded meetings for %s (%s to %s)",
            len(entries),
            identity.email or identity.id,
            from_date,
            to_date,
        )
        return entries

    def _lookup_host_email(self, host_id: str) -> str:
        if not host_id:
            return UNKNOWN_HOST_EMAIL
        try:
            email = self.get_user(host_id).get("email")
        except ZoomVaultError as e:
            logger.warning("Could not resolve email for host %s: %s", host_id, e.message)
            return UNKNOWN_HOST_EMAIL
        return str(email) if email else UNKNOWN_HOST_EMAIL

    def get_meeting_recordings(
        self, meeting_id: str, include_download_token: bool = False
    ) -> dict[str, Any]:
        """Raw recording payload of one meeting (topic, host, recording_files)"""
        endpoint = f"meetings/{self._meeting_path(meeting_id)}/recordings"
        params = {"include_fields": "download_access_token"} if include_download_token else None
        return self._make_request("GET", endpoint, params=params)

    def list_recording_files(self, meeting_id: str) -> tuple[str, list[RecordingFile]]:
        """Return the meeting's download token and its completed recording files

        Raises:
            NoRecordingTokenError: If Zoom does not supply a download access token
        """
        data = self.get_meeting_recordings(meeting_id, include_download_token=True)

        download_token = data.get("download_access_token")
        if not download_token:
            raise NoRecordingTokenError(
                f"No download access token available for meeting {meeting_id}",
                details="Check the app has the recording:read scope and the meeting has recordings",
            )

        resolved_id = str(data.get("id") or meeting_id)
        files: list[RecordingFile] = []
        for raw in data.get("recording_files") or []:
            recording_file = RecordingFile.from_api(raw, resolved_id)
            if not recording_file.file_id or not recording_file.download_url:
                logger.debug("Skipping recording file without id/download URL: %s", raw.get("id"))
                continue
            if recording_file.status.lower() != "completed":
                logger.info(
                    "Skipping file %s of meeting %s (status: %s)",
                    recording_file.file_id,
                    resolved_id,
                    recording_file.status,
                )
                continue
            files.append(recording_file)

        return str(download_token), files

    @staticmethod
    def _validate_download_url(download_url: str) -> None:
        parsed = urllib.parse.urlparse(str(download_url))
        host = parsed.netloc.lower().split(":")[0]
        is_allowed = any(
            host == domain.lstrip(".") or host.endswith(domain)
            for domain in _ALLOWED_DOWNLOAD_DOMAINS
        )
        if parsed.scheme != "https" or not is_allowed:
            raise DownloadFailedError(f"Refusing to download from untrusted URL: {download_url}")

    def download_file(self, file: RecordingFile, download_token: str) -> RecordingDownload:
        """Open an authenticated streaming download for ``file``

        The caller owns the returned stream and must close it.

        Raises:
            DownloadFailedError: On network failure or any non-2xx response
        """
        self._validate_download_url(file.download_url)
        headers = {
            "Authorization": f"Bearer {download_token}",
            "User-Agent": _user_agent(),
            "Accept": "*/*",
        }
        try:
            response = requests.get(
                file.download_url, headers=headers, stream=True, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise DownloadFailedError(
                f"Download of file {file.file_id} failed: {type(e).__name__}", details=str(e)
            ) from e

        status_code = response.status_code
        if not 200 <= status_code < 300:
            response.close()
            raise DownloadFailedError(
                f"Download of file {file.file_id} failed (HTTP {status_code})",
                status_code=status_code,
            )

        try:
            total_length = int(response.headers.get("content-length") or 0)
        except (TypeError, ValueError):
            total_length = 0
        return RecordingDownload(response, file, total_length or file.size_bytes)

    def delete_recording_file(self, meeting_id: str, file_id: str, mode: str = "trash") -> bool:
        """Delete (or move to trash) one recording file

        Raises:
            RecordingDeleteError: With a DeleteFailureReason describing the failure
        """
        if mode not in ("delete", "trash"):
            raise ValueError(f"mode must be 'delete' or 'trash', got {mode!r}")

        endpoint = (
            f"meetings/{self._meeting_path(meeting_id)}/recordings/"
            f"{urllib.parse.quote(str(file_id), safe='')}"
        )
        try:
            self._make_request("DELETE", endpoint, params={"action": mode})
        except RateLimitedError as e:
            raise RecordingDeleteError(
                e.message, DeleteFailureReason.RATE_LIMITED, details=e.details
            ) from e
        except PermissionDeniedError as e:
            raise RecordingDeleteError(
                e.message, DeleteFailureReason.NOT_PERMITTED, details=e.details
            ) from e
        except NotFoundError as e:
            raise RecordingDeleteError(
                e.message, DeleteFailureReason.NOT_FOUND, details=e.details
            ) from e
        except ZoomAPIError as e:
            reason = _DELETE_REASONS_BY_ZOOM_CODE.get(e.zoom_code, DeleteFailureReason.UNKNOWN)
            raise RecordingDeleteError(e.message, reason, details=e.details) from e
        except (AuthError, NetworkError) as e:
            raise RecordingDeleteError(
                e.message, DeleteFailureReason.UNKNOWN, details=e.details
            ) from e

        logger.info("Deleted recording file %s of meeting %s (%s)", file_id, meeting_id, mode)
        return True
