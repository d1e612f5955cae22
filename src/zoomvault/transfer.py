"""
Transfer orchestration: ledger dedup gate, streaming Zoom -> object storage copies,
per-file progress, and cooperative cancellation
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from zoomvault.exceptions import LedgerError, TransferCancelled, ZoomVaultError
from zoomvault.ledger import TransferLedger
from zoomvault.models import RecordingFile, TransferRecord, TransferStatus
from zoomvault.naming import DestinationNameFn, content_type_for
from zoomvault.storage import ObjectStore
from zoomvault.zoom_client import RecordingDownload, ZoomClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8
DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class TransferSnapshot:
    """Read-only view of a TransferHandle at one instant"""

    file_id: str
    meeting_id: str
    destination_name: str
    status: TransferStatus
    progress_percent: int
    bytes_transferred: int
    destination_ref: str | None
    error: str | None
    already_transferred: bool

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["status"] = self.status.value
        return data


class TransferHandle:
    """Caller-observable state of one file transfer.

    Status moves pending -> transferring -> completed | failed | cancelled and
    terminal states never change. ``progress_percent`` never decreases. Only
    the orchestrator drives transitions; callers read, wait, or cancel.
    """

    def __init__(self, file: RecordingFile, destination_name: str):
        self.file = file
        self.destination_name = destination_name
        self._lock = threading.Lock()
        self._status = TransferStatus.PENDING
        self._progress = 0
        self._bytes = 0
        self._destination_ref: str | None = None
        self._error: str | None = None
        self._already_transferred = False
        self._committed = False
        self._cancel_requested = threading.Event()
        self._done = threading.Event()

    def __repr__(self) -> str:
        return (
            f"TransferHandle(file_id={self.file_id!r}, status={self._status.value!r}, "
            f"progress={self._progress})"
        )

    @property
    def file_id(self) -> str:
        return self.file.file_id

    @property
    def meeting_id(self) -> str:
        return self.file.meeting_id

    @property
    def status(self) -> TransferStatus:
        return self._status

    @property
    def progress_percent(self) -> int:
        return self._progress

    @property
    def bytes_transferred(self) -> int:
        return self._bytes

    @property
    def destination_ref(self) -> str | None:
        return self._destination_ref

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def already_transferred(self) -> bool:
        return self._already_transferred

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def snapshot(self) -> TransferSnapshot:
        with self._lock:
            return TransferSnapshot(
                file_id=self.file_id,
                meeting_id=self.meeting_id,
                destination_name=self.destination_name,
                status=self._status,
                progress_percent=self._progress,
                bytes_transferred=self._bytes,
                destination_ref=self._destination_ref,
                error=self._error,
                already_transferred=self._already_transferred,
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the transfer is terminal; returns False on timeout"""
        return self._done.wait(timeout)

    # Transitions below are called by TransferOrchestrator only

    def _finish(self, status: TransferStatus) -> None:
        self._status = status
        self._done.set()

    def _begin(self) -> bool:
        with self._lock:
            if self._status is not TransferStatus.PENDING:
                return False
            self._status = TransferStatus.TRANSFERRING
            return True

    def _set_progress(self, percent: int) -> None:
        with self._lock:
            if self._status is TransferStatus.TRANSFERRING and percent > self._progress:
                self._progress = min(100, int(percent))

    def _add_bytes(self, count: int) -> None:
        with self._lock:
            self._bytes += count

    def _commit(self) -> bool:
        """Mark the upload as acknowledged by the sink; cancel() is a no-op afterwards"""
        with self._lock:
            if self._status.is_terminal:
                return False
            self._committed = True
            return True

    def _complete(self, destination_ref: str | None, already_transferred: bool = False) -> None:
        with self._lock:
            if self._status.is_terminal:
                return
            self._destination_ref = destination_ref
            self._already_transferred = already_transferred
            self._progress = 100
            self._finish(TransferStatus.COMPLETED)

    def _fail(self, error: str) -> None:
        with self._lock:
            if self._status.is_terminal:
                return
            self._error = error
            self._finish(TransferStatus.FAILED)

    def _mark_cancelled(self) -> None:
        with self._lock:
            if self._status.is_terminal or self._committed:
                return
            self._error = "Transfer cancelled"
            self._finish(TransferStatus.CANCELLED)

    def _request_cancel(self) -> bool:
        with self._lock:
            if self._status.is_terminal or self._committed:
                return False
            self._cancel_requested.set()
            if self._status is TransferStatus.PENDING:
                self._error = "Transfer cancelled"
                self._finish(TransferStatus.CANCELLED)
            return True


@dataclass(frozen=True)
class TransferSummary:
    total: int
    completed: int
    already_transferred: int
    failed: int
    cancelled: int
    in_progress: int

    @property
    def transferred(self) -> int:
        return self.completed - self.already_transferred

    def to_dict(self) -> dict[str, int]:
        data = dataclasses.asdict(self)
        data["transferred"] = self.transferred
        return data


class TransferOrchestrator:
    """Copy Zoom recording files into object storage, at most once per completed file"""

    def __init__(
        self,
        client: ZoomClient,
        ledger: TransferLedger,
        store: ObjectStore,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.client = client
        self.ledger = ledger
        self.store = store
        self.chunk_size = chunk_size
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="zoomvault-transfer"
        )
        self._active: set[TransferHandle] = set()
        self._active_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> TransferOrchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close(cancel=exc_type is not None)

    def close(self, *, cancel: bool = False, wait: bool = True) -> None:
        """Stop accepting work; optionally cancel everything still in flight"""
        self._closed = True
        if cancel:
            self.cancel_all(self.active_handles())
        self._executor.shutdown(wait=wait)

    def active_handles(self) -> list[TransferHandle]:
        """Handles scheduled on the pool that have not finished yet"""
        with self._active_lock:
            return list(self._active)

    def _new_handle(
        self, meeting_id: str, file: RecordingFile, destination_name_fn: DestinationNameFn
    ) -> TransferHandle:
        if file.meeting_id != str(meeting_id):
            file = dataclasses.replace(file, meeting_id=str(meeting_id))
        try:
            destination_name = destination_name_fn(str(meeting_id), file)
        except Exception as e:
            handle = TransferHandle(file, "")
            handle._fail(f"Could not compute destination name: {type(e).__name__}: {e}")
            logger.error("Meeting %s, file %s: %s", meeting_id, file.file_id, handle.error)
            return handle
        return TransferHandle(file, destination_name)

    def transfer_one(
        self,
        meeting_id: str,
        file: RecordingFile,
        download_token: str,
        destination_name_fn: DestinationNameFn,
    ) -> TransferHandle:
        """Start transferring one file and return its handle without waiting.

        A file that already has a completed ledger record is not transferred
        again: the returned handle is already completed and points at the
        existing destination.
        """
        handle = self._new_handle(meeting_id, file, destination_name_fn)
        if handle.done:
            return handle

        try:
            existing = self.ledger.find_completed(handle.file_id)
        except LedgerError as e:
            handle._fail(f"Ledger lookup failed: {e.message}")
            logger.error("Meeting %s, file %s: %s", meeting_id, handle.file_id, handle.error)
            return handle

        if existing is not None:
            logger.info("File %s already transferred to %s", handle.file_id, existing.destination_ref)
            handle._complete(existing.destination_ref, already_transferred=True)
            return handle

        self._submit(handle, download_token)
        return handle

    def transfer_many(
        self,
        meeting_id: str,
        files: Sequence[RecordingFile],
        download_token: str,
        destination_name_fn: DestinationNameFn,
    ) -> list[TransferHandle]:
        """Start transferring every file of a meeting; returns handles in input order

        One bulk ledger lookup decides which files are already done. Repeated
        file IDs are transferred once.
        """
        handles: list[TransferHandle] = []
        seen: set[str] = set()
        for file in files:
            if file.file_id in seen:
                logger.debug("Ignoring duplicate file %s in batch", file.file_id)
                continue
            seen.add(file.file_id)
            handles.append(self._new_handle(meeting_id, file, destination_name_fn))

        waiting = [handle for handle in handles if not handle.done]
        try:
            existing = self.ledger.find_completed_bulk(handle.file_id for handle in waiting)
        except LedgerError as e:
            for handle in waiting:
                handle._fail(f"Ledger lookup failed: {e.message}")
            logger.error("Meeting %s: ledger lookup failed: %s", meeting_id, e.message)
            return handles

        scheduled = 0
        for handle in waiting:
            record = existing.get(handle.file_id)
            if record is not None:
                handle._complete(record.destination_ref, already_transferred=True)
            else:
                self._submit(handle, download_token)
                scheduled += 1

        logger.info(
            "Meeting %s: %d files scheduled, %d already transferred",
            meeting_id,
            scheduled,
            len(existing),
        )
        return handles

    def cancel(self, handle: TransferHandle) -> bool:
        """Request cooperative cancellation; returns False if it can no longer take effect"""
        requested = handle._request_cancel()
        if requested:
            logger.info("Cancellation requested for file %s", handle.file_id)
        return requested

    def cancel_all(self, handles: Iterable[TransferHandle]) -> int:
        """Cancel every pending or transferring handle; returns how many were signalled"""
        cancelled = 0
        for handle in handles:
            if handle.status in (TransferStatus.PENDING, TransferStatus.TRANSFERRING):
                if self.cancel(handle):
                    cancelled += 1
        return cancelled

    @staticmethod
    def wait_all(handles: Iterable[TransferHandle], timeout: float | None = None) -> bool:
        """Wait for every handle to finish; returns False if ``timeout`` elapsed first"""
        deadline = None if timeout is None else time.monotonic() + timeout
        for handle in handles:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not handle.wait(remaining):
                return False
        return True

    @staticmethod
    def summarize(handles: Iterable[TransferHandle]) -> TransferSummary:
        snapshots = [handle.snapshot() for handle in handles]
        completed = [s for s in snapshots if s.status is TransferStatus.COMPLETED]
        return TransferSummary(
            total=len(snapshots),
            completed=len(completed),
            already_transferred=sum(1 for s in completed if s.already_transferred),
            failed=sum(1 for s in snapshots if s.status is TransferStatus.FAILED),
            cancelled=sum(1 for s in snapshots if s.status is TransferStatus.CANCELLED),
            in_progress=sum(1 for s in snapshots if not s.status.is_terminal),
        )

    def _submit(self, handle: TransferHandle, download_token: str) -> None:
        with self._active_lock:
            if self._closed:
                handle._fail("Transfer orchestrator is closed")
                return
            self._active.add(handle)
        try:
            self._executor.submit(self._run, handle, download_token)
        except RuntimeError as e:
            self._release(handle)
            handle._fail(f"Could not schedule transfer: {e}")

    def _release(self, handle: TransferHandle) -> None:
        with self._active_lock:
            self._active.discard(handle)

    def _run(self, handle: TransferHandle, download_token: str) -> None:
        try:
            self._transfer(handle, download_token)
        except Exception as e:
            # Anything unexpected still has to end in a terminal state
            logger.exception("Unexpected error transferring file %s", handle.file_id)
            self._record_failure(handle, f"Unexpected error: {type(e).__name__}: {e}")
        finally:
            self._release(handle)

    def _transfer(self, handle: TransferHandle, download_token: str) -> None:
        file = handle.file
        if handle.done:
            logger.info("File %s cancelled before it started", file.file_id)
            return

        try:
            download = self.client.download_file(file, download_token)
        except ZoomVaultError as e:
            self._record_failure(handle, e.message)
            return

        with download:
            if not handle._begin():
                logger.info("File %s cancelled before it started", file.file_id)
                return
            logger.info(
                "Meeting %s: transferring file %s (%d bytes) to %s",
                file.meeting_id,
                file.file_id,
                download.total_length,
                handle.destination_name,
            )
            try:
                destination_ref = self.store.upload(
                    self._guarded_chunks(handle, download),
                    download.total_length,
                    handle.destination_name,
                    content_type_for(file),
                    handle._set_progress,
                )
            except TransferCancelled:
                handle._mark_cancelled()
                logger.info("File %s cancelled after %d bytes", file.file_id, handle.bytes_transferred)
                return
            except ZoomVaultError as e:
                self._record_failure(handle, e.message)
                return

        handle._commit()
        record = TransferRecord.completed(
            file, handle.destination_name, destination_ref, handle.bytes_transferred
        )
        try:
            self.ledger.record_outcome(record)
        except LedgerError as e:
            # The object exists but the ledger does not know; an operator must re-check it
            logger.error(
                "File %s uploaded to %s but the ledger write failed: %s",
                file.file_id,
                destination_ref,
                e.message,
            )
            handle._fail(f"Uploaded to {destination_ref} but ledger write failed: {e.message}")
            return

        handle._complete(destination_ref)
        logger.info("Meeting %s: file %s transferred", file.meeting_id, file.file_id)

    def _guarded_chunks(
        self, handle: TransferHandle, download: RecordingDownload
    ) -> Iterator[bytes]:
        for chunk in download.iter_chunks(self.chunk_size):
            if handle.cancel_requested:
                raise TransferCancelled(f"Transfer of file {handle.file_id} cancelled")
            handle._add_bytes(len(chunk))
            yield chunk

    def _record_failure(self, handle: TransferHandle, message: str) -> None:
        file = handle.file
        if handle.cancel_requested:
            # A cancelled transfer never reaches the ledger, whatever error followed
            handle._mark_cancelled()
            logger.info("File %s cancelled (%s)", file.file_id, message)
            return
        error = f"{message} (meeting {file.meeting_id}, file {file.file_id})"
        logger.error("Transfer failed: %s", error)
        try:
            self.ledger.record_outcome(TransferRecord.failed(file, handle.destination_name, error))
        except LedgerError as e:
            logger.error("Could not record failure of file %s: %s", file.file_id, e.message)
        handle._fail(error)
