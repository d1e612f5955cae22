"""
Custom exception classes with error codes
"""

from enum import Enum
from typing import Any


class ZoomVaultError(Exception):
    """Base exception for zoomvault errors"""

    def __init__(self, message: str, code: str, details: str = ""):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON output"""
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthError(ZoomVaultError):
    """Credential exchange failed or the provider rejected the credential"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "AUTH_FAILED", details)


class IdentityNotFoundError(ZoomVaultError):
    """Operator-supplied identity did not match exactly one Zoom user"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "IDENTITY_NOT_FOUND", details)


class NoRecordingTokenError(ZoomVaultError):
    """Zoom returned no download access token for a meeting"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "NO_RECORDING_TOKEN", details)


class DownloadFailedError(ZoomVaultError):
    """Recording file download failed"""

    def __init__(self, message: str, status_code: int | None = None, details: str = ""):
        super().__init__(message, "DOWNLOAD_FAILED", details)
        self.status_code = status_code


class UploadFailedError(ZoomVaultError):
    """Object storage upload failed"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "UPLOAD_FAILED", details)


class StorageError(ZoomVaultError):
    """Object storage operation (other than upload) failed"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "STORAGE_ERROR", details)


class LedgerError(ZoomVaultError):
    """Transfer ledger read or write failed"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "LEDGER_ERROR", details)


class TransferCancelled(ZoomVaultError):
    """Transfer was cancelled by the operator (a terminal outcome, not a failure)"""

    def __init__(self, message: str = "Transfer cancelled", details: str = ""):
        super().__init__(message, "CANCELLED", details)


class PermissionDeniedError(ZoomVaultError):
    """Insufficient permissions"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "PERMISSION_DENIED", details)


class NotFoundError(ZoomVaultError):
    """Requested Zoom resource does not exist"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "NOT_FOUND", details)


class RateLimitedError(ZoomVaultError):
    """API rate limit exceeded"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "RATE_LIMITED", details)


class NetworkError(ZoomVaultError):
    """Network connection issue"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "NETWORK_ERROR", details)


class ConfigError(ZoomVaultError):
    """Missing or invalid configuration"""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message, "INVALID_CONFIG", details)


class ZoomAPIError(ZoomVaultError):
    """Zoom API returned an error not covered by a more specific class"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        zoom_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ):
        super().__init__(message, "ZOOM_API_ERROR", str(payload or ""))
        self.status_code = status_code
        self.zoom_code = zoom_code
        self.payload = payload or {}


class DeleteFailureReason(str, Enum):
    """Closed set of reasons a recording file deletion can fail"""

    NOT_PERMITTED = "not_permitted"
    NOT_FOUND = "not_found"
    MEETING_INCOMPLETE = "meeting_incomplete"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class RecordingDeleteError(ZoomVaultError):
    """Recording file deletion failed"""

    def __init__(self, message: str, reason: DeleteFailureReason, details: str = ""):
        super().__init__(message, "DELETE_FAILED", details)
        self.reason = reason

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data
