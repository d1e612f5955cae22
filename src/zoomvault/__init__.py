"""
zoomvault - Archive Zoom cloud recordings into object storage, exactly once per file
"""

try:
    from importlib.metadata import version

    __version__ = version("zoomvault")
except Exception:
    # Fallback for editable/uninstalled checkouts
    __version__ = "0.dev0"
__author__ = "zoomvault"
__description__ = "Transfer Zoom cloud recordings into Google Cloud Storage with a dedup ledger"

from .config import Config
from .credentials import CredentialCache, ZoomTokenFetcher
from .exceptions import ConfigError, ZoomVaultError
from .ledger import SQLiteTransferLedger, TransferLedger
from .logger import setup_logging
from .output import OutputFormatter
from .storage import GCSObjectStore, ObjectStore
from .transfer import TransferHandle, TransferOrchestrator
from .zoom_client import ZoomClient

__all__ = [
    "Config",
    "ConfigError",
    "CredentialCache",
    "GCSObjectStore",
    "ObjectStore",
    "OutputFormatter",
    "SQLiteTransferLedger",
    "TransferHandle",
    "TransferLedger",
    "TransferOrchestrator",
    "ZoomClient",
    "ZoomTokenFetcher",
    "ZoomVaultError",
    "setup_logging",
    "__version__",
]
