"""
Configuration management for zoomvault
"""

import json
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from dotenv import load_dotenv
from platformdirs import user_config_dir, user_data_dir

from zoomvault.exceptions import ConfigError

# Check YAML availability at module level
try:
    from importlib.util import find_spec

    YAML_AVAILABLE = find_spec("yaml") is not None
except ImportError:
    YAML_AVAILABLE = False

APP_NAME = "zoomvault"

# config key -> environment variable
ENV_VARS = {
    "zoom_account_id": "ZOOM_ACCOUNT_ID",
    "zoom_client_id": "ZOOM_CLIENT_ID",
    "zoom_client_secret": "ZOOM_CLIENT_SECRET",
    "zoom_key": "ZOOM_KEY",
    "zoom_api_base_url": "ZOOM_API_BASE_URL",
    "zoom_oauth_token_url": "ZOOM_OAUTH_TOKEN_URL",
    "gcs_bucket_name": "GOOGLE_CLOUD_BUCKET_NAME",
    "gcs_project_id": "GOOGLE_CLOUD_PROJECT_ID",
    "gcs_credentials_file": "GOOGLE_APPLICATION_CREDENTIALS",
    "storage_prefix": "ZOOMVAULT_STORAGE_PREFIX",
    "ledger_path": "ZOOMVAULT_LEDGER_PATH",
    "max_concurrent_transfers": "ZOOMVAULT_MAX_CONCURRENT_TRANSFERS",
    "signed_url_ttl_days": "ZOOMVAULT_SIGNED_URL_TTL_DAYS",
    "log_level": "LOG_LEVEL",
}

_STRING_KEYS = {
    "zoom_account_id",
    "zoom_client_id",
    "zoom_client_secret",
    "zoom_key",
    "zoom_api_base_url",
    "zoom_oauth_token_url",
    "gcs_bucket_name",
    "gcs_project_id",
    "gcs_credentials_file",
    "storage_prefix",
    "ledger_path",
    "log_level",
}
_INT_KEYS = {"max_concurrent_transfers", "signed_url_ttl_days"}
_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Config:
    """Configuration loader and validator with multi-source support"""

    DEFAULTS: dict[str, Any] = {
        "zoom_api_base_url": "https://api.zoom.us/v2",
        "gcs_bucket_name": "mortdash-vault",
        "storage_prefix": "zoom-recordings",
        "max_concurrent_transfers": 8,
        "signed_url_ttl_days": 7,
        "log_level": "INFO",
    }

    def __init__(self, config_file: str | None = None):
        # Configuration priority:
        # 1. Explicit config file (JSON/YAML), or environment when none is given
        # 2. Default config file in the user config directory
        # 3. Defaults
        self.config_dir = Path(user_config_dir(APP_NAME))
        self.data_dir = Path(user_data_dir(APP_NAME))

        config_data: dict[str, Any] = {}
        if config_file is not None:
            config_data = self._load_config_file(config_file)
        else:
            default_config = self._find_default_config()
            if default_config:
                config_data = self._load_config_file(str(default_config))

        prefer_env_over_file = config_file is None

        def _resolve(key: str) -> Any:
            file_value = config_data.get(key)
            env_value = os.getenv(ENV_VARS[key])
            if env_value is not None and not env_value.strip():
                env_value = None
            if prefer_env_over_file:
                value = env_value if env_value is not None else file_value
            else:
                value = file_value if file_value is not None else env_value
            return value if value is not None else self.DEFAULTS.get(key)

        # Secrets are kept private so they never show up in repr() or tracebacks
        self._zoom_account_id = _resolve("zoom_account_id")
        self._zoom_client_id = _resolve("zoom_client_id")
        self._zoom_client_secret = _resolve("zoom_client_secret")
        self._zoom_key = _resolve("zoom_key")

        self.zoom_api_base_url = str(_resolve("zoom_api_base_url")).rstrip("/")
        token_override = _resolve("zoom_oauth_token_url")
        self.zoom_oauth_token_url = (
            str(token_override).strip()
            if token_override
            else _derive_token_url(self.zoom_api_base_url)
        )

        self.gcs_bucket_name = str(_resolve("gcs_bucket_name"))
        self.gcs_project_id = _resolve("gcs_project_id")
        self.gcs_credentials_file = _resolve("gcs_credentials_file")
        self.storage_prefix = str(_resolve("storage_prefix")).strip("/")

        ledger_path = _resolve("ledger_path")
        self.ledger_path = (
            Path(str(ledger_path)).expanduser() if ledger_path else self.data_dir / "ledger.db"
        )

        self.max_concurrent_transfers = _as_positive_int(
            _resolve("max_concurrent_transfers"), "max_concurrent_transfers"
        )
        self.signed_url_ttl_days = _as_positive_int(
            _resolve("signed_url_ttl_days"), "signed_url_ttl_days"
        )
        if self.signed_url_ttl_days > 7:
            raise ConfigError("signed_url_ttl_days cannot exceed 7 (V4 signed URL limit)")

        self.log_level = str(_resolve("log_level")).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {_LOG_LEVELS}")

    @property
    def zoom_account_id(self) -> str | None:
        return self._zoom_account_id

    @property
    def zoom_client_id(self) -> str | None:
        return self._zoom_client_id

    @property
    def zoom_client_secret(self) -> str | None:
        return self._zoom_client_secret

    @property
    def zoom_key(self) -> str | None:
        """Base64 ``client_id:client_secret``, an alternative to the separate fields"""
        return self._zoom_key

    def __repr__(self) -> str:
        """String representation that excludes credentials"""
        return (
            f"Config("
            f"zoom_api_base_url={self.zoom_api_base_url!r}, "
            f"gcs_bucket_name={self.gcs_bucket_name!r}, "
            f"ledger_path={str(self.ledger_path)!r}, "
            f"max_concurrent_transfers={self.max_concurrent_transfers}, "
            f"log_level={self.log_level!r}, "
            f"credentials={'configured' if self.is_valid() else 'missing'}"
            f")"
        )

    @staticmethod
    def _is_null_device(path_str: str) -> bool:
        """Return True when the provided path represents the OS null device."""
        normalized = path_str.strip().lower().replace("\\", "/")
        return normalized in {"/dev/null", "nul", "nul:", os.devnull.lower()}

    def _load_config_file(self, config_path: str) -> dict[str, Any]:
        """
        Load configuration from a JSON, YAML or .env file

        Raises:
            ConfigError: If file cannot be loaded or parsed
        """
        if self._is_null_device(config_path):
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(
                f"Config file '{config_path}' does not exist. "
                "Provide an existing JSON/YAML/.env file or remove the --config flag."
            )

        suffix = path.suffix.lower()
        if suffix in (".yaml", ".yml") and not YAML_AVAILABLE:
            raise ConfigError(
                f"Cannot load YAML config file '{path.name}': PyYAML not installed. "
                "Install with: pip install zoomvault[yaml]"
            )

        if suffix not in (".json", ".yaml", ".yml"):
            # Assume .env file; its values become environment variables
            load_dotenv(path, override=True)
            return {}

        try:
            with open(path) as f:
                data = json.load(f) if suffix == ".json" else self._load_yaml(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in config file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

        self._validate_schema(data, path)
        return dict(data)

    def _load_yaml(self, file_obj: Any) -> dict[str, Any]:
        import yaml

        try:
            result = yaml.safe_load(file_obj)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        return result if result is not None else {}

    def _find_default_config(self) -> Path | None:
        for filename in ("config.json", "config.yaml", "config.yml"):
            candidate = self.config_dir / filename
            if candidate.exists():
                return candidate
        return None

    def _validate_schema(self, data: Any, path: Path) -> None:
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON/YAML object")

        known_keys = set(ENV_VARS)
        unknown_keys = set(data) - known_keys
        if unknown_keys:
            raise ConfigError(
                f"Unknown keys in config file {path}: {', '.join(sorted(unknown_keys))}",
                f"Valid keys: {', '.join(sorted(known_keys))}",
            )

        for key, value in data.items():
            if value is None:
                continue
            if key in _STRING_KEYS and not isinstance(value, str):
                raise ConfigError(f"{key} must be a string in {path}")
            if key in _INT_KEYS and (isinstance(value, bool) or not isinstance(value, int)):
                raise ConfigError(f"{key} must be an integer in {path}")

    def validate(self) -> None:
        """Validate that Zoom credentials are present"""
        missing = []
        if not self.zoom_account_id:
            missing.append("ZOOM_ACCOUNT_ID")
        if not self.zoom_key and not (self.zoom_client_id and self.zoom_client_secret):
            missing.append("ZOOM_CLIENT_ID/ZOOM_CLIENT_SECRET (or ZOOM_KEY)")

        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}",
                "Set them in the environment, a .env file, or the config file",
            )

    def is_valid(self) -> bool:
        try:
            self.validate()
            return True
        except ConfigError:
            return False


def _as_positive_int(value: Any, key: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e
    if number < 1:
        raise ConfigError(f"{key} must be at least 1, got {number}")
    return number


def _derive_token_url(api_base_url: str) -> str:
    """Infer the OAuth token URL from the API base host (Zoom vs ZoomGov, etc.)."""
    parsed = urlsplit(api_base_url)
    host = parsed.netloc
    if host.startswith("api."):
        host = host[4:]
    scheme = parsed.scheme or "https"
    return urlunsplit((scheme, host, "/oauth/token", "", ""))
