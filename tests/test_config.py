"""
Unit tests for config module
"""

import json
import os

import pytest

from zoomvault.config import Config, ConfigError


def _set_credentials(monkeypatch):
    monkeypatch.setenv("ZOOM_ACCOUNT_ID", "test_account")
    monkeypatch.setenv("ZOOM_CLIENT_ID", "test_client")
    monkeypatch.setenv("ZOOM_CLIENT_SECRET", "test_secret")


def test_config_loads_from_env(monkeypatch):
    _set_credentials(monkeypatch)
    monkeypatch.setenv("GOOGLE_CLOUD_BUCKET_NAME", "my-bucket")
    monkeypatch.setenv("ZOOMVAULT_MAX_CONCURRENT_TRANSFERS", "3")

    config = Config()

    assert config.zoom_account_id == "test_account"
    assert config.zoom_client_id == "test_client"
    assert config.zoom_client_secret == "test_secret"
    assert config.gcs_bucket_name == "my-bucket"
    assert config.max_concurrent_transfers == 3
    config.validate()


def test_config_defaults(tmp_path):
    config = Config(os.devnull)

    assert config.zoom_api_base_url == "https://api.zoom.us/v2"
    assert config.zoom_oauth_token_url == "https://zoom.us/oauth/token"
    assert config.gcs_bucket_name == "mortdash-vault"
    assert config.storage_prefix == "zoom-recordings"
    assert config.max_concurrent_transfers == 8
    assert config.signed_url_ttl_days == 7
    assert config.log_level == "INFO"
    assert config.ledger_path == tmp_path / "data" / "ledger.db"


def test_validation_fails_without_credentials():
    config = Config(os.devnull)

    with pytest.raises(ConfigError) as exc_info:
        config.validate()

    assert "ZOOM_ACCOUNT_ID" in exc_info.value.message
    assert not config.is_valid()


def test_zoom_key_satisfies_validation(monkeypatch):
    monkeypatch.setenv("ZOOM_ACCOUNT_ID", "acc")
    monkeypatch.setenv("ZOOM_KEY", "Y2xpZW50OnNlY3JldA==")

    config = Config()

    assert config.zoom_key == "Y2xpZW50OnNlY3JldA=="
    config.validate()


def test_json_config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "zoom_account_id": "file_account",
                "zoom_client_id": "file_client",
                "zoom_client_secret": "file_secret",
                "zoom_api_base_url": "https://api.zoomgov.com/v2/",
                "ledger_path": str(tmp_path / "custom.db"),
                "signed_url_ttl_days": 2,
            }
        )
    )

    config = Config(str(path))

    assert config.zoom_account_id == "file_account"
    assert config.zoom_api_base_url == "https://api.zoomgov.com/v2"
    assert config.zoom_oauth_token_url == "https://zoomgov.com/oauth/token"
    assert config.ledger_path == tmp_path / "custom.db"
    assert config.signed_url_ttl_days == 2


def test_explicit_file_wins_over_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_BUCKET_NAME", "env-bucket")
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"gcs_bucket_name": "file-bucket"}))

    assert Config(str(path)).gcs_bucket_name == "file-bucket"


def test_environment_wins_over_default_config_file(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"gcs_bucket_name": "file-bucket"}))
    monkeypatch.setenv("GOOGLE_CLOUD_BUCKET_NAME", "env-bucket")

    assert Config().gcs_bucket_name == "env-bucket"


def test_default_config_file_is_used(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"storage_prefix": "/archive/"}))

    assert Config().storage_prefix == "archive"


def test_yaml_config_file(tmp_path):
    pytest.importorskip("yaml")
    path = tmp_path / "config.yaml"
    path.write_text("gcs_bucket_name: yaml-bucket\nmax_concurrent_transfers: 4\n")

    config = Config(str(path))

    assert config.gcs_bucket_name == "yaml-bucket"
    assert config.max_concurrent_transfers == 4


def test_dotenv_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.env"
    path.write_text("ZOOM_ACCOUNT_ID=dotenv_account\nGOOGLE_CLOUD_BUCKET_NAME=dotenv-bucket\n")

    config = Config(str(path))

    assert config.zoom_account_id == "dotenv_account"
    assert config.gcs_bucket_name == "dotenv-bucket"


def test_unknown_keys_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"output_dir": "/tmp"}))

    with pytest.raises(ConfigError, match="Unknown keys"):
        Config(str(path))


def test_wrong_types_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"max_concurrent_transfers": "eight"}))

    with pytest.raises(ConfigError, match="must be an integer"):
        Config(str(path))


def test_invalid_json_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="Invalid JSON"):
        Config(str(path))


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigError, match="does not exist"):
        Config(str(tmp_path / "nope.json"))


@pytest.mark.parametrize(
    "env_var,value",
    [
        ("ZOOMVAULT_MAX_CONCURRENT_TRANSFERS", "0"),
        ("ZOOMVAULT_SIGNED_URL_TTL_DAYS", "8"),
        ("LOG_LEVEL", "LOUD"),
    ],
)
def test_invalid_values_rejected(monkeypatch, env_var, value):
    monkeypatch.setenv(env_var, value)

    with pytest.raises(ConfigError):
        Config()


def test_repr_hides_credentials(monkeypatch):
    _set_credentials(monkeypatch)

    text = repr(Config())

    assert "test_secret" not in text
    assert "test_client" not in text
    assert "credentials=configured" in text
