"""Tests for settings loading from defaults, environment and TOML files."""

from pathlib import Path

import orjson
import pytest

from quota_proxy.config import ConfigurationError, Settings, get_settings


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep developer config files and variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("CONFIG_FILE", "QUOTA_PROXY_CONFIG_OVERRIDES"):
        monkeypatch.delenv(name, raising=False)


def write_config(path: Path, content: str) -> Path:
    path.write_text(content)
    return path


class TestDefaults:
    def test_quota_policy_defaults(self):
        settings = Settings()

        assert settings.quota.capacity_per_account == 2.0
        assert settings.quota.dedicated_allotment == 1.0
        assert settings.quota.recovery_fraction == 0.2

    def test_flow_defaults(self):
        settings = Settings()

        assert settings.oauth.state_ttl_seconds == 300
        assert settings.oauth.use_pkce is False
        assert settings.oauth.client_secret is None
        assert settings.device_flow.poll_interval_seconds == 5.0
        assert settings.device_flow.token_url.endswith("/token")

    def test_scheduler_defaults(self):
        scheduler = Settings().scheduler

        assert scheduler.enabled
        assert scheduler.token_refresh_buffer_seconds == 600
        assert scheduler.token_refresh_max_retries == 3


class TestEnvironment:
    def test_nested_variable(self, monkeypatch):
        monkeypatch.setenv("QUOTA__CAPACITY_PER_ACCOUNT", "5")

        assert Settings().quota.capacity_per_account == 5.0

    def test_database_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE__PATH", str(tmp_path / "other.db"))

        assert Settings().database.path == tmp_path / "other.db"

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("QUOTA__RECOVERY_FRACTION", "1.5")

        with pytest.raises(ValueError):
            Settings()


class TestTomlConfig:
    def test_explicit_file(self, tmp_path):
        path = write_config(
            tmp_path / "custom.toml",
            """
[quota]
capacity_per_account = 3.0
recovery_fraction = 0.5

[oauth]
use_pkce = true
""",
        )

        settings = Settings.from_config(path)

        assert settings.quota.capacity_per_account == 3.0
        assert settings.quota.recovery_fraction == 0.5
        assert settings.oauth.use_pkce is True
        assert settings.quota.dedicated_allotment == 1.0

    def test_discovered_in_working_directory(self, tmp_path):
        write_config(tmp_path / ".quota_proxy.toml", "[logging]\nlevel = 'DEBUG'\n")

        assert Settings.from_config().logging.level == "DEBUG"

    def test_config_file_variable(self, tmp_path, monkeypatch):
        path = write_config(tmp_path / "env.toml", "[scheduler]\nenabled = false\n")
        monkeypatch.setenv("CONFIG_FILE", str(path))

        assert Settings.from_config().scheduler.enabled is False

    def test_keyword_arguments_win(self, tmp_path):
        path = write_config(tmp_path / "c.toml", "[quota]\ncapacity_per_account = 3.0\n")

        settings = Settings.from_config(path, quota={"capacity_per_account": 7.0})

        assert settings.quota.capacity_per_account == 7.0

    def test_non_toml_file_rejected(self, tmp_path):
        path = write_config(tmp_path / "config.json", "{}")

        with pytest.raises(ValueError, match="Only TOML"):
            Settings.from_config(path)

    def test_invalid_toml(self, tmp_path):
        path = write_config(tmp_path / "broken.toml", "[quota\n")

        with pytest.raises(ValueError, match="Invalid TOML"):
            Settings.from_config(path)


class TestGetSettings:
    def test_errors_become_configuration_errors(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", "quota: {}")

        with pytest.raises(ConfigurationError):
            get_settings(path)

    def test_overrides_variable(self, monkeypatch):
        monkeypatch.setenv(
            "QUOTA_PROXY_CONFIG_OVERRIDES",
            orjson.dumps({"quota": {"dedicated_allotment": 4.0}}).decode(),
        )

        assert get_settings().quota.dedicated_allotment == 4.0

    def test_malformed_overrides_ignored(self, monkeypatch):
        monkeypatch.setenv("QUOTA_PROXY_CONFIG_OVERRIDES", "{not json")

        assert get_settings().quota.dedicated_allotment == 1.0


def test_model_dump_safe_masks_client_secret():
    settings = Settings(oauth={"client_secret": "s3cret"})

    dumped = settings.model_dump_safe()

    assert dumped["oauth"]["client_secret"] == "***"
    assert settings.oauth.client_secret == "s3cret"
