"""
Tests for configuration loading and startup preconditions.
"""

import pytest

from imagerelay.components import build_components
from imagerelay.config.settings import Settings
from imagerelay.core.errors import ConfigError
from imagerelay.core.images.tokens import TokenCodec

KEY = "ab" * 32
IV = "cd" * 16


def make_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "encryption_key": KEY,
        "encryption_iv": IV,
        "storage_mock_mode": True,
    }
    values.update(overrides)
    return Settings(**values)


class TestSettingsParsing:

    def test_comma_separated_lists(self):
        settings = make_settings(
            api_keys="one, two,,three",
            allowed_mime_types="image/PNG, image/jpeg",
            cors_origins="https://a.test,https://b.test",
        )
        assert settings.api_keys_list == ["one", "two", "three"]
        assert settings.allowed_mime_types_list == ["image/png", "image/jpeg"]
        assert settings.cors_origins_list == ["https://a.test", "https://b.test"]

    def test_wildcard_cors(self):
        assert make_settings(cors_origins="*").cors_origins_list == ["*"]

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BUCKET_NAME", "from-env")
        monkeypatch.setenv("LOG_RETENTION_DAYS", "7")

        settings = make_settings()
        assert settings.storage_bucket_name == "from-env"
        assert settings.log_retention_days == 7


class TestPublicBaseUrl:

    def test_explicit_base_wins(self):
        settings = make_settings(storage_public_base_url="https://cdn.test")
        assert settings.public_base_url == "https://cdn.test"

    def test_path_style_default(self):
        settings = make_settings(
            storage_mock_mode=False,
            storage_endpoint_url="https://acct.r2.example.com/",
            storage_bucket_name="pics",
        )
        assert settings.public_base_url == "https://acct.r2.example.com/pics"

    def test_mock_mode_default(self):
        assert make_settings(storage_bucket_name="pics").public_base_url == "mock://storage/pics"


class TestStartupPreconditions:

    def test_missing_secrets_are_reported(self):
        settings = make_settings(encryption_key="", encryption_iv="")
        assert settings.validate_required_fields() == ["ENCRYPTION_KEY", "ENCRYPTION_IV"]

    def test_credentials_required_outside_mock_mode(self):
        settings = make_settings(storage_mock_mode=False)
        missing = settings.validate_required_fields()
        assert "STORAGE_ENDPOINT_URL" in missing
        assert "STORAGE_ACCESS_KEY_ID" in missing
        assert "STORAGE_SECRET_ACCESS_KEY" in missing

    def test_missing_key_is_fatal(self):
        with pytest.raises(ConfigError, match="ENCRYPTION_KEY"):
            make_settings(encryption_key="").ensure_startup_preconditions()

    def test_malformed_iv_is_fatal(self):
        with pytest.raises(ConfigError, match="ENCRYPTION_IV"):
            make_settings(encryption_iv="not-hex").ensure_startup_preconditions()

    def test_wrong_key_length_is_fatal(self):
        with pytest.raises(ConfigError, match="64 hex characters"):
            make_settings(encryption_key="ab" * 16).ensure_startup_preconditions()

    def test_build_components_refuses_bad_config(self, tmp_path):
        """Nothing is created on disk when configuration is invalid."""
        settings = make_settings(
            encryption_key="",
            database_path=str(tmp_path / "db" / "x.db"),
            upload_dir=str(tmp_path / "uploads"),
        )
        with pytest.raises(ConfigError):
            build_components(settings)
        assert not (tmp_path / "db").exists()

    def test_build_components_wires_everything(self, settings):
        components = build_components(settings)

        assert components.repository.ping() is True
        assert components.image_service.cache_dir.is_dir()
        assert set(components.scheduler.task_names) == {
            "log_retention",
            "orphan_sweep",
            "storage_compaction",
        }

    def test_matches_codec_validation(self):
        """Startup and the token codec reject a bad key with the same error."""
        settings = make_settings(encryption_key="ab" * 16)

        with pytest.raises(ConfigError) as startup:
            settings.ensure_startup_preconditions()
        with pytest.raises(ConfigError) as codec:
            TokenCodec(settings.encryption_key, settings.encryption_iv)

        assert startup.value.message == codec.value.message
