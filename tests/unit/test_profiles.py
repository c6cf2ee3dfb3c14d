"""Tests for profile loading, validation and connection lookup."""

import os
import textwrap
from unittest.mock import patch

import pytest

from bulkflow.core.models import StagingLifetime
from bulkflow.core.profiles import ConnectionProfile, ProfileManager


def _write_profile(directory, name, content):
    path = os.path.join(directory, f"{name}.yml")
    with open(path, "w", encoding="utf-8") as f:
        f.write(textwrap.dedent(content))
    return path


@pytest.fixture
def profile_dir(tmp_path):
    _write_profile(
        str(tmp_path),
        "dev",
        """
        version: "1.0"
        variables:
          db_dir: ${BULKFLOW_TEST_DB_DIR|/tmp/bulk}
          db_file: ${db_dir}/warehouse.db
        connections:
          warehouse:
            url: sqlite:///${db_file}
            options:
              echo: false
          memory:
            url: sqlite://
        bulk:
          batch_size: 250
          staging_lifetime: physical
        """,
    )
    return str(tmp_path)


class TestProfileManager:
    def test_get_connection_substitutes_variables(self, profile_dir):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("BULKFLOW_TEST_DB_DIR", None)
            connection = ProfileManager(profile_dir).get_connection("warehouse")
        assert connection.url == "sqlite:////tmp/bulk/warehouse.db"
        assert connection.options == {"echo": False}

    def test_environment_overrides_default(self, profile_dir):
        with patch.dict(os.environ, {"BULKFLOW_TEST_DB_DIR": "/data"}):
            connection = ProfileManager(profile_dir).get_connection("warehouse")
        assert connection.url == "sqlite:////data/warehouse.db"

    def test_list_connections(self, profile_dir):
        assert ProfileManager(profile_dir).list_connections() == ["warehouse", "memory"]
        assert ProfileManager(profile_dir, "prod").list_connections() == []

    def test_unknown_connection(self, profile_dir):
        with pytest.raises(ValueError, match="Available connections"):
            ProfileManager(profile_dir).get_connection("nope")

    def test_bulk_settings(self, profile_dir):
        with patch.dict(os.environ, {"BULKFLOW_BATCH_SIZE": "10"}):
            settings = ProfileManager(profile_dir).get_bulk_settings()
        assert settings.batch_size == 10
        assert settings.staging_lifetime == StagingLifetime.PHYSICAL_PSEUDO

    def test_missing_profile(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ProfileManager(str(tmp_path), "staging").load_profile()

    def test_invalid_yaml(self, tmp_path):
        _write_profile(str(tmp_path), "dev", "connections: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            ProfileManager(str(tmp_path)).load_profile()

    def test_validation_errors(self, tmp_path):
        _write_profile(
            str(tmp_path),
            "dev",
            """
            connections:
              broken:
                options: {}
            bulk:
              unknown_key: 1
            """,
        )
        manager = ProfileManager(str(tmp_path))
        result = manager.validate_profile(manager.profile_path())
        assert not result
        assert any("missing required 'url'" in e for e in result.errors)
        assert any("unknown_key" in e for e in result.errors)
        with pytest.raises(ValueError, match="Profile validation failed"):
            manager.load_profile()

    def test_version_warning(self, tmp_path):
        _write_profile(str(tmp_path), "dev", 'version: "2.0"\n')
        manager = ProfileManager(str(tmp_path))
        result = manager.validate_profile(manager.profile_path())
        assert result.is_valid
        assert result.warnings

    def test_profile_is_cached(self, profile_dir):
        manager = ProfileManager(profile_dir)
        assert manager.load_profile() is manager.load_profile()
        manager.clear_cache()
        assert manager._profile_cache == {}


class TestConnectionProfile:
    def test_from_dict_requires_mapping(self):
        with pytest.raises(ValueError, match="must be a dictionary"):
            ConnectionProfile.from_dict("x", "sqlite://")

    def test_options_must_be_mapping(self):
        with pytest.raises(ValueError, match="options"):
            ConnectionProfile.from_dict("x", {"url": "sqlite://", "options": [1]})
