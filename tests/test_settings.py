"""
Import Settings Tests
"""

import os
from unittest.mock import patch

from statement_import import ImportSettings


class TestImportSettings:
    """Tests for ImportSettings.load."""

    def test_load_project_config(self, config_dir):
        settings = ImportSettings.load(config_dir)

        assert settings.date_tolerance_days == 2
        assert settings.exact_description_similarity == 1.0
        assert settings.session_ttl_seconds == 1800
        assert settings.max_rows == 10000
        assert len(settings.card_marker_patterns) == 2

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = ImportSettings.load(tmp_path)
        assert settings == ImportSettings()

    def test_yaml_values_and_unknown_keys(self, tmp_path):
        (tmp_path / "import_settings.yaml").write_text(
            "date_tolerance_days: 5\nmax_rows: 200\nsomething_else: true\n"
        )

        settings = ImportSettings.load(tmp_path)

        assert settings.date_tolerance_days == 5
        assert settings.max_rows == 200
        assert not hasattr(settings, "something_else")

    def test_environment_overrides(self, tmp_path):
        (tmp_path / "import_settings.yaml").write_text("session_ttl_seconds: 600\n")

        with patch.dict(os.environ, {"IMPORT_SESSION_TTL_SECONDS": "90", "IMPORT_MAX_FILE_BYTES": "1024"}):
            settings = ImportSettings.load(tmp_path)

        assert settings.session_ttl_seconds == 90
        assert settings.max_file_bytes == 1024
