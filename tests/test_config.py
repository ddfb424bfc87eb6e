"""Tests for settings loading"""
import os

import pytest
from unittest.mock import patch

from talent_insights.config import DatabaseSettings, load_settings


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("""llm:
  model: "deepseek-chat"
  api_base: "https://api.deepseek.com/v1"
  answer_temperature: 0.5

database:
  host: "db.internal"
  name: "talent"
  max_pool_size: 5

chart:
  width: 640
  theme: "dark"
""")
    return str(path)


class TestLoadSettings:
    """Test YAML loading and environment overrides"""

    @patch.dict(os.environ, {}, clear=True)
    def test_yaml_values(self, settings_file):
        settings = load_settings(settings_file)

        assert settings.llm.answer_temperature == 0.5
        assert settings.llm.classifier_temperature == 0.0
        assert settings.database.host == "db.internal"
        assert settings.database.max_pool_size == 5
        assert settings.chart.width == 640
        assert settings.chart.height == 600
        assert settings.tracing.enabled is False

    @patch.dict(os.environ, {
        "OPENAI_API_KEY": "sk-test",
        "LLM_MODEL": "gpt-4o-mini",
        "POSTGRES_PORT": "6543",
        "LANGFUSE_ENABLED": "true"
    }, clear=True)
    def test_environment_overrides(self, settings_file):
        settings = load_settings(settings_file)

        assert settings.llm.api_key == "sk-test"
        assert settings.llm.model == "gpt-4o-mini"
        assert settings.database.port == 6543
        assert settings.tracing.enabled is True

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.yaml"))
        assert settings.llm.model == "deepseek-chat"
        assert settings.database.max_pool_size == 20


class TestDatabaseSettings:

    def test_url_wins(self):
        settings = DatabaseSettings(url="postgresql://a:b@h:1/d", host="ignored")
        assert settings.dsn == "postgresql://a:b@h:1/d"

    def test_dsn_from_parts_is_quoted(self):
        settings = DatabaseSettings(host="db", port=5433, name="talent", user="ro", password="p@ss word")
        assert settings.dsn == "postgresql://ro:p%40ss+word@db:5433/talent"
