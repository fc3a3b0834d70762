"""
Tests for config.loader and config.schema modules.

Tests cover:
- Default settings without a file
- YAML loading, empty files, invalid YAML, wrong root type
- Schema validation errors surfaced as ConfigValidationError
- Engine credential resolution (AIO reads SERPAPI_KEY)
- Router credential resolution (comma-separated and numbered OpenAI keys)
- Model overrides from the environment
"""

import pytest

from ai_visibility.config.loader import (
    load_config,
    load_settings,
    resolve_engine_credentials,
    resolve_router_credentials,
)
from ai_visibility.config.schema import RuntimeConfig, Settings, credential_name_for
from ai_visibility.exceptions import ConfigFileNotFoundError, ConfigValidationError


def write_yaml(tmp_path, content: str):
    path = tmp_path / "ai_visibility.yaml"
    path.write_text(content, encoding="utf-8")
    return path


# ============================================================================
# load_settings
# ============================================================================


class TestLoadSettings:
    """Test suite for load_settings()."""

    def test_no_path_returns_defaults(self):
        """Test that no file means every default."""
        settings = load_settings(None)

        assert settings.database_path == "./data/ai_visibility.db"
        assert settings.router.order == ["openai", "anthropic", "gemini"]
        assert settings.extraction.method == "rule_based"
        assert settings.worker.concurrency == 5
        assert settings.engines["PERPLEXITY"] == "sonar"

    def test_missing_file_raises(self, tmp_path):
        """Test that a missing file raises ConfigFileNotFoundError."""
        with pytest.raises(ConfigFileNotFoundError, match="not found"):
            load_settings(tmp_path / "nope.yaml")

    def test_empty_file_returns_defaults(self, tmp_path):
        """Test that an empty file is all defaults."""
        settings = load_settings(write_yaml(tmp_path, ""))

        assert settings == Settings()

    def test_overrides_applied(self, tmp_path):
        """Test that named values override defaults and the rest stay."""
        path = write_yaml(
            tmp_path,
            """
database_path: /tmp/x.db
router:
  order: [anthropic, openai]
  primary: anthropic
engines:
  openai: gpt-4o
extraction:
  method: llm
  cache_ttl_seconds: null
worker:
  concurrency: 8
""",
        )

        settings = load_settings(path)

        assert settings.database_path == "/tmp/x.db"
        assert settings.router.order == ["anthropic", "openai"]
        assert settings.router.primary == "anthropic"
        assert settings.engines["OPENAI"] == "gpt-4o"
        assert settings.engines["GEMINI"] == "gemini-1.5-pro"
        assert settings.extraction.method == "llm"
        assert settings.extraction.cache_ttl_seconds is None
        assert settings.worker.concurrency == 8

    def test_invalid_yaml_raises(self, tmp_path):
        """Test that broken YAML raises ConfigValidationError."""
        with pytest.raises(ConfigValidationError, match="Invalid YAML syntax"):
            load_settings(write_yaml(tmp_path, "router: [unclosed"))

    def test_non_mapping_root_raises(self, tmp_path):
        """Test that a list at the root is rejected."""
        with pytest.raises(ConfigValidationError, match="must be a mapping"):
            load_settings(write_yaml(tmp_path, "- a\n- b\n"))

    @pytest.mark.parametrize(
        "content,location",
        [
            ("worker:\n  concurrency: 0\n", "worker.concurrency"),
            ("router:\n  order: [openai, openai]\n", "router.order"),
            ("engines:\n  BING: x\n", "engines"),
            ("extraction:\n  fuzzy_threshold: 150\n", "extraction.fuzzy_threshold"),
            ("extraction:\n  cache_ttl_seconds: 0\n", "extraction.cache_ttl_seconds"),
            ("router:\n  call_timeout_seconds: -1\n", "router.call_timeout_seconds"),
        ],
    )
    def test_validation_errors_name_the_field(self, tmp_path, content, location):
        """Test that schema errors list the failing field."""
        with pytest.raises(ConfigValidationError) as exc_info:
            load_settings(write_yaml(tmp_path, content))

        assert location in str(exc_info.value)


# ============================================================================
# Credentials
# ============================================================================


class TestCredentials:
    """Test suite for credential resolution."""

    def test_credential_names(self):
        """Test engine key to variable mapping."""
        assert credential_name_for("openai") == "OPENAI_API_KEY"
        assert credential_name_for("PERPLEXITY") == "PERPLEXITY_API_KEY"
        assert credential_name_for("AIO") == "SERPAPI_KEY"

    def test_engine_credentials_only_set_variables(self):
        """Test that unset variables are absent, blank ones are kept as-is."""
        creds = resolve_engine_credentials(
            {"OPENAI_API_KEY": "sk-1234567890", "SERPAPI_KEY": "serp-123456", "GEMINI_API_KEY": ""}
        )

        assert creds == {
            "OPENAI_API_KEY": "sk-1234567890",
            "GEMINI_API_KEY": "",
            "SERPAPI_KEY": "serp-123456",
        }

    def test_router_openai_keys_combined_and_numbered(self):
        """Test comma list plus numbered keys, deduplicated in order."""
        creds = resolve_router_credentials(
            {
                "OPENAI_API_KEY": "sk-a, sk-b ,",
                "OPENAI_API_KEY_1": "sk-c",
                "OPENAI_API_KEY_3": "sk-a",
            }
        )

        assert creds["openai"] == ["sk-a", "sk-b", "sk-c"]

    def test_router_other_providers(self):
        """Test that Anthropic and Gemini read their own variables."""
        creds = resolve_router_credentials(
            {"ANTHROPIC_API_KEY": " sk-ant-1 ", "GOOGLE_AI_API_KEY": "AIza-1"}
        )

        assert creds["anthropic"] == ["sk-ant-1"]
        assert creds["gemini"] == ["AIza-1"]

    def test_blank_router_keys_dropped(self):
        """Test that RuntimeConfig strips empty candidate keys."""
        config = RuntimeConfig(router_credentials={"anthropic": [""], "openai": ["sk-a", "  "]})

        assert config.router_credentials == {"anthropic": [], "openai": ["sk-a"]}


# ============================================================================
# load_config
# ============================================================================


class TestLoadConfig:
    """Test suite for load_config()."""

    def test_load_config_with_environ(self, tmp_path):
        """Test that settings and credentials are combined."""
        path = write_yaml(tmp_path, "worker:\n  concurrency: 2\n")

        config = load_config(
            path,
            environ={"OPENAI_API_KEY": "sk-1234567890", "ANTHROPIC_MODEL": "claude-3-5-haiku-20241022"},
        )

        assert config.settings.worker.concurrency == 2
        assert config.credential_for_engine("openai") == ("OPENAI_API_KEY", "sk-1234567890")
        assert config.credential_for_engine("AIO") == ("SERPAPI_KEY", None)
        assert config.router_credentials["openai"] == ["sk-1234567890"]
        assert config.settings.router.models["anthropic"] == "claude-3-5-haiku-20241022"

    def test_credentials_not_in_repr(self):
        """Test that credentials never show up in the model repr."""
        config = load_config(None, environ={"OPENAI_API_KEY": "sk-secret-value-123"})

        assert "sk-secret-value-123" not in repr(config)

    def test_engine_model_lookup(self):
        """Test configured and default engine models."""
        config = load_config(None, environ={})

        assert config.engine_model("openai") == "gpt-4o-mini"
        assert config.engine_model("AIO") == "google_ai_overview"
