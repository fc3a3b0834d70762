"""
Tests for system_prompts.prompt_loader module.

Tests cover:
- Loading the bundled extraction template
- Rendering with $placeholders
- User overrides taking precedence
- Missing and invalid template files
"""

import json

import pytest

from ai_visibility.system_prompts import (
    PromptNotFoundError,
    SystemPrompt,
    get_extraction_template,
    load_prompt,
)
from ai_visibility.system_prompts import prompt_loader


@pytest.fixture
def user_prompts_dir(tmp_path, monkeypatch):
    """Point the user override directory at a temp dir."""
    monkeypatch.setattr(prompt_loader, "_get_user_prompts_dir", lambda: tmp_path)
    return tmp_path


class TestBundledTemplate:
    """Test suite for the packaged extraction template."""

    def test_load_extraction_template(self, user_prompts_dir):
        """Test that the bundled template loads and declares its placeholders."""
        template = get_extraction_template()

        assert template.name == "structured-extraction-v1"
        assert template.purpose == "extraction"
        assert set(template.placeholders) == {"prompt_text", "answer_text", "brands"}

    def test_render_substitutes_values(self, user_prompts_dir):
        """Test that every placeholder is substituted."""
        rendered = get_extraction_template().render(
            prompt_text="Best CRM?", answer_text="Acme is great", brands="Acme"
        )

        assert "Original Prompt: Best CRM?" in rendered
        assert "Acme is great" in rendered
        assert "$answer_text" not in rendered

    def test_render_missing_value_raises(self, user_prompts_dir):
        """Test that a missing placeholder value raises ValueError."""
        with pytest.raises(ValueError, match="Missing template values"):
            get_extraction_template().render(prompt_text="Q")


class TestOverridesAndErrors:
    """Test suite for user overrides and failure modes."""

    def test_user_override_wins(self, user_prompts_dir):
        """Test that a user template shadows the package one."""
        override = user_prompts_dir / "extraction" / "structured_v1.json"
        override.parent.mkdir(parents=True)
        override.write_text(
            json.dumps(
                {
                    "name": "custom",
                    "description": "Custom extraction",
                    "purpose": "extraction",
                    "prompt": "Extract from $answer_text",
                    "placeholders": ["answer_text"],
                }
            ),
            encoding="utf-8",
        )

        template = load_prompt("extraction/structured_v1")

        assert template.name == "custom"
        assert template.render(answer_text="X") == "Extract from X"

    def test_missing_template_raises(self, user_prompts_dir):
        """Test PromptNotFoundError for unknown paths."""
        with pytest.raises(PromptNotFoundError, match="not found"):
            load_prompt("extraction/does_not_exist")

    def test_invalid_json_raises_value_error(self, user_prompts_dir):
        """Test that malformed JSON is reported as ValueError."""
        broken = user_prompts_dir / "broken.json"
        broken.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid JSON"):
            load_prompt("broken")

    def test_empty_prompt_rejected(self):
        """Test schema validation of the prompt text."""
        with pytest.raises(ValueError):
            SystemPrompt(name="x", description="d", purpose="p", prompt="   ")
