"""Instruction template loader.

Loads prompt templates from JSON files with support for:
- Package defaults (bundled with the tool)
- User overrides (~/.config/ai-visibility/system_prompts/)

Path resolution order:
1. User config directory (~/.config/ai-visibility/system_prompts/)
2. Package directory (ai_visibility/system_prompts/)

Templates use string.Template placeholders ($answer_text, $prompt_text,
...), so literal JSON braces inside the instruction text need no
escaping.
"""

import json
import logging
from pathlib import Path
from string import Template

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

EXTRACTION_TEMPLATE_PATH = "extraction/structured_v1"


class PromptNotFoundError(Exception):
    """Raised when a requested prompt template file cannot be found."""

    pass


class SystemPrompt(BaseModel):
    """Schema for prompt template JSON files.

    Example JSON:
    {
        "name": "structured-extraction-v1",
        "description": "Instruction template for LLM-assisted extraction",
        "purpose": "extraction",
        "placeholders": ["prompt_text", "answer_text", "brands"],
        "prompt": "You are an expert data extraction system...",
        "metadata": {"version": "v1"}
    }
    """

    name: str = Field(description="Short identifier for this template")
    description: str = Field(description="Human-readable description")
    purpose: str = Field(description="What the template is used for")
    prompt: str = Field(description="Template text with $placeholders")
    placeholders: list[str] = Field(default_factory=list)
    metadata: dict[str, str] | None = None

    @field_validator("name", "prompt")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("cannot be empty")
        return v

    def render(self, **values: str) -> str:
        """Substitute placeholders; unknown $names are left untouched."""
        missing = [name for name in self.placeholders if name not in values]
        if missing:
            raise ValueError(f"Missing template values for {self.name}: {missing}")
        return Template(self.prompt).safe_substitute(**values)


def _get_package_prompts_dir() -> Path:
    """Get the package-bundled system_prompts directory."""
    return Path(__file__).parent


def _get_user_prompts_dir() -> Path:
    """Get the user override directory (not created if missing)."""
    return Path.home() / ".config" / "ai-visibility" / "system_prompts"


def _resolve_prompt_path(relative_path: str) -> Path:
    """Resolve a relative template path, user directory first.

    Raises:
        PromptNotFoundError: If the file exists in neither location
    """
    if not relative_path.endswith(".json"):
        relative_path = f"{relative_path}.json"

    user_path = _get_user_prompts_dir() / relative_path
    if user_path.exists():
        logger.debug(f"Using user prompt: {user_path}")
        return user_path

    package_path = _get_package_prompts_dir() / relative_path
    if package_path.exists():
        logger.debug(f"Using package prompt: {package_path}")
        return package_path

    raise PromptNotFoundError(
        f"Prompt template not found: {relative_path}\n"
        f"Searched in:\n"
        f"  - User dir: {user_path}\n"
        f"  - Package dir: {package_path}"
    )


def load_prompt(relative_path: str) -> SystemPrompt:
    """Load a prompt template from a JSON file.

    Args:
        relative_path: Relative path like "extraction/structured_v1"

    Returns:
        Validated SystemPrompt

    Raises:
        PromptNotFoundError: If the template file cannot be found
        ValueError: If the JSON is invalid or fails validation
    """
    prompt_path = _resolve_prompt_path(relative_path)

    try:
        with prompt_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        prompt = SystemPrompt.model_validate(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in prompt file {prompt_path}: {e}") from e
    except (OSError, ValidationError) as e:
        raise ValueError(f"Failed to load prompt from {prompt_path}: {e}") from e

    logger.debug(f"Loaded prompt template '{prompt.name}' from {prompt_path}")
    return prompt


def get_extraction_template() -> SystemPrompt:
    """Load the structured-extraction instruction template."""
    return load_prompt(EXTRACTION_TEMPLATE_PATH)
