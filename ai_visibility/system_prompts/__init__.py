"""Prompt template library.

Templates are stored as JSON files grouped by purpose (extraction/, ...).

Supports both package defaults and user overrides:
- Package defaults: ai_visibility/system_prompts/
- User overrides: ~/.config/ai-visibility/system_prompts/

User templates take precedence over package defaults.
"""

from ai_visibility.system_prompts.prompt_loader import (
    PromptNotFoundError,
    SystemPrompt,
    get_extraction_template,
    load_prompt,
)

__all__ = [
    "SystemPrompt",
    "load_prompt",
    "get_extraction_template",
    "PromptNotFoundError",
]
