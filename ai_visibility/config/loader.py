"""
Configuration loader.

Loads the optional YAML settings file, validates it with the Settings
model and resolves every credential from the environment exactly once,
producing a RuntimeConfig that is threaded through constructors.

Functions:
    load_settings: Parse and validate the YAML file (or return defaults)
    resolve_engine_credentials: Engine credential variable -> value
    resolve_router_credentials: Provider kind -> candidate keys
    load_config: Main entrypoint combining the above

Security:
    - Credentials are read from the environment only, never from YAML
    - Credentials are NEVER logged (not even partially)
    - Uses yaml.safe_load() to prevent code injection
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from ai_visibility.config.constants import (
    ANTHROPIC_KEY_VARIABLE,
    ENGINE_KEYS,
    GEMINI_KEY_VARIABLE,
    OPENAI_KEY_VARIABLE,
    OPENAI_NUMBERED_KEY_LIMIT,
)
from ai_visibility.config.schema import RuntimeConfig, Settings, credential_name_for
from ai_visibility.exceptions import ConfigFileNotFoundError, ConfigValidationError

logger = logging.getLogger(__name__)

# Environment overrides for router models
MODEL_OVERRIDE_VARIABLES = {
    "openai": "OPENAI_MODEL",
    "anthropic": "ANTHROPIC_MODEL",
    "gemini": "GEMINI_MODEL",
}


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load and validate the YAML settings file.

    Args:
        config_path: Path to the YAML file. None returns default settings.

    Returns:
        Validated Settings

    Raises:
        ConfigFileNotFoundError: If config_path is given but doesn't exist
        ConfigValidationError: If YAML is invalid or validation fails

    Example:
        >>> settings = load_settings("ai_visibility.yaml")
        >>> settings.worker.concurrency
        5
    """
    if config_path is None:
        return Settings()

    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    # An empty file means "all defaults"
    if raw_config is None:
        return Settings()

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    try:
        return Settings.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e


def resolve_engine_credentials(environ: Mapping[str, str]) -> dict[str, str]:
    """
    Collect the credential for every known engine key.

    Unset variables are simply absent from the result; the orchestrator
    turns an absent credential into CredentialMissingError for the job
    that needs it, so one missing key never blocks other engines.

    Args:
        environ: Environment mapping (os.environ in production)

    Returns:
        Credential variable name -> raw value
    """
    credentials: dict[str, str] = {}
    for engine_key in ENGINE_KEYS:
        name = credential_name_for(engine_key)
        value = environ.get(name)
        if value is not None:
            credentials[name] = value
    return credentials


def resolve_router_credentials(environ: Mapping[str, str]) -> dict[str, list[str]]:
    """
    Collect candidate keys per router provider kind.

    OpenAI accepts a comma-separated OPENAI_API_KEY plus numbered
    OPENAI_API_KEY_1 .. OPENAI_API_KEY_10; each key becomes its own
    candidate. Duplicates are dropped, first occurrence wins.

    Args:
        environ: Environment mapping

    Returns:
        Provider kind -> list of raw keys (possibly empty)

    Example:
        >>> resolve_router_credentials({"OPENAI_API_KEY": "sk-a, sk-b"})["openai"]
        ['sk-a', 'sk-b']
    """
    openai_keys: list[str] = []

    combined = environ.get(OPENAI_KEY_VARIABLE, "")
    openai_keys.extend(part.strip() for part in combined.split(",") if part.strip())

    for index in range(1, OPENAI_NUMBERED_KEY_LIMIT + 1):
        numbered = environ.get(f"{OPENAI_KEY_VARIABLE}_{index}", "").strip()
        if numbered:
            openai_keys.append(numbered)

    deduplicated = list(dict.fromkeys(openai_keys))

    return {
        "openai": deduplicated,
        "anthropic": [environ.get(ANTHROPIC_KEY_VARIABLE, "").strip()],
        "gemini": [environ.get(GEMINI_KEY_VARIABLE, "").strip()],
    }


def load_config(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """
    Load settings and resolve credentials into a RuntimeConfig.

    This is the only place the process environment is read.

    Args:
        config_path: Optional YAML settings file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        RuntimeConfig ready to pass to the router and orchestrator

    Raises:
        ConfigFileNotFoundError: If config_path is given but doesn't exist
        ConfigValidationError: If the file is invalid
    """
    if environ is None:
        environ = os.environ

    settings = load_settings(config_path)

    overrides = {
        provider: environ[variable]
        for provider, variable in MODEL_OVERRIDE_VARIABLES.items()
        if environ.get(variable)
    }
    if overrides:
        settings.router.models = {**settings.router.models, **overrides}

    runtime = RuntimeConfig(
        settings=settings,
        engine_credentials=resolve_engine_credentials(environ),
        router_credentials=resolve_router_credentials(environ),
    )

    logger.info(
        "Configuration loaded",
        extra={
            "context": {
                "config_path": str(config_path) if config_path else None,
                "engine_credentials": sorted(runtime.engine_credentials),
                "router_providers": sorted(
                    p for p, keys in runtime.router_credentials.items() if keys
                ),
            }
        },
    )
    return runtime
