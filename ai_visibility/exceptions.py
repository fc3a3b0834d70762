"""
Custom exceptions for the AI visibility job pipeline.

Every error raised on purpose by this package inherits from
AIVisibilityError, so the CLI and the worker pool can catch
application errors with one except clause and let everything else
surface as a crash.

Exception Hierarchy:
    AIVisibilityError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── CredentialError
    │   ├── CredentialMissingError
    │   └── CredentialInvalidError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   └── DatabaseMigrationError
    ├── NotFoundError
    ├── BudgetExceededError
    ├── ProviderError
    │   ├── ProviderAuthenticationError
    │   ├── ProviderRateLimitError
    │   ├── ProviderTimeoutError
    │   ├── ProviderResponseError
    │   └── AllProvidersFailedError
    └── ExtractionParseError

Terminal vs retryable:
    Errors listed in NON_RETRYABLE_ERRORS describe a job that will fail the
    same way on every delivery. The queue moves such jobs straight to the
    dead state instead of scheduling another attempt.

Usage:
    from ai_visibility.exceptions import BudgetExceededError

    try:
        await orchestrator.run_individual(job)
    except BudgetExceededError as e:
        logger.warning(f"Skipping job: {e}")
"""


class AIVisibilityError(Exception):
    """
    Base exception for all application errors.

    Example:
        try:
            await pool.run(drain=True)
        except AIVisibilityError as e:
            logger.error(f"Worker error: {e}")
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(AIVisibilityError):
    """
    Base class for configuration-related errors.

    Should be caught by the CLI and result in exit code 1.
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Configuration file does not exist at the specified path."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("worker.concurrency: must be >= 1")
    """

    pass


# ============================================================================
# Credential Errors
# ============================================================================


class CredentialError(AIVisibilityError):
    """
    Base class for provider credential problems detected before a call.

    Attributes:
        engine_key: Engine the credential was resolved for
        credential_name: Name of the credential variable (never its value)
    """

    def __init__(self, message: str, engine_key: str, credential_name: str):
        super().__init__(message)
        self.engine_key = engine_key
        self.credential_name = credential_name


class CredentialMissingError(CredentialError):
    """
    No credential is configured for the engine.

    Example:
        raise CredentialMissingError(
            "Missing API key for engine OPENAI. Set OPENAI_API_KEY.",
            engine_key="OPENAI",
            credential_name="OPENAI_API_KEY",
        )
    """

    pass


class CredentialInvalidError(CredentialError):
    """The configured credential is blank or too short to be a real key."""

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(AIVisibilityError):
    """
    Base class for database-related errors.

    Should be caught by the CLI and result in exit code 2.
    """

    pass


class DatabaseInitError(DatabaseError):
    """SQLite database could not be created or opened."""

    pass


class DatabaseMigrationError(DatabaseError):
    """Applying a schema migration failed and was rolled back."""

    pass


# ============================================================================
# Job Precondition Errors
# ============================================================================


class NotFoundError(AIVisibilityError):
    """
    A record the job depends on does not exist (or is disabled).

    Attributes:
        entity: Kind of record ("prompt", "engine", "cluster")
        identifier: Identifier that was looked up

    Example:
        raise NotFoundError("engine", "OPENAI", "Engine not found or disabled: OPENAI")
    """

    def __init__(self, entity: str, identifier: str, message: str | None = None):
        super().__init__(message or f"{entity.capitalize()} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class BudgetExceededError(AIVisibilityError):
    """
    Engine has already spent its daily budget.

    Raised before any provider call is made, so a job rejected here costs
    nothing.

    Attributes:
        engine_key: Engine whose budget was checked
        spent_cents: Cost recorded for the engine since local midnight
        budget_cents: Configured daily budget

    Example:
        raise BudgetExceededError(
            "Daily budget exceeded for engine OPENAI",
            engine_key="OPENAI",
            spent_cents=120,
            budget_cents=100,
        )
    """

    def __init__(
        self,
        message: str,
        engine_key: str,
        spent_cents: int,
        budget_cents: int,
    ):
        super().__init__(message)
        self.engine_key = engine_key
        self.spent_cents = spent_cents
        self.budget_cents = budget_cents


# ============================================================================
# Provider Errors
# ============================================================================


class ProviderError(AIVisibilityError):
    """
    Base class for upstream answer-engine failures.

    Attributes:
        provider: Provider or engine identifier that failed
        status_code: HTTP status code when the failure came from a response
    """

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthenticationError(ProviderError):
    """
    Provider rejected the credential (HTTP 401/403).

    This is the distinguishable authentication signal the orchestrator
    relies on for diagnostics. It is never retried.
    """

    is_auth_error = True


class ProviderRateLimitError(ProviderError):
    """Provider kept answering 429 after all retry attempts."""

    pass


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded the per-call timeout."""

    pass


class ProviderResponseError(ProviderError):
    """Provider answered with an unusable response (bad status or payload)."""

    pass


class AllProvidersFailedError(ProviderError):
    """
    Routing produced a fallback answer instead of a real one.

    Attributes:
        failure_kind: "all_providers_unavailable" or "all_providers_failed"
        attempts: Per-provider diagnostics recorded by the router
    """

    def __init__(
        self,
        message: str,
        failure_kind: str,
        attempts: list[dict] | None = None,
    ):
        super().__init__(message, provider="router")
        self.failure_kind = failure_kind
        self.attempts = attempts or []


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionParseError(AIVisibilityError):
    """
    Extraction model output could not be parsed.

    Raised by extract_with_llm() when every repair stage comes up empty.
    extract() recovers it into the empty bundle with parse stage "empty",
    so it never reaches the orchestrator.
    """

    pass


NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    NotFoundError,
    BudgetExceededError,
    CredentialError,
    ProviderAuthenticationError,
)
