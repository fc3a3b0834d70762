"""
Queue ingress payload models.

Two payload shapes arrive on the queue. Field names are accepted in
camelCase (as producers send them) or snake_case:

    individual prompt: {workspaceId, promptId, engineKey, idempotencyKey,
                        userId, demoRunId?}
    cluster scan:      {workspaceId, clusterId, engineKeys[], idempotencyKey,
                        userId, maxPromptsPerCluster?}

parse_job_payload() dispatches on shape: a cluster id means a cluster scan.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    workspace_id: str = Field(min_length=1)
    idempotency_key: str = Field(min_length=1)
    user_id: str | None = None

    def to_payload(self) -> dict:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _normalize_engine_key(value: str) -> str:
    # which engines exist is per workspace; the precondition check decides
    key = value.strip().upper()
    if not key:
        raise ValueError("Engine key must not be empty")
    return key


class IndividualPromptJob(_Payload):
    """One prompt against one engine, identified by its idempotency key."""

    prompt_id: str = Field(min_length=1)
    engine_key: str
    demo_run_id: str | None = None

    @field_validator("engine_key")
    @classmethod
    def validate_engine_key(cls, v: str) -> str:
        return _normalize_engine_key(v)


class ClusterScanJob(_Payload):
    """Expands a prompt cluster into individual jobs (prompt x engine)."""

    cluster_id: str = Field(min_length=1)
    engine_keys: list[str] = Field(min_length=1)
    max_prompts_per_cluster: int | None = Field(default=None, ge=1)
    demo_run_id: str | None = None

    @field_validator("engine_keys")
    @classmethod
    def validate_engine_keys(cls, v: list[str]) -> list[str]:
        """Upper-case and de-duplicate, keeping order."""
        return list(dict.fromkeys(_normalize_engine_key(key) for key in v))


def parse_job_payload(payload: dict) -> IndividualPromptJob | ClusterScanJob:
    """
    Validate a raw queue payload into the matching job model.

    Raises:
        pydantic.ValidationError: If the payload fits neither shape

    Example:
        >>> job = parse_job_payload({
        ...     "workspaceId": "ws-1", "promptId": "p1",
        ...     "engineKey": "openai", "idempotencyKey": "k1",
        ... })
        >>> job.engine_key
        'OPENAI'
    """
    if "clusterId" in payload or "cluster_id" in payload:
        return ClusterScanJob.model_validate(payload)
    return IndividualPromptJob.model_validate(payload)
