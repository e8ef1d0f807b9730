# src/api/schemas/generation.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from domain.generation.models import GenerationRequest
from infrastructure.generation.models import GenerationJob

__all__ = [
    "GenerationRequest",
    "ValidationResult",
    "validate_generation_request",
    "GenerateAccepted",
    "AIStatusResponse",
    "GenerationStatusResponse",
    "GenerationsSnapshotResponse",
    "ConsistencyCheckRequest",
    "ConsistencyCheckResponse",
]


class ValidationResult(BaseModel):
    success: bool
    data: Optional[GenerationRequest] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)


def validate_generation_request(raw: Any) -> ValidationResult:
    """
    Shape validation for POST /generate. Never raises; errors are JSON-safe.
    """
    try:
        data = GenerationRequest.model_validate(raw)
    except ValidationError as e:
        errors = [
            {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in e.errors()
        ]
        return ValidationResult(success=False, errors=errors)
    return ValidationResult(success=True, data=data)


class GenerateAccepted(BaseModel):
    id: str


class AIStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    cli_authenticated: bool = Field(alias="cliAuthenticated")
    can_use_ai: bool = Field(alias="canUseAI")
    message: str


class UsageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    cache_read_input_tokens: int = Field(default=0, alias="cacheReadInputTokens")
    cache_creation_input_tokens: int = Field(default=0, alias="cacheCreationInputTokens")
    cost_usd: Optional[float] = Field(default=None, alias="costUsd")


class GenerationStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    state: str  # pending|running|streaming|completed|failed|cancelled
    action: str
    agent_target: Optional[str] = Field(default=None, alias="agentTarget")
    exit_reason: Optional[str] = Field(default=None, alias="exitReason")
    detail: Optional[str] = None
    chunks_emitted: int = Field(default=0, alias="chunksEmitted")
    created_at: datetime = Field(alias="createdAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")
    # only when the CLI runs with a JSON output format
    usage: Optional[UsageResponse] = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "GenerationStatusResponse":
        return cls(
            id=job.id,
            state=job.state.value,
            action=job.request.action,
            agent_target=job.request.agent_target,
            exit_reason=job.exit_reason.value if job.exit_reason else None,
            detail=job.detail,
            chunks_emitted=job.chunks_emitted,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            usage=UsageResponse(**job.usage.model_dump()) if job.usage else None,
        )


class GenerationsSnapshotResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ts: datetime
    totals: Dict[str, int]
    active: int
    capacity_left: int = Field(alias="capacityLeft")
    max_active_jobs: int = Field(alias="maxActiveJobs")


class ConsistencyCheckRequest(BaseModel):
    content: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class ConsistencyCheckResponse(BaseModel):
    status: Literal["success"] = "success"
    warnings: List[str] = Field(default_factory=list)
    message: Optional[str] = None
