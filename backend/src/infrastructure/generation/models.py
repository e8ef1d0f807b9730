# src/infrastructure/generation/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.generation.models import GenerationRequest


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    pending = "pending"
    running = "running"
    streaming = "streaming"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class ExitReason(str, Enum):
    normal = "normal"
    timeout = "timeout"
    cancelled = "cancelled"
    process_error = "process-error"


TERMINAL_STATES: FrozenSet[JobState] = frozenset({JobState.completed, JobState.failed, JobState.cancelled})

# legal moves; terminal states have none
TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.pending: frozenset({JobState.running, JobState.failed, JobState.cancelled}),
    JobState.running: frozenset({JobState.streaming, JobState.completed, JobState.failed, JobState.cancelled}),
    JobState.streaming: frozenset({JobState.completed, JobState.failed, JobState.cancelled}),
    JobState.completed: frozenset(),
    JobState.failed: frozenset(),
    JobState.cancelled: frozenset(),
}

DEFAULT_EXIT_REASON: Dict[JobState, ExitReason] = {
    JobState.completed: ExitReason.normal,
    JobState.failed: ExitReason.process_error,
    JobState.cancelled: ExitReason.cancelled,
}


def is_terminal(state: JobState) -> bool:
    return state in TERMINAL_STATES


def can_transition(src: JobState, dst: JobState) -> bool:
    return dst in TRANSITIONS.get(src, frozenset())


class TokenUsage(BaseModel):
    """
    Token accounting reported by the CLI's final "result" event.
    """

    model_config = ConfigDict(extra="ignore")

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cost_usd: Optional[float] = None

    @classmethod
    def from_cli(cls, raw: Any, *, cost_usd: Any = None) -> Optional["TokenUsage"]:
        if not isinstance(raw, dict):
            return None
        data = {k: raw.get(k) or 0 for k in cls.model_fields if k != "cost_usd"}
        if isinstance(cost_usd, (int, float)):
            data["cost_usd"] = float(cost_usd)
        return cls(**data)


class GenerationJob(BaseModel):
    """
    Registry record (state machine). Only JobRegistry mutates it.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    request: GenerationRequest
    state: JobState = JobState.pending
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    exit_reason: Optional[ExitReason] = None
    # stderr tail / spawn error, never streamed
    detail: Optional[str] = None
    chunks_emitted: int = 0
    usage: Optional[TokenUsage] = None

    @property
    def terminal(self) -> bool:
        return is_terminal(self.state)

    @property
    def duration_sec(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None


class RegistrySnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts: datetime = Field(default_factory=utcnow)
    totals: Dict[str, int] = Field(default_factory=dict)  # by JobState
    active: int = 0
    capacity_left: int = 0
    max_active_jobs: int = 0
