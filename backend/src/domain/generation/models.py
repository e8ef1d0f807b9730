# src/domain/generation/models.py
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "AgentTarget",
    "NovelLanguage",
    "GenerationContext",
    "GenerationRequest",
]

AgentTarget = Literal[
    "writer",
    "critic",
    "analyzer",
    "brainstorm",
    "character",
    "plot",
    "scene",
    "wiki",
    "market",
]

NovelLanguage = Literal["en", "de", "fr", "es", "it"]


class GenerationContext(BaseModel):
    """
    Project context forwarded to the prompt. Only a couple of keys are typed;
    the rest (specification, characters, plotBeats, selectedText, ...) pass through as-is.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    project_id: Optional[str] = Field(default=None, alias="projectId")
    novel_language: Optional[NovelLanguage] = Field(default=None, alias="novelLanguage")

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GenerationRequest(BaseModel):
    """
    A validated generation request. Immutable once attached to a job.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    agent_target: Optional[AgentTarget] = Field(default=None, alias="agentTarget")
    action: str = Field(..., min_length=1)
    context: GenerationContext = Field(default_factory=GenerationContext)
    payload: Optional[Dict[str, Any]] = None

    @field_validator("action")
    @classmethod
    def _strip_action(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("Action is required")
        return s
