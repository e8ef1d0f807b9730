# src/infrastructure/prompt/schema.py
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class ActionPrompt(BaseModel):
    """
    User-prompt template for one generation action.
    template uses "{{ var }}" placeholders.
    """

    model_config = ConfigDict(extra="forbid")

    template: str
    required_vars: Optional[List[str]] = None

    @model_validator(mode="after")
    def _fill_defaults(self):
        if self.required_vars is None:
            self.required_vars = []
        return self


class PromptBook(BaseModel):
    """
    File-based prompt definition for the generation CLI.
    - system_prompts: agent target -> system prompt
    - actions: action name -> user-prompt template
    - fallback_template: used for actions without a template
    """

    model_config = ConfigDict(extra="forbid")

    key: str
    version: str
    language: Optional[str] = None

    default_agent: str = "writer"
    system_prompts: Dict[str, str]
    actions: Dict[str, ActionPrompt] = {}
    fallback_template: str

    @model_validator(mode="after")
    def _check_default_agent(self):
        if self.default_agent not in self.system_prompts:
            raise ValueError(f"default_agent '{self.default_agent}' has no system prompt")
        return self


class RenderedPrompt(BaseModel):
    model_config = ConfigDict(extra="forbid")

    system: Optional[str] = None
    user_text: str
    key: str
    version: str
    action: str
    agent: str
