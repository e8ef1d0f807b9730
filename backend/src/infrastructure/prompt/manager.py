# src/infrastructure/prompt/manager.py
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from langchain_core.prompts import PromptTemplate

from domain.generation.models import GenerationRequest
from infrastructure.prompt.context import build_context
from infrastructure.prompt.schema import PromptBook, RenderedPrompt

logger = logging.getLogger(__name__)

# folder convention: prompts/{lang}/{key}.{version}.yaml
PROMPT_ROOT = Path(os.getenv("PROMPT_ROOT", str(Path(__file__).resolve().parents[2] / "prompts")))


def _jinja_to_langchain(text: str) -> str:
    # escape literal braces first, then {{ var }} -> {var}
    escaped = text.replace("{", "{{").replace("}", "}}")
    return re.sub(r"\{\{\{\{\s*(\w+)\s*\}\}\}\}", r"{\1}", escaped)


def _ensure_required_vars(required: List[str], ctx: Dict[str, Any]) -> None:
    missing = [k for k in (required or []) if not ctx.get(k)]
    if missing:
        raise KeyError(f"Missing prompt variables: {missing}")


def load_prompt_book(key: str = "generation", version: str = "v1", language: str = "en") -> PromptBook:
    path = PROMPT_ROOT / language / f"{key}.{version}.yaml"
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML must be a mapping: {path}")
    return PromptBook(**data)


def template_variables(request: GenerationRequest) -> Dict[str, Any]:
    ctx = request.context.as_dict()
    selected = ctx.get("selectedText") or ""
    return {
        "action": request.action,
        "project_context": build_context(ctx),
        "selected_text": selected,
        "continue_from": selected or ctx.get("currentChapter") or "",
        "chapter_outline": ctx.get("chapterOutline") or "",
        "scene_outline": ctx.get("sceneOutline") or "Write an engaging scene that advances the plot.",
        "target_words": ctx.get("targetWords") or 500,
        "brainstorm_text": ctx.get("brainstormText") or "",
        "payload_json": json.dumps(request.payload or {}, ensure_ascii=False, indent=2),
    }


class PromptManager:
    """
    Renders (system, user) prompts for a generation request from the YAML prompt book.
    """

    def __init__(self, book: Optional[PromptBook] = None) -> None:
        self.book = book or load_prompt_book()
        self._templates: Dict[str, PromptTemplate] = {
            name: PromptTemplate.from_template(_jinja_to_langchain(a.template)) for name, a in self.book.actions.items()
        }
        self._fallback = PromptTemplate.from_template(_jinja_to_langchain(self.book.fallback_template))

    def system_prompt(self, agent_target: Optional[str]) -> str:
        agent = agent_target if agent_target in self.book.system_prompts else self.book.default_agent
        return self.book.system_prompts[agent]

    def render(self, request: GenerationRequest) -> RenderedPrompt:
        variables = template_variables(request)
        action = self.book.actions.get(request.action)
        if action is not None:
            _ensure_required_vars(action.required_vars or [], variables)
            tmpl = self._templates[request.action]
        else:
            logger.debug("prompt.fallback action=%s", request.action)
            tmpl = self._fallback

        user_text = tmpl.format(**{k: variables[k] for k in tmpl.input_variables})
        agent = request.agent_target if request.agent_target in self.book.system_prompts else self.book.default_agent
        return RenderedPrompt(
            system=self.system_prompt(request.agent_target),
            user_text=user_text.strip() + "\n",
            key=self.book.key,
            version=self.book.version,
            action=request.action,
            agent=agent,
        )
