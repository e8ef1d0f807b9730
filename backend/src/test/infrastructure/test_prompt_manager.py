# tests/infrastructure/test_prompt_manager.py

import pytest

from domain.generation.models import GenerationRequest
from infrastructure.prompt.context import build_context
from infrastructure.prompt.manager import PromptManager, _jinja_to_langchain, load_prompt_book
from infrastructure.prompt.schema import PromptBook


@pytest.fixture(scope="module")
def manager() -> PromptManager:
    return PromptManager()


def test_bundled_book_loads():
    book = load_prompt_book()
    assert book.key == "generation"
    assert book.version == "v1"
    for agent in ["writer", "critic", "analyzer", "brainstorm", "character", "plot", "scene", "wiki", "market"]:
        assert book.system_prompts[agent].strip()
    assert "expand-selection" in book.actions


def test_jinja_placeholders_and_literal_braces():
    converted = _jinja_to_langchain('{"title": "{{ title }}"}')
    assert converted.format(title="Dune") == '{"title": "Dune"}'


def test_render_scene_uses_agent_system_prompt(manager):
    req = GenerationRequest.model_validate(
        {
            "agentTarget": "scene",
            "action": "generate-scene",
            "context": {
                "sceneOutline": "The heist goes wrong.",
                "specification": {"workingTitle": "Night Train", "pov": "First Person"},
            },
        }
    )
    prompt = manager.render(req)

    assert prompt.agent == "scene"
    assert prompt.system == manager.book.system_prompts["scene"]
    assert "The heist goes wrong." in prompt.user_text
    assert "Night Train" in prompt.user_text
    assert "{{" not in prompt.user_text


def test_missing_agent_falls_back_to_default(manager):
    prompt = manager.render(GenerationRequest(action="suggest-titles"))
    assert prompt.agent == "writer"
    assert prompt.system == manager.book.system_prompts["writer"]


def test_required_variable_missing_raises(manager):
    with pytest.raises(KeyError):
        manager.render(GenerationRequest(action="expand-selection"))


def test_selection_action_renders_selected_text(manager):
    req = GenerationRequest.model_validate(
        {"action": "rewrite-selection", "context": {"selectedText": "She ran {fast}."}}
    )
    prompt = manager.render(req)
    assert '"She ran {fast}."' in prompt.user_text


def test_unknown_action_uses_fallback_with_payload(manager):
    req = GenerationRequest.model_validate({"action": "generate-synopsis", "payload": {"length": "short"}})
    prompt = manager.render(req)
    assert '"generate-synopsis"' in prompt.user_text
    assert '"length": "short"' in prompt.user_text
    assert prompt.action == "generate-synopsis"


def test_book_requires_default_agent_prompt():
    with pytest.raises(ValueError):
        PromptBook(key="k", version="v1", default_agent="writer", system_prompts={"critic": "x"}, fallback_template="t")


def test_build_context_sections():
    text = build_context(
        {
            "characters": [{"name": "Ada", "role": "Protagonist"}],
            "previousContent": "It was raining.",
        }
    )
    assert "Ada (Protagonist)" in text
    assert "It was raining." in text
