# tests/domain/test_generation_request.py

import pytest
from pydantic import ValidationError

from api.schemas.generation import validate_generation_request
from domain.generation.models import GenerationContext, GenerationRequest


def test_request_from_camel_case_payload():
    req = GenerationRequest.model_validate(
        {
            "agentTarget": "writer",
            "action": "generate-scene",
            "context": {"projectId": "p1", "novelLanguage": "de", "selectedText": "Hallo"},
            "payload": {"n": 3},
        }
    )
    assert req.agent_target == "writer"
    assert req.context.project_id == "p1"
    assert req.context.novel_language == "de"
    assert req.payload == {"n": 3}


def test_context_keeps_unknown_keys():
    ctx = GenerationContext.model_validate({"projectId": "p1", "characters": [{"name": "Ada"}]})
    dumped = ctx.as_dict()
    assert dumped["projectId"] == "p1"
    assert dumped["characters"] == [{"name": "Ada"}]
    assert "novelLanguage" not in dumped


def test_action_is_stripped():
    req = GenerationRequest(action="  rewrite-selection ")
    assert req.action == "rewrite-selection"
    assert req.context.as_dict() == {}


@pytest.mark.parametrize("action", ["", "   "])
def test_blank_action_rejected(action):
    with pytest.raises(ValidationError):
        GenerationRequest(action=action)


def test_unknown_agent_target_rejected():
    with pytest.raises(ValidationError):
        GenerationRequest.model_validate({"action": "x", "agentTarget": "poet"})


def test_unsupported_language_rejected():
    with pytest.raises(ValidationError):
        GenerationRequest.model_validate({"action": "x", "context": {"novelLanguage": "ko"}})


def test_request_is_immutable():
    req = GenerationRequest(action="x")
    with pytest.raises(ValidationError):
        req.action = "y"


def test_validate_generation_request_success():
    result = validate_generation_request({"action": "suggest-titles", "unused": 1})
    assert result.success is True
    assert result.data.action == "suggest-titles"
    assert result.errors == []


def test_validate_generation_request_reports_errors():
    result = validate_generation_request({"agentTarget": "poet"})
    assert result.success is False
    assert result.data is None
    locs = {tuple(e["loc"]) for e in result.errors}
    assert ("action",) in locs
    assert ("agentTarget",) in locs


def test_validate_generation_request_non_object():
    result = validate_generation_request(["not", "an", "object"])
    assert result.success is False
    assert result.errors
