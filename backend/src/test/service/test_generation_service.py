# tests/service/test_generation_service.py

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from domain.generation.models import GenerationRequest
from infrastructure.generation.auth import CliAuthCache
from infrastructure.generation.errors import CapacityExceeded, InvalidRequest, NotFound, Unauthorized
from infrastructure.generation.models import JobState, utcnow
from service.generation import UNAUTHENTICATED_MESSAGE, GenerationService

ECHO = "import sys; sys.stdout.write('once upon a time')"
HANG = "import time; time.sleep(30)"


def _service(config, authed: bool = True) -> GenerationService:
    return GenerationService(config=config, auth=CliAuthCache(lambda: authed))


@pytest.mark.asyncio
async def test_generate_then_stream(fake_cli, wait_terminal):
    svc = _service(fake_cli(ECHO))
    job = await svc.generate(GenerationRequest(action="suggest-titles"))
    sub = await svc.subscribe(job.id)

    assert "".join([c async for c in sub]) == "once upon a time"
    done = await wait_terminal(svc.registry, job.id)
    assert done.state == JobState.completed
    await svc.stop()


@pytest.mark.asyncio
async def test_missing_prompt_variable_is_invalid_request(fake_cli):
    svc = _service(fake_cli(ECHO))
    with pytest.raises(InvalidRequest):
        await svc.generate(GenerationRequest(action="continue-writing"))
    assert (await svc.snapshot()).totals == {}


@pytest.mark.asyncio
async def test_capacity_rejection(fake_cli):
    svc = _service(fake_cli(HANG, max_active_jobs=1))
    first = await svc.generate(GenerationRequest(action="suggest-titles"))

    with pytest.raises(CapacityExceeded):
        await svc.generate(GenerationRequest(action="suggest-titles"))

    await svc.cancel(first.id)
    second = await svc.generate(GenerationRequest(action="suggest-titles"))
    assert second.id != first.id
    await svc.stop()


def test_ensure_authenticated(fake_cli):
    svc = _service(fake_cli(ECHO), authed=False)
    with pytest.raises(Unauthorized) as exc:
        svc.ensure_authenticated()
    assert exc.value.message == UNAUTHENTICATED_MESSAGE

    _service(fake_cli(ECHO)).ensure_authenticated()
    with pytest.raises(Unauthorized):
        _service(fake_cli(ECHO)).ensure_authenticated(force_unauthenticated=True)


def test_ai_status_force_override(fake_cli):
    svc = _service(fake_cli(ECHO), authed=True)
    assert svc.ai_status()["can_use_ai"] is True

    forced = svc.ai_status("unauthenticated")
    assert forced["authenticated"] is False
    assert forced["cli_authenticated"] is False
    assert forced["message"] == UNAUTHENTICATED_MESSAGE


@pytest.mark.asyncio
async def test_sweep_evicts_finished_jobs(fake_cli, wait_terminal):
    svc = _service(fake_cli(ECHO, retention_sec=60))
    job = await svc.generate(GenerationRequest(action="suggest-titles"))
    await wait_terminal(svc.registry, job.id)

    assert await svc.sweep(utcnow()) == []
    assert await svc.sweep(utcnow() + timedelta(seconds=61)) == [job.id]
    assert not svc.broker.has_channel(job.id)
    with pytest.raises(NotFound):
        await svc.get(job.id)


@pytest.mark.asyncio
async def test_subscribe_to_finished_job_after_channel_discarded(fake_cli, wait_terminal):
    svc = _service(fake_cli(ECHO))
    job = await svc.generate(GenerationRequest(action="suggest-titles"))
    await wait_terminal(svc.registry, job.id)
    svc.broker.discard(job.id)

    sub = await svc.subscribe(job.id)
    assert [c async for c in sub] == []


@pytest.mark.asyncio
async def test_subscribe_unknown_job(fake_cli):
    svc = _service(fake_cli(ECHO))
    with pytest.raises(NotFound):
        await svc.subscribe("missing")


def test_consistency_check_is_well_formed(fake_cli):
    result = _service(fake_cli(ECHO)).consistency_check("text", {})
    assert result["status"] == "success"
    assert result["warnings"] == []


@pytest.mark.asyncio
async def test_generate_hands_rendered_prompt_to_supervisor(fake_cli):
    supervisor = AsyncMock()
    svc = GenerationService(config=fake_cli(ECHO), auth=CliAuthCache(lambda: True), supervisor=supervisor)

    job = await svc.generate(GenerationRequest(agent_target="critic", action="suggest-titles"))

    supervisor.run.assert_awaited_once()
    passed_job, prompt = supervisor.run.await_args.args
    assert passed_job.id == job.id
    assert prompt.agent == "critic"
    assert prompt.system == svc.prompts.book.system_prompts["critic"]
