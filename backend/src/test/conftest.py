# tests/conftest.py
import asyncio
import sys
import textwrap
from typing import Callable, Optional

import pytest

from infrastructure.generation.config import GenerationConfig
from infrastructure.generation.models import GenerationJob
from infrastructure.generation.registry import JobRegistry


@pytest.fixture
def fake_cli() -> Callable[..., GenerationConfig]:
    """
    Config whose CLI is the current interpreter running an inline script,
    so supervisor tests never need the real claude binary.
    """

    def _make(script: str, output_format: Optional[str] = None, **overrides) -> GenerationConfig:
        args = ["-c", textwrap.dedent(script)]
        if output_format:
            # lands in the script's argv; the supervisor reads it to pick a parser
            args += ["--output-format", output_format]
        params = dict(
            cli_command=sys.executable,
            cli_args=args,
            cli_model="",
            job_timeout_sec=10.0,
            kill_grace_sec=0.5,
            channel_linger_sec=0.05,
        )
        params.update(overrides)
        return GenerationConfig(**params)

    return _make


@pytest.fixture
def wait_terminal():
    async def _wait(registry: JobRegistry, job_id: str, timeout: float = 10.0) -> GenerationJob:
        async def _poll() -> GenerationJob:
            while True:
                job = await registry.get(job_id)
                if job.terminal:
                    return job
                await asyncio.sleep(0.02)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait
