# src/infrastructure/generation/supervisor.py
import asyncio
import codecs
import logging
import os
import signal
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from infrastructure.generation.broker import StreamBroker
from infrastructure.generation.cli_output import CliOutput, make_cli_output
from infrastructure.generation.config import GenerationConfig
from infrastructure.generation.errors import AlreadyRunning, InvalidTransition, NotFound
from infrastructure.generation.metrics import GenerationMetrics, NoopGenerationMetrics
from infrastructure.generation.models import ExitReason, GenerationJob, JobState
from infrastructure.generation.registry import JobRegistry
from infrastructure.prompt.manager import PromptManager
from infrastructure.prompt.schema import RenderedPrompt

logger = logging.getLogger(__name__)


@dataclass
class _Supervised:
    job_id: str
    process: Optional[asyncio.subprocess.Process] = None
    # set before any signal, so the exit handler knows the process was killed on purpose
    intent: Optional[ExitReason] = None
    # the registry write that goes with intent; cancel() waits on it
    settled: Optional[asyncio.Task] = None
    timer: Optional[asyncio.TimerHandle] = None
    tasks: List[asyncio.Task] = field(default_factory=list)
    stderr_tail: bytearray = field(default_factory=bytearray)
    chunks: int = 0
    output: CliOutput = field(default_factory=CliOutput)


class ProcessSupervisor:
    """
    One external CLI process per job.
    run() returns right after spawn; stdin feeding, stdout pumping, stderr capture
    and exit handling happen in background tasks. The wall-clock timeout is a
    loop timer armed at spawn.
    """

    def __init__(
        self,
        *,
        registry: JobRegistry,
        broker: StreamBroker,
        prompts: PromptManager,
        config: Optional[GenerationConfig] = None,
        metrics: Optional[GenerationMetrics] = None,
    ) -> None:
        self.registry = registry
        self.broker = broker
        self.prompts = prompts
        self.config = config or GenerationConfig()
        self.metrics = metrics or NoopGenerationMetrics()
        self._procs: Dict[str, _Supervised] = {}
        self._background: Set[asyncio.Task] = set()

    # -------- public API --------

    def build_command(self, prompt: RenderedPrompt) -> List[str]:
        cmd = [self.config.cli_command, *self.config.cli_args]
        if self.config.cli_model:
            cmd += ["--model", self.config.cli_model]
        if prompt.system:
            cmd += ["--append-system-prompt", prompt.system]
        return cmd

    def is_running(self, job_id: str) -> bool:
        return job_id in self._procs

    async def run(self, job: GenerationJob, prompt: Optional[RenderedPrompt] = None) -> None:
        if job.id in self._procs:
            raise AlreadyRunning(f"Generation {job.id} already has a live process")
        if job.terminal:
            logger.info("job.run_skipped id=%s state=%s", job.id, job.state.value)
            return

        prompt = prompt or self.prompts.render(job.request)
        cmd = self.build_command(prompt)

        # reserve the slot before the first await: no duplicate spawns
        entry = _Supervised(job_id=job.id, output=make_cli_output(self.config.cli_args))
        self._procs[job.id] = entry
        self.broker.open(job.id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # own process group, so signals reach helpers the CLI spawns
                start_new_session=True,
            )
        except OSError as e:
            self._procs.pop(job.id, None)
            logger.error("job.spawn_failed id=%s cmd=%s error=%s", job.id, cmd[0], e)
            await self._finish(
                job.id,
                JobState.failed,
                ExitReason.process_error,
                detail=f"Failed to start {cmd[0]}: {e}. Make sure it is on PATH.",
            )
            return

        entry.process = proc
        logger.info("job.spawned id=%s pid=%s action=%s", job.id, proc.pid, job.request.action)
        try:
            await self.registry.transition(job.id, JobState.running)
        except (InvalidTransition, NotFound):
            # cancelled while spawning; the pump still reaps the process
            self._signal(proc, kill=True)

        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.config.job_timeout_sec, self._on_timeout, job.id)
        entry.tasks = [
            asyncio.create_task(self._feed_stdin(entry, prompt.user_text), name=f"generation-stdin:{job.id}"),
            asyncio.create_task(self._capture_stderr(entry), name=f"generation-stderr:{job.id}"),
        ]
        pump = asyncio.create_task(self._pump(entry), name=f"generation:{job.id}")
        self._track(pump)
        self.metrics.gauge_active(await self.registry.active_count())

    async def cancel(self, job_id: str) -> GenerationJob:
        """
        Idempotent. The registry flips to cancelled before the process is signalled,
        so any output still in flight is discarded. When a timeout (or an earlier
        cancel) already claimed the job, waits for that outcome and returns it.
        """
        job = await self.registry.get(job_id)
        if job.terminal:
            return job

        entry = self._procs.get(job_id)
        if entry is None:
            finished = await self._finish(
                job_id, JobState.cancelled, ExitReason.cancelled, detail="Cancelled by caller"
            )
            return finished or await self.registry.get(job_id)

        first = entry.intent is None
        if first:
            entry.intent = ExitReason.cancelled
            entry.settled = self._settle(JobState.cancelled, ExitReason.cancelled, entry, "Cancelled by caller")
        if entry.settled is not None:
            await asyncio.shield(entry.settled)
        if first and entry.process is not None:
            self._track(asyncio.create_task(self._terminate(entry.process, self.config.kill_grace_sec)))
        return await self.registry.get(job_id)

    async def shutdown(self) -> None:
        for job_id in list(self._procs):
            try:
                await self.cancel(job_id)
            except NotFound:
                pass
        if self._background:
            await asyncio.wait(list(self._background), timeout=self.config.kill_grace_sec + 1.0)

    # -------- process I/O --------

    async def _feed_stdin(self, entry: _Supervised, text: str) -> None:
        proc = entry.process
        if proc is None or proc.stdin is None:
            return
        try:
            proc.stdin.write(text.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("job.stdin_closed_early id=%s", entry.job_id)
        finally:
            try:
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def _capture_stderr(self, entry: _Supervised) -> None:
        proc = entry.process
        if proc is None or proc.stderr is None:
            return
        limit = self.config.stderr_tail_bytes
        while True:
            data = await proc.stderr.read(4096)
            if not data:
                return
            entry.stderr_tail += data
            if len(entry.stderr_tail) > limit:
                del entry.stderr_tail[: len(entry.stderr_tail) - limit]

    async def _pump(self, entry: _Supervised) -> None:
        proc = entry.process
        assert proc is not None and proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        output = entry.output
        rc: Optional[int] = None
        try:
            while True:
                data = await proc.stdout.read(self.config.read_chunk_size)
                if not data:
                    break
                for chunk in output.feed(decoder.decode(data)):
                    await self._emit(entry, chunk)
            for chunk in output.feed(decoder.decode(b"", final=True)) + output.finish():
                await self._emit(entry, chunk)
            if output.usage is not None:
                await self.registry.record_usage(entry.job_id, output.usage)
            rc = await proc.wait()
            await asyncio.gather(*entry.tasks, return_exceptions=True)
        except Exception:
            logger.exception("job.pump_error id=%s", entry.job_id)
            self._signal(proc, kill=True)
        finally:
            await self._on_exit(entry, rc)

    async def _emit(self, entry: _Supervised, chunk: str) -> None:
        if entry.intent is not None:
            return
        if not self.broker.publish(entry.job_id, chunk):
            return
        entry.chunks += 1
        await self.registry.record_chunk(entry.job_id)
        if entry.chunks == 1:
            try:
                await self.registry.transition(entry.job_id, JobState.streaming)
            except (InvalidTransition, NotFound):
                pass

    # -------- lifecycle --------

    def _on_timeout(self, job_id: str) -> None:
        entry = self._procs.get(job_id)
        if entry is None or entry.intent is not None:
            return
        entry.intent = ExitReason.timeout
        logger.warning("job.timeout id=%s after=%.1fs", job_id, self.config.job_timeout_sec)
        entry.settled = self._settle(
            JobState.failed,
            ExitReason.timeout,
            entry,
            f"Generation exceeded {self.config.job_timeout_sec:g}s and was terminated",
        )
        self._track(asyncio.create_task(self._expire(entry)))

    async def _expire(self, entry: _Supervised) -> None:
        if entry.settled is not None:
            await entry.settled
        if entry.process is not None:
            self._signal(entry.process, kill=True)

    def _settle(self, state: JobState, reason: ExitReason, entry: _Supervised, detail: str) -> asyncio.Task:
        task = asyncio.create_task(self._finish(entry.job_id, state, reason, detail=detail))
        self._track(task)
        return task

    async def _on_exit(self, entry: _Supervised, rc: Optional[int]) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        if self._procs.get(entry.job_id) is entry:
            del self._procs[entry.job_id]

        stderr = entry.stderr_tail.decode("utf-8", errors="replace").strip()
        if entry.intent is not None:
            logger.info("job.exited id=%s rc=%s intent=%s", entry.job_id, rc, entry.intent.value)
            return

        if rc == 0 and entry.output.error is None:
            await self._finish(entry.job_id, JobState.completed, ExitReason.normal)
            return

        if rc == 0:
            logger.warning("job.cli_reported_error id=%s error=%s", entry.job_id, entry.output.error[-500:])
            await self._finish(
                entry.job_id,
                JobState.failed,
                ExitReason.process_error,
                detail=f"CLI reported an error: {entry.output.error}",
            )
            return

        detail = f"CLI exited with code {rc}"
        if stderr:
            detail = f"{detail}: {stderr}"
        logger.warning("job.process_error id=%s rc=%s stderr=%s", entry.job_id, rc, stderr[-500:])
        await self._finish(entry.job_id, JobState.failed, ExitReason.process_error, detail=detail)

    async def _finish(
        self,
        job_id: str,
        state: JobState,
        reason: ExitReason,
        detail: Optional[str] = None,
    ) -> Optional[GenerationJob]:
        try:
            job = await self.registry.transition(job_id, state, reason, detail=detail)
        except InvalidTransition:
            # another outcome already won (e.g. caller cancel vs normal exit)
            logger.debug("job.finish_discarded id=%s state=%s", job_id, state.value)
            return None
        except NotFound:
            return None
        finally:
            self.broker.close(job_id)

        self.metrics.observe_finished(
            state=state.value,
            exit_reason=reason.value,
            duration_sec=job.duration_sec,
        )
        self.metrics.gauge_active(await self.registry.active_count())
        return job

    async def _terminate(self, proc: asyncio.subprocess.Process, grace: float) -> None:
        self._signal(proc, kill=False)
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("job.kill pid=%s (no exit after SIGTERM)", proc.pid)
        # helpers that outlived the CLI would keep stdout open
        self._signal(proc, kill=True)

    @staticmethod
    def _signal(proc: asyncio.subprocess.Process, *, kill: bool) -> None:
        """
        Signals the CLI's whole process group (the CLI is its leader).
        The group can outlive the reaped leader while helpers still run.
        """
        try:
            os.killpg(proc.pid, signal.SIGKILL if kill else signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            pass

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
