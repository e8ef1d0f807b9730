# src/service/generation.py
"""
Generation orchestrator facade (process-memory only).
- JobRegistry: job table + state machine + capacity ceiling
- ProcessSupervisor: one CLI process per job, timeout, cancel
- StreamBroker: per-job fan-out with a replay buffer
- CliAuthCache: cached "is the CLI logged in" check
Single-process only; job history is lost on restart.

The retention sweep runs as a background loop started from the app lifespan.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from domain.generation.models import GenerationRequest
from infrastructure.generation.auth import CliAuthCache, marker_file_probe
from infrastructure.generation.broker import StreamBroker, Subscription
from infrastructure.generation.config import GenerationConfig, load_generation_config
from infrastructure.generation.errors import CapacityExceeded, InvalidRequest, Unauthorized
from infrastructure.generation.metrics import GenerationMetrics, NoopGenerationMetrics, PrometheusGenerationMetrics
from infrastructure.generation.models import GenerationJob, RegistrySnapshot
from infrastructure.generation.registry import JobRegistry
from infrastructure.generation.supervisor import ProcessSupervisor
from infrastructure.prompt.manager import PromptManager

logger = logging.getLogger(__name__)

UNAUTHENTICATED_MESSAGE = 'Claude CLI authentication required. Run "claude login" in your terminal.'


class GenerationService:
    def __init__(
        self,
        *,
        config: Optional[GenerationConfig] = None,
        registry: Optional[JobRegistry] = None,
        broker: Optional[StreamBroker] = None,
        prompts: Optional[PromptManager] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        auth: Optional[CliAuthCache] = None,
        metrics: Optional[GenerationMetrics] = None,
    ) -> None:
        cfg = config or load_generation_config()
        self.config = cfg

        if metrics is None:
            metrics = PrometheusGenerationMetrics() if cfg.metrics_backend == "prom" else NoopGenerationMetrics()
        self.metrics = metrics

        self.registry = registry or JobRegistry(
            max_active_jobs=cfg.max_active_jobs,
            retention_sec=cfg.retention_sec,
        )
        self.broker = broker or StreamBroker(
            buffer_capacity=cfg.buffer_capacity,
            subscriber_queue_size=cfg.subscriber_queue_size,
            linger_sec=cfg.channel_linger_sec,
            metrics=metrics,
        )
        self.prompts = prompts or PromptManager()
        self.supervisor = supervisor or ProcessSupervisor(
            registry=self.registry,
            broker=self.broker,
            prompts=self.prompts,
            config=cfg,
            metrics=metrics,
        )
        self.auth = auth or CliAuthCache(
            marker_file_probe(cfg.auth_marker_path),
            ttl_sec=cfg.auth_cache_ttl_sec,
        )

        self._sweeper: Optional[asyncio.Task] = None
        self._running = False

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="generation_sweeper")

    async def stop(self) -> None:
        self._running = False
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.supervisor.shutdown()

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.sweep_interval_sec)
            try:
                await self.sweep()
            except Exception as e:
                logger.exception("sweep loop error: %s", e)

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        evicted = await self.registry.sweep_expired(now)
        for job_id in evicted:
            self.broker.discard(job_id)
        return evicted

    # ---------- auth ----------

    def ai_status(self, force: Optional[str] = None) -> Dict[str, Any]:
        """
        force="authenticated"|"unauthenticated" overrides the cached check (test environments).
        """
        if force == "unauthenticated":
            authed = False
        elif force == "authenticated":
            authed = True
        else:
            authed = self.auth.is_authenticated()

        return {
            "authenticated": authed,
            "cli_authenticated": authed,
            "can_use_ai": authed,
            "message": "Claude CLI is authenticated" if authed else UNAUTHENTICATED_MESSAGE,
        }

    def ensure_authenticated(self, *, force_unauthenticated: bool = False) -> None:
        if force_unauthenticated or not self.auth.is_authenticated():
            self.metrics.observe_rejected("unauthorized")
            raise Unauthorized(UNAUTHENTICATED_MESSAGE)

    # ---------- jobs ----------

    async def generate(self, request: GenerationRequest) -> GenerationJob:
        """
        Registers a job and spawns its process. Returns before any output exists.
        """
        try:
            prompt = self.prompts.render(request)
        except KeyError as e:
            self.metrics.observe_rejected("invalid")
            raise InvalidRequest(
                f"Action '{request.action}' is missing context: {e.args[0] if e.args else e}",
                details={"action": request.action},
            )

        try:
            job = await self.registry.create(request)
        except CapacityExceeded:
            self.metrics.observe_rejected("capacity")
            logger.warning("generate.rejected reason=capacity action=%s", request.action)
            raise

        self.metrics.observe_created(request.action)
        await self.supervisor.run(job, prompt)
        return job

    async def get(self, job_id: str) -> GenerationJob:
        return await self.registry.get(job_id)

    async def cancel(self, job_id: str) -> GenerationJob:
        return await self.supervisor.cancel(job_id)

    async def subscribe(self, job_id: str) -> Subscription:
        # NotFound for unknown ids; a retained job whose channel is gone yields an ended stream
        await self.registry.get(job_id)
        return self.broker.subscribe(job_id)

    def unsubscribe(self, job_id: str, sub: Subscription) -> None:
        self.broker.unsubscribe(job_id, sub)

    async def snapshot(self) -> RegistrySnapshot:
        return await self.registry.snapshot()

    # ---------- consistency check ----------

    def consistency_check(self, content: str, context: Dict[str, Any]) -> Dict[str, Any]:
        # no model call yet; always a well-formed, empty result
        return {
            "status": "success",
            "warnings": [],
            "message": "Consistency check completed",
        }
