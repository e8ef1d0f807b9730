# src/infrastructure/generation/registry.py
import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from domain.generation.models import GenerationRequest
from infrastructure.generation.errors import CapacityExceeded, InvalidTransition, NotFound
from infrastructure.generation.models import (
    DEFAULT_EXIT_REASON,
    ExitReason,
    GenerationJob,
    JobState,
    RegistrySnapshot,
    TokenUsage,
    can_transition,
    is_terminal,
    utcnow,
)

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    In-memory job table for a single process.
    Every mutation runs under one asyncio.Lock, so the capacity check in create()
    and the legality check in transition() are linearizable.
    """

    def __init__(
        self,
        *,
        max_active_jobs: int = 4,
        retention_sec: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.max_active_jobs = max_active_jobs
        self.retention = timedelta(seconds=retention_sec)
        self._clock = clock or utcnow
        self._jobs: Dict[str, GenerationJob] = {}
        self._lock = asyncio.Lock()

    # -------- public API --------

    async def create(self, request: GenerationRequest) -> GenerationJob:
        async with self._lock:
            active = self._active_count()
            if active >= self.max_active_jobs:
                raise CapacityExceeded(
                    f"Too many concurrent generations ({active}/{self.max_active_jobs}). Retry later.",
                    details={"active": active, "max_active_jobs": self.max_active_jobs},
                )
            job_id = self._new_id()
            job = GenerationJob(id=job_id, request=request, created_at=self._clock())
            self._jobs[job_id] = job
            logger.info("job.created id=%s action=%s active=%d", job_id, request.action, active + 1)
            return job

    async def get(self, job_id: str) -> GenerationJob:
        async with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Unknown generation id: {job_id}")
        return job

    async def find(self, job_id: str) -> Optional[GenerationJob]:
        async with self._lock:
            return self._jobs.get(job_id)

    async def transition(
        self,
        job_id: str,
        new_state: JobState,
        exit_reason: Optional[ExitReason] = None,
        detail: Optional[str] = None,
    ) -> GenerationJob:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFound(f"Unknown generation id: {job_id}")
            if not can_transition(job.state, new_state):
                raise InvalidTransition(
                    f"{job_id}: {job.state.value} -> {new_state.value} is not allowed",
                    details={"from": job.state.value, "to": new_state.value},
                )

            now = self._clock()
            job.state = new_state
            if new_state == JobState.running:
                job.started_at = now
            if is_terminal(new_state):
                job.finished_at = now
                job.exit_reason = exit_reason or DEFAULT_EXIT_REASON[new_state]
                job.detail = detail
            logger.info(
                "job.transition id=%s state=%s exit_reason=%s",
                job_id,
                new_state.value,
                job.exit_reason.value if job.exit_reason else None,
            )
            return job

    async def record_chunk(self, job_id: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job and not job.terminal:
                job.chunks_emitted += 1

    async def record_usage(self, job_id: str, usage: TokenUsage) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job and not job.terminal:
                job.usage = usage

    async def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """
        Deletes terminal jobs whose finished_at is older than the retention window.
        """
        now = now or self._clock()
        async with self._lock:
            expired = [
                jid
                for jid, job in self._jobs.items()
                if job.terminal and job.finished_at is not None and (now - job.finished_at) > self.retention
            ]
            for jid in expired:
                del self._jobs[jid]
        if expired:
            logger.info("job.sweep evicted=%d", len(expired))
        return expired

    async def active_count(self) -> int:
        async with self._lock:
            return self._active_count()

    async def snapshot(self) -> RegistrySnapshot:
        async with self._lock:
            totals: Dict[str, int] = defaultdict(int)
            for job in self._jobs.values():
                totals[job.state.value] += 1
            active = self._active_count()
            return RegistrySnapshot(
                ts=self._clock(),
                totals=dict(totals),
                active=active,
                capacity_left=max(0, self.max_active_jobs - active),
                max_active_jobs=self.max_active_jobs,
            )

    # -------- internal helpers --------

    def _active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if not job.terminal)

    def _new_id(self) -> str:
        # uuid4 collisions are not a practical concern; guard against live ids only
        while True:
            job_id = uuid.uuid4().hex
            if job_id not in self._jobs:
                return job_id
