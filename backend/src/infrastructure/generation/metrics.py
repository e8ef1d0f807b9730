# src/infrastructure/generation/metrics.py
from abc import ABC, abstractmethod
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class GenerationMetrics(ABC):
    @abstractmethod
    def observe_created(self, action: str) -> None: ...

    @abstractmethod
    def observe_rejected(self, reason: str) -> None: ...

    @abstractmethod
    def observe_finished(self, *, state: str, exit_reason: str, duration_sec: Optional[float]) -> None: ...

    @abstractmethod
    def gauge_active(self, n: int) -> None: ...

    @abstractmethod
    def observe_subscriber_dropped(self) -> None: ...


class NoopGenerationMetrics(GenerationMetrics):
    def observe_created(self, action: str) -> None:  # pragma: no cover
        pass

    def observe_rejected(self, reason: str) -> None:  # pragma: no cover
        pass

    def observe_finished(
        self, *, state: str, exit_reason: str, duration_sec: Optional[float]
    ) -> None:  # pragma: no cover
        pass

    def gauge_active(self, n: int) -> None:  # pragma: no cover
        pass

    def observe_subscriber_dropped(self) -> None:  # pragma: no cover
        pass


class PrometheusGenerationMetrics(GenerationMetrics):
    """
    Collectors register on the default registry unless one is given,
    so build at most one per process against the default.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        kw = {"registry": registry} if registry is not None else {}
        self.created = Counter("generation_jobs_created_total", "Total generation jobs created", ["action"], **kw)
        self.rejected = Counter(
            "generation_jobs_rejected_total",
            "Generation requests rejected before a job was created",
            ["reason"],  # capacity|unauthorized|invalid
            **kw,
        )
        self.finished = Counter(
            "generation_jobs_finished_total",
            "Generation jobs that reached a terminal state",
            ["state", "exit_reason"],
            **kw,
        )
        self.active = Gauge("generation_jobs_active", "Non-terminal generation jobs", **kw)
        self.dropped = Counter("generation_stream_subscribers_dropped_total", "Slow stream subscribers dropped", **kw)
        self.latency = Histogram(
            "generation_job_duration_seconds",
            "Duration from spawn to terminal state in seconds",
            buckets=(0.5, 1, 3, 5, 10, 20, 30, 60, 120, 300),
            **kw,
        )

    def observe_created(self, action: str) -> None:
        self.created.labels(action=action).inc()

    def observe_rejected(self, reason: str) -> None:
        self.rejected.labels(reason=reason).inc()

    def observe_finished(self, *, state: str, exit_reason: str, duration_sec: Optional[float]) -> None:
        self.finished.labels(state=state, exit_reason=exit_reason).inc()
        if duration_sec is not None:
            self.latency.observe(duration_sec)

    def gauge_active(self, n: int) -> None:
        self.active.set(n)

    def observe_subscriber_dropped(self) -> None:
        self.dropped.inc()
