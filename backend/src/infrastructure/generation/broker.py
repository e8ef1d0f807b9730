# src/infrastructure/generation/broker.py
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import AsyncIterator, Deque, Dict, Optional, Set

from infrastructure.generation.metrics import GenerationMetrics, NoopGenerationMetrics

logger = logging.getLogger(__name__)

# end-of-stream marker
_EOS = object()


class Subscription:
    """
    One attached stream sink. The queue keeps one spare slot so the
    end-of-stream marker always fits, even when the subscriber is being dropped.
    """

    def __init__(self, job_id: str, maxsize: int) -> None:
        self.job_id = job_id
        self.maxsize = maxsize
        self.dropped = False
        self._ended = False
        self._q: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)

    @property
    def ended(self) -> bool:
        return self._ended

    def push(self, chunk: str) -> bool:
        if self._ended:
            return False
        if self._q.qsize() >= self.maxsize:
            return False
        self._q.put_nowait(chunk)
        return True

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._q.put_nowait(_EOS)

    async def get(self) -> Optional[str]:
        """Next chunk, or None at end-of-stream."""
        item = await self._q.get()
        if item is _EOS:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[str]:
        while True:
            chunk = await self.get()
            if chunk is None:
                return
            yield chunk


@dataclass
class StreamChannel:
    job_id: str
    buffer: Deque[str]
    subscribers: Set[Subscription] = field(default_factory=set)
    closed: bool = False
    published: int = 0
    discard_handle: Optional[asyncio.TimerHandle] = None


class StreamBroker:
    """
    Per-job fan-out with a bounded replay buffer.
    All methods are synchronous, so each one is atomic on the event loop and
    a producer never awaits a subscriber.
    """

    def __init__(
        self,
        *,
        buffer_capacity: int = 256,
        subscriber_queue_size: int = 1000,
        linger_sec: float = 30.0,
        metrics: Optional[GenerationMetrics] = None,
    ) -> None:
        self.buffer_capacity = buffer_capacity
        # a new subscriber must be able to take the whole replay
        self.subscriber_queue_size = max(subscriber_queue_size, buffer_capacity)
        self.linger_sec = linger_sec
        self.metrics = metrics or NoopGenerationMetrics()
        self._channels: Dict[str, StreamChannel] = {}

    # -------- public API --------

    def open(self, job_id: str) -> StreamChannel:
        ch = self._channels.get(job_id)
        if ch is None:
            ch = StreamChannel(job_id=job_id, buffer=deque(maxlen=self.buffer_capacity))
            self._channels[job_id] = ch
        return ch

    def publish(self, job_id: str, chunk: str) -> bool:
        ch = self._channels.get(job_id)
        if ch is None or ch.closed:
            logger.debug("stream.late_chunk_discarded job_id=%s size=%d", job_id, len(chunk))
            return False

        ch.buffer.append(chunk)
        ch.published += 1
        for sub in list(ch.subscribers):
            if not sub.push(chunk):
                # slow consumer: drop it rather than throttle the producer
                ch.subscribers.discard(sub)
                sub.dropped = True
                sub.end()
                self.metrics.observe_subscriber_dropped()
                logger.warning("stream.subscriber_dropped job_id=%s", job_id)
        return True

    def subscribe(self, job_id: str) -> Subscription:
        """
        Replays the buffer, then follows live chunks.
        Without a channel (never opened or already discarded) the stream ends at once.
        """
        sub = Subscription(job_id, self.subscriber_queue_size)
        ch = self._channels.get(job_id)
        if ch is None:
            sub.end()
            logger.debug("stream.subscribed job_id=%s channel=missing", job_id)
            return sub

        for chunk in ch.buffer:
            sub.push(chunk)
        if ch.closed:
            sub.end()
        else:
            ch.subscribers.add(sub)
        logger.debug("stream.subscribed job_id=%s replayed=%d closed=%s", job_id, len(ch.buffer), ch.closed)
        return sub

    def unsubscribe(self, job_id: str, sub: Subscription) -> None:
        ch = self._channels.get(job_id)
        if ch is not None:
            ch.subscribers.discard(sub)

    def close(self, job_id: str) -> None:
        ch = self._channels.get(job_id)
        if ch is None or ch.closed:
            return
        ch.closed = True
        for sub in list(ch.subscribers):
            sub.end()
        ch.subscribers.clear()
        logger.debug("stream.closed job_id=%s published=%d", job_id, ch.published)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.discard(job_id)
            return
        ch.discard_handle = loop.call_later(self.linger_sec, self.discard, job_id)

    def discard(self, job_id: str) -> None:
        ch = self._channels.pop(job_id, None)
        if ch is None:
            return
        if ch.discard_handle is not None:
            ch.discard_handle.cancel()
        for sub in ch.subscribers:
            sub.end()

    def is_closed(self, job_id: str) -> bool:
        ch = self._channels.get(job_id)
        return bool(ch and ch.closed)

    def has_channel(self, job_id: str) -> bool:
        return job_id in self._channels

    def stats(self) -> Dict[str, int]:
        return {
            "channels": len(self._channels),
            "open": sum(1 for ch in self._channels.values() if not ch.closed),
            "subscribers": sum(len(ch.subscribers) for ch in self._channels.values()),
        }
