# src/infrastructure/generation/auth.py
import logging
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def marker_file_probe(path: str) -> Callable[[], bool]:
    """
    The CLI writes its history file after the first successful login,
    so its presence is used as the "logged in" signal.
    """
    marker = Path(path).expanduser()

    def _probe() -> bool:
        return marker.exists()

    return _probe


class CliAuthCache:
    """
    Cached CLI authentication check with an explicit TTL and an injectable clock.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        *,
        ttl_sec: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._probe = probe
        self.ttl_sec = ttl_sec
        self._clock = clock or time.monotonic
        self._cached: Optional[bool] = None
        self._checked_at: float = 0.0

    def is_authenticated(self) -> bool:
        now = self._clock()
        if self._cached is not None and (now - self._checked_at) < self.ttl_sec:
            return self._cached

        try:
            result = bool(self._probe())
        except OSError as e:
            logger.warning("auth.probe_failed error=%s", e)
            result = False
        self._cached = result
        self._checked_at = now
        return result

    def clear(self) -> None:
        self._cached = None
        self._checked_at = 0.0
