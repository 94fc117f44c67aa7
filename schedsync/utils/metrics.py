"""
Latency measurement for outbound calls.

    with CallTimer() as timer:
        response = await client.send(request)
    metrics.record_success(timer.elapsed_ms)

elapsed_ms is live while the block runs and frozen once it exits,
including when it exits by exception.
"""
import time
from typing import Optional


class CallTimer:

    def __init__(self):
        self._started: float = 0.0
        self._finished: Optional[float] = None

    def __enter__(self) -> "CallTimer":
        self._started = time.monotonic()
        self._finished = None
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._finished = time.monotonic()
        return False

    @property
    def elapsed_ms(self) -> int:
        end = self._finished if self._finished is not None else time.monotonic()
        return max(0, int((end - self._started) * 1000))
