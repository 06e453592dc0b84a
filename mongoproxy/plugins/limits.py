"""Plugin that caps batch sizes and rate-limits getMore streams."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from .pipeline import Document, PipelineFunc, Plugin, Request, register

logger = logging.getLogger(__name__)

NAME = "limits"
GET_MORE_RATELIMIT_KEY = "limit.getmore"

DEFAULT_BATCH_SIZE_LIMIT = 10000
DEFAULT_GET_MORE_STREAM_RATELIMIT = 20000


class LimitError(Exception):
    """A request exceeds a configured limit."""


class RateLimiter:
    """Token bucket allowing ``rate`` tokens per second with bursts of ``burst``."""

    def __init__(
        self,
        rate: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    def wait_n(self, n: int) -> float:
        """Block until ``n`` tokens are available; returns the seconds waited."""
        with self._lock:
            if n > self.burst:
                raise LimitError(f"rate: Wait(n={n}) exceeds limiter's burst {self.burst}")
            now = self._clock()
            if self.rate > 0:
                elapsed = max(0.0, now - self._last)
                self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now
            if self.rate <= 0 and self._tokens < n:
                raise LimitError(f"rate: Wait(n={n}) would wait forever")
            self._tokens -= n
            delay = -self._tokens / self.rate if self._tokens < 0 else 0.0
        if delay > 0:
            self._sleep(delay)
        return delay


def _decode_int(key: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    return value


class LimitsPlugin(Plugin):
    """Enforces a batch size limit and a per-connection getMore rate."""

    def __init__(self) -> None:
        self.batch_size_limit = DEFAULT_BATCH_SIZE_LIMIT
        self.get_more_stream_ratelimit = DEFAULT_GET_MORE_STREAM_RATELIMIT

    def name(self) -> str:
        return NAME

    def configure(self, config: Optional[dict]) -> None:
        batch = self.batch_size_limit
        rate = self.get_more_stream_ratelimit
        for key, value in (config or {}).items():
            if key == "batchSizeLimit":
                batch = _decode_int(key, value)
            elif key == "getMoreStreamRatelimit":
                rate = _decode_int(key, value)
            else:
                raise ValueError(f"unknown configuration field {key!r}")
        self.batch_size_limit = batch
        self.get_more_stream_ratelimit = rate

    def _apply_batch_size(self, command: dict) -> int:
        batch_size = command.get("batchSize")
        if batch_size is None:
            command["batchSize"] = self.batch_size_limit
            return self.batch_size_limit
        if batch_size > self.batch_size_limit:
            raise LimitError("limit too high")
        return int(batch_size)

    def _limiter(self, request: Request) -> RateLimiter:
        limiter = request.client.data.get(GET_MORE_RATELIMIT_KEY)
        if limiter is None:
            limiter = RateLimiter(
                self.get_more_stream_ratelimit, self.get_more_stream_ratelimit
            )
            request.client.data[GET_MORE_RATELIMIT_KEY] = limiter
        return limiter

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        name = request.command_name
        if name == "find":
            self._apply_batch_size(request.command)
        elif name == "getMore":
            batch_size = self._apply_batch_size(request.command)
            # Limit on the batch we could get, before the downstream does the work.
            waited = self._limiter(request).wait_n(batch_size)
            if waited > 0.001:
                logger.debug(
                    "stream delay %.3fs db=%s collection=%s command=%s readpref=%s",
                    waited,
                    request.database(),
                    request.collection(),
                    name,
                    request.read_preference_mode(),
                )
        return next_(request)


register(LimitsPlugin)