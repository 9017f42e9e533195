"""Rate-limited, request-coalescing orientation snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import aiohttp

from ..core.models import TelemetrySample
from ..errors import TransportTimeout, TransportUnreachable

LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL_SECONDS = 0.3
DEFAULT_TIMEOUT_SECONDS = 1.5

FetchType = Callable[[], Awaitable[TelemetrySample]]


class SensorSnapshotAccessor:
    """Point-in-time reads of the device's orientation and battery state.

    - A cached sample younger than ``min_interval`` is returned as-is.
    - Concurrent callers share one in-flight request and its outcome.
    - Each request is bounded by ``timeout``; failures surface as
      :class:`TransportTimeout` / :class:`TransportUnreachable` and are not
      retried here.
    """

    def __init__(
        self,
        fetch: FetchType,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self.min_interval = min_interval
        self.timeout = timeout
        self._clock = clock

        self._cached: Optional[TelemetrySample] = None
        self._cached_at: Optional[float] = None
        self._inflight: Optional[asyncio.Future[TelemetrySample]] = None
        self.request_count = 0

    @property
    def last_sample(self) -> Optional[TelemetrySample]:
        return self._cached

    def invalidate(self) -> None:
        """Forget the cached sample so the next call hits the device."""

        self._cached = None
        self._cached_at = None

    async def snapshot(self) -> TelemetrySample:
        if self._cached is not None and self._cached_at is not None:
            if self._clock() - self._cached_at < self.min_interval:
                return self._cached

        inflight = self._inflight
        if inflight is None:
            inflight = asyncio.ensure_future(self._request())
            self._inflight = inflight
            inflight.add_done_callback(self._clear_inflight)

        # Shielded so one cancelled caller does not abort the shared request.
        return await asyncio.shield(inflight)

    def _clear_inflight(self, future: asyncio.Future[TelemetrySample]) -> None:
        if self._inflight is future:
            self._inflight = None
        # Mark the exception retrieved; every waiter already got it.
        if not future.cancelled():
            future.exception()

    async def _request(self) -> TelemetrySample:
        self.request_count += 1
        try:
            async with asyncio.timeout(self.timeout):
                sample = await self._fetch()
        except TimeoutError as exc:
            LOGGER.warning("Sensor snapshot timed out after %.1fs", self.timeout)
            raise TransportTimeout(
                f"Sensor snapshot timed out after {self.timeout:.1f}s"
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            LOGGER.warning("Sensor snapshot failed: %s", exc)
            raise TransportUnreachable(f"Sensor snapshot failed: {exc}") from exc

        self._cached = sample
        self._cached_at = self._clock()
        return sample
