"""Rate-limited dispatcher for routing provider calls.

All live routing lookups go through one ``FetchQueue`` so the process never has
more than ``max_concurrent`` requests in flight against the provider and never
dispatches faster than ``dispatch_interval`` seconds apart. Rate-limited calls
are parked for ``retry_delay`` seconds and then re-enqueued on the priority
queue, which is always drained before the regular FIFO.

A submitted fetch never raises to its caller: timeouts and provider errors
resolve to ``None`` so the caller can fall back to a haversine estimate.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ...config import Settings, settings as default_settings
from ...errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass(eq=False, slots=True)
class _FetchJob:
    fetch: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    cancel_event: asyncio.Event | None
    label: str
    retries: int = 0

    @property
    def abandoned(self) -> bool:
        if self.future.done():
            return True
        return self.cancel_event is not None and self.cancel_event.is_set()


class FetchQueue:
    def __init__(
        self,
        *,
        max_concurrent: int | None = None,
        dispatch_interval: float | None = None,
        priority_dispatch_factor: float | None = None,
        retry_delay: float | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        config = settings or default_settings
        self.max_concurrent = max_concurrent if max_concurrent is not None else config.max_concurrent_requests
        self.dispatch_interval = (
            dispatch_interval if dispatch_interval is not None else config.dispatch_interval_seconds
        )
        self.priority_dispatch_factor = (
            priority_dispatch_factor if priority_dispatch_factor is not None else config.priority_dispatch_factor
        )
        self.retry_delay = retry_delay if retry_delay is not None else config.rate_limit_retry_delay_seconds
        self.max_retries = max_retries if max_retries is not None else config.max_rate_limit_retries
        self.timeout = timeout if timeout is not None else config.routing_timeout_seconds

        self._fifo: deque[_FetchJob] = deque()
        self._priority: deque[_FetchJob] = deque()
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._worker: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()
        self._retry_handles: dict[_FetchJob, asyncio.TimerHandle] = {}
        self._last_dispatch: float | None = None

        self.in_flight = 0
        self.peak_in_flight = 0
        self.dispatched = 0
        self.rate_limited = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._fifo) + len(self._priority) + len(self._retry_handles)

    async def submit(
        self,
        fetch: Callable[[], Awaitable[Any]],
        *,
        cancel_event: asyncio.Event | None = None,
        label: str = "",
    ) -> Any | None:
        """Queue ``fetch`` and wait for its result (``None`` on failure)."""
        loop = asyncio.get_running_loop()
        job = _FetchJob(fetch=fetch, future=loop.create_future(), cancel_event=cancel_event, label=label)
        if job.abandoned:
            return None
        self._fifo.append(job)
        self._ensure_worker()
        return await job.future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._priority or self._fifo:
            from_priority = bool(self._priority)
            job = self._priority.popleft() if from_priority else self._fifo.popleft()
            if job.abandoned:
                self._resolve(job, None)
                continue

            acquired = False
            try:
                await self._semaphore.acquire()
                acquired = True
                interval = self.dispatch_interval * (self.priority_dispatch_factor if from_priority else 1.0)
                if self._last_dispatch is not None:
                    wait = self._last_dispatch + interval - loop.time()
                    if wait > 0:
                        await asyncio.sleep(wait)
            except asyncio.CancelledError:
                if acquired:
                    self._semaphore.release()
                self._resolve(job, None)
                raise
            if job.abandoned:
                self._semaphore.release()
                self._resolve(job, None)
                continue

            self._last_dispatch = loop.time()
            task = loop.create_task(self._run(job))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _run(self, job: _FetchJob) -> None:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self.dispatched += 1
        try:
            result = await asyncio.wait_for(job.fetch(), timeout=self.timeout)
        except RateLimitedError:
            self.rate_limited += 1
            self._schedule_retry(job)
            return
        except asyncio.TimeoutError:
            self.failed += 1
            logger.warning(f"Routing request {job.label} timed out after {self.timeout:.1f}s")
            self._resolve(job, None)
            return
        except asyncio.CancelledError:
            self._resolve(job, None)
            raise
        except Exception as exc:
            self.failed += 1
            logger.warning(f"Routing request {job.label} failed: {exc}")
            self._resolve(job, None)
            return
        finally:
            self.in_flight -= 1
            self._semaphore.release()
        self._resolve(job, result)

    def _schedule_retry(self, job: _FetchJob) -> None:
        if job.abandoned:
            self._resolve(job, None)
            return
        if job.retries >= self.max_retries:
            logger.warning(f"Routing request {job.label} still rate limited after {job.retries} retries")
            self._resolve(job, None)
            return
        job.retries += 1
        logger.warning(f"Rate limit hit for {job.label}, retrying in {self.retry_delay:.1f}s")
        loop = asyncio.get_running_loop()
        self._retry_handles[job] = loop.call_later(self.retry_delay, self._requeue, job)

    def _requeue(self, job: _FetchJob) -> None:
        self._retry_handles.pop(job, None)
        if job.abandoned:
            self._resolve(job, None)
            return
        self._priority.append(job)
        self._ensure_worker()

    @staticmethod
    def _resolve(job: _FetchJob, result: Any) -> None:
        if not job.future.done():
            job.future.set_result(result)

    async def aclose(self) -> None:
        """Stop dispatching and resolve everything still waiting to ``None``."""
        for handle in self._retry_handles.values():
            handle.cancel()
        waiting = [*self._retry_handles, *self._priority, *self._fifo]
        self._retry_handles.clear()
        self._priority.clear()
        self._fifo.clear()
        for job in waiting:
            self._resolve(job, None)

        tasks = [task for task in (self._worker, *self._running) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None

    def stats(self) -> dict:
        return {
            "pending": self.pending,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "dispatched": self.dispatched,
            "rate_limited": self.rate_limited,
            "failed": self.failed,
        }
