"""
Per-key FIFO admission for browser interactions.

At most one task runs per key. A caller that waits longer than its timeout gets
LockTimeout immediately, but its task is not cancelled: it keeps the key until it
settles, so the next queued task never touches the tab while the abandoned one
still does. The abandoned result is logged and discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import LockTimeout

logger = logging.getLogger("lotl.controller.lock")

TaskFactory = Callable[[], Awaitable[Any]]


@dataclass
class _Job:
    key: str
    factory: TaskFactory
    future: asyncio.Future
    label: str = ""
    abandoned: bool = False


@dataclass
class _KeyQueue:
    pending: deque[_Job] = field(default_factory=deque)
    running: _Job | None = None


class RequestLock:
    def __init__(self) -> None:
        self._queues: dict[str, _KeyQueue] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_busy(self, key: str) -> bool:
        q = self._queues.get(key)
        return bool(q is not None and q.running is not None)

    def queued(self, key: str) -> int:
        q = self._queues.get(key)
        return len(q.pending) if q is not None else 0

    def keys(self) -> list[str]:
        return sorted(self._queues.keys())

    async def with_lock(self, key: str, timeout: float, task: TaskFactory, *, label: str = "") -> Any:
        """Run `task()` once every earlier task for `key` has settled.

        The timeout covers queue wait plus execution.
        """
        loop = asyncio.get_running_loop()
        job = _Job(key=key, factory=task, future=loop.create_future(), label=label)
        q = self._queues.setdefault(key, _KeyQueue())
        q.pending.append(job)
        if q.running is not None:
            logger.info("lock_queued key=%s label=%s position=%d", key, label, len(q.pending))
        self._pump(key)

        try:
            return await asyncio.wait_for(asyncio.shield(job.future), timeout=timeout)
        except asyncio.TimeoutError:
            job.abandoned = True
            started = q.running is job
            logger.warning(
                "lock_timeout key=%s label=%s timeout=%.1fs started=%s", key, label, timeout, started
            )
            raise LockTimeout(
                platform=key.split(":", 1)[0],
                reason=f"Lock timeout ({round(timeout)}s)",
                suggestion="The tab is still busy with an earlier request; retry later",
                details={"key": key, "started": started, "label": label},
            ) from None
        except asyncio.CancelledError:
            job.abandoned = True
            raise

    def _pump(self, key: str) -> None:
        q = self._queues.get(key)
        if q is None or q.running is not None:
            return
        if not q.pending:
            del self._queues[key]
            return
        job = q.pending.popleft()
        q.running = job
        runner = asyncio.get_running_loop().create_task(self._run(job), name=f"lotl-lock-{key}")
        self._tasks.add(runner)
        runner.add_done_callback(self._tasks.discard)

    async def _run(self, job: _Job) -> None:
        try:
            if job.abandoned:
                # Caller already gave up before the task started; still honour FIFO order.
                logger.info("lock_skip_abandoned key=%s label=%s", job.key, job.label)
                if not job.future.done():
                    job.future.cancel()
                return
            logger.debug("lock_acquired key=%s label=%s", job.key, job.label)
            try:
                result = await job.factory()
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.cancel()
                raise
            except Exception as exc:  # noqa: BLE001
                if not job.future.done():
                    job.future.set_exception(exc)
                if job.abandoned:
                    logger.info("abandoned_task_failed key=%s label=%s error=%s", job.key, job.label, exc)
                    # Mark retrieved; nobody awaits this future any more.
                    job.future.exception()
            else:
                if not job.future.done():
                    job.future.set_result(result)
                if job.abandoned:
                    logger.info("abandoned_task_settled key=%s label=%s (result discarded)", job.key, job.label)
        finally:
            q = self._queues.get(job.key)
            if q is not None and q.running is job:
                q.running = None
            logger.debug("lock_released key=%s label=%s", job.key, job.label)
            self._pump(job.key)
