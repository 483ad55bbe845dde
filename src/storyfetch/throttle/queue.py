"""
Per-ceiling throttle queues.

Every distinct rate limit ceiling gets its own queue so that a slow tier
(e.g. 6 req/s for large listings) never delays a fast one (e.g. 50 req/s for
single stories). Queues are created lazily and owned by one manager.
"""

from __future__ import annotations

import asyncio
import contextvars
import math
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Set, Tuple

import structlog

from storyfetch.observability import gauge
from storyfetch.protocols import ThrottleAbortedError

logger = structlog.get_logger(__name__)

RequestFn = Callable[..., Awaitable[Any]]


@dataclass
class _PendingCall:
    args: Tuple[Any, ...]
    kwargs: Dict[str, Any]
    future: "asyncio.Future[Any]"
    context: contextvars.Context


@dataclass
class ThrottleQueue:
    """
    Admits at most ``limit`` calls per ``interval`` seconds, first come first served.

    An admitted call holds its slot from admission until ``interval`` seconds
    after it finishes, which bounds both the rate and the number of calls in
    flight.
    """

    request_fn: RequestFn
    limit: int
    interval: float = 1.0

    _pending: Deque[_PendingCall] = field(default_factory=deque, init=False, repr=False)
    _active: int = field(default=0, init=False)
    _timers: Dict[int, asyncio.TimerHandle] = field(default_factory=dict, init=False, repr=False)
    _timer_seq: int = field(default=0, init=False, repr=False)
    _tasks: Set["asyncio.Task[None]"] = field(default_factory=set, init=False, repr=False)
    _aborted: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.limit, int) or isinstance(self.limit, bool) or self.limit < 1:
            raise ValueError(f"Expected limit to be a positive integer, got {self.limit!r}")
        if not math.isfinite(self.interval) or self.interval < 0:
            raise ValueError(f"Expected interval to be a finite non-negative number, got {self.interval!r}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def active(self) -> int:
        return self._active

    @property
    def aborted(self) -> bool:
        return self._aborted

    def __call__(self, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        if self._aborted:
            raise ThrottleAbortedError("Throttle queue is already aborted and not accepting new requests")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending.append(_PendingCall(args, kwargs, future, contextvars.copy_context()))
        if self._active < self.limit:
            self._next()
        self._report_pending()
        return future

    def _next(self) -> None:
        call = None
        while self._pending:
            candidate = self._pending.popleft()
            if not candidate.future.done():
                call = candidate
                break
        if call is None:
            return

        self._active += 1
        task = asyncio.get_running_loop().create_task(self._run(call), context=call.context)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, call: _PendingCall) -> None:
        try:
            result = await self.request_fn(*call.args, **call.kwargs)
        except asyncio.CancelledError:
            if not call.future.done():
                call.future.cancel()
            raise
        except Exception as exc:
            if not call.future.done():
                call.future.set_exception(exc)
        else:
            if not call.future.done():
                call.future.set_result(result)
        finally:
            self._schedule_release()

    def _schedule_release(self) -> None:
        if self._aborted:
            self._active -= 1
            return
        self._timer_seq += 1
        timer_id = self._timer_seq
        self._timers[timer_id] = asyncio.get_running_loop().call_later(self.interval, self._release, timer_id)

    def _release(self, timer_id: int) -> None:
        self._timers.pop(timer_id, None)
        self._active -= 1
        if self._pending and not self._aborted:
            self._next()
        self._report_pending()

    def _report_pending(self) -> None:
        gauge("throttle_pending", len(self._pending), labels={"ceiling": str(self.limit)})

    def abort(self) -> int:
        """Reject every pending call and cancel release timers. Returns the number rejected."""
        self._aborted = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        rejected = 0
        while self._pending:
            call = self._pending.popleft()
            if not call.future.done():
                call.future.set_exception(ThrottleAbortedError("Throttle queue aborted"))
                rejected += 1
        self._report_pending()
        return rejected


class ThrottleQueueManager:
    """
    Owns one throttle queue per rate limit ceiling.

    Requests with the same ceiling always share a queue; different ceilings
    never do. ``execute`` is synchronous: the queue exists as soon as it
    returns, and the returned future resolves with the request's result.
    """

    def __init__(self, request_fn: RequestFn, interval: float = 1.0):
        self.request_fn = request_fn
        self.interval = interval
        self._queues: Dict[int, ThrottleQueue] = {}

    def _get_queue(self, ceiling: int) -> ThrottleQueue:
        queue = self._queues.get(ceiling)
        if queue is None:
            queue = ThrottleQueue(self.request_fn, ceiling, self.interval)
            self._queues[ceiling] = queue
            logger.debug("Created throttle queue", ceiling=ceiling, interval=self.interval)
        return queue

    def execute(self, ceiling: int, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        """Submit a request to the queue for ``ceiling``."""
        return self._get_queue(ceiling)(*args, **kwargs)

    def abort_all(self) -> None:
        """Abort every queue and forget them. New queues may be created afterwards."""
        rejected = sum(queue.abort() for queue in self._queues.values())
        queue_count = len(self._queues)
        self._queues.clear()
        logger.info("Aborted all throttle queues", queues=queue_count, rejected=rejected)

    @property
    def queue_count(self) -> int:
        return len(self._queues)

    @property
    def queues(self) -> Mapping[int, ThrottleQueue]:
        return MappingProxyType(self._queues)
