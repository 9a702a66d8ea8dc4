"""Delayed-callback substrate: "run this task once, no sooner than now + delay".

Continuations are addressed by task name plus a JSON-serialisable payload so
that a durable backend can persist them and deliver them after a restart.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from pixelbatch.services.id_generator import CALLBACK_PREFIX, generate_id

logger = logging.getLogger(__name__)

CallbackHandler = Callable[..., Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class CallbackScheduler(ABC):
    """Abstract delayed-callback scheduler with a task-name handler registry."""

    durable: bool = False

    def __init__(self, callback_timeout_seconds: float = 300.0):
        self.callback_timeout_seconds = callback_timeout_seconds
        self._handlers: dict[str, CallbackHandler] = {}

    def register(self, task_name: str, handler: CallbackHandler) -> None:
        """Register the coroutine function invoked for ``task_name``."""
        self._handlers[task_name] = handler

    def get_handler(self, task_name: str) -> CallbackHandler | None:
        return self._handlers.get(task_name)

    @abstractmethod
    async def schedule(self, delay_ms: int, task_name: str, payload: dict[str, Any]) -> None:
        """Arm ``task_name(**payload)`` to run once after ``delay_ms``."""
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    async def _dispatch(self, task_name: str, payload: dict[str, Any]) -> bool:
        """Run one callback under the execution ceiling. Returns True when it finished."""
        handler = self._handlers.get(task_name)
        if handler is None:
            logger.error("No handler registered for callback task %s, dropping", task_name)
            return True

        try:
            await asyncio.wait_for(handler(**payload), timeout=self.callback_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "Callback %s exceeded %.0fs ceiling (payload=%s)",
                task_name, self.callback_timeout_seconds, payload,
            )
        except Exception:
            logger.exception("Callback %s failed (payload=%s)", task_name, payload)
        return False


class InProcessCallbackScheduler(CallbackScheduler):
    """asyncio-task backed scheduler for local mode. Pending callbacks die with the process."""

    durable = False

    def __init__(self, callback_timeout_seconds: float = 300.0):
        super().__init__(callback_timeout_seconds)
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    async def schedule(self, delay_ms: int, task_name: str, payload: dict[str, Any]) -> None:
        task = asyncio.create_task(self._run_later(delay_ms, task_name, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_later(self, delay_ms: int, task_name: str, payload: dict[str, Any]) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
        await self._dispatch(task_name, payload)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class RedisCallbackScheduler(CallbackScheduler):
    """Durable, at-least-once scheduler over two Redis sorted sets.

    ``due`` holds armed callbacks scored by due time (ms). A poll loop claims
    due members by removing them from ``due`` and leasing them in
    ``inflight`` (scored by lease expiry). Finished callbacks drop their
    lease; failed or orphaned ones are re-queued once the lease expires.
    """

    durable = True

    def __init__(
        self,
        redis,
        namespace: str = "pixelbatch:callbacks",
        poll_interval_seconds: float = 0.25,
        lease_seconds: int = 600,
        claim_batch_size: int = 100,
        callback_timeout_seconds: float = 300.0,
    ):
        super().__init__(callback_timeout_seconds)
        self.redis = redis
        self.due_key = f"{namespace}:due"
        self.inflight_key = f"{namespace}:inflight"
        self.poll_interval_seconds = poll_interval_seconds
        self.lease_ms = lease_seconds * 1000
        self.claim_batch_size = claim_batch_size
        self._poll_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, delay_ms: int, task_name: str, payload: dict[str, Any]) -> None:
        member = json.dumps(
            {"id": generate_id(CALLBACK_PREFIX), "task": task_name, "payload": payload},
            sort_keys=True,
        )
        await self.redis.zadd(self.due_key, {member: _now_ms() + max(0, delay_ms)})

    async def poll_once(self) -> int:
        """Re-queue expired leases, then claim and start due callbacks. Returns claim count."""
        now = _now_ms()

        expired = await self.redis.zrangebyscore(self.inflight_key, 0, now)
        for member in expired:
            if await self.redis.zrem(self.inflight_key, member):
                logger.warning("Callback lease expired, re-queueing: %s", member)
                await self.redis.zadd(self.due_key, {member: now})

        due = await self.redis.zrangebyscore(self.due_key, 0, now, start=0, num=self.claim_batch_size)
        claimed = 0
        for member in due:
            # zrem succeeds for exactly one poller when several instances race.
            if not await self.redis.zrem(self.due_key, member):
                continue
            await self.redis.zadd(self.inflight_key, {member: now + self.lease_ms})
            task = asyncio.create_task(self._run_member(member))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            claimed += 1
        return claimed

    async def _run_member(self, member: str) -> None:
        try:
            entry = json.loads(member)
        except ValueError:
            logger.error("Discarding malformed callback entry: %r", member)
            await self.redis.zrem(self.inflight_key, member)
            return

        finished = await self._dispatch(entry["task"], entry.get("payload") or {})
        if finished:
            await self.redis.zrem(self.inflight_key, member)

    async def _poll_loop(self) -> None:
        logger.info("Redis callback scheduler started (poll_interval=%.2fs)", self.poll_interval_seconds)
        while True:
            try:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval_seconds)
            except asyncio.CancelledError:
                logger.info("Redis callback scheduler stopped")
                break
            except Exception as exc:
                logger.exception("Callback poll error: %s", exc)
                await asyncio.sleep(self.poll_interval_seconds)

    async def start(self) -> None:
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        # Unfinished callbacks keep their lease and are redelivered later.
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
