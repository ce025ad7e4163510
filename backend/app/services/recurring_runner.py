"""
Recurring processing loop.

Runs the scheduler every ``scheduler_interval_seconds`` inside the API
process. A Redis SET NX EX lock keeps replicas from running the same tick
at once; it only saves work, correctness comes from the cursor
compare-and-swap in the database.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

from redis.exceptions import RedisError

from backend.app.core.config import settings
from backend.app.core.redis_client import get_redis
from backend.app.domain.recurring.scheduler import ProcessingSummary, RecurringScheduler

logger = logging.getLogger("finance.recurring.runner")


class RecurringProcessingLoop:
    """
    Usage:
        loop = RecurringProcessingLoop(scheduler)
        loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        scheduler: RecurringScheduler,
        interval_seconds: float = None,
        lock_key: str = None,
        lock_ttl_seconds: int = None,
        redis_getter: Callable[[], Awaitable] = get_redis,
    ):
        self._scheduler = scheduler
        self._interval = interval_seconds if interval_seconds is not None else settings.scheduler_interval_seconds
        self._lock_key = lock_key or settings.scheduler_lock_key
        self._lock_ttl = lock_ttl_seconds or settings.scheduler_lock_ttl_seconds
        self._redis_getter = redis_getter
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="recurring-processing-loop")
        logger.info("Recurring processing loop started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("Recurring processing loop stopped")

    async def tick(self) -> Optional[ProcessingSummary]:
        """
        One locked run of the scheduler.

        Returns None when another replica holds the tick lock.
        """
        token = uuid.uuid4().hex
        redis = None
        try:
            redis = await self._redis_getter()
            acquired = await redis.set(self._lock_key, token, nx=True, ex=self._lock_ttl)
        except (RedisError, OSError) as exc:
            # Lock unavailable: run anyway, the cursor CAS keeps this safe
            logger.warning("Tick lock unavailable, processing without it: %s", exc)
            redis = None
            acquired = True

        if not acquired:
            logger.debug("Tick lock held elsewhere, skipping")
            return None

        try:
            return await self._scheduler.process_due()
        finally:
            if redis is not None:
                await self._release(redis, token)

    async def _release(self, redis, token: str) -> None:
        try:
            if await redis.get(self._lock_key) == token:
                await redis.delete(self._lock_key)
        except (RedisError, OSError) as exc:
            logger.warning("Could not release tick lock: %s", exc)

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Recurring processing tick failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
