from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Set

from stet.messages import EffectFailed, Message

logger = logging.getLogger('stet')


@dataclass(frozen=True)
class Effect:
    """Deferred work yielding exactly one message.

    `run` is called after `delay` seconds, on the loop when `inline` is set,
    otherwise on a worker thread. `serial` effects are store writes: they
    ignore `delay` and run one at a time on a single writer thread, in the
    order they were spawned.
    """
    name: str
    run: Callable[[], Message]
    delay: float = 0.0
    inline: bool = False
    serial: bool = False


def task(name: str, fn: Callable[[], Message]) -> Effect:
    return Effect(name, fn)


def write(name: str, fn: Callable[[], Message]) -> Effect:
    return Effect(name, fn, serial=True)


def after(delay: float, name: str, make: Callable[[], Message]) -> Effect:
    return Effect(name, make, delay=delay, inline=True)


def emit(msg: Message) -> Effect:
    return Effect(f"emit:{type(msg).__name__}", lambda: msg, inline=True)


class EffectScheduler:
    def __init__(self, post: Callable[[Message], None], executor: Optional[ThreadPoolExecutor] = None):
        self._post = post
        self._executor = executor or ThreadPoolExecutor(max_workers=8, thread_name_prefix="stet-effect")
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stet-write")
        self._tasks: Set[asyncio.Task] = set()
        self._writes: Set[asyncio.Future] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    def spawn(self, effect: Effect) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        queued = None
        if effect.serial:
            # submitted here, not in the task, so the writer sees spawn order
            queued = loop.run_in_executor(self._writer, effect.run)
            self._writes.add(queued)
            queued.add_done_callback(self._writes.discard)
        t = loop.create_task(self._run(effect, queued))
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)
        return t

    async def _run(self, effect: Effect, queued: Optional[asyncio.Future] = None) -> None:
        if queued is None and effect.delay > 0:
            await asyncio.sleep(effect.delay)
        try:
            if queued is not None:
                msg = await queued
            elif effect.inline:
                msg = effect.run()
            else:
                msg = await asyncio.get_running_loop().run_in_executor(self._executor, effect.run)
        except Exception as exc:
            logger.exception("effect %s failed", effect.name)
            msg = EffectFailed(effect.name, str(exc) or type(exc).__name__)
        if msg is None:
            logger.warning("effect %s produced no message", effect.name)
            return
        self._post(msg)

    async def drain(self) -> None:
        """Wait until every write spawned so far has reached the store."""
        while self._writes:
            await asyncio.wait(list(self._writes))

    async def close(self) -> None:
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.shutdown()

    def shutdown(self) -> None:
        # Worker threads blocked on network I/O are left to finish on their own.
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._writer.shutdown(wait=True)
