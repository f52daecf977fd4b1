import asyncio
import threading
import time
from dataclasses import dataclass

from stet.effects import EffectScheduler, after, emit, task, write
from stet.messages import EffectFailed, Message


@dataclass(frozen=True)
class Ping(Message):
    n: int


def _run(effects, wait=1.0):
    """Spawn effects on a fresh loop and collect what they post."""
    posted = []

    async def go():
        sched = EffectScheduler(posted.append)
        for e in effects:
            sched.spawn(e)
        deadline = asyncio.get_running_loop().time() + wait
        while sched.pending and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.01)
        await sched.close()
    asyncio.run(go())
    return posted


def test_task_runs_off_the_loop_thread():
    main = threading.get_ident()
    seen = []

    def work():
        seen.append(threading.get_ident())
        return Ping(1)

    assert _run([task("work", work)]) == [Ping(1)]
    assert seen and seen[0] != main


def test_after_and_emit_run_inline_in_delay_order():
    posted = _run([after(0.05, "late", lambda: Ping(2)), emit(Ping(1))])
    assert posted == [Ping(1), Ping(2)]


def test_raising_effect_becomes_effect_failed():
    def boom():
        raise RuntimeError("disk on fire")

    posted = _run([task("boom", boom)])
    assert posted == [EffectFailed("boom", "disk on fire")]


def test_none_result_posts_nothing():
    assert _run([task("quiet", lambda: None)]) == []


def test_close_cancels_pending_delays():
    posted = _run([after(30, "never", lambda: Ping(9))], wait=0.05)
    assert posted == []


def test_writes_reach_the_store_in_spawn_order():
    applied = []

    def slow_write(n, pause):
        def run():
            time.sleep(pause)
            applied.append(n)
            return Ping(n)
        return run

    # the first write is the slowest; it must still land first
    posted = _run([write("w1", slow_write(1, 0.1)), write("w2", slow_write(2, 0.0)),
                   write("w3", slow_write(3, 0.02))])
    assert applied == [1, 2, 3]
    assert posted == [Ping(1), Ping(2), Ping(3)]


def test_drain_waits_for_queued_writes():
    applied = []
    posted = []

    def slow():
        time.sleep(0.05)
        applied.append("slow")
        return Ping(1)

    def fast():
        applied.append("fast")
        return Ping(2)

    async def go():
        sched = EffectScheduler(posted.append)
        sched.spawn(write("slow", slow))
        sched.spawn(write("fast", fast))
        assert sched.pending_writes == 2
        await sched.drain()
        assert applied == ["slow", "fast"]
        assert sched.pending_writes == 0
        await sched.close()
    asyncio.run(go())
