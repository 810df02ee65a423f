import asyncio

import pytest

from signup_service.events import EventEmitter
from signup_service.scheduler import AsyncioScheduler, ManualScheduler


class TestEventEmitter:
    """Ordered pub/sub with per-listener isolation."""

    def test_listeners_run_in_registration_order(self):
        emitter = EventEmitter()
        calls = []
        emitter.on("reload", lambda data: calls.append(("a", data)))
        emitter.on("reload", lambda data: calls.append(("b", data)))

        emitter.emit("reload", 1)

        assert calls == [("a", 1), ("b", 1)]

    def test_throwing_listener_does_not_block_others(self):
        emitter = EventEmitter()
        calls = []

        def broken(_data):
            raise RuntimeError("listener failure")

        emitter.on("x", broken)
        emitter.on("x", lambda data: calls.append(data))

        emitter.emit("x", "first")
        emitter.emit("x", "second")

        assert calls == ["first", "second"]

    def test_off_removes_single_registration(self):
        emitter = EventEmitter()
        calls = []

        def listener(data):
            calls.append(data)

        emitter.on("x", listener)
        emitter.on("x", listener)
        emitter.off("x", listener)
        emitter.emit("x", 1)

        assert calls == [1]
        assert emitter.listener_count("x") == 1
        emitter.off("x", listener)
        assert emitter.listener_count("x") == 0

    def test_off_removes_bound_method(self):
        class Listener:
            def __init__(self):
                self.calls = []

            def handle(self, data):
                self.calls.append(data)

        emitter = EventEmitter()
        listener = Listener()
        emitter.on("pong", listener.handle)
        emitter.off("pong", listener.handle)
        emitter.emit("pong", {})

        assert listener.calls == []
        assert emitter.listener_count("pong") == 0

    def test_off_unknown_is_noop(self):
        emitter = EventEmitter()
        emitter.off("missing", print)
        emitter.emit("missing")

    def test_unsubscribe_during_emit(self):
        emitter = EventEmitter()
        calls = []

        def once(data):
            calls.append("once")
            emitter.off("x", once)

        emitter.on("x", once)
        emitter.on("x", lambda data: calls.append("after"))
        emitter.emit("x")
        emitter.emit("x")

        assert calls == ["once", "after", "after"]


class TestManualScheduler:
    """Virtual clock."""

    def test_advance_runs_due_calls_in_order(self):
        scheduler = ManualScheduler()
        calls = []
        scheduler.call_later(2, lambda: calls.append("late"))
        scheduler.call_later(1, lambda: calls.append("early"))

        assert scheduler.advance(0.5) == 0
        assert scheduler.advance(0.5) == 1
        assert scheduler.advance(5) == 1
        assert calls == ["early", "late"]
        assert scheduler.now == 6

    def test_cancelled_call_never_runs(self):
        scheduler = ManualScheduler()
        calls = []
        handle = scheduler.call_later(1, lambda: calls.append(1))
        handle.cancel()

        assert scheduler.advance(10) == 0
        assert calls == []
        assert scheduler.pending == []

    def test_run_all_includes_rescheduled(self):
        scheduler = ManualScheduler()
        calls = []

        def chain():
            calls.append(scheduler.now)
            if len(calls) < 3:
                scheduler.call_later(1, chain)

        scheduler.call_later(1, chain)
        assert scheduler.run_all() == 3
        assert calls == [1, 2, 3]
        assert scheduler.history == [1, 1, 1]


@pytest.mark.asyncio
class TestAsyncioScheduler:
    async def test_call_later_fires(self):
        fired = asyncio.Event()
        AsyncioScheduler().call_later(0.01, fired.set)
        await asyncio.wait_for(fired.wait(), timeout=1)

    async def test_cancel(self):
        calls = []
        handle = AsyncioScheduler().call_later(0.01, lambda: calls.append(1))
        handle.cancel()
        await asyncio.sleep(0.05)
        assert calls == []
