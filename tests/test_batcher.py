import asyncio
import random

import pytest

from botguard.client.batcher import AsyncioScheduler, CollectorConfig, EventBatcher


@pytest.fixture
def make_batcher(transport, scheduler, clock):
    def _make(**overrides):
        config = CollectorConfig(site_id="shop", **overrides)
        return EventBatcher(config, transport, scheduler=scheduler, clock=clock, rng=random.Random(7))

    return _make


def test_size_trigger_flushes_immediately(make_batcher, transport, scheduler):
    batcher = make_batcher(max_batch_size=50)
    for i in range(51):
        batcher.push("custom", {"i": i})

    assert len(transport.sent) == 1
    endpoint, batch = transport.sent[0]
    assert endpoint == "/bot-events"
    assert [e.payload["i"] for e in batch.events] == list(range(50))
    assert batcher.pending == 1
    assert batcher.state == "armed"
    # the timer armed for the first batch was cancelled by the size flush
    assert len(scheduler.active) == 1


def test_first_event_arms_timer(make_batcher, scheduler):
    batcher = make_batcher(batch_interval_ms=2000)
    assert batcher.state == "idle"
    batcher.push("a")
    batcher.push("b")
    assert batcher.state == "armed"
    assert len(scheduler.handles) == 1
    assert scheduler.handles[0].delay == 2.0


def test_timer_flushes_queue(make_batcher, scheduler, transport):
    batcher = make_batcher()
    batcher.push("a")
    batcher.push("b")
    scheduler.fire()
    assert [e.type for e in transport.sent[0][1].events] == ["a", "b"]
    assert batcher.state == "idle"
    assert batcher.pending == 0


def test_empty_flush_sends_nothing(make_batcher, transport):
    batcher = make_batcher()
    assert batcher.flush() is None
    assert transport.sent == []
    assert batcher.state == "idle"


def test_sampling_drops_whole_batch(make_batcher, transport, scheduler):
    batcher = make_batcher(sample_rate=0.0)
    batcher.push("a")
    batcher.push("b")
    assert batcher.flush() is None
    assert transport.sent == []
    assert batcher.pending == 0
    assert batcher.state == "idle"
    assert scheduler.active == []


def test_batch_metadata(make_batcher, clock, transport):
    batcher = make_batcher(user_id="u1", step="login")
    batcher.fingerprint = "fp_abc"
    batcher.push("a")
    clock.advance(1500)
    batch = batcher.flush()

    assert batch.site_id == "shop"
    assert batch.fingerprint == "fp_abc"
    assert batch.session_duration_ms == 1500
    wire = batch.to_wire()
    assert wire["siteId"] == "shop"
    assert wire["userId"] == "u1"
    assert wire["createdAt"] == clock.now
    assert wire["events"][0]["type"] == "a"


def test_shutdown_flushes_and_closes(make_batcher, transport, scheduler):
    batcher = make_batcher()
    batcher.push("a")
    batch = batcher.shutdown()
    assert [e.type for e in batch.events] == ["a"]
    batcher.push("late")
    assert batcher.pending == 0
    assert batcher.closed
    assert scheduler.active == []


def test_transport_failure_is_swallowed(make_batcher):
    class Exploding:
        def send(self, endpoint, batch):
            raise ConnectionError("offline")

    batcher = make_batcher()
    batcher.transport = Exploding()
    batcher.push("a")
    assert batcher.flush() is not None
    assert batcher.pending == 0


def test_asyncio_scheduler_fires_timer_flush(transport):
    async def scenario():
        config = CollectorConfig(batch_interval_ms=20, max_batch_size=10)
        batcher = EventBatcher(config, transport, scheduler=AsyncioScheduler())
        batcher.push("a")
        batcher.push("b")
        assert batcher.state == "armed"
        await asyncio.sleep(0.2)
        return batcher

    batcher = asyncio.run(scenario())
    assert batcher.state == "idle"
    assert len(transport.sent) == 1
    assert [e.type for e in transport.sent[0][1].events] == ["a", "b"]


def test_asyncio_scheduler_timer_cancelled_by_size_flush(transport):
    async def scenario():
        config = CollectorConfig(batch_interval_ms=50, max_batch_size=2)
        batcher = EventBatcher(config, transport, scheduler=AsyncioScheduler(asyncio.get_running_loop()))
        batcher.push("a")
        handle = batcher._timer
        batcher.push("b")
        assert handle.cancelled()
        assert batcher.state == "idle"
        await asyncio.sleep(0.15)

    asyncio.run(scenario())
    assert len(transport.sent) == 1


def test_event_pushed_during_final_send_is_refused(make_batcher, scheduler):
    sent = []

    class Reentrant:
        def send(self, endpoint, batch):
            sent.append(batch)
            batcher.push("straggler")

    batcher = make_batcher()
    batcher.transport = Reentrant()
    batcher.push("a")
    batcher.shutdown()

    assert [e.type for e in sent[0].events] == ["a"]
    assert batcher.pending == 0
    assert scheduler.active == []
