"""
Relay Tests
===========

Broadcast fan-out, demand tracking and the client registry.
"""

import asyncio

from mjpeg_relay.relay import Broadcaster, ClientRegistry, DemandTracker
from mjpeg_relay.stream import Frame

from conftest import JPEG_1, wait_until


class FakeSink:
    """In-memory downstream client."""

    def __init__(self, is_open=True, error=None, delay=0.0, stall=False):
        self.is_open = is_open
        self.error = error
        self.delay = delay
        self.stall = stall
        self.received = []

    async def send(self, data):
        if self.stall:
            await asyncio.Event().wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.received.append(data)


class FakeController:
    def __init__(self):
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1

    async def stop(self):
        self.stops += 1


class TestBroadcaster:
    """Tests for Broadcaster."""

    def test_delivers_to_every_open_client(self):
        registry = ClientRegistry()
        sinks = [FakeSink(), FakeSink(), FakeSink(is_open=False)]
        for sink in sinks:
            registry.add(sink)
        broadcaster = Broadcaster(registry)

        async def scenario():
            queued = await broadcaster.broadcast(Frame(sequence=0, data=JPEG_1))
            await wait_until(lambda: broadcaster.frames_delivered == 2)
            await broadcaster.close()
            return queued

        assert asyncio.run(scenario()) == 2
        assert sinks[0].received == [JPEG_1]
        assert sinks[1].received == [JPEG_1]
        assert sinks[2].received == []

    def test_failing_client_does_not_affect_others(self):
        registry = ClientRegistry()
        broken = FakeSink(error=ConnectionResetError("gone"))
        healthy = FakeSink()
        registry.add(broken)
        registry.add(healthy)
        broadcaster = Broadcaster(registry)

        async def scenario():
            await broadcaster.broadcast(Frame(sequence=0, data=JPEG_1))
            await wait_until(lambda: broadcaster.delivery_failures == 1)
            await wait_until(lambda: healthy.received == [JPEG_1])
            await broadcaster.close()

        asyncio.run(scenario())
        assert broadcaster.metrics()["delivery_failures"] == 1
        assert broadcaster.metrics()["frames_delivered"] == 1

    def test_stalled_client_does_not_block_others(self):
        """A send that never returns holds up neither the stream nor other clients."""
        registry = ClientRegistry()
        stalled = FakeSink(stall=True)
        healthy = FakeSink()
        registry.add(stalled)
        registry.add(healthy)
        broadcaster = Broadcaster(registry)
        frames = [Frame(sequence=i, data=bytes([i])) for i in range(3)]

        async def scenario():
            for frame in frames:
                await asyncio.wait_for(broadcaster.broadcast(frame), timeout=0.5)
            await wait_until(lambda: len(healthy.received) == 3, timeout=0.5)
            await broadcaster.close()

        asyncio.run(scenario())
        assert healthy.received == [f.data for f in frames]
        assert stalled.received == []

    def test_slow_client_drops_oldest_frames(self):
        registry = ClientRegistry()
        stalled = FakeSink(stall=True)
        registry.add(stalled)
        broadcaster = Broadcaster(registry, max_pending_frames=2)

        async def scenario():
            for i in range(6):
                await broadcaster.broadcast(Frame(sequence=i, data=bytes([i])))
                await asyncio.sleep(0)
            channel = broadcaster.channel(stalled)
            pending = channel.pending
            await broadcaster.close()
            return pending

        pending = asyncio.run(scenario())
        # One frame is stuck in send(), two wait in the queue.
        assert pending == 2
        assert broadcaster.dropped_frames == 3

    def test_frames_keep_order_per_client(self):
        registry = ClientRegistry()
        sink = FakeSink(delay=0.01)
        registry.add(sink)
        broadcaster = Broadcaster(registry, max_pending_frames=8)

        async def scenario():
            for i in range(5):
                await broadcaster.broadcast(Frame(sequence=i, data=bytes([i])))
            await wait_until(lambda: len(sink.received) == 5)
            await broadcaster.close()

        asyncio.run(scenario())
        assert sink.received == [bytes([i]) for i in range(5)]

    def test_departed_client_channel_is_retired(self):
        registry = ClientRegistry()
        leaving, staying = FakeSink(), FakeSink()
        registry.add(leaving)
        registry.add(staying)
        broadcaster = Broadcaster(registry)

        async def scenario():
            await broadcaster.broadcast(Frame(sequence=0, data=JPEG_1))
            await wait_until(lambda: broadcaster.frames_delivered == 2)
            await registry.remove(leaving)
            await broadcaster.broadcast(Frame(sequence=1, data=JPEG_1))
            assert broadcaster.channel(leaving) is None
            await wait_until(lambda: len(staying.received) == 2)
            await broadcaster.close()

        asyncio.run(scenario())
        assert leaving.received == [JPEG_1]
        assert broadcaster.frames_delivered == 3

    def test_no_clients(self):
        broadcaster = Broadcaster(ClientRegistry())
        assert asyncio.run(broadcaster.broadcast(Frame(sequence=0, data=JPEG_1))) == 0
        assert broadcaster.metrics()["frames_broadcast"] == 1


class TestDemandTracker:
    """Tests for DemandTracker edge detection."""

    def test_add_add_remove_remove(self):
        controller = FakeController()
        tracker = DemandTracker(controller)

        async def scenario():
            tracker.client_added()
            assert (controller.starts, controller.stops) == (1, 0)
            tracker.client_added()
            assert (controller.starts, controller.stops) == (1, 0)
            await tracker.client_removed()
            assert (controller.starts, controller.stops) == (1, 0)
            await tracker.client_removed()
            assert (controller.starts, controller.stops) == (1, 1)

        asyncio.run(scenario())
        assert tracker.demand == 0

    def test_second_session_starts_again(self):
        controller = FakeController()
        tracker = DemandTracker(controller)

        async def scenario():
            for _ in range(2):
                tracker.client_added()
                await tracker.client_removed()

        asyncio.run(scenario())
        assert (controller.starts, controller.stops) == (2, 2)

    def test_extra_remove_is_ignored(self):
        controller = FakeController()
        tracker = DemandTracker(controller)

        asyncio.run(tracker.client_removed())

        assert tracker.demand == 0
        assert controller.stops == 0


class TestClientRegistry:
    """Tests for ClientRegistry notifications."""

    def test_notifies_tracker(self):
        controller = FakeController()
        registry = ClientRegistry(DemandTracker(controller))
        a, b = FakeSink(), FakeSink()

        async def scenario():
            registry.add(a)
            registry.add(b)
            assert len(registry) == 2
            await registry.remove(a)
            await registry.remove(b)

        asyncio.run(scenario())
        assert (controller.starts, controller.stops) == (1, 1)
        assert len(registry) == 0

    def test_duplicate_add_and_unknown_remove(self):
        controller = FakeController()
        tracker = DemandTracker(controller)
        registry = ClientRegistry(tracker)
        sink = FakeSink()

        async def scenario():
            registry.add(sink)
            registry.add(sink)
            await registry.remove(FakeSink())
            assert tracker.demand == 1
            await registry.remove(sink)
            await registry.remove(sink)

        asyncio.run(scenario())
        assert tracker.demand == 0
        assert (controller.starts, controller.stops) == (1, 1)

    def test_open_clients_filters_closed(self):
        registry = ClientRegistry()
        open_sink, closed_sink = FakeSink(), FakeSink(is_open=False)
        registry.add(open_sink)
        registry.add(closed_sink)

        assert registry.open_clients() == [open_sink]
        assert closed_sink in registry
