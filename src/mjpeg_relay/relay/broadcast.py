"""
Broadcast Fan-out
=================

Delivers each frame to every open client as one binary message.

This module provides:
    - ClientChannel: Bounded per-client frame queue with its own sender task
    - Broadcaster: Hands each frame to the channel of every open client

Design Rules:
    - broadcast() never awaits a client send; a stalled client cannot
      hold up the stream or the other clients
    - Each client receives frames in stream order
    - A client that falls behind loses its oldest queued frames first
    - Delivery failures are logged at debug level and swallowed; they
      never reach the StreamController
"""

import asyncio
import contextlib
import logging
from typing import Dict, Optional

from mjpeg_relay.relay.clients import ClientRegistry, FrameSink
from mjpeg_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


DEFAULT_MAX_PENDING_FRAMES = 8


class ClientChannel:
    """
    Bounded queue of frames waiting to be sent to one client.

    Uses a drop-oldest policy when the queue is full, so a slow viewer
    skips ahead to recent frames instead of growing memory.

    Attributes:
        client: The downstream client
        delivered_count: Frames sent successfully
        failure_count: Sends that raised
        dropped_count: Frames discarded because the queue was full
    """

    def __init__(self, client: FrameSink, maxsize: int = DEFAULT_MAX_PENDING_FRAMES) -> None:
        """
        Initialize the channel and start its sender task.

        Must be called from the event loop.

        Args:
            client: Client to deliver to
            maxsize: Maximum queued frames. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self.client = client
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)

        self.delivered_count: int = 0
        self.failure_count: int = 0
        self.dropped_count: int = 0

        self._task = asyncio.create_task(
            self._run(),
            name=f"client_sender_{id(client):x}",
        )

    @property
    def pending(self) -> int:
        """Frames queued but not yet sent."""
        return self._queue.qsize()

    def offer(self, frame: Frame) -> bool:
        """
        Queue a frame, dropping the oldest one if full.

        Returns:
            True if nothing had to be dropped.
        """
        dropped = False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped_count += 1
                dropped = True
                logger.debug(
                    f"{self.client!r} is falling behind, dropped oldest frame. "
                    f"Total dropped: {self.dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(frame)
        return not dropped

    async def close(self) -> None:
        """Stop the sender task; queued frames are discarded."""
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    def cancel(self) -> None:
        """Stop the sender task without waiting for it."""
        self._task.cancel()

    async def _run(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                if not self.client.is_open:
                    continue
                await self.client.send(frame.data)
                self.delivered_count += 1
            except Exception as e:
                self.failure_count += 1
                logger.debug(f"Failed to send {frame!r} to {self.client!r}: {e!r}")
            finally:
                self._queue.task_done()

    def __repr__(self) -> str:
        return f"ClientChannel({self.client!r}, pending={self.pending})"


class Broadcaster:
    """
    Frame fan-out over a ClientRegistry.

    Channels are created the first time a client is open during a
    broadcast, and retired once the client has left the registry.

    Attributes:
        max_pending_frames: Queue size of each client channel
        frames_broadcast: Frames handed to broadcast()

    Example:
        broadcaster = Broadcaster(registry)

        await broadcaster.broadcast(frame)  # returns immediately
        ...
        await broadcaster.detach(client)    # client left
        await broadcaster.close()           # shutdown
    """

    def __init__(
        self,
        registry: ClientRegistry,
        max_pending_frames: int = DEFAULT_MAX_PENDING_FRAMES,
    ) -> None:
        if max_pending_frames < 1:
            raise ValueError("max_pending_frames must be >= 1")

        self.registry = registry
        self.max_pending_frames = max_pending_frames
        self.frames_broadcast: int = 0

        self._channels: Dict[FrameSink, ClientChannel] = {}

        # Counters of channels that have been retired
        self._retired_delivered: int = 0
        self._retired_failures: int = 0
        self._retired_dropped: int = 0

    @property
    def delivery_failures(self) -> int:
        """Individual sends that raised, over all clients."""
        return self._retired_failures + sum(
            c.failure_count for c in self._channels.values()
        )

    @property
    def frames_delivered(self) -> int:
        """Individual sends that succeeded, over all clients."""
        return self._retired_delivered + sum(
            c.delivered_count for c in self._channels.values()
        )

    @property
    def dropped_frames(self) -> int:
        """Frames discarded because a client fell behind."""
        return self._retired_dropped + sum(
            c.dropped_count for c in self._channels.values()
        )

    async def broadcast(self, frame: Frame) -> int:
        """
        Queue a frame for every open client.

        Returns:
            Number of clients the frame was queued for.
        """
        self.frames_broadcast += 1
        self._prune()

        queued = 0
        for client in self.registry.open_clients():
            channel = self._channels.get(client)
            if channel is None:
                channel = ClientChannel(client, maxsize=self.max_pending_frames)
                self._channels[client] = channel
            channel.offer(frame)
            queued += 1
        return queued

    def channel(self, client: FrameSink) -> Optional[ClientChannel]:
        """The channel of a client, if one was created."""
        return self._channels.get(client)

    async def detach(self, client: FrameSink) -> None:
        """Retire a client's channel and wait for its sender to stop."""
        channel = self._channels.pop(client, None)
        if channel is None:
            return
        await channel.close()
        self._retire(channel)

    async def close(self) -> None:
        """Retire every channel."""
        for client in list(self._channels):
            await self.detach(client)

    def _prune(self) -> None:
        for client in [c for c in self._channels if c not in self.registry]:
            channel = self._channels.pop(client)
            channel.cancel()
            self._retire(channel)

    def _retire(self, channel: ClientChannel) -> None:
        self._retired_delivered += channel.delivered_count
        self._retired_failures += channel.failure_count
        self._retired_dropped += channel.dropped_count

    def metrics(self) -> dict:
        """
        Get fan-out metrics for observability.

        Returns:
            Dict with clients, open_clients, frames_broadcast,
            frames_delivered, delivery_failures, dropped_frames
        """
        return {
            "clients": len(self.registry),
            "open_clients": len(self.registry.open_clients()),
            "frames_broadcast": self.frames_broadcast,
            "frames_delivered": self.frames_delivered,
            "delivery_failures": self.delivery_failures,
            "dropped_frames": self.dropped_frames,
        }
