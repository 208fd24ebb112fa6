"""
Client Registry
===============

Downstream side of the relay: the set of connected viewers.

This module provides:
    - FrameSink: Protocol every downstream client satisfies
    - WebSocketClient: FrameSink backed by a FastAPI/Starlette WebSocket
    - ClientRegistry: The set of registered clients; notifies the
      DemandTracker on every add/remove

Design Rules:
    - The registry owns the client set; the stream core only reads it
    - Iteration always runs over a snapshot, so clients may come and go
      while a frame is being broadcast
"""

import logging
from typing import Iterator, List, Optional, Protocol, Set

from starlette.websockets import WebSocket, WebSocketState

from mjpeg_relay.relay.demand import DemandTracker


logger = logging.getLogger(__name__)


class FrameSink(Protocol):
    """A downstream client that can receive binary messages."""

    @property
    def is_open(self) -> bool:
        """Whether a send right now can be delivered."""
        ...

    async def send(self, data: bytes) -> None:
        """Send one binary message."""
        ...


class WebSocketClient:
    """
    FrameSink wrapper around an accepted WebSocket.

    Attributes:
        websocket: The underlying connection
        label: host:port of the peer, for logs
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        peer = websocket.client
        self.label = f"{peer.host}:{peer.port}" if peer else "unknown"

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, data: bytes) -> None:
        await self.websocket.send_bytes(data)

    def __repr__(self) -> str:
        return f"WebSocketClient({self.label})"


class ClientRegistry:
    """
    Set of registered downstream clients.

    Example:
        registry = ClientRegistry()
        registry.tracker = DemandTracker(controller)

        registry.add(client)           # may start the upstream
        ...
        await registry.remove(client)  # may stop the upstream
    """

    def __init__(self, tracker: Optional[DemandTracker] = None) -> None:
        self.tracker = tracker
        self._clients: Set[FrameSink] = set()

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[FrameSink]:
        return iter(list(self._clients))

    def __contains__(self, client: object) -> bool:
        return client in self._clients

    def open_clients(self) -> List[FrameSink]:
        """Snapshot of clients currently able to receive."""
        return [client for client in list(self._clients) if client.is_open]

    def add(self, client: FrameSink) -> None:
        """Register a client. Registering twice is a no-op."""
        if client in self._clients:
            return

        self._clients.add(client)
        logger.info(f"Client connected. Total clients: {len(self._clients)}")

        if self.tracker is not None:
            self.tracker.client_added()

    async def remove(self, client: FrameSink) -> None:
        """Deregister a client. Unknown clients are ignored."""
        if client not in self._clients:
            return

        self._clients.discard(client)
        logger.info(f"Client disconnected. Total clients: {len(self._clients)}")

        if self.tracker is not None:
            await self.tracker.client_removed()
