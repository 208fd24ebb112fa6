"""
Demand Tracker
==============

Turns client connect/disconnect notifications into upstream start/stop.

Only the edges matter:
    - 0 -> 1 clients: StreamController.start()
    - 1 -> 0 clients: StreamController.stop()
    - anything else: no-op

No upstream bandwidth is used while nobody is watching.
"""

import logging
from typing import Protocol


logger = logging.getLogger(__name__)


class Startable(Protocol):
    """The part of StreamController the tracker drives."""

    def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


class DemandTracker:
    """
    Client counter that starts and stops the upstream on edges.

    Attributes:
        demand: Number of clients currently counted
    """

    def __init__(self, controller: Startable) -> None:
        self._controller = controller
        self._count: int = 0

    @property
    def demand(self) -> int:
        return self._count

    def client_added(self) -> None:
        self._count += 1
        if self._count == 1:
            logger.info("First client connected, starting M-JPEG stream.")
            self._controller.start()

    async def client_removed(self) -> None:
        if self._count == 0:
            logger.warning("client_removed() called with no clients counted")
            return

        self._count -= 1
        if self._count == 0:
            logger.info("Last client disconnected, stopping M-JPEG stream.")
            await self._controller.stop()
