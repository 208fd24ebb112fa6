"""
Relay Module
============

Downstream fan-out components:
    - ClientRegistry / WebSocketClient: the set of connected viewers
    - Broadcaster / ClientChannel: queues each frame for every open viewer
    - DemandTracker: starts/stops the upstream on 0<->1 client edges
"""

from mjpeg_relay.relay.broadcast import Broadcaster, ClientChannel
from mjpeg_relay.relay.clients import ClientRegistry, FrameSink, WebSocketClient
from mjpeg_relay.relay.demand import DemandTracker


__all__ = [
    "Broadcaster",
    "ClientChannel",
    "ClientRegistry",
    "DemandTracker",
    "FrameSink",
    "WebSocketClient",
]
