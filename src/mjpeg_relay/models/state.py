"""
Connection State
================

Lifecycle states of the single upstream connection.

Transitions (driven by StreamController):
    IDLE -> CONNECTING -> STREAMING -> (RETRY_SCHEDULED -> CONNECTING)* -> IDLE

Rules:
    - Exactly one state per controller (one upstream per process)
    - IDLE is the only state in which start() does anything
    - stop() returns every other state to IDLE without a retry
"""

from enum import Enum


class ConnectionState(str, Enum):
    """
    Upstream connection state.

    Attributes:
        IDLE: No request in flight and no retry pending
        CONNECTING: GET issued, waiting for status and headers
        STREAMING: Boundary known, body chunks are being demuxed
        RETRY_SCHEDULED: Last attempt failed, backoff timer pending
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
