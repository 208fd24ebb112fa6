"""
Models Module
=============

Small shared types for the relay:
    - ConnectionState: upstream connection lifecycle states
    - FailureReason: why an upstream attempt ended
"""

from mjpeg_relay.models.reason_codes import FailureReason
from mjpeg_relay.models.state import ConnectionState


__all__ = [
    "ConnectionState",
    "FailureReason",
]
