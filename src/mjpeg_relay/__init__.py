"""
MJPEG Relay
===========

Relays one multipart M-JPEG HTTP stream (IP cameras, 3D-printer webcams)
to any number of WebSocket clients, one binary message per JPEG frame.

Components:
    - stream: upstream fetch, multipart demuxing, retry state machine
    - relay: client registry, broadcast fan-out, demand tracking
    - config: YAML + environment settings
    - main: FastAPI application and console entry point

Example:
    export MJPEG_STREAM_URL="http://192.168.1.100"
    mjpeg-relay
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
