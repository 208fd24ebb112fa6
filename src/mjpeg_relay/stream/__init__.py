"""
Stream Module
=============

Upstream M-JPEG ingestion components.

This module provides the upstream half of the relay:
    - Frame: One JPEG image cut out of the multipart stream
    - FrameDemuxer: Incremental multipart/x-mixed-replace splitter
    - StreamController: Single upstream fetch with retry and demand-driven
      start/stop

Example:
    from mjpeg_relay.stream import StreamController, build_stream_url

    controller = StreamController(
        stream_url=build_stream_url("http://192.168.1.100"),
        on_frame=broadcaster.broadcast,
        demand=registry.__len__,
    )

    controller.start()
    ...
    await controller.close()
"""

from mjpeg_relay.stream.controller import (
    ControllerMetrics,
    StreamController,
    build_stream_url,
)
from mjpeg_relay.stream.demuxer import FrameDemuxer, boundary_token
from mjpeg_relay.stream.errors import (
    BufferOverflowError,
    ProtocolMismatch,
    StreamEndedCleanly,
    UpstreamError,
    UpstreamRejected,
    UpstreamUnreachable,
)
from mjpeg_relay.stream.frame import Frame


__all__ = [
    "BufferOverflowError",
    "ControllerMetrics",
    "Frame",
    "FrameDemuxer",
    "ProtocolMismatch",
    "StreamController",
    "StreamEndedCleanly",
    "UpstreamError",
    "UpstreamRejected",
    "UpstreamUnreachable",
    "boundary_token",
    "build_stream_url",
]
