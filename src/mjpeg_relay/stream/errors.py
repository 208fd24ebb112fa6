"""
Upstream Errors
===============

Exceptions raised inside an upstream connection attempt.

They never leave the StreamController: each one ends the attempt, is
logged, and (while clients are connected) leads to a retry.
"""

from typing import Optional

from mjpeg_relay.models.reason_codes import FailureReason


class UpstreamError(Exception):
    """Base class for every way an upstream attempt can end."""

    reason: FailureReason = FailureReason.UPSTREAM_UNREACHABLE


class UpstreamUnreachable(UpstreamError):
    """Transport error or timeout while connecting or streaming."""

    reason = FailureReason.UPSTREAM_UNREACHABLE


class UpstreamRejected(UpstreamError):
    """Upstream answered with a status other than 200."""

    reason = FailureReason.UPSTREAM_REJECTED

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolMismatch(UpstreamError):
    """Response is not a multipart stream (no usable boundary)."""

    reason = FailureReason.PROTOCOL_MISMATCH


class BufferOverflowError(ProtocolMismatch):
    """Unconsumed stream bytes grew past the configured cap."""


class StreamEndedCleanly(UpstreamError):
    """Upstream closed the response body normally."""

    reason = FailureReason.STREAM_ENDED_CLEANLY
